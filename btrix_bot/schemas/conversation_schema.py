"""Reply shape returned to the caller for every turn."""

from pydantic import BaseModel

from btrix_bot.schemas.session_schema import State


class TurnReply(BaseModel):
    """The orchestrator's answer to one inbound message."""

    message: str
    next_state: State
    used_retrieval: bool = False
    language: str = "en"
