from btrix_bot.conversation.guardrails import PriceGuardrail
from btrix_bot.conversation.handlers import StateHandlers, StepResult
from btrix_bot.conversation.orchestrator import DialogueOrchestrator
from btrix_bot.conversation.state_machine import ConversationStateMachine, InvalidStateError
from btrix_bot.schemas.session_schema import State

__all__ = [
    "DialogueOrchestrator",
    "ConversationStateMachine",
    "InvalidStateError",
    "State",
    "StateHandlers",
    "StepResult",
    "PriceGuardrail",
]
