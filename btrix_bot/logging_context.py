"""Session id on every log record.

The orchestrator sets the id at the start of each turn. Once
``install_session_logging()`` has run (``load_config`` does it), every
record created in that async context carries ``record.session_id``, so a
single visitor can be followed through the state machine, retriever,
guardrail and session store with ``%(session_id)s`` in the log format.
"""

import logging
from contextvars import ContextVar

NO_SESSION = "-"
LOG_FORMAT = "%(asctime)s [%(name)s] [%(session_id)s] %(levelname)s: %(message)s"

_session_id: ContextVar[str] = ContextVar("session_id", default=NO_SESSION)


def set_session_id(session_id: str) -> None:
    _session_id.set(session_id or NO_SESSION)


def get_session_id() -> str:
    return _session_id.get()


def install_session_logging() -> None:
    """Wrap the log record factory so records carry the current session id.

    A record factory reaches records from every logger, including ones
    handled by handlers added later (pytest's caplog, third-party setups).
    Calling it twice is a no-op.
    """
    previous = logging.getLogRecordFactory()
    if getattr(previous, "adds_session_id", False):
        return

    def factory(*args, **kwargs) -> logging.LogRecord:
        record = previous(*args, **kwargs)
        record.session_id = _session_id.get()  # type: ignore[attr-defined]
        return record

    factory.adds_session_id = True  # type: ignore[attr-defined]
    logging.setLogRecordFactory(factory)
