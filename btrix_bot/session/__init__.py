from btrix_bot.session.store import (
    InMemorySessionStore,
    SessionStore,
    SessionStoreUnavailableError,
    get_redis_client,
)

__all__ = ["SessionStore", "InMemorySessionStore", "SessionStoreUnavailableError", "get_redis_client"]
