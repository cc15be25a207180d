"""
Redis-backed session state store.

One JSON record per session under ``{prefix}{session_id}`` with a sliding
TTL: every successful read resets the expiry to the full window.

Redis availability is checked with a PING before each access. When Redis
is down, ``get_or_init`` returns an in-memory initial state for the turn
instead of failing the request. The session silently restarts in that
case; it is logged, not hidden.
"""

import logging
from functools import lru_cache
from typing import Any, Callable, Optional

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from btrix_bot.config import SessionConfig, settings
from btrix_bot.schemas.session_schema import SessionState
from btrix_bot.utils import mask_pii

logger = logging.getLogger(__name__)


class SessionStoreUnavailableError(Exception):
    """Raised when Redis cannot be reached or a Redis command fails."""


@lru_cache
def get_redis_client(url: Optional[str] = None) -> "redis.Redis":
    """Cached Redis client with retry on timeout and periodic health checks."""
    url = url or settings.session.redis_url
    client = redis.from_url(
        url,
        decode_responses=True,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    logger.info("Redis client initialized: %s", url)
    return client


class SessionStore:
    """get/set/exists/refresh_ttl over Redis, with graceful degradation."""

    def __init__(
        self,
        client: "redis.Redis",
        config: Optional[SessionConfig] = None,
    ) -> None:
        self.client = client
        self.config = config or settings.session

    @property
    def ttl_seconds(self) -> int:
        return self.config.ttl_seconds

    def key(self, session_id: str) -> str:
        return f"{self.config.key_prefix}{session_id}"

    async def is_available(self) -> bool:
        try:
            await self.client.ping()
            return True
        except (RedisError, OSError) as e:
            logger.warning("Redis unavailable: %s", e)
            return False

    async def _ensure_available(self) -> None:
        if not await self.is_available():
            raise SessionStoreUnavailableError("Redis is not reachable")

    async def get(self, session_id: str) -> Optional[SessionState]:
        """
        Load a session and slide its TTL back to the full window.

        Returns:
            The stored state, or None if absent or unreadable.

        Raises:
            SessionStoreUnavailableError: If Redis is down or errors.
        """
        await self._ensure_available()
        key = self.key(session_id)
        try:
            raw = await self.client.get(key)
            if raw is None:
                return None
            await self.client.expire(key, self.ttl_seconds)
        except RedisError as e:
            raise SessionStoreUnavailableError(f"Redis GET failed for {key}: {e}") from e

        try:
            state = SessionState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Corrupt session state for %s, reinitialising: %s", session_id, e)
            return None

        logger.debug(
            "Session loaded: %s state=%s data=%s",
            session_id, state.current.value, mask_pii(state.data),
        )
        return state

    async def set(
        self, session_id: str, state: SessionState, ttl: Optional[int] = None
    ) -> None:
        """Persist a session with a full TTL.

        Raises:
            SessionStoreUnavailableError: If Redis is down or errors.
        """
        await self._ensure_available()
        key = self.key(session_id)
        try:
            await self.client.set(key, state.model_dump_json(), ex=ttl or self.ttl_seconds)
        except RedisError as e:
            raise SessionStoreUnavailableError(f"Redis SET failed for {key}: {e}") from e
        logger.debug(
            "Session saved: %s state=%s data=%s",
            session_id, state.current.value, mask_pii(state.data),
        )

    async def exists(self, session_id: str) -> bool:
        await self._ensure_available()
        try:
            return bool(await self.client.exists(self.key(session_id)))
        except RedisError as e:
            raise SessionStoreUnavailableError(f"Redis EXISTS failed: {e}") from e

    async def refresh_ttl(self, session_id: str, ttl: Optional[int] = None) -> bool:
        """Reset the expiry to the full window. False if the key does not exist."""
        await self._ensure_available()
        try:
            return bool(await self.client.expire(self.key(session_id), ttl or self.ttl_seconds))
        except RedisError as e:
            raise SessionStoreUnavailableError(f"Redis EXPIRE failed: {e}") from e

    async def delete(self, session_id: str) -> bool:
        await self._ensure_available()
        try:
            return bool(await self.client.delete(self.key(session_id)))
        except RedisError as e:
            raise SessionStoreUnavailableError(f"Redis DEL failed: {e}") from e

    async def get_or_init(
        self, session_id: str, initial: Callable[[], SessionState]
    ) -> SessionState:
        """
        Load a session, creating it from ``initial()`` if absent.

        Never raises for store problems: if Redis is unavailable the
        initial state is returned in memory only.
        """
        try:
            state = await self.get(session_id)
        except SessionStoreUnavailableError as e:
            logger.warning(
                "Session store unavailable, using in-memory state for %s: %s", session_id, e
            )
            return initial()

        if state is not None:
            return state

        state = initial()
        try:
            await self.set(session_id, state)
            logger.info("Session initialized: %s", session_id)
        except SessionStoreUnavailableError as e:
            logger.warning("Could not persist new session %s: %s", session_id, e)
        return state

    async def stats(self, session_id: str) -> dict[str, Any]:
        """Diagnostics for one session. Collected values are not included."""
        state = await self.get(session_id)
        if state is None:
            return {"exists": False}
        try:
            ttl = await self.client.ttl(self.key(session_id))
        except RedisError as e:
            raise SessionStoreUnavailableError(f"Redis TTL failed: {e}") from e
        return {
            "exists": True,
            "current_state": state.current.value,
            "history": [s.value for s in state.history],
            "data_keys": sorted(state.data),
            "language": state.language,
            "created_at": state.created_at.isoformat(),
            "updated_at": state.updated_at.isoformat(),
            "age_seconds": round(state.age_seconds()),
            "ttl_seconds": ttl,
        }


class InMemorySessionStore:
    """Process-local store with the SessionStore interface, for offline runs.

    No TTL is enforced. Setting ``available = False`` makes every access
    raise SessionStoreUnavailableError, as a Redis outage would.
    """

    def __init__(self) -> None:
        self.sessions: dict[str, SessionState] = {}
        self.available = True

    def _ensure_available(self) -> None:
        if not self.available:
            raise SessionStoreUnavailableError("In-memory store marked unavailable")

    async def is_available(self) -> bool:
        return self.available

    async def get(self, session_id: str) -> Optional[SessionState]:
        self._ensure_available()
        return self.sessions.get(session_id)

    async def set(
        self, session_id: str, state: SessionState, ttl: Optional[int] = None
    ) -> None:
        self._ensure_available()
        self.sessions[session_id] = state

    async def exists(self, session_id: str) -> bool:
        self._ensure_available()
        return session_id in self.sessions

    async def refresh_ttl(self, session_id: str, ttl: Optional[int] = None) -> bool:
        self._ensure_available()
        return session_id in self.sessions

    async def delete(self, session_id: str) -> bool:
        self._ensure_available()
        return self.sessions.pop(session_id, None) is not None

    async def get_or_init(
        self, session_id: str, initial: Callable[[], SessionState]
    ) -> SessionState:
        try:
            state = await self.get(session_id)
        except SessionStoreUnavailableError as e:
            logger.warning("Session store unavailable, using in-memory state for %s: %s", session_id, e)
            return initial()
        if state is None:
            state = initial()
            self.sessions[session_id] = state
        return state
