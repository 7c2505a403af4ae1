# storefront/services/session_store.py
"""
Redis-backed session store.

Records are JSON-serialized Session models stored under ``sess:<id>`` with a
Redis TTL equal to the session's remaining lifetime. Concurrent writes to the
same id are last-writer-wins; a single client drives a session, so no locking.
"""
import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from storefront.core.exceptions import StorefrontServiceError, SessionStoreError
from storefront.models.session_state import Session
from storefront.services.redis_service import RedisService

logger = logging.getLogger(__name__)


class RedisSessionStore:
    """Load, save and destroy sessions in the shared Redis store"""

    def __init__(self, redis_service: RedisService, key_prefix: str = "sess:"):
        self._redis = redis_service
        self._prefix = key_prefix

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    async def load(self, session_id: str) -> Optional[Session]:
        """
        Fetch a session by id.

        Returns:
            The session, or None when it is missing, expired or unreadable

        Raises:
            SessionStoreError: If the store cannot be reached
        """
        try:
            raw = await self._redis.get(self._key(session_id), deserialize_json=False)
        except StorefrontServiceError as e:
            raise SessionStoreError(
                "Session store unavailable", session_id=session_id, operation="load"
            ) from e

        if raw is None:
            return None

        try:
            session = Session.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning(f"Discarding unreadable session record {session_id[:8]}...")
            return None

        if session.session_id != session_id or session.is_expired():
            logger.debug(f"⏰ Session {session_id[:8]}... expired")
            return None

        return session

    async def save(self, session: Session) -> None:
        """Persist the session with the TTL left on its fixed expiry"""
        ttl = session.remaining_ttl()
        if ttl <= 0:
            await self.destroy(session.session_id)
            return

        try:
            await self._redis.set(self._key(session.session_id), session.model_dump_json(), ttl=ttl)
        except StorefrontServiceError as e:
            raise SessionStoreError(
                "Session store unavailable", session_id=session.session_id, operation="save"
            ) from e

    async def destroy(self, session_id: str) -> None:
        try:
            await self._redis.delete(self._key(session_id))
        except StorefrontServiceError as e:
            raise SessionStoreError(
                "Session store unavailable", session_id=session_id, operation="destroy"
            ) from e
        logger.debug(f"🗑️ Deleted session {session_id[:8]}...")
