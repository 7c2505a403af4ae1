# storefront/services/identity_store.py
"""
Identity store.

The request pipeline only needs ``find_by_id``. Its contract draws the line
between the two outcomes that must never be confused:

- ``None``: no identity with that id (deleted account, stale reference)
- ``IdentityStoreError`` raised: the store itself failed

Any other exception escaping an implementation is a bug in that
implementation, and the pipeline treats it as a store failure too.
"""
import logging
from typing import Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from storefront.core.exceptions import (
    StorefrontServiceError,
    IdentityStoreError,
    StorefrontValidationError
)
from storefront.core.security import hash_password
from storefront.models.identity import Identity
from storefront.services.redis_service import RedisService

logger = logging.getLogger(__name__)


class IdentityStore(Protocol):
    async def find_by_id(self, identity_id: str) -> Optional[Identity]:
        ...


class RedisIdentityStore:
    """Users stored as JSON under ``user:<id>`` with an email index"""

    def __init__(self, redis_service: RedisService):
        self._redis = redis_service

    @staticmethod
    def _key(identity_id: str) -> str:
        return f"user:{identity_id}"

    @staticmethod
    def _email_key(email: str) -> str:
        return f"user-email:{email.strip().lower()}"

    async def find_by_id(self, identity_id: str) -> Optional[Identity]:
        try:
            raw = await self._redis.get(self._key(identity_id), deserialize_json=False)
        except StorefrontServiceError as e:
            raise IdentityStoreError(
                "Identity store unavailable", identity_id=identity_id, operation="find_by_id"
            ) from e

        if raw is None:
            return None

        try:
            return Identity.model_validate_json(raw)
        except PydanticValidationError as e:
            # A corrupt record is a store fault, not a missing user
            raise IdentityStoreError(
                "Identity record is corrupt", identity_id=identity_id, operation="find_by_id"
            ) from e

    async def find_by_email(self, email: str) -> Optional[Identity]:
        try:
            identity_id = await self._redis.get(self._email_key(email), deserialize_json=False)
        except StorefrontServiceError as e:
            raise IdentityStoreError("Identity store unavailable", operation="find_by_email") from e

        if identity_id is None:
            return None
        return await self.find_by_id(identity_id)

    async def create(self, email: str, password: str, name: Optional[str] = None) -> Identity:
        """
        Register a new identity.

        Raises:
            StorefrontValidationError: If the email is already taken
            IdentityStoreError: If the store fails
        """
        if await self.find_by_email(email) is not None:
            raise StorefrontValidationError("E-Mail exists already", field="email")

        identity = Identity(email=email.strip().lower(), password_hash=hash_password(password), name=name)
        try:
            await self._redis.set(self._key(identity.id), identity.model_dump_json())
            await self._redis.set(self._email_key(identity.email), identity.id)
        except StorefrontServiceError as e:
            raise IdentityStoreError(
                "Identity store unavailable", identity_id=identity.id, operation="create"
            ) from e

        logger.info(f"👤 Registered identity {identity.id[:8]}...")
        return identity
