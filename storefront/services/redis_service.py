# storefront/services/redis_service.py
"""
Redis Service for the storefront.

Async-only wrapper around Redis with:
- Flexible configuration for multiple Redis providers
- Automatic JSON serialization/deserialization
- TTL support
- Per-operation timeouts
- Health checks

Unlike a cache, sessions and identities must not silently disappear when
Redis is down, so every operation raises RedisServiceError on failure
instead of returning a default.
"""
import os
import json
import asyncio
import redis.asyncio as redis
from typing import Optional, Dict, Any, Awaitable
from dataclasses import dataclass
import logging

from storefront.core.service_base import BaseService, ServiceConfig
from storefront.core.exceptions import RedisServiceError, ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class RedisConfig(ServiceConfig):
    """Configuration for Redis Service"""
    url: Optional[str] = None
    decode_responses: bool = True
    socket_timeout: float = 5.0
    operation_timeout: float = 5.0
    max_connections: int = 50
    retry_on_timeout: bool = True
    health_check_interval: int = 30


class RedisService(BaseService[RedisConfig]):
    """
    Async-only Redis service backing the session and identity stores.
    """

    def __init__(self, config: Optional[RedisConfig] = None):
        """
        Initialize Redis Service.

        Args:
            config: Redis configuration. If not provided, uses environment variables.
        """
        self.logger = logging.getLogger(__name__)
        self._url_source = None  # Track which env var was used

        if config is None:
            config = RedisConfig(url=self._get_redis_url())

        super().__init__(config, self.logger)

    def _get_redis_url(self) -> Optional[str]:
        """
        Get Redis URL from environment variables.

        Checks multiple variables for hosting provider compatibility.
        """
        url_env_vars = [
            "REDIS_DIRECT_URI",
            "REDIS_DIRECT_URL",
            "REDIS_URL",
            "REDIS_CLI_DIRECT_URI",
            "REDIS_CLI_URL"
        ]

        for var in url_env_vars:
            if url := os.environ.get(var):
                self._url_source = var
                self.logger.info(f"Using Redis URL from {var}")
                return url

        return None

    def _validate_config(self) -> None:
        """Sessions cannot work without Redis, so a missing URL is fatal"""
        super()._validate_config()

        if not self.config.url:
            raise ConfigurationError(
                "No Redis URL found. Set one of: REDIS_DIRECT_URI, REDIS_URL, etc.",
                component=self.service_name
            )

    async def _initialize_client(self) -> redis.Redis:
        """Initialize the Redis client"""
        client = redis.from_url(
            self.config.url,
            decode_responses=self.config.decode_responses,
            socket_timeout=self.config.socket_timeout,
            max_connections=self.config.max_connections,
            retry_on_timeout=self.config.retry_on_timeout,
            health_check_interval=self.config.health_check_interval
        )

        try:
            await client.ping()
            self.logger.info("Redis connection successful")
        except Exception as e:
            # The pool reconnects lazily; requests fail closed until Redis is back
            self.logger.warning(f"⚠️ Redis not reachable at startup: {e}")

        return client

    async def _call(self, operation: str, key: Optional[str], awaitable: Awaitable[Any]) -> Any:
        """Run one Redis command under the operation timeout"""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.operation_timeout)
        except asyncio.TimeoutError as e:
            raise RedisServiceError(
                f"Redis {operation} timed out after {self.config.operation_timeout}s",
                key=key,
                operation=operation
            ) from e
        except Exception as e:
            raise RedisServiceError(
                f"Redis {operation} failed: {type(e).__name__}",
                key=key,
                operation=operation,
                details={'original_error': str(e)}
            ) from e

    async def get(self, key: str, deserialize_json: bool = True) -> Any:
        """
        Get a value from Redis.

        Args:
            key: The key to retrieve
            deserialize_json: Whether to deserialize JSON strings

        Returns:
            The stored value, or None if the key does not exist

        Raises:
            RedisServiceError: If Redis cannot be reached
        """
        value = await self._call("get", key, self.client.get(key))

        if value is None:
            return None

        if deserialize_json and isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        serialize_json: bool = True
    ) -> bool:
        """
        Set a value in Redis.

        Args:
            key: The key to set
            value: The value to store
            ttl: Time to live in seconds
            serialize_json: Whether to serialize non-string values as JSON

        Raises:
            RedisServiceError: If the write fails
        """
        if serialize_json and not isinstance(value, (str, bytes)):
            value = json.dumps(value)

        if ttl:
            await self._call("setex", key, self.client.setex(key, ttl, value))
        else:
            await self._call("set", key, self.client.set(key, value))

        return True

    async def delete(self, *keys: str) -> int:
        """
        Delete one or more keys.

        Returns:
            Number of keys deleted
        """
        if not keys:
            return 0
        return await self._call("delete", keys[0], self.client.delete(*keys))

    async def health_check(self) -> Dict[str, Any]:
        """
        Check Redis service health.

        Returns:
            Health status including connection info
        """
        if not self._initialized or self._client is None:
            return {
                "healthy": False,
                "status": "not_connected",
                "details": {
                    "url_source": self._url_source,
                    "error": "Client not initialized"
                }
            }

        try:
            await self._call("ping", None, self._client.ping())
            info = await self._call("info", None, self._client.info())

            return {
                "healthy": True,
                "status": "connected",
                "details": {
                    "url_source": self._url_source,
                    "redis_version": info.get("redis_version", "unknown"),
                    "connected_clients": info.get("connected_clients", 0),
                    "used_memory_human": info.get("used_memory_human", "unknown")
                }
            }

        except RedisServiceError as e:
            return {
                "healthy": False,
                "status": "error",
                "details": {
                    "url_source": self._url_source,
                    "error": e.message
                }
            }

    async def _cleanup(self) -> None:
        """Clean up Redis connection"""
        if self._client:
            try:
                await self._client.aclose()
            except Exception as e:
                self.logger.warning(f"Error closing Redis client: {e}")
