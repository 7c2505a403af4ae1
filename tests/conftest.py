# tests/conftest.py
"""
Shared fixtures for storefront tests.

Redis is replaced by a small in-memory client with the same async surface,
and object storage by a recorder, so no test needs a real backend.
"""

import asyncio
import os
import time
from typing import Any, Dict, List, Optional, Tuple

import pytest
import redis.exceptions
from fastapi.testclient import TestClient

os.environ.setdefault("LOG_DIR", os.path.join(os.path.dirname(__file__), ".logs"))

from storefront.core.config import Settings, PipelineConfig
from storefront.core.exceptions import ObjectStorageError
from storefront.core.security import hash_password, unsign_value
from storefront.models.identity import Identity
from storefront.services.identity_store import RedisIdentityStore
from storefront.services.redis_service import RedisService, RedisConfig
from storefront.services.session_store import RedisSessionStore

TEST_SECRET = "test-session-secret"
TEST_PASSWORD = "correct horse battery staple"
TEST_UPLOAD_LIMIT = 64 * 1024


class InMemoryRedis:
    """Enough of redis.asyncio.Redis for the session and identity stores"""

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.expiry: Dict[str, float] = {}
        self.fail_prefix: Optional[str] = None
        self.closed = False

    def _check(self, key: Optional[str] = None):
        if self.fail_prefix is None:
            return
        if key is None or key.startswith(self.fail_prefix):
            raise redis.exceptions.ConnectionError("Error 111 connecting to redis:6379. Connection refused.")

    def _alive(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    async def ping(self):
        self._check()
        return True

    async def info(self):
        self._check()
        return {"redis_version": "7.2.0", "connected_clients": 1, "used_memory_human": "1M"}

    async def get(self, key):
        self._check(key)
        return self.data[key] if self._alive(key) else None

    async def set(self, key, value):
        self._check(key)
        self.data[key] = value
        self.expiry.pop(key, None)
        return True

    async def setex(self, key, ttl, value):
        self._check(key)
        self.data[key] = value
        self.expiry[key] = time.monotonic() + ttl
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            self._check(key)
            if self._alive(key):
                del self.data[key]
                self.expiry.pop(key, None)
                removed += 1
        return removed

    async def aclose(self):
        self.closed = True


class RecordingStorage:
    """Object storage stand-in that remembers every put"""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.calls: List[Tuple[str, Dict[str, str], Optional[str]]] = []
        self.fail = False

    async def put(self, key, data, length, metadata, content_type=None):
        await asyncio.sleep(0)
        if self.fail:
            raise ObjectStorageError("Failed to store object: MaxRetryError", key=key, bucket="test")
        self.calls.append((key, metadata, content_type))
        self.objects[key] = data.read(length)
        return f"https://test-bucket.s3.amazonaws.com/{key}"


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def storage():
    return RecordingStorage()


@pytest.fixture
def redis_service(fake_redis):
    """RedisService wired to the in-memory client"""
    service = RedisService(RedisConfig(url="redis://test:6379/0", operation_timeout=1.0))
    service._client = fake_redis
    service._initialized = True
    return service


@pytest.fixture
def session_store(redis_service):
    return RedisSessionStore(redis_service)


@pytest.fixture
def identity_store(redis_service):
    return RedisIdentityStore(redis_service)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        SESSION_SECRET=TEST_SECRET,
        REDIS_URL="redis://test:6379/0",
        RATE_LIMIT_ENABLED=False,
        STORE_TIMEOUT_SECONDS=1.0,
        MAX_UPLOAD_BYTES=TEST_UPLOAD_LIMIT,
    )


@pytest.fixture
def pipeline_config(test_settings):
    return PipelineConfig.from_settings(test_settings)


@pytest.fixture
def app(test_settings, redis_service, storage):
    from storefront.main import create_app
    return create_app(test_settings, redis_service=redis_service, object_storage=storage)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def seed_identity(fake_redis: InMemoryRedis, email: str = "shopper@example.com", password: str = TEST_PASSWORD) -> Identity:
    """Write a user straight into the fake store"""
    identity = Identity(email=email, password_hash=hash_password(password))
    fake_redis.data[f"user:{identity.id}"] = identity.model_dump_json()
    fake_redis.data[f"user-email:{email}"] = identity.id
    return identity


def session_id_from(client: TestClient) -> Optional[str]:
    return unsign_value(client.cookies.get("shop.sid"), TEST_SECRET)


def csrf_token(client: TestClient) -> str:
    """Open the shop page and return the token rendered into it"""
    response = client.get("/")
    assert response.status_code == 200
    return response.json()["csrfToken"]


def login(client: TestClient, email: str = "shopper@example.com", password: str = TEST_PASSWORD):
    return client.post("/login", data={"email": email, "password": password, "_csrf": csrf_token(client)})
