# storefront/main.py
"""
Storefront FastAPI application.

Wires the request pipeline (sessions, CSRF, uploads, identity) in front of
the shop, auth and admin routes.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware
from slowapi.errors import RateLimitExceeded

from storefront.core.config import Settings, settings, validate_required_settings, PipelineConfig
from storefront.core.logging_config import setup_logging
from storefront.core.rate_limit_config import limiter, rate_limit_handler
from storefront.core.service_base import BaseService
from storefront.middleware.pipeline import RequestPipeline
from storefront.middleware.security_middleware import SecurityHeadersMiddleware, log_requests
from storefront.routes import admin, auth, errors, shop
from storefront.services.identity_store import IdentityStore, RedisIdentityStore
from storefront.services.object_storage import ObjectStorage, ObjectStorageService, S3Config
from storefront.services.redis_service import RedisService, RedisConfig
from storefront.services.session_store import RedisSessionStore

logger = logging.getLogger(__name__)


def _build_redis_service(app_settings: Settings) -> RedisService:
    if not app_settings.REDIS_URL:
        # Falls back to the provider-specific variables
        return RedisService()
    return RedisService(RedisConfig(
        url=app_settings.REDIS_URL,
        socket_timeout=app_settings.REDIS_SOCKET_TIMEOUT,
        operation_timeout=app_settings.STORE_TIMEOUT_SECONDS,
    ))


def _build_object_storage(app_settings: Settings) -> ObjectStorageService:
    return ObjectStorageService(S3Config(
        bucket=app_settings.S3_BUCKET,
        region=app_settings.S3_REGION,
        endpoint=app_settings.S3_ENDPOINT,
        secure=app_settings.S3_SECURE,
        acl=app_settings.S3_ACL or None,
        access_key_id=app_settings.AWS_ACCESS_KEY_ID,
        secret_access_key=app_settings.AWS_SECRET_ACCESS_KEY,
    ))


def create_app(
    app_settings: Optional[Settings] = None,
    *,
    redis_service: Optional[RedisService] = None,
    identity_store: Optional[IdentityStore] = None,
    object_storage: Optional[ObjectStorage] = None
) -> FastAPI:
    """
    Build the application.

    Collaborators can be passed in (tests, alternative backends); anything
    not passed is built from settings.
    """
    app_settings = app_settings or settings
    setup_logging()

    redis_service = redis_service or _build_redis_service(app_settings)
    object_storage = object_storage or _build_object_storage(app_settings)
    identity_store = identity_store or RedisIdentityStore(redis_service)
    session_store = RedisSessionStore(redis_service)
    pipeline_config = PipelineConfig.from_settings(app_settings)

    managed_services = [s for s in (redis_service, object_storage) if isinstance(s, BaseService)]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown of the infrastructure services"""
        logger.info("=" * 60)
        logger.info(f"🚀 {app_settings.APP_NAME} starting...")
        logger.info("=" * 60)

        if not validate_required_settings(app_settings):
            logger.warning("⚠️ Some environment variables are missing - services may fail on first use")

        try:
            for service in managed_services:
                await service.initialize()
        except Exception as e:
            logger.error(f"❌ Failed to initialize services: {e}")
            raise

        logger.info(f"  - Session cookie: {pipeline_config.cookie_name}, TTL {pipeline_config.session_ttl}s")
        logger.info(f"  - Upload field: {pipeline_config.upload_field}")
        logger.info("✅ Storefront ready!")

        yield

        logger.info("🛑 Storefront shutting down...")
        for service in managed_services:
            await service.shutdown()

    app = FastAPI(
        title=app_settings.APP_NAME,
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        debug=app_settings.DEBUG,
    )

    app.state.settings = app_settings
    app.state.pipeline_config = pipeline_config
    app.state.identity_store = identity_store
    app.state.session_store = session_store
    app.state.services = managed_services

    limiter.enabled = app_settings.RATE_LIMIT_ENABLED
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(404, errors.get_404)

    # Registered innermost first: the last one added wraps all others
    app.middleware("http")(RequestPipeline(pipeline_config, session_store, identity_store, object_storage))
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.middleware("http")(log_requests)
    app.middleware("http")(SecurityHeadersMiddleware())

    app.include_router(admin.router)
    app.include_router(shop.router)
    app.include_router(auth.router)
    app.include_router(errors.router)

    @app.get("/health")
    async def health():
        """Health of the backing services"""
        services = {service.service_name: await service.health_check() for service in managed_services}
        return {
            "status": "healthy" if all(s["healthy"] for s in services.values()) else "degraded",
            "timestamp": datetime.now().isoformat(),
            "services": services,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "3000"))
    logger.info(f"🚀 Starting storefront on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
