# storefront/core/config.py
import os
import logging
import secrets
from dataclasses import dataclass
from typing import Optional, FrozenSet
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings, read from the environment and .env"""
    APP_NAME: str = "Storefront"
    DEBUG: bool = False

    # Session settings
    SESSION_SECRET: Optional[str] = Field(default=None)
    SESSION_COOKIE_NAME: str = "shop.sid"
    SESSION_TTL_SECONDS: int = 14 * 24 * 60 * 60

    # Redis (sessions and identities)
    REDIS_URL: Optional[str] = Field(default=None)
    REDIS_SOCKET_TIMEOUT: float = 5.0
    STORE_TIMEOUT_SECONDS: float = 5.0

    # Object storage for product images
    S3_BUCKET: str = "nodejs-shop"
    S3_REGION: str = "us-west-2"
    S3_ENDPOINT: str = "s3.amazonaws.com"
    S3_SECURE: bool = True
    S3_ACL: str = "public-read"
    AWS_ACCESS_KEY_ID: Optional[str] = Field(default=None)
    AWS_SECRET_ACCESS_KEY: Optional[str] = Field(default=None)

    UPLOAD_FIELD_NAME: str = "image"
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024
    RATE_LIMIT_ENABLED: bool = True

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }


settings = Settings()


def validate_required_settings(current: Optional[Settings] = None) -> bool:
    """Check that the settings needed in production are present"""
    current = current or settings
    missing = []

    if not current.SESSION_SECRET:
        missing.append("SESSION_SECRET")

    if not (current.REDIS_URL or os.environ.get("REDIS_DIRECT_URI")):
        missing.append("REDIS_URL")

    if not current.AWS_ACCESS_KEY_ID:
        missing.append("AWS_ACCESS_KEY_ID")

    if not current.AWS_SECRET_ACCESS_KEY:
        missing.append("AWS_SECRET_ACCESS_KEY")

    if missing:
        logger = logging.getLogger(__name__)
        logger.warning(f"Missing environment variables: {', '.join(missing)}")
        logger.warning("The storefront may not be able to serve every request.")
        return False

    return True


def get_session_secret(current: Optional[Settings] = None) -> str:
    """Get the cookie signing secret, generating one for development"""
    logger = logging.getLogger(__name__)
    current = current or settings
    secret = current.SESSION_SECRET
    if not secret:
        secret = secrets.token_urlsafe(32)
        logger.warning("⚠️ No SESSION_SECRET set. Generated temporary secret.")
        logger.warning("⚠️ Sessions will not survive a restart. Set SESSION_SECRET for production!")
    return secret


# Methods that never need a CSRF token
SAFE_METHODS: FrozenSet[str] = frozenset({"GET", "HEAD", "OPTIONS"})

ALLOWED_IMAGE_TYPES: FrozenSet[str] = frozenset({"image/png", "image/jpeg", "image/jpg"})

# Room for the text fields and multipart framing next to the file itself
FORM_OVERHEAD_BYTES = 64 * 1024


@dataclass(frozen=True)
class PipelineConfig:
    """
    Process-wide configuration for the request pipeline.

    Built once at startup and handed to the pipeline explicitly, so no stage
    reads ambient global state.
    """
    cookie_secret: str
    cookie_name: str = "shop.sid"
    session_ttl: int = 14 * 24 * 60 * 60
    store_timeout: float = 5.0
    upload_field: str = "image"
    max_upload_bytes: int = 5 * 1024 * 1024
    csrf_form_field: str = "_csrf"
    csrf_header: str = "X-CSRF-Token"
    csrf_view_local: str = "csrfToken"
    allowed_upload_types: FrozenSet[str] = ALLOWED_IMAGE_TYPES
    safe_methods: FrozenSet[str] = SAFE_METHODS
    # Health checks bypass the pipeline so they never create sessions
    exempt_paths: FrozenSet[str] = frozenset({"/health"})

    @property
    def max_body_bytes(self) -> int:
        return self.max_upload_bytes + FORM_OVERHEAD_BYTES

    @classmethod
    def from_settings(cls, current: Optional[Settings] = None) -> "PipelineConfig":
        current = current or settings
        return cls(
            cookie_secret=get_session_secret(current),
            cookie_name=current.SESSION_COOKIE_NAME,
            session_ttl=current.SESSION_TTL_SECONDS,
            store_timeout=current.STORE_TIMEOUT_SECONDS,
            upload_field=current.UPLOAD_FIELD_NAME,
            max_upload_bytes=current.MAX_UPLOAD_BYTES,
        )
