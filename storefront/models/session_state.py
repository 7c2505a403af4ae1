# storefront/models/session_state.py

from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta, timezone
import secrets
from pydantic import BaseModel, Field, PrivateAttr

from storefront.core.security.csrf import generate_secret


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    """
    Server-side session record, stored in Redis under its id.

    Holds the login state, the user reference, the anti-forgery secret,
    flash messages and free-form attributes (e.g. the cart). The record has
    a fixed expiry set when the session is created.
    """
    session_id: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    data: Dict[str, Any] = Field(default_factory=dict)
    is_authenticated: bool = False
    user_id: Optional[str] = None
    csrf_secret: str = Field(default_factory=generate_secret)
    flash_messages: Dict[str, List[str]] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime = Field(default_factory=lambda: _utcnow() + timedelta(days=14))

    # Request-scoped flags, never persisted
    _is_new: bool = PrivateAttr(default=False)
    _terminated: bool = PrivateAttr(default=False)
    _previous_id: Optional[str] = PrivateAttr(default=None)

    @classmethod
    def new(cls, ttl_seconds: int) -> "Session":
        """Create a fresh anonymous session expiring after ttl_seconds"""
        now = _utcnow()
        session = cls(created_at=now, expires_at=now + timedelta(seconds=ttl_seconds))
        session._is_new = True
        return session

    @property
    def is_new(self) -> bool:
        return self._is_new

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def previous_id(self) -> Optional[str]:
        """Id this session was stored under when the request began, if it has changed since"""
        return self._previous_id

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def remaining_ttl(self, now: Optional[datetime] = None) -> int:
        """Whole seconds until expiry, never negative"""
        remaining = (self.expires_at - (now or _utcnow())).total_seconds()
        return max(0, int(remaining))

    def rotate_csrf_secret(self) -> None:
        """Replace the anti-forgery secret; tokens issued before stop validating"""
        self.csrf_secret = generate_secret()

    def regenerate_id(self) -> None:
        """Move the session to a fresh id, keeping its contents and expiry"""
        if self._previous_id is None and not self._is_new:
            self._previous_id = self.session_id
        self.session_id = secrets.token_urlsafe(32)

    def login(self, user_id: str) -> None:
        """Attach an identity, issuing a new id and CSRF secret on privilege change"""
        self.user_id = user_id
        self.is_authenticated = True
        self.regenerate_id()
        self.rotate_csrf_secret()

    def logout(self) -> None:
        """Drop the identity reference and mark the session for destruction"""
        self.user_id = None
        self.is_authenticated = False
        self._terminated = True

    def flash(self, key: str, message: str) -> None:
        self.flash_messages.setdefault(key, []).append(message)

    def consume_flash(self, key: str) -> List[str]:
        """Return and remove the flash messages stored under key"""
        return self.flash_messages.pop(key, [])
