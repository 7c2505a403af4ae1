"""
Anti-forgery tokens bound to a session.

A token is ``<salt>.<mac>`` where ``mac = HMAC-SHA256(secret, "<session_id>:<salt>")``.
Every call to create_token() yields a different token, and all of them stay
valid for the lifetime of the session secret. Binding the session id into
the MAC keeps a token from validating against any other session, even one
that happened to hold the same secret.
"""

import base64
import hashlib
import hmac
import secrets
from typing import Optional

SALT_BYTES = 8
SECRET_BYTES = 18


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_secret() -> str:
    """New per-session anti-forgery secret"""
    return secrets.token_urlsafe(SECRET_BYTES)


def _mac(secret: str, session_id: str, salt: str) -> str:
    message = f"{session_id}:{salt}".encode("utf-8")
    return _b64(hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest())


def create_token(secret: str, session_id: str) -> str:
    salt = secrets.token_urlsafe(SALT_BYTES)
    return f"{salt}.{_mac(secret, session_id, salt)}"


def verify_token(secret: str, session_id: str, token: Optional[str]) -> bool:
    """Constant-time check that token was produced for this secret and session"""
    if not token or not secret or not isinstance(token, str):
        return False

    salt, sep, provided = token.partition(".")
    if not sep or not salt or not provided:
        return False

    expected = _mac(secret, session_id, salt)
    return hmac.compare_digest(expected.encode("ascii"), provided.encode("utf-8", "replace"))
