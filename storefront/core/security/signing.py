"""Signed cookie values: ``<value>.<HMAC-SHA256 signature>``"""

import base64
import hashlib
import hmac
from typing import Optional


def _signature(value: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def sign_value(value: str, secret: str) -> str:
    return f"{value}.{_signature(value, secret)}"


def unsign_value(signed: Optional[str], secret: str) -> Optional[str]:
    """
    Return the original value if the signature matches, else None.

    Session ids never contain a dot, so the signature is whatever follows
    the last one.
    """
    if not signed:
        return None

    value, sep, signature = signed.rpartition(".")
    if not sep or not value:
        return None

    expected = _signature(value, secret)
    if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8", "replace")):
        return None
    return value
