"""
Rate limiting configuration for the auth routes
"""

from fastapi import Request
from fastapi.responses import PlainTextResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address


def get_real_ip(request: Request) -> str:
    """
    Get the real IP address, considering proxy headers.
    Needed behind load balancers, where the socket peer is the proxy.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


RATE_LIMIT_TIERS = {
    "default": {
        "login": "10/minute",       # Credential guessing
        "signup": "5/minute",       # Account creation
    },
}

RATE_LIMITS = RATE_LIMIT_TIERS["default"]

RATE_LIMIT_MESSAGE = "Too many attempts. Please wait a moment and try again."

limiter = Limiter(key_func=get_real_ip)


def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Rate limit response with a retry hint"""
    response = PlainTextResponse(content=RATE_LIMIT_MESSAGE, status_code=429)
    response.headers["Retry-After"] = "60"
    response.headers["X-RateLimit-Limit"] = str(getattr(exc, "detail", "N/A"))
    return response
