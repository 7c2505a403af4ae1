"""
Security middleware for the storefront
Sets security response headers and logs requests
"""

from fastapi import Request, Response
import time
import logging
from typing import Callable, Dict

logger = logging.getLogger(__name__)

SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "0",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}


class SecurityHeadersMiddleware:
    """Outermost middleware: headers on every response, including errors"""

    def __init__(self, slow_request_threshold: float = 1.0):
        self.slow_request_threshold = slow_request_threshold

    async def __call__(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        if "server" in response.headers:
            del response.headers["server"]
        if "x-powered-by" in response.headers:
            del response.headers["x-powered-by"]

        if process_time > self.slow_request_threshold:
            logger.warning(f"⏱️ Slow request: {request.url.path} took {process_time:.2f}s")

        return response


async def log_requests(request: Request, call_next: Callable) -> Response:
    """Log every request except health checks"""
    if request.url.path != "/health":
        logger.info(f"📥 Request: {request.method} {request.url.path}")
    return await call_next(request)
