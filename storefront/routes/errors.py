# storefront/routes/errors.py
"""Error pages and client-safe error messages"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from storefront.core.exceptions import StorefrontError

logger = logging.getLogger(__name__)

router = APIRouter()

_SAFE_MESSAGES = {
    "ConnectionError": "Connection problem. Please try again later.",
    "TimeoutError": "The request took too long. Please try again.",
    "CsrfError": "Your form has expired. Please reload the page and try again.",
    "UploadRejectedError": "Only a single image can be uploaded.",
    "PayloadTooLargeError": "The uploaded file is too large.",
    "LengthRequiredError": "The form could not be read. Please submit it again.",
}

_DEFAULT_MESSAGE = "Something went wrong. Please try again later."

_REJECTION_TITLES = {
    403: "Forbidden",
    411: "Length Required",
    413: "Payload Too Large",
}


def get_safe_error_message(error: Exception, context: str = "") -> str:
    """Return a message for the client that does not expose internal details"""
    logger.debug(f"Error in {context}: {type(error).__name__}: {error}")

    if isinstance(error, HTTPException):
        return error.detail

    return _SAFE_MESSAGES.get(type(error).__name__, _DEFAULT_MESSAGE)


def _is_authenticated(request: Request) -> bool:
    # Set by the pipeline, and cleared again when the session's user no longer exists
    view_locals = getattr(request.state, "view_locals", None) or {}
    return bool(view_locals.get("isAuthenticated", False))


def render_error_page(
    request: Request,
    status_code: int,
    page_title: str,
    path: str,
    error: Optional[Exception] = None
) -> JSONResponse:
    content = {
        "pageTitle": page_title,
        "path": path,
        "isAuthenticated": _is_authenticated(request),
    }
    if error is not None:
        content["detail"] = get_safe_error_message(error, request.url.path)
    return JSONResponse(status_code=status_code, content=content)


def render_server_error(request: Request, error: Optional[Exception] = None) -> JSONResponse:
    return render_error_page(request, 500, "Server Error", "/500", error)


def render_rejection(request: Request, error: StorefrontError) -> JSONResponse:
    """Client-facing page for a request the pipeline refused"""
    title = _REJECTION_TITLES.get(error.status_code, "Bad Request")
    return render_error_page(request, error.status_code, title, request.url.path, error)


@router.get("/500")
async def get_500(request: Request):
    return render_server_error(request)


async def get_404(request: Request, exc: Exception):
    return render_error_page(request, 404, "Page Not Found", "/404")
