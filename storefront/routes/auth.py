# storefront/routes/auth.py
"""Auth routes: signup, login, logout"""

import logging

from fastapi import APIRouter, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse

from storefront.core.exceptions import StorefrontValidationError
from storefront.core.rate_limit_config import limiter, RATE_LIMITS
from storefront.core.security import verify_password
from storefront.routes.shop import _view

logger = logging.getLogger(__name__)

router = APIRouter()


def get_identity_store(request: Request):
    return request.app.state.identity_store


@router.get("/login")
async def get_login(request: Request):
    session = request.state.session
    errors = session.consume_flash("error")
    return _view(
        request,
        "Login",
        "/login",
        errorMessage=errors[0] if errors else None,
        messages=session.consume_flash("info"),
    )


@router.post("/login")
@limiter.limit(RATE_LIMITS["login"])
async def post_login(request: Request, email: str = Form(...), password: str = Form(...)):
    session = request.state.session
    identity = await get_identity_store(request).find_by_email(email)

    if identity is None or not verify_password(password, identity.password_hash):
        logger.info("🔒 Failed login attempt")
        session.flash("error", "Invalid email or password.")
        return RedirectResponse("/login", status_code=303)

    session.login(identity.id)
    logger.info(f"🔓 Identity {identity.id[:8]}... logged in")
    return RedirectResponse("/", status_code=303)


@router.post("/signup")
@limiter.limit(RATE_LIMITS["signup"])
async def post_signup(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    confirmPassword: str = Form(...)
):
    if password != confirmPassword:
        return JSONResponse(
            status_code=422,
            content=_view(request, "Signup", "/signup", errorMessage="Passwords have to match!")
        )

    try:
        await get_identity_store(request).create(email, password)
    except StorefrontValidationError as e:
        return JSONResponse(
            status_code=422,
            content=_view(request, "Signup", "/signup", errorMessage=e.message)
        )

    request.state.session.flash("info", "Account created, please log in.")
    return RedirectResponse("/login", status_code=303)


@router.post("/logout")
async def post_logout(request: Request):
    request.state.session.logout()
    return RedirectResponse("/", status_code=303)
