# storefront/middleware/pipeline.py
"""
Request pipeline for the storefront.

Every request runs through an ordered list of stages before any route:

1. body size check, decoding and the upload accept/reject decision
2. session load-or-create
3. CSRF token issuance and validation
4. writing the accepted upload to object storage
5. identity resolution

Each stage returns a StageOutcome. The first outcome that is not CONTINUE
ends the chain: RESPOND returns its response as is, FAIL is rendered as a
client rejection (4xx) or a generic server error (5xx) depending on the
error family. When every stage continues, the route runs and the session is
persisted afterwards.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import Request, Response
from starlette.datastructures import FormData
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.core.config import PipelineConfig
from storefront.core.exceptions import (
    StorefrontError,
    StorefrontServiceError,
    StorefrontValidationError,
    CsrfError,
    IdentityStoreError,
    LengthRequiredError,
    ObjectStorageError,
    PayloadTooLargeError,
    SessionStoreError,
    UploadRejectedError
)
from storefront.core.logging_config import failure_extra
from storefront.core.security import create_token, verify_token, sign_value, unsign_value
from storefront.middleware.upload_gate import extract_upload, store_upload
from storefront.models.identity import Identity
from storefront.models.session_state import Session
from storefront.models.upload import UploadDescriptor
from storefront.routes.errors import render_rejection, render_server_error
from storefront.services.identity_store import IdentityStore
from storefront.services.object_storage import ObjectStorage
from storefront.services.session_store import RedisSessionStore

logger = logging.getLogger(__name__)

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class OutcomeKind(str, Enum):
    CONTINUE = "continue"
    RESPOND = "respond"
    FAIL = "fail"


@dataclass
class StageOutcome:
    kind: OutcomeKind
    response: Optional[Response] = None
    error: Optional[StorefrontError] = None

    @classmethod
    def proceed(cls) -> "StageOutcome":
        return cls(OutcomeKind.CONTINUE)

    @classmethod
    def respond(cls, response: Response) -> "StageOutcome":
        return cls(OutcomeKind.RESPOND, response=response)

    @classmethod
    def fail(cls, error: StorefrontError) -> "StageOutcome":
        return cls(OutcomeKind.FAIL, error=error)


@dataclass
class RequestContext:
    """Everything the stages learn about one request"""
    request: Request
    form: Optional[FormData] = None
    upload: Optional[UploadDescriptor] = None
    session: Optional[Session] = None
    identity: Optional[Identity] = None
    view_locals: Dict[str, Any] = field(default_factory=dict)


Stage = Callable[[RequestContext], Awaitable[StageOutcome]]


async def bounded(awaitable: Awaitable[Any], timeout: float, on_timeout: Callable[[], StorefrontServiceError]) -> Any:
    """Await a store/network call, turning a timeout into a service error"""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise on_timeout() from e


class BodyDecodingStage:
    """Decode form bodies and decide on the attached upload"""

    name = "body"

    def __init__(self, config: PipelineConfig):
        self.config = config

    def _too_large(self, size: int) -> PayloadTooLargeError:
        return PayloadTooLargeError(
            f"Request body exceeds {self.config.max_body_bytes} bytes", field="body", details={"size": size}
        )

    async def __call__(self, ctx: RequestContext) -> StageOutcome:
        content_type = ctx.request.headers.get("content-type", "").lower()
        if not content_type.startswith(_FORM_TYPES):
            return StageOutcome.proceed()

        declared = ctx.request.headers.get("content-length")
        if declared is None:
            return StageOutcome.fail(LengthRequiredError("Form bodies need a Content-Length", field="body"))
        try:
            length = int(declared)
        except ValueError:
            length = -1
        if length < 0:
            return StageOutcome.fail(StorefrontValidationError("Malformed Content-Length", field="body"))
        if length > self.config.max_body_bytes:
            return StageOutcome.fail(self._too_large(length))

        try:
            # Cache the raw body so the route can decode it again
            body = await ctx.request.body()
            if len(body) > self.config.max_body_bytes:
                return StageOutcome.fail(self._too_large(len(body)))
            ctx.form = await ctx.request.form()
        except StarletteHTTPException as e:
            return StageOutcome.fail(StorefrontValidationError(f"Malformed form body: {e.detail}", field="body"))

        try:
            ctx.upload = await extract_upload(
                ctx.form,
                self.config.upload_field,
                self.config.allowed_upload_types,
                self.config.max_upload_bytes,
            )
        except UploadRejectedError as e:
            return StageOutcome.fail(e)
        return StageOutcome.proceed()


class SessionStage:
    """Resolve the signed session cookie, or start a new session"""

    name = "session"

    def __init__(self, config: PipelineConfig, store: RedisSessionStore):
        self.config = config
        self.store = store

    async def __call__(self, ctx: RequestContext) -> StageOutcome:
        session_id = unsign_value(ctx.request.cookies.get(self.config.cookie_name), self.config.cookie_secret)

        session = None
        if session_id:
            try:
                session = await bounded(
                    self.store.load(session_id),
                    self.config.store_timeout,
                    lambda: SessionStoreError("Session store timed out", session_id=session_id, operation="load")
                )
            except SessionStoreError as e:
                return StageOutcome.fail(e)

        if session is None:
            session = Session.new(self.config.session_ttl)
            logger.debug(f"🔐 New session {session.session_id[:8]}...")

        ctx.session = session
        ctx.request.state.session = session
        ctx.view_locals["isAuthenticated"] = session.is_authenticated
        return StageOutcome.proceed()


class CsrfStage:
    """Expose the session's token and require it on mutating requests"""

    name = "csrf"

    def __init__(self, config: PipelineConfig):
        self.config = config

    def _submitted_token(self, ctx: RequestContext) -> Optional[str]:
        if ctx.form is not None:
            value = ctx.form.get(self.config.csrf_form_field)
            if isinstance(value, str) and value:
                return value
        return ctx.request.headers.get(self.config.csrf_header)

    async def __call__(self, ctx: RequestContext) -> StageOutcome:
        session = ctx.session

        def csrf_token() -> str:
            return create_token(session.csrf_secret, session.session_id)

        ctx.request.state.csrf_token = csrf_token
        ctx.view_locals[self.config.csrf_view_local] = csrf_token()

        if ctx.request.method.upper() in self.config.safe_methods:
            return StageOutcome.proceed()

        if not verify_token(session.csrf_secret, session.session_id, self._submitted_token(ctx)):
            return StageOutcome.fail(CsrfError())
        return StageOutcome.proceed()


class UploadStorageStage:
    """Write the accepted upload and publish its key"""

    name = "upload"

    def __init__(self, config: PipelineConfig, storage: ObjectStorage):
        self.config = config
        self.storage = storage

    async def __call__(self, ctx: RequestContext) -> StageOutcome:
        if ctx.upload is None:
            return StageOutcome.proceed()

        try:
            descriptor = await bounded(
                store_upload(ctx.upload, self.storage),
                self.config.store_timeout,
                lambda: ObjectStorageError("Object storage timed out")
            )
        except StorefrontServiceError as e:
            return StageOutcome.fail(e)

        ctx.request.state.upload = descriptor
        ctx.request.state.upload_key = descriptor.storage_key
        return StageOutcome.proceed()


class IdentityStage:
    """
    Rehydrate the user referenced by the session.

    Only a None result from the store means "no such user"; anything the
    store raises is an outage and fails the request.
    """

    name = "identity"

    def __init__(self, config: PipelineConfig, store: IdentityStore):
        self.config = config
        self.store = store

    async def __call__(self, ctx: RequestContext) -> StageOutcome:
        user_id = ctx.session.user_id if ctx.session else None
        if not user_id:
            return StageOutcome.proceed()

        try:
            identity = await bounded(
                self.store.find_by_id(user_id),
                self.config.store_timeout,
                lambda: IdentityStoreError("Identity store timed out", identity_id=user_id, operation="find_by_id")
            )
        except IdentityStoreError as e:
            return StageOutcome.fail(e)

        if identity is None:
            logger.info(f"👤 Session {ctx.session.session_id[:8]}... references a missing user, continuing anonymous")
            ctx.view_locals["isAuthenticated"] = False
            return StageOutcome.proceed()

        ctx.identity = identity
        ctx.request.state.user = identity
        return StageOutcome.proceed()


class RequestPipeline:
    """
    Composes the stages into one HTTP middleware.

    Usage:
        pipeline = RequestPipeline(config, session_store, identity_store, storage)
        app.middleware("http")(pipeline)
    """

    def __init__(
        self,
        config: PipelineConfig,
        session_store: RedisSessionStore,
        identity_store: IdentityStore,
        object_storage: ObjectStorage,
        stages: Optional[List[Stage]] = None
    ):
        self.config = config
        self.session_store = session_store
        self.stages: List[Stage] = stages if stages is not None else [
            BodyDecodingStage(config),
            SessionStage(config, session_store),
            CsrfStage(config),
            UploadStorageStage(config, object_storage),
            IdentityStage(config, identity_store),
        ]

    async def __call__(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.config.exempt_paths:
            return await call_next(request)

        ctx = RequestContext(request=request)
        request.state.view_locals = ctx.view_locals
        request.state.session = None
        request.state.user = None
        request.state.upload = None
        request.state.upload_key = None

        try:
            try:
                outcome = await self._run_stages(ctx)
            except Exception as e:
                logger.error(
                    f"❌ Pipeline stage crashed on {request.method} {request.url.path}",
                    exc_info=True,
                    extra=failure_extra(True)
                )
                return render_server_error(request, e)

            if outcome.kind is OutcomeKind.RESPOND:
                return outcome.response
            if outcome.kind is OutcomeKind.FAIL:
                return await self._render_failure(ctx, outcome.error)

            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"❌ Unhandled error in {request.method} {request.url.path}",
                    exc_info=True,
                    extra=failure_extra(True)
                )
                return render_server_error(request, e)

            return await self._commit_session(ctx, response)
        finally:
            if ctx.form is not None:
                await ctx.form.close()

    async def _run_stages(self, ctx: RequestContext) -> StageOutcome:
        for stage in self.stages:
            outcome = await stage(ctx)
            if outcome.kind is not OutcomeKind.CONTINUE:
                logger.debug(f"Stage {getattr(stage, 'name', stage)} stopped the chain: {outcome.kind.value}")
                return outcome
        return StageOutcome.proceed()

    async def _render_failure(self, ctx: RequestContext, error: StorefrontError) -> Response:
        request = ctx.request
        if error.infrastructure:
            logger.error(
                f"🔥 Infrastructure failure on {request.method} {request.url.path}: "
                f"{type(error).__name__}: {error}",
                extra=failure_extra(True)
            )
            return render_server_error(request, error)

        logger.warning(
            f"🚫 Rejected {request.method} {request.url.path}: {type(error).__name__}: {error.message}",
            extra=failure_extra(False)
        )
        # A rejected request still starts a usable session for the client
        return await self._commit_session(ctx, render_rejection(request, error))

    async def _commit_session(self, ctx: RequestContext, response: Response) -> Response:
        session = ctx.session
        if session is None:
            return response

        stale_ids = [session.previous_id] if session.previous_id else []
        try:
            if session.terminated:
                stale_ids.append(session.session_id)
            else:
                await bounded(
                    self.session_store.save(session),
                    self.config.store_timeout,
                    lambda: SessionStoreError("Session store timed out", operation="save")
                )

            # The old id must stop resolving once the session has moved
            for stale_id in stale_ids:
                await bounded(
                    self.session_store.destroy(stale_id),
                    self.config.store_timeout,
                    lambda: SessionStoreError("Session store timed out", operation="destroy")
                )
        except SessionStoreError as e:
            logger.error(
                f"🔥 Infrastructure failure while saving session: {e}",
                extra=failure_extra(True)
            )
            return render_server_error(ctx.request, e)

        if session.terminated:
            response.delete_cookie(self.config.cookie_name, path="/")
        elif session.is_new or session.previous_id:
            response.set_cookie(
                key=self.config.cookie_name,
                value=sign_value(session.session_id, self.config.cookie_secret),
                max_age=session.remaining_ttl(),
                path="/",
                httponly=True,
                samesite="lax",
                secure=ctx.request.url.scheme == "https",
            )
        return response
