"""ImageVault — FastAPI Application.

This module defines the FastAPI application, all HTTP routes, and the
``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :data:`~imagevault.core.config.config`.
- **Pipeline components** are built once at startup by
  :meth:`Pipeline.from_config` and stored on ``app.state``.  If the backend
  credentials are missing the server still starts, and every request that
  needs the backend answers ``500 {"error": "Missing required configuration..."}``.
- **Identity** is resolved per request from the ``Authorization: Bearer``
  header into an explicit :class:`~imagevault.core.auth.AuthContext`.
  Authenticated routes decode their JSON body only after the caller is
  resolved, so a missing or invalid token is a ``401`` whatever the body.
- **Generations** run on a fresh orchestrator per request.  The ids of users
  with a run in flight are kept in ``app.state.in_flight_users`` so each
  user has at most one generation running.
- **Errors** are raised as :class:`~imagevault.core.errors.ImageVaultError`
  and rendered once, as ``{"error": message}`` with the error's status code.

Endpoints
---------
=======  ============================================  ==============================
Method   Path                                          Purpose
=======  ============================================  ==============================
OPTIONS  ``/functions/v1/secure-image-uploader``       CORS preflight
POST     ``/functions/v1/secure-image-uploader``       Secure copy of an image URL
POST     ``/api/generate``                             Run one generation
GET      ``/api/history``                              Paginated history
DELETE   ``/api/history/{id}``                         Delete a history entry
POST     ``/api/images/sign``                          Fresh signed URL for a path
GET      ``/api/profile``                              Caller's profile
PATCH    ``/api/profile``                              Update display name
POST     ``/api/auth/validate``                        Credential policy check
GET      ``/api/config``                               Front-end configuration
GET      ``/storage/v1/object/sign/{bucket}/{path}``   Serve a local signed URL
=======  ============================================  ==============================

Usage
-----
CLI (installed entry point)::

    imagevault

Direct invocation::

    python -m imagevault.api.main
"""

from __future__ import annotations

import logging
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from imagevault import __version__
from imagevault.api.models import (
    CredentialsRequest,
    GenerateRequest,
    GenerateResponse,
    HistoryItem,
    HistoryPage,
    ProfileResponse,
    ProfileUpdateRequest,
    SecureCopyRequest,
    SecureCopyResponse,
    SignedUrlResponse,
    SignRequest,
)
from imagevault.core.auth import (
    AuthContext,
    load_profile,
    resolve_caller,
    update_profile_name,
    validate_credentials,
)
from imagevault.core.backends import LocalBackend
from imagevault.core.config import ImageVaultConfig, config
from imagevault.core.errors import (
    ImageVaultError,
    MissingConfig,
    PathNotFound,
    StorageError,
    ValidationError,
)
from imagevault.core.history import paginate_records
from imagevault.core.orchestrator import GenerationState
from imagevault.core.pipeline import Pipeline

logger = logging.getLogger(__name__)

SECURE_COPY_PATH = "/functions/v1/secure-image-uploader"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

SAMPLE_PROMPTS = [
    "A majestic dragon flying over a mystical forest with glowing mushrooms",
    "Cyberpunk cityscape at night with neon lights and flying cars",
    "A serene mountain lake reflecting snow-capped peaks at sunset",
    "Abstract digital art with vibrant colors and geometric patterns",
    "A cozy cabin in the woods during a snowy winter evening",
    "Futuristic robot in a high-tech laboratory with holographic displays",
]


# ---------------------------------------------------------------------------
# Dependencies.
# ---------------------------------------------------------------------------


def get_config(request: Request) -> ImageVaultConfig:
    return request.app.state.config


def get_pipeline(request: Request) -> Pipeline:
    """Return the pipeline built at startup.

    Raises:
        MissingConfig: If startup could not build it.
    """
    pipeline: Pipeline | None = request.app.state.pipeline
    if pipeline is None:
        raise request.app.state.startup_error or MissingConfig("Service is not configured")
    return pipeline


def get_caller(
    authorization: str | None = Header(default=None),
    pipeline: Pipeline = Depends(get_pipeline),
) -> AuthContext:
    """Resolve the bearer token before any request body is looked at."""
    return resolve_caller(authorization, pipeline.backend)


def authenticated_body(model: type[BaseModel]):
    """Build a dependency that decodes the JSON body into ``model``.

    FastAPI decodes declared body parameters before running dependencies.
    Routes that must answer ``401`` for a bad token, however malformed the
    body, take their body through this dependency instead: the caller is
    resolved first and the raw body is validated afterwards.

    Raises:
        Unauthorized: If the bearer token is missing or invalid.
        RequestValidationError: If the body is not valid JSON for ``model``.
    """

    async def dependency(
        request: Request,
        caller: AuthContext = Depends(get_caller),
    ) -> BaseModel:
        raw = await request.body()
        try:
            return model.model_validate_json(raw)
        except PydanticValidationError as e:
            raise RequestValidationError(e.errors(include_url=False), body=raw) from e

    return dependency


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter()


@router.options(SECURE_COPY_PATH)
def secure_copy_preflight() -> PlainTextResponse:
    """Answer the CORS preflight of the secure copy function."""
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.post(SECURE_COPY_PATH, response_model=SecureCopyResponse)
def secure_copy(
    req: SecureCopyRequest = Depends(authenticated_body(SecureCopyRequest)),
    caller: AuthContext = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
) -> JSONResponse:
    """Copy a public image into the caller's private namespace.

    The bearer token is resolved first, so a missing or invalid token always
    yields ``401`` whatever the body contains.  Every response, errors
    included, carries the function's CORS headers.

    Returns:
        ``{"path": "<userId>/<uuid>.png"}``.

    Raises:
        Unauthorized: 401 for a missing or invalid token.
        StorageError: 400 for an invalid URL, failed fetch, empty source,
            failed upload, or any unexpected failure during the copy.
    """
    try:
        stored = pipeline.copier.copy(caller, req.imageUrl)
    except ImageVaultError:
        raise
    except Exception as e:
        logger.exception("Unexpected error during secure copy")
        raise StorageError(str(e) or type(e).__name__) from e
    body = SecureCopyResponse(path=stored.path)
    return JSONResponse(content=body.model_dump(), headers=CORS_HEADERS)


@router.post("/api/generate", response_model=GenerateResponse)
def generate(
    request: Request,
    req: GenerateRequest = Depends(authenticated_body(GenerateRequest)),
    caller: AuthContext = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
) -> JSONResponse:
    """Run one prompt → webhook → secure copy → signed URL → history generation.

    Returns:
        The terminal status.  A failed run answers with the status code of
        the error that ended it.

    Raises:
        ValidationError: 400 for an empty prompt or a run already in flight.
    """
    state = request.app.state
    with state.in_flight_lock:
        if caller.user_id in state.in_flight_users:
            raise ValidationError("A generation is already in progress")
        state.in_flight_users.add(caller.user_id)
    try:
        status = pipeline.orchestrator().submit(req.prompt, caller)
    finally:
        with state.in_flight_lock:
            state.in_flight_users.discard(caller.user_id)
    body = GenerateResponse.from_status(status)

    status_code = 200
    if status.state is GenerationState.FAILED and status.error is not None:
        status_code = status.error.status_code
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@router.get("/api/history", response_model=HistoryPage)
def get_history(
    page: int = 1,
    per_page: int = 20,
    caller: AuthContext = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
) -> HistoryPage:
    """Return the caller's history, newest first, with fresh signed URLs.

    Signed URLs are only minted for the requested page.
    """
    records = pipeline.recorder.list_records(caller)
    paged = paginate_records(records, page, per_page)

    items: list[HistoryItem] = []
    for record in paged["items"]:
        signed = None
        if record.path:
            try:
                signed = pipeline.issuer.issue(record.path, pipeline.config.signed_url_ttl)
            except ImageVaultError as e:
                logger.warning("Could not sign history image %s: %s", record.path, e.message)
        items.append(HistoryItem.from_record(record, signed))

    return HistoryPage(
        total=paged["total"],
        page=paged["page"],
        per_page=paged["per_page"],
        pages=paged["pages"],
        items=items,
    )


@router.delete("/api/history/{record_id}")
def delete_history_entry(
    record_id: str,
    caller: AuthContext = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict:
    """Delete one of the caller's history entries and its stored image."""
    pipeline.recorder.delete_record(caller, record_id)
    return {"success": True, "deleted": record_id}


@router.post("/api/images/sign", response_model=SignedUrlResponse)
def sign_image(
    req: SignRequest = Depends(authenticated_body(SignRequest)),
    caller: AuthContext = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
) -> SignedUrlResponse:
    """Mint a fresh signed URL for an object in the caller's namespace.

    Paths outside the caller's namespace are reported as not found.
    """
    if not req.path.startswith(f"{caller.user_id}/") or ".." in req.path:
        raise PathNotFound("Image not found")
    signed = pipeline.issuer.issue(req.path, pipeline.config.signed_url_ttl)
    return SignedUrlResponse(url=signed.url, path=signed.path, expires_at=signed.expires_at)


@router.get("/api/profile")
def get_profile(
    caller: AuthContext = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict:
    """Return the caller's profile, or ``{"profile": null}`` if none exists."""
    profile = load_profile(caller, pipeline.backend, pipeline.config.profiles_table)
    return {"profile": ProfileResponse.from_profile(profile).model_dump() if profile else None}


@router.patch("/api/profile", response_model=ProfileResponse)
def patch_profile(
    req: ProfileUpdateRequest = Depends(authenticated_body(ProfileUpdateRequest)),
    caller: AuthContext = Depends(get_caller),
    pipeline: Pipeline = Depends(get_pipeline),
) -> ProfileResponse:
    profile = update_profile_name(
        caller, pipeline.backend, pipeline.config.profiles_table, req.name
    )
    return ProfileResponse.from_profile(profile)


@router.post("/api/auth/validate")
def validate_auth_form(req: CredentialsRequest) -> dict:
    """Check sign-in / sign-up form values against the account policy."""
    validate_credentials(
        req.mode,
        req.email,
        req.password,
        confirm_password=req.confirm_password,
        name=req.name,
    )
    return {"valid": True}


@router.get("/api/config")
def get_frontend_config(app_config: ImageVaultConfig = Depends(get_config)) -> dict:
    """Return the values the front end needs to drive its generation UI."""
    return {
        "version": __version__,
        "sample_prompts": SAMPLE_PROMPTS,
        "waiting_threshold": app_config.waiting_threshold,
        "webhook_timeout": app_config.webhook_timeout,
        "signed_url_ttl": app_config.signed_url_ttl,
    }


@router.get("/storage/v1/object/sign/{bucket}/{path:path}")
def serve_signed_object(
    bucket: str,
    path: str,
    token: str,
    pipeline: Pipeline = Depends(get_pipeline),
) -> Response:
    """Serve an object behind a local-backend signed URL.

    Only meaningful with the local backend; hosted backends serve their own
    signed URLs, so this route answers 404 for them.
    """
    backend = pipeline.backend
    if not isinstance(backend, LocalBackend) or bucket != pipeline.config.storage_bucket:
        raise PathNotFound("Object not found")
    data, content_type = backend.resolve_signed_url(bucket, path, token)
    return Response(content=data, media_type=content_type)


# ---------------------------------------------------------------------------
# Error rendering.
# ---------------------------------------------------------------------------


def _error_headers(request: Request) -> dict[str, str] | None:
    return CORS_HEADERS if request.url.path == SECURE_COPY_PATH else None


def validation_message(errors) -> str:
    """Turn the first pydantic error into a one-line message.

    JSON decode errors carry a character offset in their location, which is
    left out; field errors are prefixed with the field name.
    """
    if not errors:
        return "Invalid request"
    first = errors[0]
    message = first.get("msg", "Invalid request")
    if first.get("type") == "json_invalid":
        return message
    location = ".".join(
        str(part) for part in first.get("loc", ()) if part != "body" and not isinstance(part, int)
    )
    return f"{location}: {message}" if location else message


async def _handle_imagevault_error(request: Request, exc: ImageVaultError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message},
        headers=_error_headers(request),
    )


async def _handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": validation_message(exc.errors())},
        headers=_error_headers(request),
    )


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    app_config: ImageVaultConfig | None = None,
    pipeline: Pipeline | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        app_config: Configuration; defaults to the global ``config``.
        pipeline: Pre-built pipeline (tests inject one); built at startup
            from ``app_config`` when omitted.

    Returns:
        The configured application.
    """
    app_config = app_config or (pipeline.config if pipeline else config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # --- Startup -------------------------------------------------------
        if app.state.pipeline is None:
            try:
                app.state.pipeline = Pipeline.from_config(app_config)
            except MissingConfig as e:
                logger.error("Pipeline not built: %s", e.message)
                app.state.startup_error = e

        yield  # Application runs here.

        # --- Shutdown ------------------------------------------------------
        if app.state.pipeline is not None:
            app.state.pipeline.backend.close()
            logger.info("Backend closed on shutdown.")

    app = FastAPI(
        title="ImageVault",
        description="Prompt-to-private-image generation with secure storage.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = app_config
    app.state.pipeline = pipeline
    app.state.startup_error = None
    app.state.in_flight_users = set()
    app.state.in_flight_lock = threading.Lock()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ImageVaultError, _handle_imagevault_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation_error)
    app.include_router(router)
    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~imagevault.core.config.config`
    (``IMAGEVAULT_SERVER_HOST`` / ``IMAGEVAULT_SERVER_PORT``).  Registered as
    the ``imagevault`` console script in ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "imagevault.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
