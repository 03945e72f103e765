"""ImagiNexus — FastAPI Application.

This module defines the application factory, all REST API routes, and the
``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :class:`~imaginexus.core.config.ImaginexusConfig`
  and is summarised for the browser via ``GET /api/config``.
- **Uploads** go through :class:`~imaginexus.core.pipeline.SubmissionSession`,
  one per user, which validates, previews, analyses and generates. Sessions
  live in a bounded :class:`~imaginexus.core.pipeline.SessionRegistry` and
  are only created by uploads.
- **Quotas and gallery records** live in SQLite behind
  :class:`~imaginexus.clients.persistence.SubscriptionRepository`.
- **Generated images** are served from the gallery directory under
  ``/static/gallery``.
- Authentication, payments and page rendering belong to the front end; the
  API trusts the ``user_id`` it is given.

Endpoints
---------
========  ====================================  ==================================
Method    Path                                  Purpose
========  ====================================  ==================================
GET       ``/api/config``                       Styles per tier, ratios, limits
GET       ``/api/subscription/{user_id}``       Quota snapshot and allowed styles
POST      ``/api/subscription/{user_id}/upgrade``  Monotonic tier upgrade
POST      ``/api/generate``                     Text prompt → image
POST      ``/api/analyze``                      Upload → editable description
POST      ``/api/upload``                       Upload → full pipeline run
GET       ``/api/session/{user_id}``            Current selection state
DELETE    ``/api/session/{user_id}``            Clear the current selection
POST      ``/api/prompt/enhance``               Append a prompt enhancer
GET       ``/api/gallery``                      Paginated per-user listing
GET       ``/api/gallery/{id}``                 Single gallery record
GET       ``/api/stats``                        Per-user counts per style
========  ====================================  ==================================

Usage
-----
CLI (installed entry point)::

    imaginexus

Direct invocation::

    python -m imaginexus.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from imaginexus import __version__
from imaginexus.api.gallery import (
    artifacts_to_entries,
    filter_gallery_entries,
    gallery_stats,
    paginate_gallery_entries,
)
from imaginexus.api.models import EnhanceRequest, GenerateRequest, UpgradeRequest, check_style
from imaginexus.clients.analysis import AnalysisClient, GeminiAnalysisClient
from imaginexus.clients.generation import (
    GenerationClient,
    GradioGenerationClient,
    PlaceholderGenerationClient,
)
from imaginexus.clients.persistence import SubscriptionRepository
from imaginexus.core.config import ImaginexusConfig, config
from imaginexus.core.errors import (
    AnalysisError,
    GenerationError,
    ImageNotFoundError,
    ImaginexusError,
    PersistenceError,
    QuotaExceededError,
    TierDowngradeError,
    TooLargeError,
    UnsupportedTypeError,
    ValidationError,
)
from imaginexus.core.imaging import default_degradation_strategies
from imaginexus.core.pipeline import (
    AnalysisOrchestrator,
    GenerationOrchestrator,
    ImageSubmissionPipeline,
    PipelineBusyError,
    PipelineRun,
    PipelineState,
    SessionRegistry,
    SubmissionSession,
)
from imaginexus.core.prompts import enhance_prompt, is_image_generation_prompt
from imaginexus.core.tiers import (
    ASPECT_RATIOS,
    STYLE_TOKENS,
    TIER_POLICIES,
    allowed_styles,
    minimum_tier_for,
)
from imaginexus.core.uploads import validate_upload

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error mapping: pipeline exceptions to HTTP responses.
# ---------------------------------------------------------------------------


def _status_for(error: ImaginexusError) -> int:
    if isinstance(error, UnsupportedTypeError):
        return 415
    if isinstance(error, TooLargeError):
        return 413
    if isinstance(error, QuotaExceededError):
        return 403
    if isinstance(error, PipelineBusyError):
        return 409
    if isinstance(error, ImageNotFoundError):
        return 404
    if isinstance(error, (AnalysisError, GenerationError)):
        return 502
    if isinstance(error, PersistenceError):
        return 503
    return 400


def _http_error(error: ImaginexusError, run: PipelineRun | None = None) -> HTTPException:
    """Build an HTTPException whose detail carries a user-facing message."""
    detail: dict = {"error": type(error).__name__, "message": str(error)}
    reason = getattr(error, "reason", None)
    if reason is not None:
        detail["reason"] = getattr(reason, "value", reason)
    if run is not None:
        detail["run_id"] = run.run_id
        detail["history"] = [state.value for state in run.history]
    return HTTPException(status_code=_status_for(error), detail=detail)


def _run_payload(run: PipelineRun) -> dict:
    return {
        "run_id": run.run_id,
        "state": run.state.value,
        "history": [state.value for state in run.history],
        "used_fallback": run.used_fallback,
        "description": run.description,
        "preview": run.preview,
        "image": run.artifact.to_dict() if run.artifact else None,
        "quota": run.quota.to_dict() if run.quota else None,
    }


# ---------------------------------------------------------------------------
# Service construction.
# ---------------------------------------------------------------------------


def build_generation_client(cfg: ImaginexusConfig) -> GenerationClient:
    """Instantiate the generation client selected by ``cfg.generation_backend``."""
    if cfg.generation_backend == "placeholder":
        return PlaceholderGenerationClient(cfg.gallery_dir)
    return GradioGenerationClient(
        cfg.generation_space,
        cfg.gallery_dir,
        api_name=cfg.generation_api_name,
        hf_token=cfg.hf_token,
    )


def create_app(
    cfg: ImaginexusConfig,
    *,
    repository: SubscriptionRepository | None = None,
    analysis_client: AnalysisClient | None = None,
    generation_client: GenerationClient | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Services are created in the lifespan handler; the keyword arguments
    replace individual services (used by the test suite).

    Args:
        cfg: Application configuration.
        repository: Subscription repository override.
        analysis_client: Analysis client override.
        generation_client: Generation client override.

    Returns:
        The configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Create the repository, clients and pipeline on startup."""
        repo = repository or SubscriptionRepository(cfg.database_path)
        analysis = AnalysisOrchestrator(
            analysis_client or GeminiAnalysisClient(cfg.gemini_api_key, cfg.gemini_model),
            cfg.analysis_instruction,
            default_degradation_strategies(cfg.fallback_max_dimension, cfg.fallback_jpeg_quality),
        )
        generation = GenerationOrchestrator(
            generation_client or build_generation_client(cfg), repo
        )

        app.state.config = cfg
        app.state.repository = repo
        app.state.pipeline = ImageSubmissionPipeline(analysis, generation)
        app.state.sessions = SessionRegistry(app.state.pipeline, cfg.max_sessions)
        logger.info(f"ImagiNexus API ready (generation backend: {cfg.generation_backend})")

        yield

        app.state.sessions.clear()
        logger.info("ImagiNexus API shut down.")

    app = FastAPI(
        title="ImagiNexus",
        description="Image analysis and tiered AI image generation API.",
        version=__version__,
        lifespan=lifespan,
    )

    # The front end is served from a different origin during development.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.mount("/static/gallery", StaticFiles(directory=str(cfg.gallery_dir)), name="gallery")

    _register_routes(app)
    return app


def _session_for(request: Request, user_id: str) -> SubmissionSession:
    sessions: SessionRegistry = request.app.state.sessions
    return sessions.get_or_create(user_id)


def _existing_session(request: Request, user_id: str) -> SubmissionSession | None:
    sessions: SessionRegistry = request.app.state.sessions
    return sessions.get(user_id)


def _form_style(style: str) -> str:
    """Normalise the ``style`` form field, or reject it with 422."""
    try:
        return check_style(style)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


def _precheck_upload(file: UploadFile, max_bytes: int) -> None:
    """Reject an upload on its declared type and size before reading it.

    The body is checked again after reading, since ``file.size`` is absent
    for some transports.
    """
    try:
        validate_upload(b"", file.content_type, max_bytes, file.filename or "", file.size)
    except ValidationError as e:
        raise _http_error(e) from e


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


def _register_routes(app: FastAPI) -> None:
    @app.get("/api/config")
    async def get_config(request: Request) -> dict:
        """Return styles per tier, aspect ratios and upload ceilings."""
        cfg: ImaginexusConfig = request.app.state.config
        return {
            "version": __version__,
            "styles": [
                {"id": style, "min_tier": minimum_tier_for(style).value} for style in STYLE_TOKENS
            ],
            "aspect_ratios": list(ASPECT_RATIOS),
            "tiers": [
                {
                    "tier": policy.tier.value,
                    "styles": allowed_styles(policy.tier),
                    "images_limit": policy.images_limit,
                    "ghibli_images_limit": policy.ghibli_images_limit,
                }
                for policy in TIER_POLICIES.values()
            ],
            "upload_limits": {
                "general": cfg.general_upload_max_bytes,
                "specialty": cfg.specialty_upload_max_bytes,
            },
        }

    @app.get("/api/subscription/{user_id}")
    async def get_subscription(request: Request, user_id: str) -> dict:
        """Return the user's quota snapshot and the styles their tier unlocks."""
        pipeline: ImageSubmissionPipeline = request.app.state.pipeline
        try:
            quota = await pipeline.generation.read_quota(user_id)
        except ImaginexusError as e:
            raise _http_error(e) from e
        session = _existing_session(request, user_id)
        if session is not None:
            session.quota = quota
        return {**quota.to_dict(), "allowed_styles": allowed_styles(quota.tier)}

    @app.post("/api/subscription/{user_id}/upgrade")
    async def upgrade_subscription(request: Request, user_id: str, req: UpgradeRequest) -> dict:
        """Move the user to a higher tier. Downgrades are rejected."""
        repo: SubscriptionRepository = request.app.state.repository
        try:
            quota = repo.upgrade_tier(user_id, req.tier)
        except TierDowngradeError as e:
            raise _http_error(e) from e
        session = _existing_session(request, user_id)
        if session is not None:
            session.quota = quota
        return {**quota.to_dict(), "allowed_styles": allowed_styles(quota.tier)}

    @app.post("/api/generate")
    async def generate_image(request: Request, req: GenerateRequest) -> dict:
        """Generate one image from a text prompt.

        Raises:
            HTTPException: 400 for a blank prompt, 403 when the quota gate
                refuses, 502 when the generation service fails.
        """
        pipeline: ImageSubmissionPipeline = request.app.state.pipeline
        prompt = enhance_prompt(req.prompt) if req.enhance else req.prompt
        run = await pipeline.generate_from_prompt(
            req.user_id,
            prompt,
            req.style,
            req.aspect_ratio,
            quality=req.quality,
            detail_level=req.detail_level,
        )
        if run.state is PipelineState.FAILED:
            raise _http_error(run.error, run)

        session = _existing_session(request, req.user_id)
        if session is not None:
            session.quota = run.quota
        return {"success": True, **_run_payload(run)}

    @app.post("/api/analyze")
    async def analyze_upload(
        request: Request,
        file: UploadFile = File(...),
        style: str = Form("ghibli"),
    ) -> dict:
        """Describe an uploaded image without generating anything."""
        cfg: ImaginexusConfig = request.app.state.config
        pipeline: ImageSubmissionPipeline = request.app.state.pipeline
        max_bytes = cfg.upload_limit_for(_form_style(style))
        _precheck_upload(file, max_bytes)
        data = await file.read()
        run = await pipeline.describe_upload(
            data,
            file.content_type,
            max_bytes,
            filename=file.filename or "",
            declared_size=file.size,
        )
        if run.state is PipelineState.FAILED:
            raise _http_error(run.error, run)
        return {"success": True, **_run_payload(run)}

    @app.post("/api/upload")
    async def upload_image(
        request: Request,
        file: UploadFile = File(...),
        user_id: str = Form(...),
        style: str = Form("ghibli"),
        aspect_ratio: str = Form("1:1"),
    ) -> dict:
        """Run the full pipeline for an uploaded image.

        Raises:
            HTTPException: 422 for an unknown style, 415/413 for rejected
                uploads, 403 when the quota gate refuses, 409 when a run is
                already in flight for the user, 502 when analysis or
                generation fails, 503 when the subscription store fails.
        """
        cfg: ImaginexusConfig = request.app.state.config
        style = _form_style(style)
        max_bytes = cfg.upload_limit_for(style)
        _precheck_upload(file, max_bytes)
        session = _session_for(request, user_id)
        data = await file.read()
        try:
            run = await session.submit(
                data,
                file.content_type,
                max_bytes,
                style,
                aspect_ratio,
                filename=file.filename or "",
                declared_size=file.size,
            )
        except PipelineBusyError as e:
            raise _http_error(e) from e

        if run.state is PipelineState.FAILED:
            raise _http_error(run.error, run)
        return {"success": True, **_run_payload(run)}

    @app.get("/api/session/{user_id}")
    async def get_session(request: Request, user_id: str) -> dict:
        """Return what the user's session currently shows."""
        session = _existing_session(request, user_id)
        if session is None:
            return {
                "user_id": user_id,
                "busy": False,
                "version": 0,
                "run": None,
                "image": None,
                "quota": None,
            }
        return {
            "user_id": user_id,
            "busy": session.busy,
            "version": session.version,
            "run": _run_payload(session.current_run) if session.current_run else None,
            "image": session.artifact.to_dict() if session.artifact else None,
            "quota": session.quota.to_dict() if session.quota else None,
        }

    @app.delete("/api/session/{user_id}")
    async def clear_session(request: Request, user_id: str) -> dict:
        """Clear the current selection; an in-flight result will be discarded."""
        session = _existing_session(request, user_id)
        if session is None:
            return {"success": True, "version": 0}
        session.clear()
        return {"success": True, "version": session.version}

    @app.post("/api/prompt/enhance")
    async def enhance(req: EnhanceRequest) -> dict:
        return {
            "prompt": enhance_prompt(req.prompt),
            "is_image_request": is_image_generation_prompt(req.prompt),
        }

    @app.get("/api/gallery")
    async def get_gallery(
        request: Request,
        user_id: str,
        page: int = 1,
        per_page: int = 20,
        style: str | None = None,
        aspect_ratio: str | None = None,
    ) -> dict:
        """Return a paginated listing of the user's images, newest first."""
        repo: SubscriptionRepository = request.app.state.repository
        entries = artifacts_to_entries(repo.list_user_images(user_id))
        entries = filter_gallery_entries(entries, style=style, aspect_ratio=aspect_ratio)
        return paginate_gallery_entries(entries, page, per_page)

    @app.get("/api/gallery/{image_id}")
    async def get_image(request: Request, image_id: str) -> dict:
        """Return a single gallery record.

        Raises:
            HTTPException: 404 if the image is not found.
        """
        repo: SubscriptionRepository = request.app.state.repository
        artifact = repo.get_image(image_id)
        if artifact is None:
            raise _http_error(ImageNotFoundError("Image not found"))
        return artifact.to_dict()

    @app.get("/api/stats")
    async def get_stats(request: Request, user_id: str) -> dict:
        """Return the user's image counts in total and per style."""
        repo: SubscriptionRepository = request.app.state.repository
        return gallery_stats(artifacts_to_entries(repo.list_user_images(user_id)))


app = create_app(config)


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Configure logging and launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~imaginexus.core.config.config`
    (``IMAGINEXUS_SERVER_HOST``, ``IMAGINEXUS_SERVER_PORT``,
    ``IMAGINEXUS_LOG_LEVEL``). Defaults to ``0.0.0.0:7860``.

    This function is registered as the ``imaginexus`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "imaginexus.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
