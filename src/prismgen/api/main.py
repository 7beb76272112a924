"""Prism Image Generator - FastAPI Application.

This module defines the FastAPI application factory, all REST API routes,
and the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Session** components (registry, orchestrator, persistence, feedback,
  quota) are built by :func:`~prismgen.core.session.initialize_session` in
  the lifespan handler and stored on ``app.state.session``.  Nothing is a
  module-level singleton, so tests create an app per configuration with
  :func:`create_app`.
- **Generation** runs in the request that submits it; status, cancellation
  and feedback requests are served concurrently by the same event loop.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/api/config``               Models, ratios, formats, tags
POST      ``/api/validate``             Validate a generation request
POST      ``/api/estimate``             Estimate the cost of a request
POST      ``/api/generate``             Run one generation
POST      ``/api/generate/cancel``      Cancel the running generation
GET       ``/api/generate/status``      Current generation status
GET       ``/api/history``              Session batches, newest first
DELETE    ``/api/history/{batch_id}``   Drop a batch from the session
POST      ``/api/feedback``             Like / dislike a batch
GET       ``/api/adapters/status``      Status of live adapters
GET       ``/api/usage``                Quota usage
GET       ``/api/stats/prompts``        Most used prompts
GET       ``/api/tags/recommended``     Tags ranked by usage and feedback
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    prismgen

Direct invocation::

    python -m prismgen.api.main
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from prismgen import __version__
from prismgen.api.models import FeedbackRequest, GenerateRequest
from prismgen.core.config import PrismConfig, config
from prismgen.core.errors import GenerationInProgressError
from prismgen.core.model_adapters import AdapterRegistry
from prismgen.core.models import ASPECT_RATIOS, OUTPUT_FORMATS, GenerationConfig
from prismgen.core.session import SessionState, cleanup_session, initialize_session
from prismgen.core.tags import QUALITY_ENHANCEMENT, QUALITY_ENHANCEMENT_NAME, TAG_GROUPS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------


def _session(request: Request) -> SessionState:
    return request.app.state.session


def _to_config(session: SessionState, req: GenerateRequest) -> GenerationConfig:
    """Resolve a request into a generation config using the model's defaults."""
    model_id = req.model or session.config.default_model
    model = session.models.get(model_id)
    return req.to_config(
        session.config.default_model,
        model.default_config if model else None,
    )


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@router.get("/config")
async def get_config(request: Request) -> dict:
    """Return what a client needs to build a generation request.

    Returns:
        Dictionary with ``version``, ``default_model``, ``models``,
        ``aspect_ratios``, ``output_formats`` and ``tags`` (tag groups keyed
        by category, plus the quality enhancement phrase).
    """
    session = _session(request)
    return {
        "version": __version__,
        "default_model": session.config.default_model,
        "models": [model.to_dict() for model in session.models.values()],
        "aspect_ratios": list(ASPECT_RATIOS),
        "output_formats": list(OUTPUT_FORMATS),
        "tags": {
            category: [
                {"label": tag.label, "value": tag.value, "description": tag.description}
                for tag in group
            ]
            for category, group in TAG_GROUPS.items()
        },
        "quality_enhancement": {
            "label": QUALITY_ENHANCEMENT_NAME,
            "value": QUALITY_ENHANCEMENT,
        },
    }


@router.post("/validate")
async def validate_request(request: Request, req: GenerateRequest) -> dict:
    """Validate a generation request against the selected model's adapter.

    Returns:
        Dictionary with ``is_valid``, ``errors`` and ``warnings``.

    Raises:
        HTTPException: 400 for an unknown model.
    """
    session = _session(request)
    try:
        result = await session.orchestrator.validate(_to_config(session, req))
    except KeyError as e:
        raise HTTPException(status_code=400, detail=str(e.args[0])) from e
    return {"is_valid": result.is_valid, "errors": result.errors, "warnings": result.warnings}


@router.post("/estimate")
async def estimate_cost(request: Request, req: GenerateRequest) -> dict:
    """Estimate the cost of a generation request.

    Raises:
        HTTPException: 400 for an unknown model.
    """
    session = _session(request)
    gen_config = _to_config(session, req)
    try:
        cost = await session.orchestrator.estimate_cost(gen_config)
    except KeyError as e:
        raise HTTPException(status_code=400, detail=str(e.args[0])) from e
    return {"model": gen_config.model, "estimated_cost": cost}


@router.post("/generate")
async def generate_images(request: Request, req: GenerateRequest) -> dict:
    """Run one generation and return its batch.

    The request returns when the generation completes, fails or is cancelled
    through ``POST /api/generate/cancel``.

    Returns:
        Dictionary with ``success``, ``status`` and, on completion, ``batch``.
        A cancelled generation returns ``success`` False with an idle status.

    Raises:
        HTTPException: 409 if a generation is already running, 400 if the
            generation ended in the error state (invalid request, unknown
            model, quota exhausted or provider failure).
    """
    session = _session(request)
    gen_config = _to_config(session, req)

    try:
        batch = await session.orchestrator.submit(gen_config)
    except GenerationInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    status = session.orchestrator.status
    if batch is None:
        if status.stage == "error":
            raise HTTPException(status_code=400, detail=status.error)
        return {"success": False, "status": status.to_dict(), "batch": None}

    return {"success": True, "status": status.to_dict(), "batch": batch.to_dict()}


@router.post("/generate/cancel")
async def cancel_generation(request: Request) -> dict:
    """Cancel the running generation.

    Returns:
        Dictionary with ``cancelled`` (False when nothing could be cancelled)
        and the resulting ``status``.
    """
    orchestrator = _session(request).orchestrator
    cancelled = orchestrator.cancel()
    return {"cancelled": cancelled, "status": orchestrator.status.to_dict()}


@router.get("/generate/status")
async def generation_status(request: Request) -> dict:
    return _session(request).orchestrator.status.to_dict()


@router.get("/history")
async def get_history(request: Request, limit: int = Query(default=50, ge=1)) -> dict:
    """Return session batches, newest first.

    Args:
        limit: Maximum number of batches.

    Returns:
        Dictionary with ``total`` and ``batches``.
    """
    history = _session(request).history
    return {
        "total": len(history),
        "batches": [batch.to_dict() for batch in history.batches[:limit]],
    }


@router.delete("/history/{batch_id}")
async def delete_history_batch(request: Request, batch_id: str) -> dict:
    """Remove a batch from the session history (the stored record is kept).

    Raises:
        HTTPException: 404 if the batch is not in the session.
    """
    if not _session(request).history.remove_batch(batch_id):
        raise HTTPException(status_code=404, detail="Batch not found")
    return {"success": True, "deleted": batch_id}


@router.post("/feedback")
async def submit_feedback(request: Request, req: FeedbackRequest) -> dict:
    """Set (or toggle off) the feedback of a batch.

    The new value is visible immediately; the backend commit runs in the
    background and is rolled back if it fails.

    Returns:
        Dictionary with ``batch_id`` and the now visible ``feedback_type``.

    Raises:
        HTTPException: 404 if the batch is not in the session.
    """
    session = _session(request)
    try:
        feedback_type = session.feedback.set_feedback(req.batch_id, req.feedback_type)
    except KeyError as e:
        raise HTTPException(status_code=404, detail="Batch not found") from e
    return {"success": True, "batch_id": req.batch_id, "feedback_type": feedback_type}


@router.get("/adapters/status")
async def adapters_status(request: Request) -> dict:
    """Return the status of every live adapter and registry statistics."""
    registry = _session(request).registry
    statuses = await registry.check_all_status()
    return {
        "adapters": {model_id: status.to_dict() for model_id, status in statuses.items()},
        "registered": [registration.id for registration in registry.list_registered()],
        "statistics": registry.get_statistics(),
    }


@router.get("/usage")
async def get_usage(request: Request) -> dict:
    usage = _session(request).usage
    check = usage.can_use()
    return {
        "enabled": usage.enabled,
        "allowed": check.allowed,
        "reason": check.reason,
        "usage": usage.get_usage_stats(),
    }


@router.get("/stats/prompts")
async def popular_prompts(request: Request, limit: int = Query(default=10, ge=1, le=100)) -> dict:
    store = _session(request).store
    prompts = await asyncio.to_thread(store.popular_prompts, limit)
    return {"prompts": prompts}


@router.get("/tags/recommended")
async def recommended_tags(
    request: Request,
    category: str | None = None,
    exclude: list[str] | None = Query(default=None),
    limit: int = Query(default=5, ge=1, le=50),
) -> dict:
    """Return tags ranked by usage, boosted by success rate and rating.

    Args:
        category: Restrict to one tag category.
        exclude: Tag names already selected.
        limit: Maximum number of recommendations.
    """
    store = _session(request).store
    recommendations = await asyncio.to_thread(store.recommended_tags, category, exclude, limit)
    return {"recommendations": recommendations}


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    cfg: PrismConfig | None = None,
    registry: AdapterRegistry | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        cfg: Configuration for the session.  Defaults to the global
            :data:`~prismgen.core.config.config`.
        registry: Adapter registry to use instead of the built-in one.

    Returns:
        The application.  Its session is built on startup and torn down on
        shutdown by the lifespan handler.
    """
    app_config = cfg or config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # --- Startup -------------------------------------------------------
        app.state.session = await initialize_session(app_config, registry=registry)
        logger.info("Session ready (adapters are created on first use).")

        yield  # Application runs here.

        # --- Shutdown ------------------------------------------------------
        await cleanup_session(app.state.session)
        logger.info("Session closed on shutdown.")

    app = FastAPI(
        title="Prism Image Generator",
        description="Prompt-to-image generation over pluggable providers.",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~prismgen.core.config.config`
    (``PRISM_SERVER_HOST``, ``PRISM_SERVER_PORT``, ``PRISM_LOG_LEVEL``).

    This function is registered as the ``prismgen`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "prismgen.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
