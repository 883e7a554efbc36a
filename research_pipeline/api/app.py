"""
FastAPI application for the research pipeline.

The orchestrator is attached to ``app.state`` at startup; ``create_app``
accepts a prebuilt one so callers and tests can inject their own.
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from research_pipeline import __version__
from research_pipeline.api import routes
from research_pipeline.config.settings import get_settings
from research_pipeline.errors import PreconditionFailed, StorageError, UnknownStage
from research_pipeline.logging_setup import configure_logging
from research_pipeline.pipeline.orchestrator import PipelineOrchestrator

logger = structlog.get_logger(__name__)


def _error(status_code: int, exc: Exception, kind: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "kind": kind})


def create_app(orchestrator: Optional[PipelineOrchestrator] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "orchestrator", None) is None:
            from research_pipeline.pipeline.factory import build_orchestrator

            settings = get_settings()
            configure_logging(settings.log_level, json=settings.log_json)
            app.state.orchestrator = build_orchestrator(settings)
            logger.info("api_orchestrator_built", database=settings.database_url)
        yield
        app.state.orchestrator.close()

    app = FastAPI(
        title="Research Pipeline API",
        description="Discovery, triage, generation, validation, planning and critique of research items",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UnknownStage)
    async def unknown_stage_handler(request: Request, exc: UnknownStage):
        return _error(404, exc, exc.kind)

    @app.exception_handler(PreconditionFailed)
    async def precondition_handler(request: Request, exc: PreconditionFailed):
        return _error(409, exc, exc.kind)

    @app.exception_handler(StorageError)
    async def storage_handler(request: Request, exc: StorageError):
        logger.error("api_storage_error", path=request.url.path, error=str(exc))
        return _error(503, exc, exc.kind)

    app.include_router(routes.router, prefix="/api", tags=["Pipeline"])
    return app


# =============================================================================
# Run with: uvicorn research_pipeline.api.app:create_app --factory
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", 8100))
    uvicorn.run(create_app(), host="0.0.0.0", port=port, reload=False)
