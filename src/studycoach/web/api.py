"""FastAPI application factory.

Main entry point for the Study Coach Web API.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from studycoach import __version__
from studycoach.core.errors import (
    ErrorKind,
    InvalidRequestError,
    StudyCoachError,
    TurnInProgressError,
)
from studycoach.web.deps import drain_conversations, get_store
from studycoach.web.routes import (
    health_router,
    profile_router,
    plans_router,
    conversations_router,
    dashboard_router,
    diagnostics_router,
)
from studycoach.web.schemas import ErrorResponse

logger = structlog.get_logger(__name__)

# HTTP status per error kind
STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.PRECONDITION_MISSING: status.HTTP_412_PRECONDITION_FAILED,
    ErrorKind.GENERATION_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.AUDIO_SYNTHESIS_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PERSISTENCE_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorKind.PERSISTENCE_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    store = get_store()
    store.init()
    logger.info("api_startup", db_path=str(store.db_path))
    yield
    await drain_conversations()
    logger.info("api_shutdown")


async def handle_study_coach_error(request: Request, exc: StudyCoachError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.warning(
        "request_failed",
        path=request.url.path,
        kind=exc.kind.value,
        status_code=status_code,
        error=str(exc),
    )
    body = ErrorResponse(detail=str(exc), kind=exc.kind.value, retryable=exc.retryable)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def handle_invalid_request(request: Request, exc: InvalidRequestError) -> JSONResponse:
    body = ErrorResponse(detail=str(exc), kind="invalid_request", missing=exc.missing)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body.model_dump(exclude_none=True),
    )


async def handle_turn_in_progress(request: Request, exc: TurnInProgressError) -> JSONResponse:
    body = ErrorResponse(detail=str(exc), kind="turn_in_progress", retryable=True)
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=body.model_dump(exclude_none=True))


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="Study Coach API",
        description="Study plans, tutoring conversations and progress tracking",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware for web clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StudyCoachError, handle_study_coach_error)
    app.add_exception_handler(InvalidRequestError, handle_invalid_request)
    app.add_exception_handler(TurnInProgressError, handle_turn_in_progress)

    # Include routers
    app.include_router(health_router)
    app.include_router(profile_router)
    app.include_router(plans_router)
    app.include_router(conversations_router)
    app.include_router(dashboard_router)
    app.include_router(diagnostics_router)

    return app


# Default app instance for uvicorn
app = create_app()
