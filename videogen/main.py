import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from videogen.api import jobs, render, uploads, videos
from videogen.config import Settings, get_settings
from videogen.constants.error_codes import get_error_spec
from videogen.exceptions import VideogenError
from videogen.models.database import create_db_engine
from videogen.render.dispatcher import build_dispatcher
from videogen.schemas.envelope import ErrorInfo, ErrorResponse
from videogen.services.job_registry import InMemoryJobStore, JobRegistry, JobStore
from videogen.services.media_resolver import MediaResolver
from videogen.services.render_orchestrator import RenderOrchestrator
from videogen.services.sql_job_store import SqlJobStore
from videogen.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

ENDPOINTS = {
    "POST /api/generate-video": "Render a text-only video (sync)",
    "POST /api/generate-video-with-image": "Render a video with an uploaded image (sync)",
    "POST /api/render": "Render from a full recipe (sync)",
    "POST /api/render/async": "Queue a render from a full recipe",
    "POST /api/render/upload": "Queue a render from multipart form data",
    "GET /api/jobs": "List render jobs",
    "GET /api/jobs/:jobId": "Render job status",
    "GET /api/templates": "Available templates and formats",
    "POST /api/upload-video": "Upload a video",
    "GET /api/uploaded-videos": "List uploaded videos",
    "DELETE /api/uploaded-videos/:videoId": "Delete an uploaded video",
    "GET /api/download/:videoId": "Download a rendered video",
    "GET /api/videos": "List rendered videos",
    "DELETE /api/videos/:videoId": "Delete a rendered video",
    "GET /api/health": "Health check",
}


def build_job_store(settings: Settings) -> JobStore:
    if settings.job_store == "sql":
        return SqlJobStore(create_db_engine(settings.database_url, settings.database_echo))
    return InMemoryJobStore()


def build_orchestrator(settings: Settings, storage: LocalStorageService) -> RenderOrchestrator:
    registry = JobRegistry(build_job_store(settings), ttl_seconds=settings.job_ttl_seconds)
    return RenderOrchestrator(
        registry=registry,
        resolver=MediaResolver(storage, settings),
        dispatcher=build_dispatcher(settings),
        storage=storage,
        settings=settings,
    )


def _http_error_code(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        413: "UPLOAD_TOO_LARGE",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_ERROR",
    }
    return mapping.get(status_code, "HTTP_ERROR")


def _error_response(status_code: int, error: ErrorInfo) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(ErrorResponse(error=error).model_dump(exclude_none=True)),
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(VideogenError)
    async def videogen_exception_handler(request: Request, exc: VideogenError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message[:500]}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
        return _error_response(exc.status_code, exc.to_error_info())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        spec = get_error_spec("VALIDATION_ERROR")

        # Build a human-readable message from the first validation error
        errors = exc.errors()
        if errors:
            first_error = errors[0]
            loc = " -> ".join(str(x) for x in first_error.get("loc", []))
            msg = first_error.get("msg", "Validation error")
            message = f"{loc}: {msg}" if loc else msg
        else:
            message = "Request validation failed"

        error = ErrorInfo(
            code="VALIDATION_ERROR",
            message=message,
            retryable=spec.get("retryable", False),
            suggested_fix=spec.get("suggested_fix"),
        )
        return _error_response(422, error)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        error_code = _http_error_code(exc.status_code)
        spec = get_error_spec(error_code)
        error = ErrorInfo(
            code=error_code,
            message=str(exc.detail),
            retryable=spec.get("retryable", False),
            suggested_fix=spec.get("suggested_fix"),
        )
        return _error_response(exc.status_code, error)

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        error = ErrorInfo(code="INTERNAL_ERROR", message="Internal server error", retryable=True)
        return _error_response(500, error)


def create_app(
    settings: Settings | None = None,
    orchestrator: RenderOrchestrator | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    storage = orchestrator.storage if orchestrator else LocalStorageService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)
        app.state.started_at = time.monotonic()
        app.state.orchestrator.recover()
        app.state.orchestrator.start()
        yield
        # Shutdown
        await app.state.orchestrator.stop()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.storage = storage
    app.state.orchestrator = orchestrator or build_orchestrator(settings, storage)
    app.state.started_at = time.monotonic()

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Routers
    app.include_router(render.router, prefix="/api", tags=["render"])
    app.include_router(jobs.router, prefix="/api", tags=["jobs"])
    app.include_router(videos.router, prefix="/api", tags=["videos"])
    app.include_router(uploads.router, prefix="/api", tags=["uploads"])

    @app.get("/api/health")
    async def health_check() -> dict:
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - app.state.started_at, 3),
            "version": settings.app_version,
            "queued": app.state.orchestrator.queue.pending,
        }

    @app.get("/")
    async def root() -> dict:
        return {
            "message": settings.app_name,
            "version": settings.app_version,
            "endpoints": ENDPOINTS,
        }

    return app
