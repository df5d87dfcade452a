from contextlib import asynccontextmanager
import logging
import sys
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from reminder_service.core.config import Settings, get_settings
from reminder_service.core.errors import (
    PROBLEM_CONTENT_TYPE,
    InternalError,
    ProblemError,
    ValidationError,
)
from reminder_service.db.session import build_engine, build_session_factory
from reminder_service.middleware.tracing import TraceIdMiddleware, get_trace_id
from reminder_service.reminders.api import router as reminders_router_v1
from reminder_service.reminders.background import BackgroundTaskQueue
from reminder_service.reminders.orchestrator import OrchestratorClient
from reminder_service.reminders.publisher import EventPublisher
from reminder_service.utils.timezone import Clock, utc_now


logger = logging.getLogger(__name__)

ROUTERS = {
    "v1": reminders_router_v1,
}


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    for noisy in ("sqlalchemy.engine", "amqp", "kombu"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _problem_response(request: Request, error: ProblemError, settings: Settings) -> JSONResponse:
    body = error.to_problem(
        settings.PROBLEM_TYPE_BASE_URL,
        instance=request.url.path,
        trace_id=get_trace_id(request),
    )
    return JSONResponse(status_code=error.status_code, content=body, media_type=PROBLEM_CONTENT_TYPE)


def _field_name(loc) -> str:
    # ("body", "dueAt") -> "dueAt"; ("query", "limit") -> "limit"
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or ".".join(str(p) for p in loc)


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(ProblemError)
    async def problem_error_handler(request: Request, exc: ProblemError):
        if exc.status_code >= 500:
            logger.error("%s [trace %s]", exc.detail, get_trace_id(request))
        return _problem_response(request, exc, settings)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": _field_name(e.get("loc", ())), "message": e.get("msg", ""), "code": e.get("type", "invalid")}
            for e in exc.errors()
        ]
        return _problem_response(request, ValidationError("Request validation failed", errors=errors), settings)

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("Database error [trace %s]: %s", get_trace_id(request), exc, exc_info=exc)
        detail = "An internal error occurred" if settings.is_production else f"Database error: {exc}"
        return _problem_response(request, InternalError(detail), settings)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error [trace %s]: %s", get_trace_id(request), exc, exc_info=exc)
        detail = "An internal error occurred" if settings.is_production else str(exc)
        return _problem_response(request, InternalError(detail), settings)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    publisher: Optional[EventPublisher] = None,
    clock: Clock = utc_now,
    background: Optional[BackgroundTaskQueue] = None,
    orchestrator: Optional[OrchestratorClient] = None,
) -> FastAPI:
    """Build the HTTP application. Collaborators default to ones built from settings."""
    settings = settings or get_settings()
    if session_factory is None:
        session_factory = build_session_factory(build_engine(settings))
    if publisher is None:
        publisher = EventPublisher.from_settings(settings, clock=clock)
    if background is None:
        background = BackgroundTaskQueue(
            maxsize=settings.BACKGROUND_QUEUE_SIZE,
            workers=settings.BACKGROUND_WORKERS,
            max_attempts=settings.BACKGROUND_MAX_ATTEMPTS,
            backoff_seconds=settings.BACKGROUND_BACKOFF_SECONDS,
        )
    if orchestrator is None and settings.ORCHESTRATOR_URL:
        orchestrator = OrchestratorClient(settings.ORCHESTRATOR_URL, timeout=settings.ORCHESTRATOR_TIMEOUT_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        logger.info("Starting up reminder service (%s)...", settings.ENVIRONMENT.value)
        background.start()
        try:
            publisher.declare_topology()
        except Exception as e:
            # The API still serves; publishes fail soft until the broker is back
            logger.warning(f"Broker topology declaration failed: {e}")

        yield

        logger.info("Shutting down reminder service...")
        background.drain()
        background.stop()

    app = FastAPI(
        title="Reminder Service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.publisher = publisher
    app.state.background = background
    app.state.clock = clock
    app.state.orchestrator = orchestrator

    app.add_middleware(TraceIdMiddleware)
    register_exception_handlers(app, settings)

    version = settings.API_ROUTER_VERSION
    versioned = APIRouter(prefix=f"/{version}")
    versioned.include_router(ROUTERS[version], prefix="/reminders", tags=["reminders"])
    app.include_router(versioned)

    @app.get("/health")
    def health_check():
        """Liveness probe"""
        return {"status": "ok", "service": "reminder-service"}

    if settings.METRICS_ENABLED:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    return app


def run() -> None:
    import uvicorn

    configure_logging()
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.SERVICE_HOST, port=settings.SERVICE_PORT)


if __name__ == "__main__":
    run()
