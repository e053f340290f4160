"""Entry point. Wires the failure tracker, configuration and routes.

Failure store strategy:
  - FAILURE_STORE=sql    -> SQLAlchemy table (DATABASE_URL, default SQLite file)
  - otherwise            -> in-memory dict (lost on restart)
"""
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_DIR = os.path.dirname(BASE_DIR)
ENV_FILE = os.path.join(PROJECT_DIR, ".env")
load_dotenv(ENV_FILE)

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from facegate.api.routes.capture_routes import router as capture_router
from facegate.api.routes.user_routes import router as user_router
from facegate.domain.recognition import CaptureErrorCode
from facegate.infrastructure.config import DEFAULT_RELOAD_INTERVAL, ConfigurationService
from facegate.infrastructure.database.connection import check_engine_health, session_factory_from_env
from facegate.infrastructure.face_api import RecognitionService
from facegate.infrastructure.logging_setup import configure_logging
from facegate.infrastructure.tracking.memory_tracker import InMemoryFailureTracker, SWEEP_INTERVAL_SECONDS
from facegate.infrastructure.tracking.sql_tracker import SqlFailureTracker

log = logging.getLogger("facegate.server")

# ---------------------------------------------------------------------------
# Startup-only settings (changing these requires a restart)
# ---------------------------------------------------------------------------
FAILURE_STORE = os.environ.get("FAILURE_STORE", "memory").strip().lower()
CONFIG_FILE = os.environ.get("CONFIG_FILE", "").strip() or None
CONFIG_RELOAD_INTERVAL = float(os.environ.get("CONFIG_RELOAD_INTERVAL", str(DEFAULT_RELOAD_INTERVAL)))
FAILURE_SWEEP_INTERVAL = float(os.environ.get("FAILURE_SWEEP_INTERVAL", str(SWEEP_INTERVAL_SECONDS)))


def _allowed_origins() -> list[str]:
    raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    frontend = os.environ.get("FRONTEND_URL", "http://localhost:3000")
    return [frontend, "http://localhost:3001", "http://localhost:3002"]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_tracker(config_service, store: str = FAILURE_STORE):
    """Construct the configured tracker without starting its sweep."""
    if store == "sql":
        sf = session_factory_from_env("DATABASE_URL")
        return SqlFailureTracker(sf, config_service, sweep_interval=FAILURE_SWEEP_INTERVAL, start_sweep=False)
    if store != "memory":
        log.warning("Unknown FAILURE_STORE=%r, using in-memory tracker", store)
    return InMemoryFailureTracker(config_service, sweep_interval=FAILURE_SWEEP_INTERVAL, start_sweep=False)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration when DEBUG_LOGGING is on."""

    async def dispatch(self, request: Request, call_next):
        config_service = getattr(request.app.state, "config_service", None)
        debug = bool(config_service and config_service.get_configuration().debug_logging)
        start = time.perf_counter()
        response = await call_next(request)
        if debug:
            log.debug(
                "%s %s -> %s (%dms)",
                request.method, request.url.path, response.status_code,
                int((time.perf_counter() - start) * 1000),
            )
        return response


# ---------------------------------------------------------------------------
# Error envelopes
# ---------------------------------------------------------------------------

def _describe_validation(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request."
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    msg = first.get("msg", "invalid value")
    return f"Invalid or missing field '{loc}': {msg}" if loc else f"Invalid request: {msg}"


async def _validation_handler(request: Request, exc: RequestValidationError):
    message = _describe_validation(exc)
    log.debug("Rejected %s %s: %s", request.method, request.url.path, message)
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "timestamp": _now_iso(),
            "error": message,
            "errorCode": CaptureErrorCode.INVALID_REQUEST.value,
        },
    )


async def _http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        log.warning("404 - Route not found: %s %s", request.method, request.url.path)
        content = {"success": False, "error": "Route not found", "errorCode": CaptureErrorCode.NOT_FOUND.value}
    elif isinstance(exc.detail, dict):
        content = {"success": False, "timestamp": _now_iso(), **exc.detail}
    else:
        content = {"success": False, "error": str(exc.detail), "errorCode": CaptureErrorCode.SERVER_ERROR.value}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def _unhandled_handler(request: Request, exc: Exception):
    log.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "errorCode": CaptureErrorCode.SERVER_ERROR.value},
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    config_service: ConfigurationService | None = None,
    tracker=None,
    recognition: RecognitionService | None = None,
    face_api_client_factory=None,
    background_tasks: bool = True,
) -> FastAPI:
    """Build the FastAPI app around explicitly owned services.

    With *background_tasks* the lifespan starts the config reload timer and
    the tracker sweep, and stops both on shutdown.
    """
    config_service = config_service or ConfigurationService(config_file=CONFIG_FILE, env_file=ENV_FILE)
    tracker = tracker or build_tracker(config_service)
    recognition = recognition or RecognitionService()
    configure_logging(config_service.get_configuration().debug_logging)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if background_tasks:
            config_service.add_listener(lambda cfg: configure_logging(cfg.debug_logging))
            config_service.start_auto_reload(CONFIG_RELOAD_INTERVAL)
            tracker.start()
        log.info(
            "Face recognition server ready (failure store: %s, lockout: %s attempts, TTL: %s min)",
            tracker.backend,
            config_service.get_max_failure_attempts(),
            config_service.get_failure_record_ttl_minutes(),
        )
        try:
            yield
        finally:
            if background_tasks:
                config_service.stop_auto_reload()
            tracker.close()

    app = FastAPI(
        title="FaceGate",
        description="Facial recognition capture backend with failure lockout.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config_service = config_service
    app.state.tracker = tracker
    app.state.recognition = recognition
    if face_api_client_factory is not None:
        app.state.face_api_client_factory = face_api_client_factory

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, _validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_handler)

    app.include_router(capture_router)
    app.include_router(user_router)

    @app.get("/health")
    def health():
        result = {"status": "ok", "timestamp": _now_iso(), "failure_store": tracker.backend}
        engine = getattr(getattr(tracker, "_sf", None), "engine", None)
        if engine is not None:
            result["database"] = "connected" if check_engine_health(engine) else "disconnected"
        return result

    @app.get("/api/config")
    def api_config():
        """Current lockout-related configuration; never exposes API keys."""
        cfg = config_service.get_configuration()
        public = cfg.public_dict()
        return {
            "max_failure_attempts": cfg.max_failure_attempts,
            "failure_reset_on_success": cfg.failure_reset_on_success,
            "failure_record_ttl_minutes": cfg.failure_record_ttl_minutes,
            "capture_timeout_ms": cfg.capture_timeout_ms,
            "face_api_url": public["face_api_url"],
        }

    return app


app = create_app()
