"""Pine Script Runner - FastAPI Application."""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.api.router import api_router
from app.config import Settings, get_settings
from app.services.pine import ENGINE_VERSION, set_debug_mode


def configure_logging(level: str) -> None:
    """JSON structlog output routed through the stdlib root logger."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", level=level.upper())


settings = get_settings()
configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Apply startup settings to the runner."""
    settings = get_settings()
    logger.info(
        "pine_service_starting",
        version=__version__,
        engine_version=ENGINE_VERSION,
        host=settings.service_host,
        port=settings.service_port,
        pine_debug=settings.pine_debug,
        max_bars=settings.pine_max_bars,
    )

    if settings.pine_debug:
        set_debug_mode(True)

    yield

    logger.info("pine_service_stopped")


def _cors_origins(settings: Settings) -> list[str]:
    if settings.cors_origins.strip() == "*":
        logger.warning("cors_allow_all", hint="set CORS_ORIGINS in production")
        return ["*"]
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    logger.info("cors_origins_configured", origins=origins)
    return origins


app = FastAPI(
    title="Pine Script Runner",
    description="Validate, translate and run Pine Script indicator scripts",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(settings),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Bind a request ID to the log context and report timing headers."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        path=request.url.path,
    )

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request_failed", method=request.method)
        response = JSONResponse(
            status_code=500, content={"detail": "Internal server error"}
        )
    elapsed_ms = (time.perf_counter() - started) * 1000

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    response.headers["X-Engine-Version"] = ENGINE_VERSION

    logger.info(
        "request_completed",
        method=request.method,
        status_code=response.status_code,
        elapsed_ms=round(elapsed_ms, 2),
    )
    return response


app.include_router(api_router)


@app.get("/")
async def root():
    """Service info and entry points."""
    return {
        "service": "Pine Script Runner",
        "version": __version__,
        "engine_version": ENGINE_VERSION,
        "endpoints": {
            "health": "/health",
            "validate": "/pine/validate",
            "run": "/pine/run",
            "mock_bars": "/pine/mock-bars",
            "metrics": "/pine/metrics",
        },
        "docs": "/docs" if settings.docs_enabled else None,
    }
