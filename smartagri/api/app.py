"""
FastAPI application factory.

``create_app()`` is what ``smartagri serve`` hands to uvicorn. Services are
built in the lifespan handler, so importing this module has no side effects.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from smartagri.alerts.errors import (
    AlertNotFoundError,
    AlertServiceError,
    InvalidInputError,
    StreamRejectedError,
    SubscriptionNotFoundError,
)
from smartagri.api.dependencies import shutdown_services, startup_services
from smartagri.api.routes import alerts, health, subscriptions, ws_alerts
from smartagri.config.settings import Settings, get_settings
from smartagri.observability.logging import bind_context, clear_context

logger = structlog.get_logger(__name__)

API_TITLE = "SmartAgri Alert API"
API_VERSION = "0.1.0"

# (status code, error_type) per service error; anything else is internal
_ERROR_MAPPING: list[tuple[type[AlertServiceError], int, str]] = [
    (AlertNotFoundError, 404, "not_found"),
    (SubscriptionNotFoundError, 404, "not_found"),
    (InvalidInputError, 422, "invalid_input"),
    (StreamRejectedError, 503, "unavailable"),
]

_INTERNAL_ERROR_BODY = {"detail": "Internal server error", "error_type": "internal"}

_OPENAPI_TAGS = [
    {"name": "health", "description": "Service health checks"},
    {"name": "alerts", "description": "Alert lifecycle and queries"},
    {"name": "subscriptions", "description": "Alert notification subscriptions"},
    {"name": "websocket", "description": "Alert streaming over WebSocket"},
]

_DESCRIPTION = """
Alert lifecycle and subscriber notification for the SmartAgri platform.

Send an `X-API-KEY` header on every request except `/health` when the
server runs with `API_KEYS` set. WebSocket clients pass `api_key` as a
query parameter instead.
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Alert API starting up")
    try:
        await startup_services()
    except Exception as e:
        # Routes answer 500 until the store is reachable
        logger.error("Alert services failed to start", error=str(e))
    else:
        logger.info("Alert services started")

    yield

    logger.info("Alert API shutting down")
    await shutdown_services()


def _request_id(request: Request) -> str:
    return (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or uuid.uuid4().hex
    )


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = _request_id(request)
        bind_context(request_id=request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            return response
        finally:
            clear_context()


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AlertServiceError)
    async def handle_service_error(request: Request, exc: AlertServiceError):
        for error_cls, status_code, error_type in _ERROR_MAPPING:
            if isinstance(exc, error_cls):
                return JSONResponse(
                    status_code=status_code,
                    content={"detail": str(exc), "error_type": error_type},
                )

        logger.error("Alert service failure", error=str(exc), path=request.url.path)
        return JSONResponse(status_code=500, content=_INTERNAL_ERROR_BODY)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception",
            error=str(exc),
            path=request.url.path,
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content=_INTERNAL_ERROR_BODY)


def create_app() -> FastAPI:
    """Build the alert API with middleware, error handlers and routers."""
    settings = get_settings()

    app = FastAPI(
        title=API_TITLE,
        description=_DESCRIPTION,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=_OPENAPI_TAGS,
    )

    _install_middleware(app, settings)
    _install_error_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(alerts.router, tags=["alerts"])
    app.include_router(subscriptions.router, tags=["subscriptions"])
    app.include_router(ws_alerts.router, tags=["websocket"])

    @app.get("/", include_in_schema=False)
    async def root():
        return {"service": API_TITLE, "version": API_VERSION, "docs": "/docs"}

    return app
