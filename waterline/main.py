"""
FastAPI application entry point with health endpoints and service routing.

This module provides the main FastAPI application instance with CORS
configuration, request logging, the mapping of domain errors to HTTP
responses, health check endpoints and the v1 routers. The lifespan creates
the change broker and inspects the database for the indexes required by
the order queries.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from waterline.api.limiter import limiter
from waterline.api.v1 import (
    driver_router,
    live_router,
    orders_router,
    owner_router,
    settings_router,
)
from waterline.core.config import get_settings
from waterline.core.identity import IdentityError
from waterline.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from waterline.database.connection import (
    check_database_health,
    close_database_connections,
    get_engine,
)
from waterline.database.queries import (
    QueryCapabilities,
    QueryIndexMissingError,
    StoreUnavailableError,
)
from waterline.realtime.broker import create_change_broker
from waterline.services.auth.role_resolver import AccessDeniedError
from waterline.services.orders.repository import OrderNotFoundError
from waterline.services.orders.service import OrderValidationError
from waterline.services.orders.state_machine import (
    StaleStateError,
    StateTransitionError,
)
from waterline.services.settings.service import SettingsValidationError

# Configure logging before application initialization
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Creates the change broker, records which query indexes exist and
    releases both on shutdown.

    Args:
        app: FastAPI application instance

    Yields:
        None during application runtime
    """
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
        change_broker=settings.change_broker,
    )

    with log_performance(logger, "application_startup"):
        app.state.change_broker = create_change_broker(settings)
        app.state.query_capabilities = QueryCapabilities()
        if settings.check_query_indexes:
            try:
                app.state.query_capabilities = await QueryCapabilities.inspect_engine(
                    get_engine()
                )
            except (SQLAlchemyError, OSError) as e:
                logger.warning(
                    "Query index inspection failed, queries run unchecked",
                    error=str(e),
                    error_type=type(e).__name__,
                )

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await app.state.change_broker.close()
        await close_database_connections()
        logger.info("Resources cleaned up successfully")


# Initialize FastAPI application
settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Water delivery order management API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

# Configure rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """
    Middleware for request logging and correlation ID management.

    Sets request ID for correlation, logs request details, and measures
    response time. Clears context after request processing.
    """
    request_id = request.headers.get("X-Request-ID")
    request_id = set_request_id(request_id)

    logger.info(
        "Request received",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        with log_performance(
            logger,
            "request_processing",
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )

        return response
    except Exception as e:
        logger.error(
            "Request failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        clear_context()


def _error(status_code: int, error: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            **extra,
            "request_id": get_request_id(),
        },
    )


@app.exception_handler(IdentityError)
async def identity_exception_handler(request: Request, exc: IdentityError) -> JSONResponse:
    response = _error(
        status.HTTP_401_UNAUTHORIZED, "unauthenticated", str(exc), code=exc.code
    )
    response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(AccessDeniedError)
async def access_denied_exception_handler(
    request: Request, exc: AccessDeniedError
) -> JSONResponse:
    """The client must sign out and go to the sign-in page of the required role."""
    return _error(
        status.HTTP_403_FORBIDDEN,
        "access_denied",
        str(exc),
        sign_out=True,
        redirect=exc.redirect,
    )


@app.exception_handler(QueryIndexMissingError)
async def index_missing_exception_handler(
    request: Request, exc: QueryIndexMissingError
) -> JSONResponse:
    logger.error(
        "Query needs a missing index",
        path=request.url.path,
        query=exc.query.value,
        index=exc.index_name,
    )
    return _error(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "needs_index",
        str(exc),
        index=exc.index_name,
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_exception_handler(
    request: Request, exc: StoreUnavailableError
) -> JSONResponse:
    logger.warning("Store unavailable", path=request.url.path, error=str(exc))
    return _error(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "store_unavailable",
        "Offline or syncing. Please try again shortly.",
    )


@app.exception_handler(StaleStateError)
async def stale_state_exception_handler(
    request: Request, exc: StaleStateError
) -> JSONResponse:
    """The order changed underfoot; the client refreshes and lets the user act again."""
    return _error(
        status.HTTP_409_CONFLICT,
        "stale_state",
        str(exc),
        current_status=exc.current_state.value if exc.current_state else None,
    )


@app.exception_handler(StateTransitionError)
async def transition_exception_handler(
    request: Request, exc: StateTransitionError
) -> JSONResponse:
    return _error(status.HTTP_409_CONFLICT, "invalid_transition", str(exc))


@app.exception_handler(OrderNotFoundError)
async def order_not_found_exception_handler(
    request: Request, exc: OrderNotFoundError
) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, "not_found", str(exc))


@app.exception_handler(OrderValidationError)
async def order_validation_exception_handler(
    request: Request, exc: OrderValidationError
) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, "validation_error", str(exc))


@app.exception_handler(SettingsValidationError)
async def settings_validation_exception_handler(
    request: Request, exc: SettingsValidationError
) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, "validation_error", str(exc))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle request validation errors with structured error response.

    Args:
        request: HTTP request that caused validation error
        exc: Validation exception with error details

    Returns:
        JSON response with validation error details
    """
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=exc.errors(),
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
            "request_id": get_request_id(),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions with structured error response.

    Logs error with full context and returns generic error message
    to avoid exposing internal details.
    """
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
            "request_id": get_request_id(),
        },
    )


@app.get(
    "/health",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Health check endpoint",
)
async def health_check() -> dict[str, str]:
    """
    Basic health check endpoint.

    Always returns 200 OK if application is running.
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get(
    "/ready",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Readiness check endpoint",
)
async def readiness_check():
    """
    Readiness check endpoint.

    Reports not ready while the database is unreachable, and lists query
    indexes found missing at startup.
    """
    database_ready = await check_database_health(max_retries=1)
    capabilities = getattr(app.state, "query_capabilities", None) or QueryCapabilities()
    missing_indexes = sorted(capabilities.missing)

    if not database_ready:
        logger.warning("Readiness check failed", dependencies_ready=False)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "service": settings.app_name,
                "dependencies_ready": False,
                "database": "unhealthy",
                "missing_indexes": missing_indexes,
            },
        )

    return {
        "status": "ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "dependencies_ready": True,
        "database": "healthy",
        "missing_indexes": missing_indexes,
    }


@app.get(
    "/live",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Liveness check endpoint",
)
async def liveness_check() -> dict[str, str]:
    """Indicates whether the application is alive and should not be restarted."""
    return {
        "status": "alive",
        "service": settings.app_name,
        "version": settings.app_version,
    }


app.include_router(orders_router, prefix="/api/v1")
app.include_router(owner_router, prefix="/api/v1")
app.include_router(driver_router, prefix="/api/v1")
app.include_router(settings_router, prefix="/api/v1")
app.include_router(live_router, prefix="/api/v1")
