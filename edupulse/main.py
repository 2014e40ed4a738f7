"""
EduPulse identity service

FastAPI application entry point.
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from edupulse.config import get_settings
from edupulse.database import async_session_maker, check_connection, close_db, init_db
from edupulse.api.deps import get_delivery_gateway
from edupulse.api.v1 import router as api_v1_router
from edupulse.api.middleware.rate_limit import RateLimitMiddleware, get_store
from edupulse.api.middleware.request_id import RequestIdMiddleware
from edupulse.kernel.delivery import HttpEmailGateway
from edupulse.kernel.errors import IdentityError
from edupulse.kernel.identity.identity_service import drain_background_deliveries
from edupulse.maintenance import maintenance_loop
from edupulse.schemas.common import HealthResponse
from edupulse.logging_config import configure_logging, get_logger

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    Runs startup and shutdown tasks.
    """
    # Configure logging first
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    # Startup
    logger.info("Starting %s v%s", settings.project_name, settings.version)
    await init_db()
    logger.info("Database initialized")

    maintenance = asyncio.create_task(
        maintenance_loop(
            settings.maintenance_interval_seconds,
            get_store(),
            async_session_maker,
        )
    )

    yield

    # Shutdown
    logger.info("Shutting down...")
    maintenance.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await maintenance
    await drain_background_deliveries(timeout=settings.delivery_timeout_seconds)
    gateway = get_delivery_gateway()
    if isinstance(gateway, HttpEmailGateway):
        await gateway.aclose()
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.project_name,
    description="""
    EduPulse identity and session service.

    ## Features

    - **Registration**: Role-aware sign-up (student, teacher, admin, parent) with email verification
    - **Sessions**: Short-lived access tokens, rotating refresh tokens in an HTTP-only cookie
    - **Recovery**: Enumeration-resistant password reset with single-use tokens
    - **Administration**: Account suspension, deactivation and deletion
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# Middleware order: add_middleware stacks innermost-first, so LAST added = OUTERMOST.
# CORS outermost so 429s and error responses also carry CORS headers.
_cors_origins = list(settings.cors_origins)

app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _cors_headers(request: Request) -> dict:
    """CORS headers for error responses (500s bypass the CORS middleware)."""
    origin = request.headers.get("origin") or ""
    if origin not in _cors_origins:
        return {}
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
        "Vary": "Origin",
    }


def _error_headers(request: Request) -> dict:
    headers = _cors_headers(request)
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        headers["X-Request-ID"] = req_id
    return headers


@app.exception_handler(IdentityError)
async def identity_exception_handler(request: Request, exc: IdentityError):
    """Map identity errors to their status code and a public message."""
    headers = _error_headers(request)
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Ensure framework 404/405 etc. responses have CORS and request-id headers."""
    headers = _error_headers(request)
    if exc.headers:
        headers.update(exc.headers)
    content = {"detail": exc.detail}
    req_id = getattr(request.state, "request_id", None)
    if req_id and exc.status_code >= 500:
        content["request_id"] = req_id
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
):
    """Handle request validation errors as 400."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    content = {"detail": "Validation error", "code": "VALIDATION_ERROR", "errors": errors}
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        content["request_id"] = req_id
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=content,
        headers=_error_headers(request),
    )


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request,
    exc: Exception,
):
    """Handle unexpected exceptions without leaking internals."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)
    req_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "request_id": req_id},
        headers=_error_headers(request),
    )


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Check application health."""
    database = "connected" if await check_connection() else "unavailable"
    return HealthResponse(
        status="ok" if database == "connected" else "degraded",
        version=settings.version,
        database=database,
    )


# Mount API v1 routes
app.include_router(
    api_v1_router,
    prefix=settings.api_v1_prefix,
)


# Main entry point for development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "edupulse.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
