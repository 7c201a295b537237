"""
caseguard - attribute-based access control with identity protection

FastAPI application entry point with security hardening.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from caseguard import __version__
from caseguard.abac.attributes import validate_catalog
from caseguard.api.routes import admin_router, audit_router, cases_router
from caseguard.audit.ratelimit import rate_limit_headers
from caseguard.config import settings
from caseguard.db.repositories import seed_catalog
from caseguard.models import utcnow
from caseguard.security.errors import CaseGuardError, RateLimited, Unauthenticated
from caseguard.services import ServiceContainer, build_default_container

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_limiter() -> Limiter:
    """Global per-IP limiter, in front of the per-principal audit quota."""
    return Limiter(key_func=get_remote_address, default_limits=[
        f"{settings.rate_limit_requests}/{settings.rate_limit_window_seconds}seconds"
    ])


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Referrer policy
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # API only, nothing to render
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # Audit and case data must never be cached
        response.headers["Cache-Control"] = "no-store"

        # HSTS (only in production with HTTPS)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )

        # Remove server header
        if "server" in response.headers:
            del response.headers["server"]

        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log requests for security auditing."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()

        request_id = request.headers.get("X-Request-ID", f"req_{int(time.time() * 1000)}")

        # Path only: query strings and cookies may carry credentials
        logger.info(
            f"Request: {request.method} {request.url.path} "
            f"[{request_id}] from {request.client.host if request.client else 'unknown'}"
        )

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(process_time)

        logger.info(
            f"Response: {request.method} {request.url.path} "
            f"[{request_id}] status={response.status_code} time={process_time:.3f}s"
        )

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    logger.info("Starting caseguard...")

    # Misconfigured attribute tables must stop the process
    validate_catalog()

    if app.state.container is None:
        app.state.container = build_default_container(settings)

    container: ServiceContainer = app.state.container
    if container.session_factory is not None:
        await seed_catalog(container.session_factory)

    logger.info("caseguard started successfully")

    yield

    logger.info("Shutting down caseguard...")
    await container.close()
    logger.info("caseguard shutdown complete")


async def caseguard_error_handler(request: Request, exc: CaseGuardError) -> JSONResponse:
    """Map the error taxonomy to stable, generic responses."""
    logger.warning(
        f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.detail}"
    )

    headers = {}
    if isinstance(exc, RateLimited):
        headers.update(rate_limit_headers(exc.status))
    elif isinstance(exc, Unauthenticated):
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.public_message},
        headers=headers,
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle global per-IP rate limit errors."""
    return JSONResponse(
        status_code=429,
        content={"error": RateLimited.public_message},
        headers={"Retry-After": str(settings.rate_limit_window_seconds)},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions securely."""
    # Log full exception details server-side
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def health_check(request: Request) -> dict[str, Any]:
    """
    Health check endpoint.

    Reports the store backend and audit write failures seen so far.
    """
    container: ServiceContainer = request.app.state.container
    health_status: dict[str, Any] = {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "version": __version__,
        "services": {},
    }

    if container.session_factory is not None:
        try:
            async with container.session_factory() as session:
                await session.execute(text("SELECT 1"))
            health_status["services"]["database"] = {"status": "healthy"}
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            health_status["services"]["database"] = {"status": "unhealthy"}
            health_status["status"] = "degraded"
    else:
        health_status["services"]["memory_store"] = {"status": "healthy"}

    failures = len(container.recorder.failures)
    health_status["services"]["audit_trail"] = {
        "status": "healthy" if failures == 0 else "degraded",
        "write_failures": failures,
    }
    if failures:
        health_status["status"] = "degraded"

    return health_status


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application.

    Args:
        container: Pre-built services; the configured backend is used if None
    """
    app = FastAPI(
        title="caseguard",
        description="Attribute-based access control, identity vault and anonymized audit trail",
        version=__version__,
        lifespan=lifespan,
        # Disable docs in production
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
    )
    app.state.container = container

    # Rate limiting
    app.state.limiter = build_limiter()
    app.add_middleware(SlowAPIMiddleware)

    # Security headers middleware (must be added before CORS)
    app.add_middleware(SecurityHeadersMiddleware)

    # Request logging middleware
    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=[
            "X-Request-ID",
            "X-Process-Time",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ],
        max_age=600,  # Cache preflight for 10 minutes
    )

    app.add_exception_handler(CaseGuardError, caseguard_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.add_api_route("/health", health_check, methods=["GET"])

    app.include_router(audit_router, prefix="/api/v1/audit", tags=["audit"])
    app.include_router(cases_router, prefix="/api/v1/cases", tags=["cases"])
    app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])

    return app


app = create_app()
