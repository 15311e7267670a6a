"""OneSaaS - authentication, two-factor and plan-gated algorithm access."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from onesaas import __version__
from onesaas.api import health
from onesaas.api.routes import api_router
from onesaas.config import Settings
from onesaas.context import AppContext, build_context
from onesaas.db import init_db
from onesaas.exceptions import (
    OneSaaSError,
    RateLimitExceededError,
    StoreUnavailableError,
    ValidationFailedError,
)
from onesaas.middleware.rate_limit import RateLimitMiddleware
from onesaas.services.seed import seed_owner, seed_services
from onesaas.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def startup(ctx: AppContext) -> None:
    """Create tables and seed reference data."""
    await init_db(ctx.engine)
    logger.info("Database initialized")

    async with ctx.session_factory() as db:
        await seed_services(db)
        await seed_owner(db, ctx.settings, ctx.codec)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("Starting OneSaaS...")
    ctx: AppContext = app.state.ctx
    await startup(ctx)

    yield

    logger.info("Shutting down OneSaaS...")
    await ctx.close()


def _error_response(exc: OneSaaSError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(OneSaaSError)
    async def onesaas_error_handler(request: Request, exc: OneSaaSError):
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Malformed request bodies keep the framework's 422 but use the common error shape."""
        errors = [
            {"loc": [str(part) for part in err["loc"]], "msg": err["msg"]}
            for err in exc.errors()
        ]
        body = ValidationFailedError("Invalid request", errors=errors).to_dict()
        return JSONResponse(status_code=422, content=body)

    @app.exception_handler(OperationalError)
    @app.exception_handler(PoolTimeoutError)
    @app.exception_handler(asyncio.TimeoutError)
    async def store_unavailable_handler(request: Request, exc: Exception):
        """The store timed out or is unreachable: fail closed, ask for a retry."""
        logger.error(
            "Store unavailable on %s: %s",
            request.url.path, sanitize_log_message(type(exc).__name__),
        )
        return _error_response(StoreUnavailableError())

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Generic exception handler to prevent stack trace exposure."""
        logger.error(
            "Unhandled exception: %s: %s",
            type(exc).__name__, sanitize_log_message(str(exc)),
            exc_info=True,
            extra={
                "path": request.url.path,
                "method": request.method,
                "client": request.client.host if request.client else "unknown",
            },
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "An internal error occurred. Please contact support if this persists."},
        )


def create_app(settings: Optional[Settings] = None, ctx: Optional[AppContext] = None) -> FastAPI:
    """Build the FastAPI application.

    Either ``ctx`` (tests) or ``settings`` is used; with neither, settings are
    read from the environment.
    """
    if ctx is None:
        ctx = build_context(settings or Settings.from_env())
    settings = ctx.settings

    app = FastAPI(
        title="OneSaaS",
        description="Authentication, two-factor and plan-gated algorithm access",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.ctx = ctx

    cors_origins = list(settings.cors_origins)
    if cors_origins == ["*"]:
        logger.warning("CORS configured with wildcard (*) - not recommended for production")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        # Cannot use allow_credentials=True with allow_origins=["*"]
        allow_credentials=cors_origins != ["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key", "Accept"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
    )

    # Only enable IP rate limiting outside tests
    if not settings.testing:
        app.add_middleware(RateLimitMiddleware)
        logger.info("Rate limiting middleware enabled on /api/v1/auth/")
    else:
        logger.info("Rate limiting middleware DISABLED (testing mode)")

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        """Add security headers to all responses."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Cache-Control"] = "no-store"
        return response

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(api_router)
    return app


def main() -> FastAPI:
    """ASGI application factory (``--factory onesaas.main:main``)."""
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return create_app(settings)
