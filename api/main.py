"""
api/main.py -- FastAPI application factory for the salon auth core.

The auth core is a library; this module is the optional HTTP wrapper a host
application (or the demo in asgi.py) mounts. create_app() takes an already
built AuthSessionService so tests and hosts decide the credential store.

Wiring:
  - slowapi limiter on app.state (per-IP login ceiling, api/limiter.py)
  - security headers and request logging middleware
  - exception handlers that render every failure in one envelope:
        {"error": {"code", "message", "detail"?, "errors"?, "retry_after_minutes"?}}
"""

from __future__ import annotations

import logging
import math
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import (
    AccountDisabledError,
    AuthError,
    DuplicateIdentityError,
    InternalAuthError,
    InvalidCredentialsError,
    InvalidTokenError,
    PermissionDeniedError,
    RateLimitedError,
    ValidationError,
)
from auth.service import AuthSessionService
from auth.store import SqlCredentialStore
from core.config import Settings, get_settings
from core.logging import configure_logging

__version__ = "0.1.0"

logger = logging.getLogger("salonauth.api")

# One status per taxonomy entry. Invalid credentials and invalid tokens are
# both 401 so status codes do not separate the two either.
_STATUS_BY_ERROR: dict[type[AuthError], int] = {
    ValidationError: 400,
    RateLimitedError: 429,
    InvalidCredentialsError: 401,
    AccountDisabledError: 403,
    InvalidTokenError: 401,
    DuplicateIdentityError: 409,
    PermissionDeniedError: 403,
    InternalAuthError: 500,
}

# Browser hardening headers added to every response that passes the middleware
# stack, AuthError envelopes included.
SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline';",
}


def _error_response(status_code: int, detail: ErrorDetail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(exclude_none=True),
    )


def create_app(service: AuthSessionService | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI app around service.

    With no service, one is built over SqlCredentialStore(settings.database_url).
    """
    settings = settings or get_settings()
    configure_logging(logging.DEBUG if settings.debug else logging.INFO)
    if service is None:
        service = AuthSessionService(SqlCredentialStore(settings.database_url), settings)

    app = FastAPI(
        title="Salon Auth API",
        description="Authentication and session security for the salon management app.",
        version=__version__,
    )
    app.state.auth_service = service
    # slowapi looks for app.state.limiter by convention.
    app.state.limiter = limiter

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        """Render an AuthError with the status for its class.

        RateLimitedError also sets Retry-After (seconds, rounded up).
        """
        status_code = next((code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 400)
        detail = ErrorDetail(
            code=exc.code,
            message=exc.message,
            errors=getattr(exc, "errors", None) or None,
            retry_after_minutes=getattr(exc, "minutes", None),
        )
        response = _error_response(status_code, detail)
        if isinstance(exc, RateLimitedError):
            response.headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after.total_seconds())))
        if status_code == 401:
            response.headers["Cache-Control"] = "no-store"
        return response

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        """Per-IP ceiling hit (slowapi), distinct from the per-account lockout."""
        response = _error_response(
            429,
            ErrorDetail(code="too_many_requests", message="Too many requests.", detail=str(exc.detail)),
        )
        response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(
            422,
            ErrorDetail(code="validation_error", message="Request validation failed.", detail=str(exc.errors())),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Structured dict details pass through as the error field; strings are wrapped."""
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
        return _error_response(exc.status_code, ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all. The traceback goes to the log, never to the response body."""
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return _error_response(500, ErrorDetail(code="internal_error", message="An unexpected error occurred."))

    @app.get("/api/v1/health", tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(version=__version__)

    return app
