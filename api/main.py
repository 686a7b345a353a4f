"""
api/main.py -- FastAPI application for CredGuard.

HTTP binding of the AuthService use cases. Routes translate requests into
service calls and nothing else; lockout, token and TOTP rules all live in
auth/.

Run with:  uvicorn asgi:app --reload

Request path, outermost first (Starlette runs the last registered first):
  renewed_session_header copies a renewed session token into X-New-Token
  log_requests           one access-log line per request, path only
  CORSMiddleware         browser origins from CORS_ORIGINS
  TrustedHostMiddleware  Host header must match ALLOWED_HOSTS

Per-IP rate limits are checked inside the limited endpoints themselves by
the slowapi decorators in api/routes/v1/auth.py.

On startup the lifespan builds the AuthService (and with it the
CredentialStore and the mail notifier) and parks it on app.state; on
shutdown it disposes the store's connection pool.

Every failure leaves through one envelope:
    {"error": {"code": ..., "message": ..., "detail"?: ..., "fields"?: {...}}}
AuthError subclasses are mapped to a status by their `code`
(_STATUS_BY_CODE); the remaining handlers cover body validation, rate
limiting, routing errors and anything unexpected.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AccountLocked, AuthError
from auth.notifications import notifier_from_settings
from auth.service import AuthService
from auth.validation import field_errors
from core.config import get_settings

API_VERSION = "0.1.0"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("credguard.api")

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the AuthService for the lifetime of the process.

    Routes reach it through auth.dependencies.get_auth_service.
    """
    current = get_settings()
    service = AuthService.from_settings(current, notifier=notifier_from_settings(current))
    app.state.auth_service = service
    logger.info("CredGuard API %s started", API_VERSION)
    try:
        yield
    finally:
        service.close()
        logger.info("CredGuard API stopped")


app = FastAPI(
    title="CredGuard API",
    description="Password, session token, lockout and two-factor authentication service.",
    version=API_VERSION,
    lifespan=lifespan,
    # Schema browsing is a development aid only.
    docs_url="/docs" if settings.debug else None,
    redoc_url=None,
)

# Each add_middleware wraps the previous stack, so the last one added runs first.
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["X-New-Token", "Retry-After"],
    max_age=3600,
)
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Access log: method, path, status, latency, client. Bodies carry secrets and are never logged."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    level = logging.WARNING if response.status_code >= 500 else logging.INFO
    logger.log(
        level,
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request.client.host if request.client else "unknown",
    )
    return response


@app.middleware("http")
async def renewed_session_header(request: Request, call_next):
    """Attach the token parked by get_current_credential when a session was close to expiry."""
    response = await call_next(request)
    renewed = getattr(request.state, "renewed_token", None)
    if renewed:
        response.headers["X-New-Token"] = renewed
        response.headers["Cache-Control"] = "no-store"
    return response


app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

_STATUS_BY_CODE = {
    "validation_failed": 422,
    "invalid_credentials": 401,
    "account_locked": 423,
    "account_disabled": 403,
    "invalid_or_expired_token": 400,
    "invalid_totp_code": 400,
    "token_expired": 401,
    "token_invalid": 401,
    "email_already_exists": 409,
    "forbidden": 403,
    "service_unavailable": 503,
}


def _error_body(code: str, message: str, detail: str | None = None, fields: dict | None = None) -> dict:
    return ErrorResponse(
        error=ErrorDetail(code=code, message=message, detail=detail, fields=fields)
    ).model_dump(exclude_none=True)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Expected auth failures. 423 adds Retry-After; 401 adds WWW-Authenticate: Bearer."""
    status_code = _STATUS_BY_CODE.get(exc.code, 400)
    response = JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, fields=getattr(exc, "fields", None)),
    )
    if isinstance(exc, AccountLocked):
        response.headers["Retry-After"] = str(exc.retry_after_seconds)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=_error_body("rate_limited", "Too many requests.", detail=str(exc.detail)),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body validation by FastAPI yields the same {field: message} map as AuthService."""
    return JSONResponse(
        status_code=422,
        content=_error_body(
            "validation_failed",
            "Request validation failed.",
            fields=field_errors(exc.errors(), skip_prefix=("body",)),
        ),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Routing-level errors (404, 405) in the standard envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(f"http_{exc.status_code}", str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected: traceback to the log, a generic 500 to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_body("internal_error", "An unexpected error occurred."),
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Liveness plus a database round trip. Unauthenticated and not rate limited."""
    service: AuthService | None = getattr(request.app.state, "auth_service", None)
    database_ok = service is not None and service.store.ping()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
