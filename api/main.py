"""
api/main.py -- FastAPI application entry point for the user management service.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Request pipeline (outermost to innermost):
  1. log_requests       -- method, path, status, latency for every response
  2. throttle_requests  -- verifies the bearer token once, stores the Scope on
                           request.state, and admits the request against the
                           per-identity fixed-window throttle. Anonymous
                           requests pass through.
  3. SlowAPIMiddleware  -- per-IP limit on anonymous endpoints (login)
  4. CORSMiddleware
  5. Route dependency get_current_scope -> AccountService (guard) -> store

Lifespan handles startup (store, service, throttle, sweep task) and shutdown
(cancel sweep task, dispose store) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.dependencies import get_current_scope, resolve_request_scope
from auth.models import Scope
from auth.service import AccountService
from auth.store import AccountStore
from core.config import get_settings
from core.errors import AccessDenied, AuthError, RateExceeded, RecordNotFound, StoreUnavailable, UsernameTaken
from core.throttle import FixedWindowThrottle

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("usermgmt.api")

settings = get_settings()

# Health checks from load balancers must not be throttled.
_UNTHROTTLED_PATHS = ("/api/v1/health",)


def build_throttle() -> FixedWindowThrottle:
    return FixedWindowThrottle(
        limit=settings.throttle_limit,
        window_seconds=settings.throttle_window_seconds,
        idle_windows=settings.throttle_idle_windows,
        max_entries=settings.throttle_max_entries,
    )


# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI) -> None:
    """Evict idle throttle windows every throttle_sweep_seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(settings.throttle_sweep_seconds)
        evicted = app.state.throttle.sweep()
        if evicted:
            logger.info("Throttle sweep evicted %d idle identities", evicted)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the store, service, and throttle; tear them down on shutdown."""
    logger.info("User management API starting up")
    app.state.account_store = AccountStore(settings.database_url)
    app.state.account_service = AccountService(app.state.account_store)
    app.state.throttle = build_throttle()
    logger.info(
        "Throttle initialized (limit=%d window=%gs)",
        settings.throttle_limit,
        settings.throttle_window_seconds,
    )
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app))

    yield

    app.state.sweep_task.cancel()
    app.state.account_store.close()
    logger.info("User management API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="User Management API",
    description="Multi-tenant accounts with tenant- and role-scoped access control.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below with auth-protected routes.
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


def _rate_limited_response(retry_after: int, detail: str | None = None) -> JSONResponse:
    response = _error_response(429, "rate_limited", "Too many requests.", detail)
    response.headers["Retry-After"] = str(retry_after)
    return response


# ---------------------------------------------------------------------------
# Per-identity throttle middleware
#
# Runs before any route dependency. The token is verified here once; the
# resulting Scope (or the verification error) rides on request.state so
# get_current_scope() never decodes the token a second time. An invalid token
# is not throttled here -- there is no trustworthy identity to key on -- and
# is rejected with 401 by the route dependency instead.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def throttle_requests(request: Request, call_next):
    scope, error = resolve_request_scope(request)
    request.state.scope = scope
    request.state.auth_error = error
    if scope is not None and request.url.path not in _UNTHROTTLED_PATHS:
        try:
            request.app.state.throttle.check(scope.subject)
        except RateExceeded as exc:
            return _rate_limited_response(exc.retry_after, str(exc))
    return await call_next(request)


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


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(scope: Scope = Depends(get_current_scope)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="User Management API")


@app.get("/redoc", include_in_schema=False)
async def redoc(scope: Scope = Depends(get_current_scope)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="User Management API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
def login_rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when the per-IP login limit is exceeded.

    Sync on purpose: SlowAPIMiddleware calls this handler without awaiting.
    """
    return _rate_limited_response(int(getattr(exc, "retry_after", 60)), str(exc.detail))


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    response = _error_response(401, exc.code, str(exc))
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(AccessDenied)
async def access_denied_handler(request: Request, exc: AccessDenied) -> JSONResponse:
    """403 with the denial reason. The guard only raises this toward Admins."""
    return _error_response(403, exc.reason.value, "Operation not permitted for this tenant or role.")


@app.exception_handler(RecordNotFound)
async def not_found_handler(request: Request, exc: RecordNotFound) -> JSONResponse:
    return _error_response(404, "not_found", "User not found.")


@app.exception_handler(UsernameTaken)
async def conflict_handler(request: Request, exc: UsernameTaken) -> JSONResponse:
    return _error_response(409, "conflict", "A user with that username already exists.")


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    """Log the store failure with request context; return a generic 500."""
    scope = getattr(request.state, "scope", None)
    logger.error(
        "Store unavailable on %s %s (subject=%s tenant=%s)",
        request.method,
        request.url.path,
        scope.subject if scope else "-",
        scope.tenant_id if scope else "-",
        exc_info=exc,
    )
    return _error_response(500, "internal_error", "An unexpected error occurred.")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged server-side only, never written to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# Neither throttled nor authenticated.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and record store reachability."""
    try:
        request.app.state.account_store.has_accounts()
        database = "ok"
    except StoreUnavailable:
        logger.warning("Health check: account store unreachable")
        database = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
