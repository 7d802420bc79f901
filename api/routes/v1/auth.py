"""
api/routes/v1/auth.py -- Login and identity endpoints.

Routes:
  POST /api/v1/auth/login   -- password login; returns a bearer token
  GET  /api/v1/auth/me      -- the caller's resolved scope (requires auth)

Security:
  [H2] POST /login is rate-limited per client IP by slowapi. Login is
       anonymous, so the per-identity throttle passes it through.
  [C1] authenticate() provides timing equalization -- use it, never inline
       find_by_username() + verify_password().
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, ScopeResponse
from auth.dependencies import get_current_scope, get_store
from auth.models import Scope
from auth.store import AccountStore
from auth.tokens import authenticate, create_access_token
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login: public -- login endpoint must be unauthenticated
# - GET  /api/v1/auth/me:    requires auth (get_current_scope)
router = APIRouter()


@limiter.limit(get_settings().login_rate_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest, store: AccountStore = Depends(get_store)) -> JSONResponse:
    """Authenticate with username and password; return a bearer token.

    Unknown username and wrong password raise the same InvalidCredentials,
    which the exception handler renders as 401 bad_credentials.

    Declared sync so bcrypt runs in the threadpool, not on the event loop.
    """
    scope = authenticate(store, body.username, body.password)
    settings = get_settings()
    token = create_access_token(scope)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=settings.token_expire_seconds,
            username=scope.subject,
            role=scope.role,
            tenant_id=scope.tenant_id,
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/me", response_model=ScopeResponse)
async def me(scope: Scope = Depends(get_current_scope)) -> ScopeResponse:
    """Return identity information for the currently authenticated caller."""
    return ScopeResponse.from_scope(scope)
