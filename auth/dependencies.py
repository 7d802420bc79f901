"""
auth/dependencies.py -- Request-level identity resolution and FastAPI Depends() helpers.

The bearer token is verified exactly once per request, by the throttle
middleware in api/main.py, which calls resolve_request_scope() and stores the
result on request.state. Route dependencies read that result instead of
decoding the token again.

get_current_scope() raises HTTP 401 if the request is not authenticated.
get_service() / get_store() hand route handlers the objects on app.state.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Scope
from auth.service import AccountService
from auth.store import AccountStore
from auth.tokens import extract_bearer_token, resolve_from_token
from core.errors import AuthError, TokenInvalid


def resolve_request_scope(request: Request) -> tuple[Scope | None, AuthError | None]:
    """Resolve the Authorization header into (scope, error).

    (None, None)   -- no credential presented (anonymous).
    (scope, None)  -- verified.
    (None, error)  -- a credential was presented but failed verification.
    """
    header = request.headers.get("Authorization", "")
    if not header:
        return None, None
    token = extract_bearer_token(header)
    if token is None:
        return None, TokenInvalid("Authorization header is not a bearer token.")
    try:
        return resolve_from_token(token), None
    except AuthError as exc:
        return None, exc


def _request_scope(request: Request) -> tuple[Scope | None, AuthError | None]:
    if not hasattr(request.state, "scope"):
        request.state.scope, request.state.auth_error = resolve_request_scope(request)
    return request.state.scope, request.state.auth_error


def get_current_scope(request: Request) -> Scope:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    An expired token gets its own error code so clients know to log in again
    rather than treat the token as forged.
    """
    scope, error = _request_scope(request)
    if scope is not None:
        return scope
    if error is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    raise HTTPException(
        status_code=401,
        detail={"code": error.code, "message": str(error)},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_service(request: Request) -> AccountService:
    return request.app.state.account_service


def get_store(request: Request) -> AccountStore:
    return request.app.state.account_store
