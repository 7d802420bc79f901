"""
api/routes/v1/users.py -- Tenant-scoped user management endpoints.

Routes:
  GET    /api/v1/users          -- list the caller's tenant (Users never see Admin rows)
  GET    /api/v1/users/{id}     -- read one account
  POST   /api/v1/users          -- create an account (Admin, own tenant only)
  PATCH  /api/v1/users/{id}     -- update username/password/role (Admin, own tenant)
  DELETE /api/v1/users/{id}     -- delete an account (Admin, own tenant)

Every route requires a bearer token and goes through AccountService, which
consults auth/guard.py before touching the store. Route handlers do no
authorization of their own: AccessDenied / RecordNotFound raised by the
service are mapped to 403 / 404 by the handlers in api/main.py.

Handlers are sync so bcrypt and the store run in the threadpool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from api.models import UserCreate, UserResponse, UserUpdate
from auth.dependencies import get_current_scope, get_service
from auth.models import AccountChanges, AccountDraft, Scope
from auth.service import AccountService

router = APIRouter()


@router.get("/users", response_model=list[UserResponse])
def list_users(
    tenant_id: int | None = Query(default=None, ge=1),
    scope: Scope = Depends(get_current_scope),
    service: AccountService = Depends(get_service),
) -> list[UserResponse]:
    """List accounts in a tenant (defaults to the caller's own)."""
    return [UserResponse.from_account(a) for a in service.list_accounts(scope, tenant_id)]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    scope: Scope = Depends(get_current_scope),
    service: AccountService = Depends(get_service),
) -> UserResponse:
    """Return one account. Hidden and missing ids both produce 404 for Users."""
    return UserResponse.from_account(service.get_account(scope, user_id))


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    body: UserCreate,
    scope: Scope = Depends(get_current_scope),
    service: AccountService = Depends(get_service),
) -> UserResponse:
    """Create an account. created_by is taken from the token, never the body."""
    draft = AccountDraft(
        username=body.username,
        password=body.password,
        role=body.role,
        tenant_id=body.tenant_id if body.tenant_id is not None else scope.tenant_id,
    )
    return UserResponse.from_account(service.create_account(scope, draft))


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    body: UserUpdate,
    scope: Scope = Depends(get_current_scope),
    service: AccountService = Depends(get_service),
) -> UserResponse:
    """Update an account. Moving it to another tenant is refused, not performed."""
    changes = AccountChanges(
        username=body.username,
        password=body.password,
        role=body.role,
        tenant_id=body.tenant_id,
    )
    if changes.is_empty():
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    return UserResponse.from_account(service.update_account(scope, user_id, changes))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    user_id: int,
    scope: Scope = Depends(get_current_scope),
    service: AccountService = Depends(get_service),
) -> Response:
    service.delete_account(scope, user_id)
    return Response(status_code=204)
