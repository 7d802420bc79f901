"""
auth/guard.py -- Tenant/role authorization decisions for account operations.

authorize() is a pure function of (scope, operation, target). It returns one
of four decisions and never touches the store:

  Allow                       proceed unfiltered
  AllowWithFilter(predicate)  proceed, keep only rows the predicate accepts
  Deny(reason)                explicit refusal (CROSS_TENANT / INSUFFICIENT_ROLE)
  NotFound                    behave exactly as if the target did not exist

Decision table (caller role x tenant relation):

  Operation | Admin, same      | Admin, other | User, same            | User, other
  ----------+------------------+--------------+-----------------------+------------
  LIST      | Allow            | Deny(CT)     | Filter(no Admin rows) | Deny(CT)
  READ      | Allow            | Deny(CT)     | Allow / NotFound(adm) | NotFound
  CREATE    | Allow iff target tenant == caller tenant, else Deny(CT)   | Deny(IR)
  UPDATE    | Allow (tenant must not move) | Deny(CT) | Deny(IR)        | Deny(IR)
  DELETE    | Allow            | Deny(CT)     | Deny(IR)              | Deny(IR)

Information-leak policy: Admins are trusted to know other tenants exist, so
they get an explicit Deny. Users never learn that a record exists outside
what they may read -- enforce() re-maps every Deny toward a User to
RecordNotFound, making a hidden id indistinguishable from a missing one.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from auth.models import Account, AccountChanges, Role, Scope
from core.errors import AccessDenied, DenyReason, RecordNotFound

RowPredicate = Callable[[Account], bool]


class Operation(str, Enum):
    LIST = "list"
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class AllowWithFilter:
    predicate: RowPredicate


@dataclass(frozen=True)
class Deny:
    reason: DenyReason


@dataclass(frozen=True)
class NotFound:
    pass


Decision = Allow | AllowWithFilter | Deny | NotFound

ALLOW = Allow()
NOT_FOUND = NotFound()


def exclude_admins(account: Account) -> bool:
    return account.role is not Role.ADMIN


def authorize(
    scope: Scope,
    operation: Operation,
    target: Account | None = None,
    *,
    tenant_id: int | None = None,
    proposed: AccountChanges | None = None,
) -> Decision:
    """Decide whether scope may perform operation.

    Args:
        scope:     The caller.
        operation: What the caller wants to do.
        target:    The existing record (READ/UPDATE/DELETE) or the proposed
                   new record (CREATE). Unused for LIST.
        tenant_id: LIST only -- the tenant being listed; defaults to the
                   caller's own.
        proposed:  UPDATE only -- the requested changes.
    """
    if operation is Operation.LIST:
        listed_tenant = scope.tenant_id if tenant_id is None else tenant_id
        return _authorize_list(scope, listed_tenant)

    if target is None:
        raise ValueError(f"{operation.value} requires a target account")

    if operation is Operation.READ:
        return _authorize_read(scope, target)
    if operation is Operation.CREATE:
        return _authorize_create(scope, target)
    if operation is Operation.UPDATE:
        return _authorize_update(scope, target, proposed)
    if operation is Operation.DELETE:
        return _authorize_delete(scope, target)
    raise ValueError(f"Unhandled operation: {operation!r}")


def _authorize_list(scope: Scope, listed_tenant: int) -> Decision:
    if listed_tenant != scope.tenant_id:
        return Deny(DenyReason.CROSS_TENANT)
    if scope.role is Role.ADMIN:
        return ALLOW
    if scope.role is Role.USER:
        return AllowWithFilter(exclude_admins)
    raise ValueError(f"Unhandled role: {scope.role!r}")


def _authorize_read(scope: Scope, target: Account) -> Decision:
    same_tenant = target.tenant_id == scope.tenant_id
    if scope.role is Role.ADMIN:
        return ALLOW if same_tenant else Deny(DenyReason.CROSS_TENANT)
    if scope.role is Role.USER:
        if not same_tenant or target.role is Role.ADMIN:
            return NOT_FOUND
        return ALLOW
    raise ValueError(f"Unhandled role: {scope.role!r}")


def _authorize_create(scope: Scope, target: Account) -> Decision:
    if scope.role is Role.ADMIN:
        return ALLOW if target.tenant_id == scope.tenant_id else Deny(DenyReason.CROSS_TENANT)
    if scope.role is Role.USER:
        return Deny(DenyReason.INSUFFICIENT_ROLE)
    raise ValueError(f"Unhandled role: {scope.role!r}")


def _authorize_update(scope: Scope, target: Account, proposed: AccountChanges | None) -> Decision:
    if scope.role is Role.ADMIN:
        if target.tenant_id != scope.tenant_id:
            return Deny(DenyReason.CROSS_TENANT)
        # Re-assigning a record to another tenant is rejected, never performed.
        if proposed is not None and proposed.tenant_id is not None and proposed.tenant_id != target.tenant_id:
            return Deny(DenyReason.CROSS_TENANT)
        return ALLOW
    if scope.role is Role.USER:
        return Deny(DenyReason.INSUFFICIENT_ROLE)
    raise ValueError(f"Unhandled role: {scope.role!r}")


def _authorize_delete(scope: Scope, target: Account) -> Decision:
    if scope.role is Role.ADMIN:
        return ALLOW if target.tenant_id == scope.tenant_id else Deny(DenyReason.CROSS_TENANT)
    if scope.role is Role.USER:
        return Deny(DenyReason.INSUFFICIENT_ROLE)
    raise ValueError(f"Unhandled role: {scope.role!r}")


# ---------------------------------------------------------------------------
# Enforcement
# ---------------------------------------------------------------------------


def enforce(
    scope: Scope,
    operation: Operation,
    target: Account | None = None,
    *,
    tenant_id: int | None = None,
    proposed: AccountChanges | None = None,
) -> RowPredicate | None:
    """Apply authorize() and turn the decision into control flow.

    Returns the row predicate for AllowWithFilter, None for Allow.

    Raises:
        AccessDenied:   Deny toward an Admin caller.
        RecordNotFound: NotFound for anyone, and Deny toward a non-Admin
                        caller (the reason is never disclosed to them).
    """
    decision = authorize(scope, operation, target, tenant_id=tenant_id, proposed=proposed)
    if isinstance(decision, Allow):
        return None
    if isinstance(decision, AllowWithFilter):
        return decision.predicate
    if isinstance(decision, NotFound):
        raise RecordNotFound()
    if isinstance(decision, Deny):
        if scope.is_admin:
            raise AccessDenied(decision.reason)
        raise RecordNotFound()
    raise ValueError(f"Unhandled decision: {decision!r}")


def filter_rows(predicate: RowPredicate | None, rows: Iterable[Account]) -> list[Account]:
    if predicate is None:
        return list(rows)
    return [row for row in rows if predicate(row)]
