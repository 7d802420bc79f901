"""Unit tests for auth/guard.py -- the role x tenant decision table.

authorize() is pure, so every cell of the table is checked directly against
hand-built Scopes and Accounts. enforce() is checked separately for the
Admin/User split in how a Deny surfaces.
"""

from __future__ import annotations

import pytest

from auth.guard import (
    Allow,
    AllowWithFilter,
    Deny,
    NotFound,
    Operation,
    authorize,
    enforce,
    exclude_admins,
    filter_rows,
)
from auth.models import Account, AccountChanges, Role, Scope
from core.errors import AccessDenied, DenyReason, RecordNotFound

ADMIN_T1 = Scope(subject="admin1", tenant_id=1, role=Role.ADMIN)
USER_T1 = Scope(subject="user1", tenant_id=1, role=Role.USER)


def _account(role: Role, tenant_id: int, account_id: int = 99) -> Account:
    return Account(id=account_id, username=f"{role.value.lower()}-{tenant_id}", role=role, tenant_id=tenant_id)


# ---------------------------------------------------------------------------
# LIST
# ---------------------------------------------------------------------------


class TestList:
    def test_admin_own_tenant_allowed(self) -> None:
        assert isinstance(authorize(ADMIN_T1, Operation.LIST), Allow)

    def test_admin_other_tenant_denied_cross_tenant(self) -> None:
        assert authorize(ADMIN_T1, Operation.LIST, tenant_id=2) == Deny(DenyReason.CROSS_TENANT)

    def test_user_own_tenant_filtered(self) -> None:
        decision = authorize(USER_T1, Operation.LIST, tenant_id=1)
        assert isinstance(decision, AllowWithFilter)
        assert decision.predicate is exclude_admins

    def test_user_other_tenant_denied(self) -> None:
        assert authorize(USER_T1, Operation.LIST, tenant_id=2) == Deny(DenyReason.CROSS_TENANT)

    def test_filter_removes_admin_rows(self) -> None:
        rows = [_account(Role.ADMIN, 1, 1), _account(Role.USER, 1, 2), _account(Role.USER, 1, 3)]
        predicate = enforce(USER_T1, Operation.LIST)
        kept = filter_rows(predicate, rows)
        assert [a.id for a in kept] == [2, 3]
        assert all(a.role is Role.USER for a in kept)

    def test_no_predicate_keeps_all_rows(self) -> None:
        rows = [_account(Role.ADMIN, 1, 1), _account(Role.USER, 1, 2)]
        assert filter_rows(None, rows) == rows


# ---------------------------------------------------------------------------
# READ
# ---------------------------------------------------------------------------


class TestRead:
    @pytest.mark.parametrize("role", [Role.ADMIN, Role.USER])
    def test_admin_reads_any_role_in_own_tenant(self, role: Role) -> None:
        assert isinstance(authorize(ADMIN_T1, Operation.READ, _account(role, 1)), Allow)

    def test_admin_other_tenant_denied(self) -> None:
        assert authorize(ADMIN_T1, Operation.READ, _account(Role.USER, 2)) == Deny(DenyReason.CROSS_TENANT)

    def test_user_reads_user_in_own_tenant(self) -> None:
        assert isinstance(authorize(USER_T1, Operation.READ, _account(Role.USER, 1)), Allow)

    def test_user_reading_admin_is_not_found(self) -> None:
        assert isinstance(authorize(USER_T1, Operation.READ, _account(Role.ADMIN, 1)), NotFound)

    @pytest.mark.parametrize("role", [Role.ADMIN, Role.USER])
    def test_user_other_tenant_is_not_found(self, role: Role) -> None:
        assert isinstance(authorize(USER_T1, Operation.READ, _account(role, 2)), NotFound)


# ---------------------------------------------------------------------------
# CREATE
# ---------------------------------------------------------------------------


class TestCreate:
    @pytest.mark.parametrize("role", [Role.ADMIN, Role.USER])
    def test_admin_creates_in_own_tenant(self, role: Role) -> None:
        assert isinstance(authorize(ADMIN_T1, Operation.CREATE, _account(role, 1)), Allow)

    def test_admin_cannot_create_in_other_tenant(self) -> None:
        assert authorize(ADMIN_T1, Operation.CREATE, _account(Role.USER, 2)) == Deny(DenyReason.CROSS_TENANT)

    @pytest.mark.parametrize("tenant_id", [1, 2])
    def test_user_cannot_create(self, tenant_id: int) -> None:
        decision = authorize(USER_T1, Operation.CREATE, _account(Role.USER, tenant_id))
        assert decision == Deny(DenyReason.INSUFFICIENT_ROLE)


# ---------------------------------------------------------------------------
# UPDATE / DELETE
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_admin_updates_in_own_tenant(self) -> None:
        changes = AccountChanges(username="renamed")
        assert isinstance(authorize(ADMIN_T1, Operation.UPDATE, _account(Role.USER, 1), proposed=changes), Allow)

    def test_admin_other_tenant_denied(self) -> None:
        decision = authorize(ADMIN_T1, Operation.UPDATE, _account(Role.USER, 2))
        assert decision == Deny(DenyReason.CROSS_TENANT)

    def test_admin_cannot_move_record_to_other_tenant(self) -> None:
        changes = AccountChanges(tenant_id=2)
        decision = authorize(ADMIN_T1, Operation.UPDATE, _account(Role.USER, 1), proposed=changes)
        assert decision == Deny(DenyReason.CROSS_TENANT)

    def test_unchanged_tenant_in_changes_is_allowed(self) -> None:
        changes = AccountChanges(tenant_id=1, role=Role.ADMIN)
        assert isinstance(authorize(ADMIN_T1, Operation.UPDATE, _account(Role.USER, 1), proposed=changes), Allow)

    @pytest.mark.parametrize("tenant_id", [1, 2])
    def test_user_cannot_update(self, tenant_id: int) -> None:
        decision = authorize(USER_T1, Operation.UPDATE, _account(Role.USER, tenant_id))
        assert decision == Deny(DenyReason.INSUFFICIENT_ROLE)


class TestDelete:
    def test_admin_deletes_in_own_tenant(self) -> None:
        assert isinstance(authorize(ADMIN_T1, Operation.DELETE, _account(Role.ADMIN, 1)), Allow)

    def test_admin_other_tenant_denied(self) -> None:
        assert authorize(ADMIN_T1, Operation.DELETE, _account(Role.USER, 2)) == Deny(DenyReason.CROSS_TENANT)

    @pytest.mark.parametrize("tenant_id", [1, 2])
    def test_user_cannot_delete(self, tenant_id: int) -> None:
        decision = authorize(USER_T1, Operation.DELETE, _account(Role.USER, tenant_id))
        assert decision == Deny(DenyReason.INSUFFICIENT_ROLE)


# ---------------------------------------------------------------------------
# enforce()
# ---------------------------------------------------------------------------


class TestEnforce:
    def test_allow_returns_none(self) -> None:
        assert enforce(ADMIN_T1, Operation.READ, _account(Role.USER, 1)) is None

    def test_deny_toward_admin_raises_access_denied_with_reason(self) -> None:
        with pytest.raises(AccessDenied) as exc_info:
            enforce(ADMIN_T1, Operation.DELETE, _account(Role.USER, 2))
        assert exc_info.value.reason is DenyReason.CROSS_TENANT

    def test_deny_toward_user_is_reported_as_not_found(self) -> None:
        with pytest.raises(RecordNotFound):
            enforce(USER_T1, Operation.DELETE, _account(Role.USER, 1))

    def test_not_found_raises_record_not_found(self) -> None:
        with pytest.raises(RecordNotFound):
            enforce(USER_T1, Operation.READ, _account(Role.ADMIN, 1))

    def test_target_required_for_record_operations(self) -> None:
        with pytest.raises(ValueError):
            authorize(ADMIN_T1, Operation.READ)
