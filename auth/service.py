"""
auth/service.py -- Account workflows: guard, audit stamping, persistence.

Every user-management operation follows the same order:

  1. Load the target from the store (if the operation has one).
  2. Ask auth/guard.py for a decision via enforce().
  3. Stamp the audit fields from the caller's Scope -- never from the request
     body -- so created_by / modified_by are trustworthy.
  4. Write to the store.

A missing target is RecordNotFound for every caller; for non-Admin callers
the guard makes hidden targets look identical.

StoreUnavailable propagates unchanged. Nothing here retries.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

from auth import guard
from auth.guard import Operation
from auth.models import Account, AccountChanges, AccountDraft, Scope
from auth.store import AccountStore
from auth.tokens import hash_password
from core.errors import RecordNotFound

logger = logging.getLogger("usermgmt.service")
audit_logger = logging.getLogger("usermgmt.audit")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AccountService:
    """Tenant-scoped account management backed by an AccountStore."""

    def __init__(self, store: AccountStore, clock: Callable[[], str] = _now_iso) -> None:
        self._store = store
        self._clock = clock

    def list_accounts(self, scope: Scope, tenant_id: int | None = None) -> list[Account]:
        listed_tenant = scope.tenant_id if tenant_id is None else tenant_id
        logger.info("List accounts tenant=%s by %s (%s)", listed_tenant, scope.subject, scope.role.value)
        predicate = guard.enforce(scope, Operation.LIST, tenant_id=listed_tenant)
        return guard.filter_rows(predicate, self._store.find_by_tenant(listed_tenant))

    def get_account(self, scope: Scope, account_id: int) -> Account:
        logger.info("Get account id=%s by %s", account_id, scope.subject)
        target = self._load(account_id)
        guard.enforce(scope, Operation.READ, target)
        return target

    def create_account(self, scope: Scope, draft: AccountDraft) -> Account:
        """Create draft in the caller's tenant.

        The password is hashed before the record leaves this method; the
        plaintext is never stored or logged.
        """
        logger.info("Create account username=%s tenant=%s by %s", draft.username, draft.tenant_id, scope.subject)
        account = Account(username=draft.username, role=draft.role, tenant_id=draft.tenant_id)
        guard.enforce(scope, Operation.CREATE, account)

        account.password_hash = hash_password(draft.password)
        account.created_by = scope.subject
        account.created_at = self._clock()
        account.id = self._store.insert(account)
        audit_logger.info(
            "account.created id=%s username=%s tenant=%s by=%s",
            account.id,
            account.username,
            account.tenant_id,
            scope.subject,
        )
        return account

    def update_account(self, scope: Scope, account_id: int, changes: AccountChanges) -> Account:
        logger.info("Update account id=%s by %s", account_id, scope.subject)
        target = self._load(account_id)
        guard.enforce(scope, Operation.UPDATE, target, proposed=changes)

        updated = replace(
            target,
            username=changes.username if changes.username is not None else target.username,
            role=changes.role if changes.role is not None else target.role,
            modified_by=scope.subject,
            modified_at=self._clock(),
        )
        if changes.password is not None:
            updated.password_hash = hash_password(changes.password)

        if not self._store.update(updated):
            # Deleted between load and write.
            raise RecordNotFound()
        audit_logger.info("account.updated id=%s tenant=%s by=%s", account_id, target.tenant_id, scope.subject)
        return updated

    def delete_account(self, scope: Scope, account_id: int) -> None:
        logger.info("Delete account id=%s by %s", account_id, scope.subject)
        target = self._load(account_id)
        guard.enforce(scope, Operation.DELETE, target)

        if not self._store.delete(account_id):
            raise RecordNotFound()
        audit_logger.info("account.deleted id=%s tenant=%s by=%s", account_id, target.tenant_id, scope.subject)

    def _load(self, account_id: int) -> Account:
        account = self._store.find_by_id(account_id)
        if account is None:
            raise RecordNotFound()
        return account
