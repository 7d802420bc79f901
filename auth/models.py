"""
auth/models.py -- Domain dataclasses for identity and access entities.

Pattern: Data class (pure data container, zero logic). Stores, the guard, and
routes do the work; these types only own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. Compare against members, never against raw strings."""

    ADMIN = "Admin"
    USER = "User"


@dataclass
class Account:
    """A user record owned by exactly one tenant.

    tenant_id is fixed at creation. password_hash is opaque and must never be
    logged or returned to a caller. modified_by / modified_at stay None until
    the first update.
    """

    username: str
    role: Role
    tenant_id: int
    id: int | None = None
    password_hash: str | None = None
    created_by: str | None = None
    created_at: str | None = None
    modified_by: str | None = None
    modified_at: str | None = None


@dataclass(frozen=True)
class Scope:
    """The verified (subject, tenant, role) triple for one request.

    Built once by auth.tokens (login or token resolution) and passed by value
    from then on. Nothing downstream re-reads token claims.
    """

    subject: str
    tenant_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass
class AccountDraft:
    """A proposed new account, before hashing and audit stamping."""

    username: str
    password: str
    role: Role
    tenant_id: int


@dataclass
class AccountChanges:
    """A partial update. None means "leave unchanged"."""

    username: str | None = None
    password: str | None = None
    role: Role | None = None
    tenant_id: int | None = None

    def is_empty(self) -> bool:
        return all(value is None for value in (self.username, self.password, self.role, self.tenant_id))
