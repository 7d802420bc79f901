"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. The guard and service never touch SQL.

The store is deliberately thin: lookups by id, tenant, and username plus
insert/update/delete. Tenant and role decisions belong to auth/guard.py, not
here, so every query returns exactly what was asked for.

Failure semantics:
  A uniqueness violation on username raises UsernameTaken.
  Any other SQLAlchemy error is logged and re-raised as StoreUnavailable.
  Nothing is retried -- callers decide.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Account, Role
from core.config import get_settings
from core.errors import StoreUnavailable, UsernameTaken

logger = logging.getLogger("usermgmt.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(10), nullable=False),  # Role.value: "Admin" / "User"
    Column("company_id", Integer, nullable=False, index=True),
    Column("created_by", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("modified_by", String(255)),
    Column("modified_at", String(32)),
)

# Columns an update may touch. id, company_id, and the created_* pair are
# fixed at insert.
_MUTABLE_COLUMNS = ("username", "password_hash", "role", "modified_by", "modified_at")


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new pool
    connections.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records.

    Usage:
        store = AccountStore()
        account_id = store.insert(account)
        store.find_by_tenant(1)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Account store failure: %s", exc)
            raise StoreUnavailable("Account store is unavailable.") from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_id(self, account_id: int) -> Account | None:
        with self._connect() as conn:
            row = conn.execute(select(_users).where(_users.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_tenant(self, tenant_id: int) -> list[Account]:
        """Return every account in tenant_id ordered by id. No role filtering."""
        with self._connect() as conn:
            rows = conn.execute(
                select(_users).where(_users.c.company_id == tenant_id).order_by(_users.c.id)
            ).fetchall()
        return [_row_to_account(r) for r in rows]

    def find_by_username(self, username: str) -> Account | None:
        """Exact, case-sensitive lookup."""
        with self._connect() as conn:
            row = conn.execute(select(_users).where(_users.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def has_accounts(self) -> bool:
        with self._connect() as conn:
            count = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (count or 0) > 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, account: Account) -> int:
        """Insert account and return its assigned id.

        The caller stamps created_by / created_at before calling. Raises
        UsernameTaken if the username already exists.
        """
        try:
            with self._connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=account.username,
                        password_hash=account.password_hash,
                        role=account.role.value,
                        company_id=account.tenant_id,
                        created_by=account.created_by,
                        created_at=account.created_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise UsernameTaken(account.username) from exc
        return result.inserted_primary_key[0]

    def update(self, account: Account) -> bool:
        """Persist the mutable fields of account. Returns False if the id is gone.

        company_id is never written here: a tenant is fixed at insert.
        """
        values = {key: value for key, value in asdict(account).items() if key in _MUTABLE_COLUMNS}
        values["role"] = account.role.value
        try:
            with self._connect() as conn:
                result = conn.execute(_users.update().where(_users.c.id == account.id).values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise UsernameTaken(account.username) from exc
        return result.rowcount > 0

    def delete(self, account_id: int) -> bool:
        """Permanently delete a record. Returns False if not found."""
        with self._connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == account_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        role=Role(row.role),
        tenant_id=row.company_id,
        created_by=row.created_by,
        created_at=row.created_at,
        modified_by=row.modified_by,
        modified_at=row.modified_at,
    )
