#!/usr/bin/env python3
"""
User management service -- operator command line.

Every account created through the API needs an Admin of the same tenant, so
the first Admin of each tenant is created here, directly in the store.

Usage:
  python main.py create-admin --username alice --tenant 1
  python main.py create-admin --username alice --tenant 1 --password 's3cret-pass'
  python main.py serve --host 0.0.0.0 --port 8000

Environment variables:
  SECRET_KEY    Token signing key (>= 32 chars). Required unless DEBUG=true.
  DATABASE_URL  SQLAlchemy URL of the account store (default: local SQLite).
"""

import argparse
import getpass
import sys
from datetime import datetime, timezone

from auth.models import Account, Role
from auth.store import AccountStore
from auth.tokens import hash_password
from core.errors import StoreUnavailable, UsernameTaken

BOOTSTRAP_ACTOR = "bootstrap"
_MIN_PASSWORD_LENGTH = 8
_MAX_PASSWORD_BYTES = 72  # bcrypt input limit


def create_admin(store: AccountStore, username: str, password: str, tenant_id: int) -> Account:
    """Insert an Admin account for tenant_id, stamped as created by the bootstrap actor.

    Raises UsernameTaken if the username exists, StoreUnavailable if the store
    cannot be reached.
    """
    if len(password) < _MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
    if len(password.encode("utf-8")) > _MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {_MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
    if tenant_id < 1:
        raise ValueError("Tenant id must be a positive integer.")
    account = Account(
        username=username,
        role=Role.ADMIN,
        tenant_id=tenant_id,
        password_hash=hash_password(password),
        created_by=BOOTSTRAP_ACTOR,
        created_at=datetime.now(timezone.utc).isoformat(),
    )
    account.id = store.insert(account)
    return account


def _cmd_create_admin(args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("Password: ")
    store = AccountStore(args.database_url)
    try:
        account = create_admin(store, args.username, password, args.tenant)
    except ValueError as e:
        print(f"  [!] {e}")
        return 2
    except UsernameTaken as e:
        print(f"  [!] {e}")
        return 1
    except StoreUnavailable as e:
        print(f"  [!] {e}")
        return 1
    finally:
        store.close()
    print(f"  Created Admin '{account.username}' (id={account.id}) in tenant {account.tenant_id}.")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="usermgmt",
        description="Multi-tenant user management service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --username alice --tenant 1
  python main.py serve --port 8000
        """,
    )
    sub = parser.add_subparsers(dest="command")

    create = sub.add_parser("create-admin", help="Create the first Admin of a tenant")
    create.add_argument("--username", required=True, help="Login name (unique across all tenants)")
    create.add_argument("--tenant", type=int, required=True, metavar="ID", help="Tenant (company) id")
    create.add_argument(
        "--password",
        default=None,
        help="Password; prompted for when omitted so it stays out of shell history",
    )
    create.add_argument(
        "--database-url",
        default=None,
        metavar="URL",
        help="SQLAlchemy URL of the account store (default: DATABASE_URL setting)",
    )
    create.set_defaults(func=_cmd_create_admin)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=_cmd_serve)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
