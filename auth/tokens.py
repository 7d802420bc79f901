"""
auth/tokens.py -- Password hashing, login, and bearer token utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       exactly four claims: sub (username), role ("Admin"/"User"), CompanyId
       (tenant id), and exp. The claim names are the interoperability contract
       with tokens already in circulation -- do not rename them. Tokens from
       the existing issuer name the subject unique_name and also carry
       nbf/iat; both are accepted on resolution.

  Verification raises rather than returning None: TokenExpired when exp has
       passed (fail-closed, never extended), TokenInvalid for everything else.
       The claims are parsed into a Scope here, once; nothing downstream looks
       at the raw payload.

  Passwords: bcrypt directly, no passlib wrapper. _DUMMY_HASH enables timing
       equalization in authenticate() so response time does not reveal
       whether a username exists [C1].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Role, Scope
from core.config import get_settings
from core.errors import InvalidCredentials, TokenExpired, TokenInvalid

if TYPE_CHECKING:
    from auth.store import AccountStore

logger = logging.getLogger("usermgmt.auth")
audit_logger = logging.getLogger("usermgmt.audit")

_settings = get_settings()

_ALGORITHM = "HS256"

_SUBJECT_CLAIM = "sub"
# Tokens from the existing issuer carry the username as unique_name, not sub.
_LEGACY_SUBJECT_CLAIM = "unique_name"
_ROLE_CLAIM = "role"
_TENANT_CLAIM = "CompanyId"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt rejects (or, in older releases, truncates) input past 72 bytes.
    api/models.py refuses longer passwords with 422 before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A malformed stored hash is a
    failed verification, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than later ones.
_DUMMY_HASH: str = hash_password("usermgmt_timing_dummy")


# ---------------------------------------------------------------------------
# Login (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate(store: AccountStore, username: str, password: str) -> Scope:
    """Verify a username/password pair and return the caller's Scope.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost).
    - Wrong password: bcrypt runs against the real hash (same cost).
    Both raise the same InvalidCredentials, so neither timing nor error shape
    separates them.

    StoreUnavailable from the lookup propagates unchanged.
    """
    account = store.find_by_username(username)
    if account is None or not account.password_hash:
        verify_password(password, _DUMMY_HASH)
        audit_logger.info("login failure username=%s", username)
        raise InvalidCredentials()
    if not verify_password(password, account.password_hash):
        audit_logger.info("login failure username=%s", username)
        raise InvalidCredentials()

    audit_logger.info("login success username=%s tenant=%s role=%s", username, account.tenant_id, account.role.value)
    return Scope(subject=account.username, tenant_id=account.tenant_id, role=account.role)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(scope: Scope, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for scope.

    Args:
        scope:          The identity to embed.
        expire_seconds: Validity in seconds. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        _SUBJECT_CLAIM: scope.subject,
        _ROLE_CLAIM: scope.role.value,
        _TENANT_CLAIM: str(scope.tenant_id),
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def resolve_from_token(token: str) -> Scope:
    """Verify a previously issued token and rebuild its Scope.

    Raises:
        TokenExpired: signature is valid but exp has passed.
        TokenInvalid: bad signature, malformed token, missing or ill-typed
                      claims, or a role outside the Role enumeration.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired("Token has expired.") from exc
    except JWTError as exc:
        raise TokenInvalid("Token could not be verified.") from exc

    if "exp" not in payload:
        raise TokenInvalid("Token carries no expiry.")

    subject = payload.get(_SUBJECT_CLAIM) or payload.get(_LEGACY_SUBJECT_CLAIM)
    if not isinstance(subject, str) or not subject:
        raise TokenInvalid("Token subject claim is missing.")
    tenant_id = _parse_tenant_claim(payload.get(_TENANT_CLAIM))
    try:
        role = Role(payload.get(_ROLE_CLAIM))
    except ValueError as exc:
        raise TokenInvalid("Token role claim is not recognized.") from exc

    return Scope(subject=subject, tenant_id=tenant_id, role=role)


def _parse_tenant_claim(value: object) -> int:
    # Issued tokens carry CompanyId as a decimal string; accept a bare int too.
    if isinstance(value, bool):
        raise TokenInvalid("Token tenant claim is malformed.")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isascii() and value.isdecimal():
        return int(value)
    raise TokenInvalid("Token tenant claim is missing.")


def extract_bearer_token(authorization: str) -> str | None:
    """Return the token from an `Authorization: Bearer <token>` header value."""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
