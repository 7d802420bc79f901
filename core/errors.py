"""
core/errors.py -- Exception taxonomy shared by the auth, store, and API layers.

Every failure the service can produce is one of these types. The API layer
maps each to exactly one HTTP status in api/main.py; nothing below the API
layer knows about status codes.

  AuthError            -> 401
    InvalidCredentials     bad username or password (indistinguishable)
    TokenInvalid           bad signature, malformed, missing claims
      TokenExpired         exp claim in the past (fail-closed)
  RateExceeded         -> 429
  AccessDenied         -> 403 (privileged callers only)
  RecordNotFound       -> 404
  UsernameTaken        -> 409
  StoreUnavailable     -> 500, logged server-side, generic body

Layer rule: core/ is the kernel. No project imports.
"""

from __future__ import annotations

from enum import Enum


class DenyReason(str, Enum):
    CROSS_TENANT = "cross_tenant"
    INSUFFICIENT_ROLE = "insufficient_role"


class AuthError(Exception):
    """Base class for authentication failures."""

    code = "unauthorized"


class InvalidCredentials(AuthError):
    code = "bad_credentials"

    def __init__(self) -> None:
        super().__init__("Invalid username or password.")


class TokenInvalid(AuthError):
    code = "unauthorized"


class TokenExpired(TokenInvalid):
    code = "token_expired"


class RateExceeded(Exception):
    """Raised when an identity exhausts its request budget for the current window."""

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Request limit exceeded; retry in {retry_after}s.")
        self.retry_after = retry_after


class AccessDenied(Exception):
    """Explicit denial, surfaced only to Admin callers."""

    def __init__(self, reason: DenyReason) -> None:
        super().__init__(reason.value)
        self.reason = reason


class RecordNotFound(Exception):
    """The target does not exist, or the caller may not learn that it does."""


class UsernameTaken(Exception):
    def __init__(self, username: str) -> None:
        super().__init__(f"Username {username!r} already exists.")
        self.username = username


class StoreUnavailable(Exception):
    """The record store failed. Propagated unchanged; no retries here."""
