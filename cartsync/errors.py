"""
Cart sync error taxonomy.

Every Persistence Adapter operation either returns its result or raises one
of the CartSyncError subclasses below. Callers (see cartsync.sync) catch them,
surface a notification and keep the local cart as it is.

Kinds:
- unauthenticated: no valid session at call time, or the row-level policy
  rejected the request
- not_found: the record vanished between lookup and mutation (benign race)
- schema_missing: the cart_items table (or a column) does not exist; an
  operator needs to run pending migrations
- transient: network error, timeout, 5xx or rate limiting; safe to retry later
- unknown: anything else
"""

from typing import Any, Optional

import httpx
from postgrest.exceptions import APIError

# Postgres / PostgREST error codes
PG_UNDEFINED_TABLE = "42P01"
PG_UNDEFINED_COLUMN = "42703"
PG_INSUFFICIENT_PRIVILEGE = "42501"
PG_UNIQUE_VIOLATION = "23505"
PGRST_SCHEMA_CACHE_COLUMN = "PGRST204"
PGRST_SCHEMA_CACHE_TABLE = "PGRST205"
PGRST_NO_ROWS = "PGRST116"
PGRST_JWT_EXPIRED = "PGRST301"
PGRST_ANONYMOUS_DISABLED = "PGRST302"

SCHEMA_MISSING_CODES = {PG_UNDEFINED_TABLE, PG_UNDEFINED_COLUMN, PGRST_SCHEMA_CACHE_COLUMN, PGRST_SCHEMA_CACHE_TABLE}
UNAUTHENTICATED_CODES = {PG_INSUFFICIENT_PRIVILEGE, PGRST_JWT_EXPIRED, PGRST_ANONYMOUS_DISABLED}
TRANSIENT_CODES = {PG_UNIQUE_VIOLATION}
TRANSIENT_STATUS_CODES = {408, 429}

ERROR_SCHEMA_MISSING = "Cart table is missing. Run pending database migrations."
ERROR_UNAUTHENTICATED = "Not signed in"
ERROR_RECORD_NOT_FOUND = "Cart record not found"
ERROR_TRANSIENT = "Cart service temporarily unavailable"
ERROR_UNKNOWN = "Cart sync failed"


class CartSyncError(Exception):
    """
    Base class for remote cart failures.

    Attributes:
        kind: Taxonomy name (unauthenticated, not_found, schema_missing, transient, unknown)
        operation: Adapter operation that failed (e.g. "sync_add"), if known
    """
    kind = "unknown"
    default_message = ERROR_UNKNOWN

    def __init__(self, message: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.operation = operation

    @property
    def retryable(self) -> bool:
        return False


class UnauthenticatedError(CartSyncError):
    """Raised when there is no valid session for the remote call."""
    kind = "unauthenticated"
    default_message = ERROR_UNAUTHENTICATED


class RecordNotFoundError(CartSyncError):
    """Raised when a record disappeared between lookup and mutation."""
    kind = "not_found"
    default_message = ERROR_RECORD_NOT_FOUND


class SchemaMissingError(CartSyncError):
    """Raised when the cart table or one of its columns does not exist."""
    kind = "schema_missing"
    default_message = ERROR_SCHEMA_MISSING


class TransientError(CartSyncError):
    """Raised for network errors, timeouts and overloaded backends."""
    kind = "transient"
    default_message = ERROR_TRANSIENT

    @property
    def retryable(self) -> bool:
        return True


class UnknownSyncError(CartSyncError):
    """Raised for failures that fit no other kind."""
    kind = "unknown"


class StaleGenerationError(Exception):
    """
    Raised inside the session reconciler when a fetch result belongs to a
    superseded authentication generation. Never surfaced to callers.
    """

    def __init__(self, generation: int, current: int):
        super().__init__(f"fetch generation {generation} superseded by {current}")
        self.generation = generation
        self.current = current


def _api_error_status(exc: APIError) -> Optional[int]:
    # postgrest puts the HTTP status in "code" when the body carries no
    # Postgres error code
    code = getattr(exc, "code", None)
    if code is not None and str(code).isdigit():
        return int(code)
    return None


def classify_error(exc: BaseException, operation: Optional[str] = None) -> CartSyncError:
    """
    Map an exception raised by the database client into the taxonomy.

    CartSyncError instances pass through unchanged (operation is filled in
    if missing). The original exception is chained as __cause__.
    """
    if isinstance(exc, CartSyncError):
        if exc.operation is None:
            exc.operation = operation
        return exc

    error: CartSyncError
    if isinstance(exc, APIError):
        code = str(exc.code) if exc.code is not None else ""
        status = _api_error_status(exc)
        message = exc.message or str(exc)
        if code in SCHEMA_MISSING_CODES:
            error = SchemaMissingError(f"{ERROR_SCHEMA_MISSING} ({message})", operation)
        elif code in UNAUTHENTICATED_CODES or status in (401, 403):
            error = UnauthenticatedError(message, operation)
        elif code == PGRST_NO_ROWS:
            error = RecordNotFoundError(message, operation)
        elif code in TRANSIENT_CODES or status in TRANSIENT_STATUS_CODES or (status is not None and status >= 500):
            error = TransientError(message, operation)
        else:
            error = UnknownSyncError(message, operation)
    elif isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (401, 403):
            error = UnauthenticatedError(str(exc), operation)
        elif status in TRANSIENT_STATUS_CODES or status >= 500:
            error = TransientError(str(exc), operation)
        else:
            error = UnknownSyncError(str(exc), operation)
    elif isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        error = TransientError(str(exc) or ERROR_TRANSIENT, operation)
    else:
        error = UnknownSyncError(str(exc) or ERROR_UNKNOWN, operation)

    error.__cause__ = exc
    return error


def describe(error: Any) -> str:
    """Short user-facing text for a notification."""
    if isinstance(error, SchemaMissingError):
        return "Your cart could not be saved right now."
    if isinstance(error, UnauthenticatedError):
        return "Please sign in again to save your cart."
    if isinstance(error, TransientError):
        return "Your cart could not be saved. We'll keep your changes on this device."
    return "Something went wrong while saving your cart."
