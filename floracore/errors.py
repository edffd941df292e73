"""
Error taxonomy for the record-keeping core.

Every error is surfaced to the caller verbatim. The core never retries;
retry policy, if any, belongs to whoever calls it.
"""


class FloracoreError(Exception):
    """Base class for all domain errors."""


class ValidationError(FloracoreError):
    """Malformed or missing required input, raised before any side effect."""


class NotFoundError(FloracoreError):
    """A referenced entity does not exist in the record store."""


class ConflictError(FloracoreError):
    """Secondary-key uniqueness violated, or a lost race on a non-idempotent write."""


class ConsentNotGranted(FloracoreError):
    """The ledger does not hold an active consent for the requesting grantee."""


class LedgerError(FloracoreError):
    """Base class for ledger write/read failures."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class LedgerUnavailable(LedgerError):
    """Gateway is not configured or not reachable. No write was attempted or accepted."""


class LedgerRejected(LedgerError):
    """The write reached the ledger and was refused."""


class LedgerTimeout(LedgerError):
    """The write was submitted but finalization was not observed."""
