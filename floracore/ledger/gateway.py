import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from floracore.audit.hash_utils import require_fingerprint
from floracore.errors import (
    LedgerRejected,
    LedgerTimeout,
    LedgerUnavailable,
    ValidationError,
)
from floracore.models.receipt import ConsentLedgerStatus, LedgerReceipt
from floracore.telemetry import emit_ledger_write_telemetry

logger = logging.getLogger("floracore.ledger")

# Named write operations and their argument lists, in call order
OPERATIONS = {
    "anchor_record": ("subject_did", "issuer_did", "kind", "record_hash", "uri"),
    "register_vet": ("vet_addr", "vet_did", "metadata_uri"),
    "verify_mock": ("issuer", "subject_did", "kind", "record_hash"),
    "grant_consent": ("subject_did", "grantee_did", "consent_hash"),
    "revoke_consent": ("subject_did", "grantee_did"),
}

# Contract that owns each operation
OPERATION_CONTRACTS = {
    "anchor_record": "RecordRegistry",
    "register_vet": "VetRegistry",
    "verify_mock": "VCValidator",
    "grant_consent": "ConsentManager",
    "revoke_consent": "ConsentManager",
}

HASH_ARGUMENTS = ("record_hash", "consent_hash")

# The contracts accept "" for these
BLANK_ALLOWED = ("issuer_did", "uri", "metadata_uri")


class LedgerGateway(ABC):
    """
    Opaque transactional write service over the ledger contracts.

    A write either returns a finalized LedgerReceipt or raises
    LedgerUnavailable, LedgerRejected or LedgerTimeout. Arguments are
    fully validated before the backend is touched.
    """

    available: bool = True

    def write(self, operation: str, **args: Any) -> LedgerReceipt:
        params = self._validate(operation, args)

        start_time = time.perf_counter()
        outcome = "invalid"
        try:
            receipt = self._submit(operation, params)
            if receipt is None or not receipt.tx_hash or receipt.block_number is None:
                raise LedgerTimeout(operation, "write produced no finalized receipt")
            outcome = "finalized"
        except LedgerUnavailable:
            outcome = "unavailable"
            raise
        except LedgerRejected:
            outcome = "rejected"
            raise
        except LedgerTimeout:
            outcome = "timeout"
            raise
        finally:
            latency_ms = int((time.perf_counter() - start_time) * 1000)
            emit_ledger_write_telemetry(
                operation=operation,
                outcome=outcome,
                latency_ms=latency_ms,
            )

        logger.info(
            f"LEDGER_WRITE OP={operation} TX={receipt.tx_hash} BLOCK={receipt.block_number} "
            f"DURATION={latency_ms}ms"
        )
        return receipt

    def _validate(self, operation: str, args: Dict[str, Any]) -> Dict[str, Any]:
        if operation not in OPERATIONS:
            raise ValidationError(f"Unknown ledger operation '{operation}'")

        expected = OPERATIONS[operation]
        missing = [name for name in expected if name not in args]
        unexpected = [name for name in args if name not in expected]
        if missing or unexpected:
            raise ValidationError(
                f"{operation} expects {list(expected)}; "
                f"missing={missing} unexpected={unexpected}"
            )

        params = {}
        for name in expected:
            value = args[name]
            if value is None and name in BLANK_ALLOWED:
                value = ""
            if not isinstance(value, str):
                raise ValidationError(f"{operation}.{name} must be a string")
            if name in HASH_ARGUMENTS:
                require_fingerprint(value, field=name)
            elif not value.strip() and name not in BLANK_ALLOWED:
                raise ValidationError(f"{operation}.{name} is required")
            params[name] = value
        return params

    # -------------------------------
    # Typed operations
    # -------------------------------
    def anchor_record(
        self,
        subject_did: str,
        issuer_did: str,
        kind: str,
        record_hash: str,
        uri: Optional[str] = "",
    ) -> LedgerReceipt:
        return self.write(
            "anchor_record",
            subject_did=subject_did,
            issuer_did=issuer_did,
            kind=kind,
            record_hash=record_hash,
            uri=uri,
        )

    def register_vet(self, vet_addr: str, vet_did: str, metadata_uri: Optional[str] = "") -> LedgerReceipt:
        return self.write("register_vet", vet_addr=vet_addr, vet_did=vet_did, metadata_uri=metadata_uri)

    def verify_mock(self, issuer: str, subject_did: str, kind: str, record_hash: str) -> LedgerReceipt:
        return self.write(
            "verify_mock",
            issuer=issuer,
            subject_did=subject_did,
            kind=kind,
            record_hash=record_hash,
        )

    def grant_consent(self, subject_did: str, grantee_did: str, consent_hash: str) -> LedgerReceipt:
        return self.write(
            "grant_consent",
            subject_did=subject_did,
            grantee_did=grantee_did,
            consent_hash=consent_hash,
        )

    def revoke_consent(self, subject_did: str, grantee_did: str) -> LedgerReceipt:
        return self.write("revoke_consent", subject_did=subject_did, grantee_did=grantee_did)

    def consent_status(self, subject_did: str, grantee_did: str) -> ConsentLedgerStatus:
        if not subject_did or not grantee_did:
            raise ValidationError("consent_status requires subject_did and grantee_did")
        return self._read_consent(subject_did, grantee_did)

    # -------------------------------
    # Backend hooks
    # -------------------------------
    @abstractmethod
    def _submit(self, operation: str, params: Dict[str, str]) -> LedgerReceipt:
        """Submit a validated write and block until it is finalized."""
        pass

    @abstractmethod
    def _read_consent(self, subject_did: str, grantee_did: str) -> ConsentLedgerStatus:
        pass


class DisabledLedgerGateway(LedgerGateway):
    """
    Permanent fail-closed gateway used when ledger configuration is missing.
    Never performs I/O.
    """

    available = False

    def __init__(self, reason: str = "ledger not configured"):
        self.reason = reason

    def _submit(self, operation: str, params: Dict[str, str]) -> LedgerReceipt:
        raise LedgerUnavailable(operation, self.reason)

    def _read_consent(self, subject_did: str, grantee_did: str) -> ConsentLedgerStatus:
        raise LedgerUnavailable("consent_status", self.reason)
