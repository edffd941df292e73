from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from floracore.models.receipt import LedgerReceipt


# =========================================================
# Anchored clinical records (immutable once persisted)
# =========================================================
@dataclass(frozen=True)
class EncounterRecord:
    id: str
    pet_id: str
    uri: str
    record_hash: str
    receipt: LedgerReceipt
    created_at: int

    vet_did: Optional[str] = None
    clinic_did: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    vitals: Optional[Dict[str, Any]] = None
    attachments: List[Any] = field(default_factory=list)


@dataclass(frozen=True)
class VaccineRecord:
    """
    Vaccination anchored on the ledger.

    `verify_receipt` is None when no verifying vet address was supplied,
    or when the verify write failed after the anchor succeeded.
    """
    id: str
    pet_id: str
    vaccine: Dict[str, Any]
    uri: str
    record_hash: str
    anchor_receipt: LedgerReceipt
    created_at: int

    vet_did: Optional[str] = None
    clinic_did: Optional[str] = None
    attachments: List[Any] = field(default_factory=list)
    verify_receipt: Optional[LedgerReceipt] = None


@dataclass(frozen=True)
class Credential:
    """
    Generic verifiable claim (pedigree, health certificate, ownership...).

    `receipt` is None when the credential was issued while the ledger
    was unavailable.
    """
    id: str
    pet_id: str
    type: str
    data: Dict[str, Any]
    record_hash: str
    issued_at: int

    uri: Optional[str] = None
    receipt: Optional[LedgerReceipt] = None


# Off-chain only
@dataclass(frozen=True)
class Appointment:
    id: str
    pet_id: str
    created_at: int
    vet_did: Optional[str] = None
    clinic_did: Optional[str] = None
    reason: Optional[str] = None
