from dataclasses import dataclass
from enum import Enum
from typing import Optional

from floracore.models.receipt import LedgerReceipt


class ConsentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"  # terminal


@dataclass(frozen=True)
class ConsentRequest:
    """
    Off-chain consent request.

    consent_hash and receipt are present iff status is ACCEPTED; both are
    set in the same swap that moves the request out of PENDING.
    """
    id: str
    pet_id_or_hash: str
    status: ConsentStatus
    created_at: int
    updated_at: int

    vet_did: Optional[str] = None
    clinic_did: Optional[str] = None
    subject_did: Optional[str] = None
    grantee_did: Optional[str] = None
    consent_hash: Optional[str] = None
    receipt: Optional[LedgerReceipt] = None

    @property
    def is_accepted(self) -> bool:
        return self.status == ConsentStatus.ACCEPTED
