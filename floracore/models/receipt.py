from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class LedgerReceipt:
    """
    Proof of a finalized ledger write.
    Only writes that produced one of these may be persisted as having happened.
    """
    tx_hash: str
    block_number: int


class ConsentLedgerStatus(str, Enum):
    NONE = "none"
    GRANTED = "granted"
    REVOKED = "revoked"
