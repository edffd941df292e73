"""
In-process ledger with the same contract semantics as the deployed
registry contracts. Used for local development and tests; selected with
LEDGER_BACKEND=simulated.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Tuple

from floracore.audit.hash_utils import fingerprint_document
from floracore.errors import LedgerRejected
from floracore.ledger.gateway import LedgerGateway
from floracore.models.receipt import ConsentLedgerStatus, LedgerReceipt

logger = logging.getLogger("floracore.ledger.simulated")


@dataclass(frozen=True)
class SimulatedTransaction:
    operation: str
    params: Dict[str, str]
    receipt: LedgerReceipt


class SimulatedLedger(LedgerGateway):
    """
    One transaction per block; every write is final as soon as it returns.

    Contract rules enforced here:
    - RecordRegistry: a record hash can be anchored once.
    - VCValidator: the issuer must be a registered vet address and the
      hash must already be anchored.
    - ConsentManager: only a granted consent can be revoked.
    """

    def __init__(self, chain_id: int = 43113):
        self.chain_id = chain_id
        self._lock = threading.Lock()
        self._block_number = 0
        self._anchors: Dict[str, Dict[str, str]] = {}
        self._vets: Dict[str, Dict[str, str]] = {}
        self._consents: Dict[Tuple[str, str], Dict[str, str]] = {}
        self._transactions: List[SimulatedTransaction] = []

    @property
    def transactions(self) -> List[SimulatedTransaction]:
        with self._lock:
            return list(self._transactions)

    def transaction_count(self, operation: str) -> int:
        return sum(1 for tx in self.transactions if tx.operation == operation)

    def is_anchored(self, record_hash: str) -> bool:
        with self._lock:
            return record_hash in self._anchors

    # -------------------------------
    # LedgerGateway hooks
    # -------------------------------
    def _submit(self, operation: str, params: Dict[str, str]) -> LedgerReceipt:
        with self._lock:
            apply = getattr(self, f"_apply_{operation}")
            apply(params)

            self._block_number += 1
            tx_hash = fingerprint_document({
                "chainId": self.chain_id,
                "blockNumber": self._block_number,
                "operation": operation,
                "params": params,
            })
            receipt = LedgerReceipt(tx_hash=tx_hash, block_number=self._block_number)
            self._transactions.append(
                SimulatedTransaction(operation=operation, params=dict(params), receipt=receipt)
            )

        logger.debug(f"simulated {operation} block={receipt.block_number}")
        return receipt

    def _read_consent(self, subject_did: str, grantee_did: str) -> ConsentLedgerStatus:
        with self._lock:
            consent = self._consents.get((subject_did, grantee_did))
        if consent is None:
            return ConsentLedgerStatus.NONE
        return ConsentLedgerStatus(consent["status"])

    # -------------------------------
    # Contract state transitions (called with the lock held)
    # -------------------------------
    def _apply_anchor_record(self, params: Dict[str, str]) -> None:
        if params["record_hash"] in self._anchors:
            raise LedgerRejected("anchor_record", "record hash already anchored")
        self._anchors[params["record_hash"]] = dict(params)

    def _apply_register_vet(self, params: Dict[str, str]) -> None:
        # Re-registration updates the DID / metadata for the address
        self._vets[params["vet_addr"].lower()] = {
            "vet_did": params["vet_did"],
            "metadata_uri": params["metadata_uri"],
        }

    def _apply_verify_mock(self, params: Dict[str, str]) -> None:
        if params["issuer"].lower() not in self._vets:
            raise LedgerRejected("verify_mock", "issuer is not a registered veterinarian")
        if params["record_hash"] not in self._anchors:
            raise LedgerRejected("verify_mock", "record hash is not anchored")

    def _apply_grant_consent(self, params: Dict[str, str]) -> None:
        key = (params["subject_did"], params["grantee_did"])
        self._consents[key] = {
            "status": ConsentLedgerStatus.GRANTED.value,
            "consent_hash": params["consent_hash"],
        }

    def _apply_revoke_consent(self, params: Dict[str, str]) -> None:
        key = (params["subject_did"], params["grantee_did"])
        consent = self._consents.get(key)
        if consent is None or consent["status"] != ConsentLedgerStatus.GRANTED.value:
            raise LedgerRejected("revoke_consent", "no active consent to revoke")
        consent["status"] = ConsentLedgerStatus.REVOKED.value
