import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from floracore.models.audit_entry import AuditEntry
from floracore.models.receipt import LedgerReceipt

logger = logging.getLogger("floracore.audit")


def epoch_millis() -> int:
    return int(time.time() * 1000)


class AuditLog:
    """
    Append-only sequence of domain events.

    One entry per state-changing operation, written only after the
    operation's outcome is known. Entries are never mutated or removed.
    """

    def __init__(self, clock: Callable[[], int] = epoch_millis):
        self._clock = clock
        self._entries: list = []
        self._lock = threading.Lock()

    def append(
        self,
        action: str,
        ref_id: Optional[str] = None,
        receipt: Optional[LedgerReceipt] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        with self._lock:
            entry = AuditEntry(
                sequence=len(self._entries) + 1,
                action=action,
                timestamp=self._clock(),
                ref_id=ref_id,
                tx_hash=receipt.tx_hash if receipt else None,
                metadata=dict(metadata or {}),
            )
            self._entries.append(entry)

        logger.info(
            f"ACTION={entry.action} REF={entry.ref_id} TX={entry.tx_hash} SEQ={entry.sequence}"
        )
        return entry

    def entries(self) -> Tuple[AuditEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
