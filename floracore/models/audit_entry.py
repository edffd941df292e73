from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class AuditEntry:
    """
    One domain event. Append-only; `sequence` gives the total insertion order.
    """
    sequence: int
    action: str
    timestamp: int
    ref_id: Optional[str] = None
    tx_hash: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
