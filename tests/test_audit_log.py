from concurrent.futures import ThreadPoolExecutor
from dataclasses import FrozenInstanceError

import pytest

from floracore.audit.audit_log import AuditLog
from floracore.models.receipt import LedgerReceipt


def test_entries_are_append_only_and_ordered(clock):
    log = AuditLog(clock=clock)
    receipt = LedgerReceipt(tx_hash="0xabc", block_number=7)

    first = log.append("PET_REGISTERED", ref_id="pet-1")
    second = log.append("ENCOUNTER_ANCHORED", ref_id="enc-1", receipt=receipt, metadata={"kind": "Encounter"})

    assert log.entries() == (first, second)
    assert second.tx_hash == "0xabc"
    assert second.timestamp > first.timestamp
    assert (first.sequence, second.sequence) == (1, 2)


def test_snapshot_is_immutable(clock):
    log = AuditLog(clock=clock)
    log.append("OWNER_REGISTERED")
    snapshot = log.entries()

    log.append("PET_REGISTERED")

    assert len(snapshot) == 1
    with pytest.raises(FrozenInstanceError):
        snapshot[0].action = "TAMPERED"


def test_metadata_is_copied(clock):
    log = AuditLog(clock=clock)
    metadata = {"petId": "pet-1"}
    entry = log.append("APPOINTMENT_CREATED", metadata=metadata)

    metadata["petId"] = "changed"
    assert entry.metadata == {"petId": "pet-1"}


def test_concurrent_appends_keep_a_total_order():
    log = AuditLog(clock=lambda: 0)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: log.append("EVENT", ref_id=str(i)), range(200)))

    assert [e.sequence for e in log.entries()] == list(range(1, 201))
