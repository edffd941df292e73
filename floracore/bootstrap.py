import logging
from dataclasses import dataclass
from typing import Callable, Optional

from floracore.audit.audit_log import AuditLog, epoch_millis
from floracore.config import Settings, load_settings
from floracore.identifiers import IdGenerator
from floracore.ledger.config import resolve_ledger_gateway
from floracore.ledger.gateway import LedgerGateway
from floracore.orchestrator.anchoring import AnchoringOrchestrator
from floracore.orchestrator.consent import ConsentWorkflow
from floracore.storage import InMemoryRecordStore, RecordStore

logger = logging.getLogger("floracore.bootstrap")


@dataclass
class Container:
    settings: Settings
    store: RecordStore
    ledger: LedgerGateway
    audit_log: AuditLog
    orchestrator: AnchoringOrchestrator
    consents: ConsentWorkflow


def build_container(
    settings: Optional[Settings] = None,
    ledger: Optional[LedgerGateway] = None,
    store: Optional[RecordStore] = None,
    ids: Optional[IdGenerator] = None,
    clock: Callable[[], int] = epoch_millis,
) -> Container:
    """
    Wire one store, one ledger gateway and one audit log into the
    orchestrator and consent workflow. The ledger is resolved here, once.
    """
    settings = settings or load_settings()
    ledger = ledger or resolve_ledger_gateway(settings)
    store = store or InMemoryRecordStore()
    ids = ids or IdGenerator()
    audit_log = AuditLog(clock=clock)

    logger.info(f"Ledger available: {ledger.available}")

    return Container(
        settings=settings,
        store=store,
        ledger=ledger,
        audit_log=audit_log,
        orchestrator=AnchoringOrchestrator(store, ledger, audit_log, ids=ids, clock=clock),
        consents=ConsentWorkflow(store, ledger, audit_log, ids=ids, clock=clock),
    )
