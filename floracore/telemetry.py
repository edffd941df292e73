"""
Ledger telemetry.

Operational signals only: operation names, outcomes and latencies.
No DIDs, no hashes, no clinical payloads.
"""
import logging
from typing import Literal, Optional

from azure.monitor.opentelemetry import configure_azure_monitor
from opentelemetry.trace import get_current_span

logger = logging.getLogger("floracore.telemetry")

LedgerOutcome = Literal["finalized", "unavailable", "rejected", "timeout", "invalid"]

LEDGER_OUTCOMES = ("finalized", "unavailable", "rejected", "timeout", "invalid")


def init_telemetry(connection_string: Optional[str]) -> bool:
    """
    Initialize Azure Application Insights via OpenTelemetry.
    Returns False (telemetry disabled) when no connection string is configured.
    """
    if not connection_string:
        return False  # Telemetry disabled (local / tests)

    configure_azure_monitor(connection_string=connection_string)
    logger.info("Azure Monitor telemetry configured")
    return True


def emit_ledger_write_telemetry(
    operation: str,
    outcome: LedgerOutcome,
    latency_ms: int,
):
    """
    Emit a single span event per ledger write attempt.

    Attributes are locked: operation, outcome, latency_ms.
    """
    assert isinstance(latency_ms, int), "latency_ms must be int"
    assert outcome in LEDGER_OUTCOMES, f"outcome must be one of {LEDGER_OUTCOMES}, got {outcome}"

    span = get_current_span()
    if not span:
        return

    span.add_event(
        name="floracore.ledger_write",
        attributes={
            "operation": operation,
            "outcome": outcome,
            "latency_ms": latency_ms,
        }
    )


def scrub_exception_for_telemetry(exception: Exception) -> str:
    """
    Exception messages may carry DIDs or payload fragments.
    Only the class name leaves the process.
    """
    return type(exception).__name__


def emit_exception_telemetry(exception: Exception):
    span = get_current_span()
    if not span:
        return

    span.add_event(
        name="floracore.exception",
        attributes={
            "exception_type": scrub_exception_for_telemetry(exception)
        }
    )
