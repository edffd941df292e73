import json
import logging
import os

from floracore.config import Settings
from floracore.ledger.gateway import DisabledLedgerGateway, LedgerGateway
from floracore.ledger.relay import RelayLedgerGateway
from floracore.ledger.simulated import SimulatedLedger

logger = logging.getLogger("floracore.ledger")


def _load_contract_addresses(path: str) -> dict:
    """
    deployments.json as written by the deploy script:
        {"network": "...", "contracts": {"RecordRegistry": "0x..", ...}}
    """
    with open(path, "r", encoding="utf-8") as f:
        deployments = json.load(f)
    contracts = deployments.get("contracts")
    if not isinstance(contracts, dict):
        raise ValueError("deployments file has no 'contracts' mapping")
    return contracts


def resolve_ledger_gateway(settings: Settings) -> LedgerGateway:
    """
    Resolve the ledger once at startup.

    Any missing piece of configuration yields a DisabledLedgerGateway for
    the rest of the process lifetime. There is no later re-resolution.
    """
    backend = settings.ledger_backend

    if backend == "simulated":
        logger.warning("Using the in-process simulated ledger. Receipts are not on any real chain.")
        return SimulatedLedger()

    if backend == "disabled":
        logger.info("Ledger explicitly disabled.")
        return DisabledLedgerGateway("ledger disabled by configuration")

    if backend != "relay":
        logger.warning(f"Unknown LEDGER_BACKEND '{backend}'. On-chain disabled.")
        return DisabledLedgerGateway(f"unknown ledger backend '{backend}'")

    if not settings.rpc_url or not settings.relay_token:
        logger.warning("RPC_URL and/or LEDGER_RELAY_TOKEN missing. On-chain disabled.")
        return DisabledLedgerGateway("RPC_URL or LEDGER_RELAY_TOKEN missing")

    if not os.path.exists(settings.deployments_path):
        logger.warning(f"{settings.deployments_path} not found. On-chain disabled until contracts are deployed.")
        return DisabledLedgerGateway("contract deployments not found")

    try:
        contracts = _load_contract_addresses(settings.deployments_path)
        gateway = RelayLedgerGateway(
            rpc_url=settings.rpc_url,
            relay_token=settings.relay_token,
            contracts=contracts,
            timeout_seconds=settings.ledger_timeout_seconds,
        )
    except (OSError, ValueError) as e:
        logger.warning(f"Could not load contract deployments ({type(e).__name__}: {e}). On-chain disabled.")
        return DisabledLedgerGateway("contract deployments unreadable")

    logger.info(f"Ledger relay configured at {settings.rpc_url}")
    return gateway
