import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_DEPLOYMENTS_PATH = os.path.join("deployments", "deployments.json")


@dataclass(frozen=True)
class Settings:
    """
    Process-wide configuration, read once at startup.
    """
    ledger_backend: str = "relay"  # relay | simulated | disabled
    rpc_url: Optional[str] = None
    relay_token: Optional[str] = None
    deployments_path: str = DEFAULT_DEPLOYMENTS_PATH
    ledger_timeout_seconds: float = 30.0
    audit_log_file: str = "audit.log"
    appinsights_connection_string: Optional[str] = None


def load_settings() -> Settings:
    return Settings(
        ledger_backend=os.getenv("LEDGER_BACKEND", "relay").strip().lower(),
        rpc_url=os.getenv("RPC_URL") or None,
        relay_token=os.getenv("LEDGER_RELAY_TOKEN") or None,
        deployments_path=os.getenv("DEPLOYMENTS_PATH", DEFAULT_DEPLOYMENTS_PATH),
        ledger_timeout_seconds=float(os.getenv("LEDGER_TIMEOUT_SECONDS", "30")),
        audit_log_file=os.getenv("AUDIT_LOG_FILE", "audit.log"),
        appinsights_connection_string=os.getenv("AZURE_APPINSIGHTS_CONNECTION_STRING") or None,
    )
