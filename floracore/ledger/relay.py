import logging
from typing import Dict

import requests

from floracore.errors import LedgerRejected, LedgerTimeout, LedgerUnavailable
from floracore.ledger.gateway import OPERATION_CONTRACTS, LedgerGateway
from floracore.models.receipt import ConsentLedgerStatus, LedgerReceipt

logger = logging.getLogger("floracore.ledger.relay")

# ConsentManager.getConsent status codes
CONSENT_STATUS_CODES = {
    0: ConsentLedgerStatus.NONE,
    1: ConsentLedgerStatus.GRANTED,
    2: ConsentLedgerStatus.REVOKED,
}


class RelayLedgerGateway(LedgerGateway):
    """
    Submits contract calls to a signing transaction relay over HTTP.

    The relay holds the signing account, broadcasts, and answers
    only once the transaction is mined:
        POST {rpc_url}/contracts/{address}/{operation}  -> {"txHash", "blockNumber"}
        GET  {rpc_url}/contracts/{address}/consent?subjectDID=&granteeDID=
    """

    def __init__(
        self,
        rpc_url: str,
        relay_token: str,
        contracts: Dict[str, str],
        timeout_seconds: float = 30.0,
    ):
        missing = [name for name in set(OPERATION_CONTRACTS.values()) if not contracts.get(name)]
        if missing:
            raise ValueError(f"Missing contract addresses: {sorted(missing)}")

        self.rpc_url = rpc_url.rstrip("/")
        self.contracts = dict(contracts)
        self.timeout_seconds = timeout_seconds
        self._session = requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
            "Authorization": f"Bearer {relay_token}",
        })

    def _contract_url(self, contract: str, path: str) -> str:
        return f"{self.rpc_url}/contracts/{self.contracts[contract]}/{path}"

    def _submit(self, operation: str, params: Dict[str, str]) -> LedgerReceipt:
        url = self._contract_url(OPERATION_CONTRACTS[operation], operation)

        try:
            response = self._session.post(url, json=params, timeout=self.timeout_seconds)
        except requests.exceptions.Timeout as e:
            raise LedgerTimeout(operation, f"no finalization within {self.timeout_seconds}s") from e
        except requests.exceptions.RequestException as e:
            raise LedgerUnavailable(operation, f"relay unreachable: {type(e).__name__}") from e

        if 400 <= response.status_code < 500:
            raise LedgerRejected(operation, f"relay refused write ({response.status_code}): {_reason(response)}")
        if response.status_code >= 500:
            raise LedgerUnavailable(operation, f"relay error ({response.status_code})")

        body = _json_body(response)
        tx_hash = body.get("txHash")
        block_number = body.get("blockNumber")
        if not tx_hash or block_number is None:
            raise LedgerTimeout(operation, "relay returned no finalized receipt")

        try:
            block_number = _quantity(block_number)
        except ValueError as e:
            raise LedgerTimeout(operation, f"unreadable block number {block_number!r}") from e

        return LedgerReceipt(tx_hash=str(tx_hash), block_number=block_number)

    def _read_consent(self, subject_did: str, grantee_did: str) -> ConsentLedgerStatus:
        url = self._contract_url("ConsentManager", "consent")
        try:
            response = self._session.get(
                url,
                params={"subjectDID": subject_did, "granteeDID": grantee_did},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise LedgerTimeout("consent_status", "read timed out") from e
        except requests.exceptions.RequestException as e:
            raise LedgerUnavailable("consent_status", f"relay unreachable: {type(e).__name__}") from e

        status = _json_body(response).get("status", 0)
        try:
            code = _quantity(status)
        except ValueError as e:
            raise LedgerUnavailable("consent_status", f"unreadable consent status {status!r}") from e
        return CONSENT_STATUS_CODES.get(code, ConsentLedgerStatus.NONE)


def _json_body(response: requests.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _reason(response: requests.Response) -> str:
    return str(_json_body(response).get("error", "unknown"))


def _quantity(value) -> int:
    """
    Integer field from a relay body: JSON number, decimal string or
    0x-prefixed hex string (JSON-RPC quantity).
    """
    if isinstance(value, bool):
        raise ValueError(f"not a quantity: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        base = 16 if text.startswith("0x") else 10
        return int(text, base)
    raise ValueError(f"not a quantity: {value!r}")
