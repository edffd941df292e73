import pytest
import requests

from floracore.errors import LedgerRejected, LedgerTimeout, LedgerUnavailable, ValidationError
from floracore.ledger.gateway import DisabledLedgerGateway
from floracore.ledger.relay import RelayLedgerGateway
from floracore.ledger.simulated import SimulatedLedger
from floracore.models.receipt import ConsentLedgerStatus, LedgerReceipt
from pet_samples import SAMPLE_HASH, VET_ADDR, VET_DID

CONTRACTS = {
    "RecordRegistry": "0x1111111111111111111111111111111111111111",
    "VetRegistry": "0x2222222222222222222222222222222222222222",
    "ConsentManager": "0x3333333333333333333333333333333333333333",
    "VCValidator": "0x4444444444444444444444444444444444444444",
}


# ============================================================
# DISABLED GATEWAY
# ============================================================

def test_disabled_gateway_fails_fast_without_io(mocker):
    post = mocker.patch("requests.Session.post")
    gateway = DisabledLedgerGateway("no deployments")

    assert gateway.available is False
    with pytest.raises(LedgerUnavailable, match="no deployments"):
        gateway.anchor_record("did:pet", "did:vet", "Vaccine", SAMPLE_HASH, "")
    with pytest.raises(LedgerUnavailable):
        gateway.consent_status("did:pet", "did:clinic")

    post.assert_not_called()


def test_malformed_hash_is_rejected_before_backend(mocker):
    ledger = SimulatedLedger()
    submit = mocker.spy(ledger, "_submit")

    with pytest.raises(ValidationError):
        ledger.grant_consent("did:pet", "did:clinic", "0x1234")

    submit.assert_not_called()
    assert ledger.transactions == []


def test_unknown_operation_and_missing_arguments_are_rejected():
    ledger = SimulatedLedger()

    with pytest.raises(ValidationError, match="Unknown ledger operation"):
        ledger.write("mint", subject_did="did:pet")
    with pytest.raises(ValidationError, match="missing"):
        ledger.write("revoke_consent", subject_did="did:pet")
    with pytest.raises(ValidationError, match="required"):
        ledger.revoke_consent("did:pet", "  ")


def test_blank_issuer_and_uri_are_accepted():
    ledger = SimulatedLedger()
    receipt = ledger.anchor_record("did:pet", "", "PedigreeOficial", SAMPLE_HASH, None)
    assert receipt.block_number == 1


# ============================================================
# SIMULATED LEDGER
# ============================================================

def test_simulated_receipts_are_finalized_and_ordered():
    ledger = SimulatedLedger()
    first = ledger.anchor_record("did:pet", "did:vet", "Vaccine", "0x" + "01" * 32, "")
    second = ledger.anchor_record("did:pet", "did:vet", "Vaccine", "0x" + "02" * 32, "")

    assert isinstance(first, LedgerReceipt)
    assert second.block_number == first.block_number + 1
    assert first.tx_hash != second.tx_hash
    assert ledger.transaction_count("anchor_record") == 2


def test_simulated_rejects_duplicate_anchor():
    ledger = SimulatedLedger()
    ledger.anchor_record("did:pet", "did:vet", "Vaccine", SAMPLE_HASH, "")

    with pytest.raises(LedgerRejected, match="already anchored"):
        ledger.anchor_record("did:pet", "did:vet", "Vaccine", SAMPLE_HASH, "")
    assert ledger.transaction_count("anchor_record") == 1


def test_simulated_verify_requires_registered_vet_and_anchor():
    ledger = SimulatedLedger()

    with pytest.raises(LedgerRejected, match="registered veterinarian"):
        ledger.verify_mock(VET_ADDR, "did:pet", "VC:Vaccine", SAMPLE_HASH)

    ledger.register_vet(VET_ADDR, VET_DID, "")
    with pytest.raises(LedgerRejected, match="not anchored"):
        ledger.verify_mock(VET_ADDR.lower(), "did:pet", "VC:Vaccine", SAMPLE_HASH)

    ledger.anchor_record("did:pet", VET_DID, "Vaccine", SAMPLE_HASH, "")
    receipt = ledger.verify_mock(VET_ADDR, "did:pet", "VC:Vaccine", SAMPLE_HASH)
    assert receipt.block_number == 3


def test_simulated_consent_lifecycle():
    ledger = SimulatedLedger()
    assert ledger.consent_status("did:pet", "did:clinic") == ConsentLedgerStatus.NONE

    with pytest.raises(LedgerRejected):
        ledger.revoke_consent("did:pet", "did:clinic")

    ledger.grant_consent("did:pet", "did:clinic", SAMPLE_HASH)
    assert ledger.consent_status("did:pet", "did:clinic") == ConsentLedgerStatus.GRANTED

    ledger.revoke_consent("did:pet", "did:clinic")
    assert ledger.consent_status("did:pet", "did:clinic") == ConsentLedgerStatus.REVOKED


# ============================================================
# RELAY GATEWAY
# ============================================================

@pytest.fixture
def relay():
    return RelayLedgerGateway(
        rpc_url="https://relay.floracore.example/",
        relay_token="test-token",
        contracts=CONTRACTS,
        timeout_seconds=5.0,
    )


def _response(mocker, status_code, body):
    response = mocker.Mock(spec=requests.Response)
    response.status_code = status_code
    response.json.return_value = body
    return response


def test_relay_requires_all_contract_addresses():
    with pytest.raises(ValueError, match="VCValidator"):
        RelayLedgerGateway("https://relay", "token", {k: v for k, v in CONTRACTS.items() if k != "VCValidator"})


def test_relay_posts_operation_to_owning_contract(mocker, relay):
    post = mocker.patch.object(
        relay._session, "post",
        return_value=_response(mocker, 200, {"txHash": "0xabc", "blockNumber": 42}),
    )

    receipt = relay.grant_consent("did:pet", "did:clinic", SAMPLE_HASH)

    assert receipt == LedgerReceipt(tx_hash="0xabc", block_number=42)
    url = post.call_args[0][0]
    assert url == f"https://relay.floracore.example/contracts/{CONTRACTS['ConsentManager']}/grant_consent"
    assert post.call_args[1]["json"] == {
        "subject_did": "did:pet",
        "grantee_did": "did:clinic",
        "consent_hash": SAMPLE_HASH,
    }
    assert post.call_args[1]["timeout"] == 5.0


@pytest.mark.parametrize("status_code", [400, 403, 409])
def test_relay_client_errors_are_rejections(mocker, relay, status_code):
    mocker.patch.object(
        relay._session, "post",
        return_value=_response(mocker, status_code, {"error": "caller is not a vet"}),
    )
    with pytest.raises(LedgerRejected, match="caller is not a vet"):
        relay.verify_mock(VET_ADDR, "did:pet", "VC:Vaccine", SAMPLE_HASH)


def test_relay_server_errors_are_unavailability(mocker, relay):
    mocker.patch.object(relay._session, "post", return_value=_response(mocker, 503, {}))
    with pytest.raises(LedgerUnavailable):
        relay.anchor_record("did:pet", "", "Vaccine", SAMPLE_HASH, "")


def test_relay_connection_error_is_unavailability(mocker, relay):
    mocker.patch.object(relay._session, "post", side_effect=requests.exceptions.ConnectionError("refused"))
    with pytest.raises(LedgerUnavailable):
        relay.anchor_record("did:pet", "", "Vaccine", SAMPLE_HASH, "")


def test_relay_timeout_is_distinct(mocker, relay):
    mocker.patch.object(relay._session, "post", side_effect=requests.exceptions.ReadTimeout("slow"))
    with pytest.raises(LedgerTimeout):
        relay.anchor_record("did:pet", "", "Vaccine", SAMPLE_HASH, "")


def test_relay_response_without_block_is_not_finalized(mocker, relay):
    mocker.patch.object(relay._session, "post", return_value=_response(mocker, 200, {"txHash": "0xabc"}))
    with pytest.raises(LedgerTimeout, match="no finalized receipt"):
        relay.anchor_record("did:pet", "", "Vaccine", SAMPLE_HASH, "")


def test_relay_consent_status_maps_contract_codes(mocker, relay):
    response = _response(mocker, 200, {"status": 2})
    get = mocker.patch.object(relay._session, "get", return_value=response)

    assert relay.consent_status("did:pet", "did:clinic") == ConsentLedgerStatus.REVOKED
    assert get.call_args[1]["params"] == {"subjectDID": "did:pet", "granteeDID": "did:clinic"}


@pytest.mark.parametrize("block_number, expected", [("0x1a", 26), ("26", 26), (26, 26)])
def test_relay_accepts_hex_and_decimal_block_numbers(mocker, relay, block_number, expected):
    mocker.patch.object(
        relay._session, "post",
        return_value=_response(mocker, 200, {"txHash": "0xabc", "blockNumber": block_number}),
    )
    assert relay.anchor_record("did:pet", "", "Vaccine", SAMPLE_HASH, "").block_number == expected


@pytest.mark.parametrize("block_number", ["latest", "0xzz", True, 1.5, {"n": 1}])
def test_relay_unreadable_block_number_is_unconfirmed(mocker, relay, block_number):
    mocker.patch.object(
        relay._session, "post",
        return_value=_response(mocker, 200, {"txHash": "0xabc", "blockNumber": block_number}),
    )
    with pytest.raises(LedgerTimeout, match="unreadable block number"):
        relay.anchor_record("did:pet", "", "Vaccine", SAMPLE_HASH, "")


def test_relay_consent_status_accepts_hex_and_rejects_garbage(mocker, relay):
    get = mocker.patch.object(relay._session, "get", return_value=_response(mocker, 200, {"status": "0x1"}))
    assert relay.consent_status("did:pet", "did:clinic") == ConsentLedgerStatus.GRANTED

    get.return_value = _response(mocker, 200, {"status": "granted"})
    with pytest.raises(LedgerUnavailable, match="unreadable consent status"):
        relay.consent_status("did:pet", "did:clinic")
