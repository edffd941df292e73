import pytest
from fastapi.testclient import TestClient

from floracore.api.main import create_app
from pet_samples import CLINIC_DID, NINA, RABIES, SAMPLE_HASH, VET_ADDR, VET_DID


@pytest.fixture
def client(container):
    return TestClient(create_app(container))


@pytest.fixture
def offline_client(offline_container):
    return TestClient(create_app(offline_container))


@pytest.fixture
def pet_id(client):
    owner = client.post("/owners", json={"email": "owner@floracore.example", "phone": "+56 9 1"}).json()
    response = client.post("/pets", json={"owner_id": owner["owner_id"], **NINA})
    assert response.status_code == 200
    return response.json()["pet_id"]


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "online", "ledger_available": True}


def test_register_pet_returns_identity_hash(client):
    owner = client.post("/owners", json={"email": "a@b.example"}).json()
    data = client.post("/pets", json={"owner_id": owner["owner_id"], **NINA}).json()

    assert data["pet_did"] == NINA["did"]
    assert data["pet_hash"].startswith("0x") and len(data["pet_hash"]) == 66


def test_error_mapping(client, pet_id):
    owner = client.post("/owners", json={"email": "other@floracore.example"}).json()

    # Duplicate microchip
    response = client.post("/pets", json={"owner_id": owner["owner_id"], **NINA})
    assert response.status_code == 409

    # Unknown owner
    response = client.post("/pets", json={"owner_id": "ghost", **NINA})
    assert response.status_code == 404

    # Clinic scope without consent
    response = client.get(f"/pets/{pet_id}/basic", params={"scope": "clinic", "grantee_did": CLINIC_DID})
    assert response.status_code == 403


def test_anchor_rejects_malformed_hash(client):
    payload = {"subject_did": "did:pet", "issuer_did": "did:vet", "kind": "Vaccine", "record_hash": "0x1234"}
    assert client.post("/ledger/anchor", json=payload).status_code == 422


def test_anchor_lowercases_hash(client, ledger):
    payload = {
        "subject_did": "did:pet",
        "issuer_did": "did:vet",
        "kind": "Vaccine",
        "record_hash": "0x" + "AB" * 32,
    }
    response = client.post("/ledger/anchor", json=payload)

    assert response.status_code == 200
    assert response.json()["block_number"] == 1
    assert ledger.transactions[-1].params["record_hash"] == SAMPLE_HASH


def test_ledger_unavailable_maps_to_503(offline_client):
    payload = {"subject_did": "did:pet", "issuer_did": "did:vet", "kind": "Vaccine", "record_hash": SAMPLE_HASH}
    response = offline_client.post("/ledger/anchor", json=payload)

    assert response.status_code == 503
    assert "error" in response.json()


def test_ledger_rejection_maps_to_502(client):
    payload = {"subject_did": "did:pet", "grantee_did": CLINIC_DID}
    assert client.post("/ledger/consent/revoke", json=payload).status_code == 502


def test_vaccine_endpoint_reports_missing_verification(client, pet_id):
    response = client.post("/records/vaccines", json={
        "pet_id": pet_id,
        "vaccine": RABIES,
        "vet_addr": VET_ADDR,
        "vet_did": VET_DID,
    })

    assert response.status_code == 200
    data = response.json()
    assert data["anchor_receipt"]["tx_hash"].startswith("0x")
    assert data["verify_receipt"] is None


def test_credential_endpoint_works_offline(offline_client):
    owner = offline_client.post("/owners", json={"email": "off@floracore.example"}).json()
    pet = offline_client.post("/pets", json={"owner_id": owner["owner_id"], **NINA}).json()

    response = offline_client.post("/vc/add", json={"pet_id": pet["pet_id"], "type": "HealthCert", "data": {}})

    assert response.status_code == 200
    assert response.json()["receipt"] is None

    # Clinical anchoring still hard-fails
    response = offline_client.post("/records/encounters", json={"pet_id": pet["pet_id"]})
    assert response.status_code == 503


def test_consent_flow_over_http(client, pet_id):
    request = client.post("/consents/request", json={"pet_id_or_hash": pet_id, "clinic_did": CLINIC_DID}).json()
    assert request["status"] == "pending"

    first = client.post("/consents/accept", json={"request_id": request["request_id"]}).json()
    second = client.post("/consents/accept", json={"request_id": request["request_id"]}).json()

    assert first["status"] == "accepted"
    assert second["receipt"] == first["receipt"]

    stored = client.get(f"/consents/{request['request_id']}").json()
    assert stored["consent_hash"] == first["consent_hash"]

    basic = client.get(f"/pets/{pet_id}/basic", params={"scope": "clinic", "grantee_did": CLINIC_DID})
    assert basic.status_code == 200
    assert basic.json()["name"] == "Nina"


def test_public_views(client, pet_id):
    client.post("/vc/add", json={"pet_id": pet_id, "type": "HealthCert", "data": {"issuer": "SAG"}})

    resolved = client.get("/pets/resolve", params={"microchip": NINA["microchip"]}).json()
    assert resolved["id"] == pet_id

    verification = client.get(f"/verify/{NINA['microchip']}").json()
    assert verification["credentials"][0]["status"] == "VALID"

    pawsport = client.get(f"/pawsport/{pet_id}").json()
    assert pawsport["credentials"][0]["type"] == "HealthCert"

    assert client.get("/verify/000000000000000").status_code == 404


def test_audit_endpoint_lists_entries_in_order(client, pet_id):
    entries = client.get("/audit").json()
    assert [e["action"] for e in entries] == ["OWNER_REGISTERED", "PET_REGISTERED"]
    assert [e["sequence"] for e in entries] == [1, 2]


def test_unexpected_error_returns_500_and_logs_type_only(client, container, pet_id, mocker, caplog):
    mocker.patch.object(
        container.orchestrator, "create_appointment",
        side_effect=RuntimeError("did:floracore:pet:nina leaked"),
    )
    emit = mocker.patch("floracore.api.main.emit_exception_telemetry")

    with caplog.at_level("INFO", logger="audit"):
        response = client.post("/appointments", json={"pet_id": pet_id})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    emit.assert_called_once()
    assert "ENGINE_ERROR: RuntimeError" in caplog.text
    assert "STATUS=500" in caplog.text
    assert "leaked" not in caplog.text


def test_clinical_history_endpoint(client, pet_id):
    client.post("/records/encounters", json={"pet_id": pet_id, "reason": "checkup"})

    denied = client.get(f"/pets/{pet_id}/history", params={"grantee_did": CLINIC_DID})
    assert denied.status_code == 403

    request = client.post("/consents/request", json={"pet_id_or_hash": pet_id, "clinic_did": CLINIC_DID}).json()
    client.post("/consents/accept", json={"request_id": request["request_id"]})

    history = client.get(f"/pets/{pet_id}/history", params={"grantee_did": CLINIC_DID}).json()
    assert [e["reason"] for e in history["encounters"]] == ["checkup"]
    assert history["vaccines"] == []
