import logging
import time
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from floracore.bootstrap import Container, build_container
from floracore.errors import (
    ConflictError,
    ConsentNotGranted,
    FloracoreError,
    LedgerRejected,
    LedgerTimeout,
    LedgerUnavailable,
    NotFoundError,
    ValidationError,
)
from floracore.telemetry import emit_exception_telemetry, init_telemetry

audit_logger = logging.getLogger("audit")

HASH_PATTERN = r"^0x[0-9a-fA-F]{64}$"

ERROR_STATUS = [
    (ValidationError, 400),
    (ConsentNotGranted, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (LedgerRejected, 502),
    (LedgerUnavailable, 503),
    (LedgerTimeout, 504),
]

tags_metadata = [
    {"name": "Identity", "description": "Owners, pets and public verification."},
    {"name": "Records", "description": "Clinical records anchored on the ledger."},
    {"name": "Consent", "description": "Consent requests and direct grants."},
    {"name": "Ledger", "description": "Raw ledger operations."},
    {"name": "System", "description": "Health checks and audit trail."},
]


# --- DATA MODELS ---
class HashModel(BaseModel):
    @field_validator("record_hash", "consent_hash", mode="after", check_fields=False)
    @classmethod
    def _lowercase_hash(cls, value: str) -> str:
        return value.lower()


class OwnerRequest(BaseModel):
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    name: Optional[str] = None
    phone: Optional[str] = None


class PetRequest(BaseModel):
    owner_id: str
    did: str
    name: str
    species: str
    breed: Optional[str] = None
    sex: Optional[str] = None
    microchip: Optional[str] = None
    photo_url: Optional[str] = None
    age_years: Optional[float] = None
    last_weight_kg: Optional[float] = None


class AnchorRequest(HashModel):
    subject_did: str
    issuer_did: str
    kind: str
    record_hash: str = Field(pattern=HASH_PATTERN)
    uri: Optional[str] = None


class VetRegistrationRequest(BaseModel):
    vet_addr: str
    vet_did: str
    metadata_uri: Optional[str] = None


class IssueCredentialRequest(HashModel):
    vet_addr: str
    vet_did: str
    subject_did: str
    record_hash: str = Field(pattern=HASH_PATTERN)
    kind: str = "VC:Vaccine"
    metadata_uri: Optional[str] = None
    uri: Optional[str] = None


class VerifyCredentialRequest(HashModel):
    issuer: str
    subject_did: str
    kind: str
    record_hash: str = Field(pattern=HASH_PATTERN)


class GrantConsentRequest(HashModel):
    subject_did: str
    grantee_did: str
    consent_hash: str = Field(pattern=HASH_PATTERN)


class RevokeConsentRequest(BaseModel):
    subject_did: str
    grantee_did: str


class ConsentRequestBody(BaseModel):
    pet_id_or_hash: str
    vet_did: Optional[str] = None
    clinic_did: Optional[str] = None


class ConsentAcceptBody(BaseModel):
    request_id: str


class AppointmentRequest(BaseModel):
    pet_id: str
    vet_did: Optional[str] = None
    clinic_did: Optional[str] = None
    reason: Optional[str] = None


class EncounterRequest(BaseModel):
    pet_id: str
    vet_did: Optional[str] = None
    clinic_did: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    vitals: Optional[Dict[str, Any]] = None
    attachments: List[Any] = []


class VaccineDetails(BaseModel):
    name: str
    manufacturer: Optional[str] = None
    lot: Optional[str] = None
    dose: Optional[str] = None
    route: Optional[str] = None
    site: Optional[str] = None
    date: Optional[str] = None
    next_due: Optional[str] = None


class VaccineRequest(BaseModel):
    pet_id: str
    vaccine: VaccineDetails
    vet_addr: Optional[str] = None
    vet_did: Optional[str] = None
    clinic_did: Optional[str] = None
    attachments: List[Any] = []


class CredentialRequest(BaseModel):
    pet_id: str
    type: str
    data: Dict[str, Any]
    uri: Optional[str] = None


def _receipt(receipt) -> Optional[Dict[str, Any]]:
    return asdict(receipt) if receipt is not None else None


def create_app(container: Optional[Container] = None) -> FastAPI:
    container = container or build_container()
    orchestrator = container.orchestrator
    consents = container.consents

    app = FastAPI(
        title="Floracore Records Service",
        description="""
        **Pet identity and veterinary records** with ledger anchoring.

        * **Fingerprints:** canonical JSON, SHA-256, `0x` + 64 hex.
        * **Anchoring:** encounters, vaccines and credentials anchored on the ledger.
        * **Consent:** off-chain requests, on-chain grants.
        """,
        version="1.0.0",
        openapi_tags=tags_metadata,
    )
    app.state.container = container

    # --- MIDDLEWARE: AUDIT TRAIL ---
    @app.middleware("http")
    async def audit_middleware(request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            # Exception text may carry DIDs or clinical payloads: type only
            emit_exception_telemetry(e)
            audit_logger.error(f"ENGINE_ERROR: {type(e).__name__} PATH={request.url.path}")
            response = JSONResponse(status_code=500, content={"error": "Internal server error"})
        process_time = time.time() - start_time

        client_host = request.client.host if request.client else "-"
        audit_logger.info(
            f"METHOD={request.method} PATH={request.url.path} "
            f"STATUS={response.status_code} CLIENT={client_host} "
            f"DURATION={process_time:.4f}s"
        )
        return response

    @app.exception_handler(FloracoreError)
    async def domain_error_handler(request: Request, exc: FloracoreError):
        for error_type, status_code in ERROR_STATUS:
            if isinstance(exc, error_type):
                break
        else:
            status_code = 500

        emit_exception_telemetry(exc)
        audit_logger.warning(f"DOMAIN_ERROR: {type(exc).__name__} PATH={request.url.path}")
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    # --- ENDPOINTS: SYSTEM ---
    @app.get("/health", tags=["System"])
    def health():
        return {
            "status": "online",
            "ledger_available": container.ledger.available,
        }

    @app.get("/audit", tags=["System"])
    def audit_trail():
        return [asdict(entry) for entry in container.audit_log.entries()]

    # --- ENDPOINTS: IDENTITY ---
    @app.post("/owners", tags=["Identity"])
    def register_owner(body: OwnerRequest):
        owner = orchestrator.register_owner(body.email, name=body.name, phone=body.phone)
        return {"owner_id": owner.id}

    @app.post("/pets", tags=["Identity"])
    def register_pet(body: PetRequest):
        pet = orchestrator.register_pet(**body.model_dump())
        return {"pet_id": pet.id, "pet_hash": pet.fingerprint, "pet_did": pet.did}

    @app.get("/owners/{owner_id}/pets", tags=["Identity"])
    def list_owner_pets(owner_id: str):
        return [
            {"id": p.id, "name": p.name, "photo_url": p.photo_url}
            for p in orchestrator.list_owner_pets(owner_id)
        ]

    @app.get("/pets/resolve", tags=["Identity"])
    def resolve_pet(microchip: str):
        pet = orchestrator.resolve_by_microchip(microchip)
        return {"id": pet.id, "name": pet.name, "species": pet.species, "breed": pet.breed}

    @app.get("/pets/{pet_id}/basic", tags=["Identity"])
    def pet_basic(pet_id: str, scope: Optional[str] = None, grantee_did: Optional[str] = None):
        pet = orchestrator.basic_profile(pet_id, scope=scope, grantee_did=grantee_did)
        return {
            "id": pet.id,
            "name": pet.name,
            "species": pet.species,
            "breed": pet.breed,
            "sex": pet.sex,
            "photo_url": pet.photo_url,
            "age_years": pet.age_years,
            "last_weight_kg": pet.last_weight_kg,
        }

    @app.get("/pets/{pet_id}/history", tags=["Records"])
    def clinical_history(pet_id: str, grantee_did: Optional[str] = None):
        history = orchestrator.clinical_history(pet_id, grantee_did)
        return {
            "encounters": [asdict(r) for r in history["encounters"]],
            "vaccines": [asdict(r) for r in history["vaccines"]],
        }

    @app.get("/pawsport/{pet_id}", tags=["Identity"])
    def pawsport(pet_id: str):
        view = orchestrator.pawsport(pet_id)
        view["credentials"] = [asdict(c) for c in view["credentials"]]
        return view

    @app.get("/verify/{microchip}", tags=["Identity"])
    def public_verification(microchip: str):
        return orchestrator.public_verification(microchip)

    # --- ENDPOINTS: LEDGER ---
    @app.post("/ledger/anchor", tags=["Ledger"])
    def ledger_anchor(body: AnchorRequest):
        receipt = orchestrator.anchor(**body.model_dump())
        return _receipt(receipt)

    @app.post("/ledger/vet/register", tags=["Ledger"])
    def ledger_register_vet(body: VetRegistrationRequest):
        return _receipt(orchestrator.register_vet(**body.model_dump()))

    @app.post("/ledger/vc/issue-mock", tags=["Ledger"])
    def ledger_issue_credential(body: IssueCredentialRequest):
        registered, anchored = orchestrator.issue_credential(**body.model_dump())
        return {"registered": _receipt(registered), "anchored": _receipt(anchored)}

    @app.post("/ledger/vc/verify-mock", tags=["Ledger"])
    def ledger_verify_credential(body: VerifyCredentialRequest):
        return _receipt(orchestrator.verify_credential(**body.model_dump()))

    @app.post("/ledger/consent/grant", tags=["Ledger"])
    def ledger_grant_consent(body: GrantConsentRequest):
        return _receipt(orchestrator.grant_consent(**body.model_dump()))

    @app.post("/ledger/consent/revoke", tags=["Ledger"])
    def ledger_revoke_consent(body: RevokeConsentRequest):
        return _receipt(orchestrator.revoke_consent(**body.model_dump()))

    # --- ENDPOINTS: CONSENT ---
    @app.post("/consents/request", tags=["Consent"])
    def request_consent(body: ConsentRequestBody):
        request = consents.request_consent(**body.model_dump())
        return {"request_id": request.id, "status": request.status.value}

    @app.post("/consents/accept", tags=["Consent"])
    def accept_consent(body: ConsentAcceptBody):
        request = consents.accept(body.request_id)
        return {
            "request_id": request.id,
            "status": request.status.value,
            "consent_hash": request.consent_hash,
            "receipt": _receipt(request.receipt),
        }

    @app.get("/consents/{request_id}", tags=["Consent"])
    def get_consent(request_id: str):
        return asdict(consents.get_request(request_id))

    # --- ENDPOINTS: RECORDS ---
    @app.post("/appointments", tags=["Records"])
    def create_appointment(body: AppointmentRequest):
        appointment = orchestrator.create_appointment(**body.model_dump())
        return {"id": appointment.id}

    @app.post("/records/encounters", tags=["Records"])
    def record_encounter(body: EncounterRequest):
        record = orchestrator.record_encounter(**body.model_dump())
        return {"id": record.id, "record_hash": record.record_hash, "receipt": _receipt(record.receipt)}

    @app.post("/records/vaccines", tags=["Records"])
    def record_vaccine(body: VaccineRequest):
        payload = body.model_dump()
        payload["vaccine"] = body.vaccine.model_dump(exclude_none=True)
        record = orchestrator.record_vaccine(**payload)
        return {
            "id": record.id,
            "record_hash": record.record_hash,
            "anchor_receipt": _receipt(record.anchor_receipt),
            "verify_receipt": _receipt(record.verify_receipt),
        }

    @app.post("/vc/add", tags=["Records"])
    def add_credential(body: CredentialRequest):
        credential = orchestrator.add_credential(**body.model_dump())
        return {
            "id": credential.id,
            "record_hash": credential.record_hash,
            "receipt": _receipt(credential.receipt),
        }

    return app


def create_default_app() -> FastAPI:
    """
    Process entry point: file audit logging, telemetry, ledger resolution.
    """
    container = build_container()
    logging.basicConfig(
        filename=container.settings.audit_log_file,
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    init_telemetry(container.settings.appinsights_connection_string)
    return create_app(container)
