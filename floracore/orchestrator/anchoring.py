import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from floracore.audit.audit_log import AuditLog, epoch_millis
from floracore.audit.hash_utils import fingerprint_document, require_fingerprint
from floracore.errors import (
    ConflictError,
    ConsentNotGranted,
    LedgerError,
    LedgerUnavailable,
    NotFoundError,
    ValidationError,
)
from floracore.identifiers import IdGenerator
from floracore.ledger.gateway import LedgerGateway
from floracore.models.identity import Owner, Pet
from floracore.models.receipt import ConsentLedgerStatus, LedgerReceipt
from floracore.models.records import Appointment, Credential, EncounterRecord, VaccineRecord
from floracore import storage

logger = logging.getLogger("floracore.orchestrator")

VACCINE_KIND = "Vaccine"
ENCOUNTER_KIND = "Encounter"
VACCINE_VC_KIND = "VC:Vaccine"


def pet_identity_profile(
    name: str,
    species: str,
    breed: Optional[str],
    sex: Optional[str],
    microchip: Optional[str],
) -> Dict[str, Any]:
    """Core identity fields covered by a pet's fingerprint."""
    return {
        "name": name,
        "species": species,
        "breed": breed,
        "sex": sex,
        "microchip": microchip,
    }


def _require_text(value: Optional[str], field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value


class AnchoringOrchestrator:
    """
    Runs every record use case as a fixed sequence:
    canonicalize -> fingerprint -> ledger write(s) -> persist -> audit.

    Nothing is persisted or audited for a use case whose required ledger
    write failed. The only tolerated ledger absence is credential issuance.
    """

    def __init__(
        self,
        store: storage.RecordStore,
        ledger: LedgerGateway,
        audit_log: AuditLog,
        ids: Optional[IdGenerator] = None,
        clock: Callable[[], int] = epoch_millis,
    ):
        self.store = store
        self.ledger = ledger
        self.audit_log = audit_log
        self.ids = ids or IdGenerator()
        self.clock = clock

    # =========================================================
    # Owners & pets
    # =========================================================
    def register_owner(
        self,
        email: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Owner:
        """
        Find-or-create the owner for an email, applying name/phone updates.
        """
        email = _require_text(email, "email").strip().lower()

        existing = self.store.lookup(storage.OWNER_EMAIL_INDEX, email)
        if existing is None:
            owner = Owner(id=self.ids.new_id(), email=email, name=name, phone=phone)
            try:
                self.store.insert(
                    storage.OWNERS, owner.id, owner,
                    unique=(storage.OWNER_EMAIL_INDEX, email),
                )
            except ConflictError:
                # Lost a race with a concurrent registration for the same email
                existing = self.store.lookup(storage.OWNER_EMAIL_INDEX, email)
            else:
                self.audit_log.append("OWNER_REGISTERED", ref_id=owner.id)
                return owner

        updates = {}
        if name:
            updates["name"] = name
        if phone:
            updates["phone"] = phone
        if not updates:
            return existing

        with self.store.key_lock(storage.OWNERS, existing.id):
            current = self.store.get(storage.OWNERS, existing.id)
            updated = replace(current, **updates)
            self.store.put(storage.OWNERS, updated.id, updated)
        self.audit_log.append("OWNER_UPDATED", ref_id=updated.id, metadata={"fields": sorted(updates)})
        return updated

    def get_owner(self, owner_id: str) -> Owner:
        owner = self.store.get(storage.OWNERS, owner_id)
        if owner is None:
            raise NotFoundError(f"Owner '{owner_id}' not found")
        return owner

    def register_pet(
        self,
        owner_id: str,
        did: str,
        name: str,
        species: str,
        breed: Optional[str] = None,
        sex: Optional[str] = None,
        microchip: Optional[str] = None,
        photo_url: Optional[str] = None,
        age_years: Optional[float] = None,
        last_weight_kg: Optional[float] = None,
    ) -> Pet:
        self.get_owner(owner_id)
        _require_text(did, "did")
        _require_text(name, "name")
        _require_text(species, "species")

        pet_hash = fingerprint_document(
            pet_identity_profile(name, species, breed, sex, microchip)
        )
        pet = Pet(
            id=self.ids.new_id(),
            fingerprint=pet_hash,
            did=did,
            owner_id=owner_id,
            name=name,
            species=species,
            created_at=self.clock(),
            breed=breed,
            sex=sex,
            microchip=microchip,
            photo_url=photo_url,
            age_years=age_years,
            last_weight_kg=last_weight_kg,
        )

        unique = (storage.MICROCHIP_INDEX, microchip) if microchip else None
        self.store.insert(storage.PETS, pet.id, pet, unique=unique)

        self.audit_log.append("PET_REGISTERED", ref_id=pet.id, metadata={"did": did})
        return pet

    def get_pet(self, pet_id: str) -> Pet:
        pet = self.store.get(storage.PETS, pet_id)
        if pet is None:
            raise NotFoundError(f"Pet '{pet_id}' not found")
        return pet

    def resolve_by_microchip(self, microchip: str) -> Pet:
        pet = self.store.lookup(storage.MICROCHIP_INDEX, microchip)
        if pet is None:
            raise NotFoundError(f"No pet with microchip '{microchip}'")
        return pet

    def list_owner_pets(self, owner_id: str) -> List[Pet]:
        self.get_owner(owner_id)
        pets = [p for p in self.store.values(storage.PETS) if p.owner_id == owner_id]
        return sorted(pets, key=lambda p: p.created_at)

    # =========================================================
    # Direct ledger use cases
    # =========================================================
    def anchor(
        self,
        subject_did: str,
        issuer_did: str,
        kind: str,
        record_hash: str,
        uri: Optional[str] = None,
    ) -> LedgerReceipt:
        receipt = self.ledger.anchor_record(subject_did, issuer_did, kind, record_hash, uri or "")
        self.audit_log.append(
            "RECORD_ANCHORED",
            ref_id=record_hash,
            receipt=receipt,
            metadata={"kind": kind, "subjectDID": subject_did},
        )
        return receipt

    def register_vet(self, vet_addr: str, vet_did: str, metadata_uri: Optional[str] = None) -> LedgerReceipt:
        receipt = self.ledger.register_vet(vet_addr, vet_did, metadata_uri or "")
        self.audit_log.append("VET_REGISTERED", ref_id=vet_did, receipt=receipt, metadata={"vetAddr": vet_addr})
        return receipt

    def issue_credential(
        self,
        vet_addr: str,
        vet_did: str,
        subject_did: str,
        record_hash: str,
        kind: str = VACCINE_VC_KIND,
        metadata_uri: Optional[str] = None,
        uri: Optional[str] = None,
    ) -> Tuple[LedgerReceipt, LedgerReceipt]:
        """
        Register the issuing vet, then anchor the credential it issues.
        The anchor is never attempted if registration fails.
        """
        require_fingerprint(record_hash)
        registered = self.register_vet(vet_addr, vet_did, metadata_uri)
        anchored = self.ledger.anchor_record(subject_did, vet_did, kind, record_hash, uri or "")
        self.audit_log.append(
            "VC_ISSUED",
            ref_id=record_hash,
            receipt=anchored,
            metadata={"kind": kind, "subjectDID": subject_did, "vetDID": vet_did},
        )
        return registered, anchored

    def verify_credential(self, issuer: str, subject_did: str, kind: str, record_hash: str) -> LedgerReceipt:
        receipt = self.ledger.verify_mock(issuer, subject_did, kind, record_hash)
        self.audit_log.append("VC_VERIFIED", ref_id=record_hash, receipt=receipt, metadata={"kind": kind})
        return receipt

    def grant_consent(self, subject_did: str, grantee_did: str, consent_hash: str) -> LedgerReceipt:
        """Direct grant. Does not touch consent requests."""
        receipt = self.ledger.grant_consent(subject_did, grantee_did, consent_hash)
        self.audit_log.append(
            "CONSENT_GRANTED_DIRECT",
            receipt=receipt,
            metadata={"subjectDID": subject_did, "granteeDID": grantee_did},
        )
        return receipt

    def revoke_consent(self, subject_did: str, grantee_did: str) -> LedgerReceipt:
        receipt = self.ledger.revoke_consent(subject_did, grantee_did)
        self.audit_log.append(
            "CONSENT_REVOKED",
            receipt=receipt,
            metadata={"subjectDID": subject_did, "granteeDID": grantee_did},
        )
        return receipt

    # =========================================================
    # Anchored clinical records
    # =========================================================
    def record_encounter(
        self,
        pet_id: str,
        vet_did: Optional[str] = None,
        clinic_did: Optional[str] = None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        vitals: Optional[Dict[str, Any]] = None,
        attachments: Optional[List[Any]] = None,
        created_at: Optional[int] = None,
    ) -> EncounterRecord:
        pet = self.get_pet(pet_id)
        created_at = self.clock() if created_at is None else created_at
        attachments = list(attachments or [])

        record_hash = fingerprint_document({
            "type": ENCOUNTER_KIND,
            "petId": pet_id,
            "petDID": pet.did,
            "vetDID": vet_did,
            "clinicDID": clinic_did,
            "reason": reason,
            "notes": notes,
            "vitals": vitals,
            "attachments": attachments,
            "createdAt": created_at,
        })
        uri = self.ids.storage_uri("encounter")

        receipt = self.ledger.anchor_record(
            pet.did, vet_did or clinic_did or "", ENCOUNTER_KIND, record_hash, uri
        )

        record = EncounterRecord(
            id=self.ids.new_id(),
            pet_id=pet_id,
            uri=uri,
            record_hash=record_hash,
            receipt=receipt,
            created_at=created_at,
            vet_did=vet_did,
            clinic_did=clinic_did,
            reason=reason,
            notes=notes,
            vitals=vitals,
            attachments=attachments,
        )
        self.store.insert(storage.ENCOUNTERS, record.id, record)
        self.audit_log.append("ENCOUNTER_ANCHORED", ref_id=record.id, receipt=receipt)
        return record

    def record_vaccine(
        self,
        pet_id: str,
        vaccine: Dict[str, Any],
        vet_addr: Optional[str] = None,
        vet_did: Optional[str] = None,
        clinic_did: Optional[str] = None,
        attachments: Optional[List[Any]] = None,
        created_at: Optional[int] = None,
    ) -> VaccineRecord:
        """
        Anchor a vaccination, then optionally have the vet verify it.

        The verify write only runs after a successful anchor, and its failure
        leaves the record persisted with verify_receipt=None.
        """
        pet = self.get_pet(pet_id)
        if not isinstance(vaccine, dict) or not vaccine.get("name"):
            raise ValidationError("vaccine.name is required")
        if vet_addr is not None:
            vet_addr = _require_text(vet_addr, "vet_addr").strip()
        created_at = self.clock() if created_at is None else created_at
        attachments = list(attachments or [])

        record_hash = fingerprint_document({
            "type": VACCINE_KIND,
            "petId": pet_id,
            "petDID": pet.did,
            "vetDID": vet_did,
            "clinicDID": clinic_did,
            "vaccine": vaccine,
            "attachments": attachments,
            "createdAt": created_at,
        })
        uri = self.ids.storage_uri("vaccine")

        anchor_receipt = self.ledger.anchor_record(
            pet.did, vet_did or clinic_did or "", VACCINE_KIND, record_hash, uri
        )

        verify_receipt = None
        if vet_addr:
            try:
                verify_receipt = self.ledger.verify_mock(vet_addr, pet.did, VACCINE_VC_KIND, record_hash)
            except LedgerError as e:
                logger.warning(f"Vaccine anchored without verification: {type(e).__name__}: {e}")

        record = VaccineRecord(
            id=self.ids.new_id(),
            pet_id=pet_id,
            vaccine=dict(vaccine),
            uri=uri,
            record_hash=record_hash,
            anchor_receipt=anchor_receipt,
            created_at=created_at,
            vet_did=vet_did,
            clinic_did=clinic_did,
            attachments=attachments,
            verify_receipt=verify_receipt,
        )
        self.store.insert(storage.VACCINES, record.id, record)
        self.audit_log.append("VACCINE_ANCHORED", ref_id=record.id, receipt=anchor_receipt)
        if verify_receipt is not None:
            self.audit_log.append("VC_VERIFIED", ref_id=record.id, receipt=verify_receipt)
        return record

    def add_credential(
        self,
        pet_id: str,
        type: str,
        data: Dict[str, Any],
        uri: Optional[str] = None,
        issued_at: Optional[int] = None,
    ) -> Credential:
        """
        Issue a generic credential. Unlike clinical records, issuance
        proceeds off-chain only when the ledger is unavailable.
        """
        pet = self.get_pet(pet_id)
        _require_text(type, "type")
        if not isinstance(data, dict):
            raise ValidationError("data must be an object")
        issued_at = self.clock() if issued_at is None else issued_at

        record_hash = fingerprint_document({
            "petId": pet_id,
            "petDID": pet.did,
            "type": type,
            "data": data,
            "createdAt": issued_at,
        })

        try:
            receipt = self.ledger.anchor_record(pet.did, "", type, record_hash, uri or "")
        except LedgerUnavailable as e:
            logger.warning(f"Credential issued without ledger anchor: {e}")
            receipt = None

        credential = Credential(
            id=self.ids.new_id(),
            pet_id=pet_id,
            type=type,
            data=dict(data),
            record_hash=record_hash,
            issued_at=issued_at,
            uri=uri,
            receipt=receipt,
        )
        self.store.insert(storage.CREDENTIALS, credential.id, credential)
        self.audit_log.append(
            "CREDENTIAL_ADDED",
            ref_id=credential.id,
            receipt=receipt,
            metadata={"type": type, "anchored": receipt is not None},
        )
        return credential

    def create_appointment(
        self,
        pet_id: str,
        vet_did: Optional[str] = None,
        clinic_did: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Appointment:
        self.get_pet(pet_id)
        appointment = Appointment(
            id=self.ids.new_id(),
            pet_id=pet_id,
            created_at=self.clock(),
            vet_did=vet_did,
            clinic_did=clinic_did,
            reason=reason,
        )
        self.store.insert(storage.APPOINTMENTS, appointment.id, appointment)
        self.audit_log.append("APPOINTMENT_CREATED", ref_id=appointment.id, metadata={"petId": pet_id})
        return appointment

    # =========================================================
    # Read views
    # =========================================================
    def list_credentials(self, pet_id: str) -> List[Credential]:
        creds = [c for c in self.store.values(storage.CREDENTIALS) if c.pet_id == pet_id]
        # Latest insert wins ties on issued_at
        return sorted(reversed(creds), key=lambda c: c.issued_at, reverse=True)

    def list_encounters(self, pet_id: str) -> List[EncounterRecord]:
        records = [r for r in self.store.values(storage.ENCOUNTERS) if r.pet_id == pet_id]
        return sorted(records, key=lambda r: r.created_at)

    def list_vaccines(self, pet_id: str) -> List[VaccineRecord]:
        records = [r for r in self.store.values(storage.VACCINES) if r.pet_id == pet_id]
        return sorted(records, key=lambda r: r.created_at)

    def pawsport(self, pet_id: str) -> Dict[str, Any]:
        pet = self.get_pet(pet_id)
        return {
            "profile": {
                "name": pet.name,
                "species": pet.species,
                "breed": pet.breed,
                "microchip": pet.microchip,
            },
            "credentials": self.list_credentials(pet.id),
        }

    def public_verification(self, microchip: str) -> Dict[str, Any]:
        """
        What anyone scanning the microchip may see.
        """
        pet = self.resolve_by_microchip(microchip)
        owner = self.store.get(storage.OWNERS, pet.owner_id)
        contact = None
        if owner is not None and owner.share_contact:
            contact = {"phone": owner.phone or "N/A"}

        return {
            "microchip": pet.microchip,
            "name": pet.name,
            "contact": contact,
            "credentials": [
                {"id": c.id, "type": c.type, "status": "VALID"}
                for c in self.list_credentials(pet.id)
            ],
        }

    def basic_profile(
        self,
        pet_id: str,
        scope: Optional[str] = None,
        grantee_did: Optional[str] = None,
    ) -> Pet:
        """
        Clinic-scoped reads require an active on-ledger consent.
        """
        pet = self.get_pet(pet_id)
        if scope == "clinic":
            self._require_consent(pet, grantee_did)
        return pet

    def clinical_history(self, pet_id: str, grantee_did: Optional[str]) -> Dict[str, Any]:
        """
        Anchored encounters and vaccines, oldest first. Always consent-gated.
        """
        pet = self.get_pet(pet_id)
        self._require_consent(pet, grantee_did)
        return {
            "encounters": self.list_encounters(pet.id),
            "vaccines": self.list_vaccines(pet.id),
        }

    def _require_consent(self, pet: Pet, grantee_did: Optional[str]) -> None:
        if not grantee_did:
            raise ValidationError("grantee_did is required for clinic reads")
        status = self.ledger.consent_status(pet.did, grantee_did)
        if status != ConsentLedgerStatus.GRANTED:
            raise ConsentNotGranted(f"Consent is {status.value} for this grantee")
