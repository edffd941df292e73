import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

from floracore.audit.audit_log import AuditLog, epoch_millis
from floracore.audit.hash_utils import fingerprint_document
from floracore.errors import ConflictError, NotFoundError, ValidationError
from floracore.identifiers import IdGenerator
from floracore.ledger.gateway import LedgerGateway
from floracore.models.consent import ConsentRequest, ConsentStatus
from floracore import storage

logger = logging.getLogger("floracore.consent")


def consent_payload(request: ConsentRequest, accepted_at: int) -> Dict[str, Any]:
    """
    Signed-payload document whose fingerprint becomes the on-ledger consent hash.
    """
    return {
        "typ": "consent",
        "subjectDID": request.subject_did,
        "granteeDID": request.grantee_did,
        "requestedAt": request.created_at,
        "acceptedAt": accepted_at,
        "requestId": request.id,
    }


class ConsentWorkflow:
    """
    pending -> accepted state machine for consent requests.

    Acceptance is serialized per request id, so concurrent accepts of the
    same request produce a single grant write and observe the same result.
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

    def resolve_subject_did(self, pet_id_or_hash: str) -> Optional[str]:
        """
        Pet by primary key first, then the first pet whose identity
        fingerprint matches.
        """
        pet = self.store.get(storage.PETS, pet_id_or_hash)
        if pet is None:
            pet = self.store.find_first(
                storage.PETS, lambda p: p.fingerprint == pet_id_or_hash
            )
        return pet.did if pet is not None else None

    def request_consent(
        self,
        pet_id_or_hash: str,
        vet_did: Optional[str] = None,
        clinic_did: Optional[str] = None,
    ) -> ConsentRequest:
        if not pet_id_or_hash:
            raise ValidationError("pet_id_or_hash is required")

        now = self.clock()
        request = ConsentRequest(
            id=self.ids.new_id(),
            pet_id_or_hash=pet_id_or_hash,
            status=ConsentStatus.PENDING,
            created_at=now,
            updated_at=now,
            vet_did=vet_did,
            clinic_did=clinic_did,
            subject_did=self.resolve_subject_did(pet_id_or_hash),
            grantee_did=clinic_did or vet_did,
        )
        self.store.insert(storage.CONSENT_REQUESTS, request.id, request)

        if request.subject_did is None:
            logger.info(f"Consent request {request.id} created without a resolved subject")
        self.audit_log.append(
            "CONSENT_REQUEST_CREATED",
            ref_id=request.id,
            metadata={"petIdOrHash": pet_id_or_hash, "vetDID": vet_did, "clinicDID": clinic_did},
        )
        return request

    def get_request(self, request_id: str) -> ConsentRequest:
        request = self.store.get(storage.CONSENT_REQUESTS, request_id)
        if request is None:
            raise NotFoundError(f"Consent request '{request_id}' not found")
        return request

    def accept(self, request_id: str) -> ConsentRequest:
        """
        Grant the consent on the ledger and mark the request accepted.

        Re-accepting returns the stored request without another ledger write.
        """
        with self.store.key_lock(storage.CONSENT_REQUESTS, request_id):
            request = self.get_request(request_id)
            if request.is_accepted:
                return request

            if not request.subject_did or not request.grantee_did:
                raise ValidationError("subject_did and grantee_did are required to grant consent")

            accepted_at = self.clock()
            consent_hash = fingerprint_document(consent_payload(request, accepted_at))

            receipt = self.ledger.grant_consent(request.subject_did, request.grantee_did, consent_hash)

            accepted = replace(
                request,
                status=ConsentStatus.ACCEPTED,
                consent_hash=consent_hash,
                receipt=receipt,
                updated_at=accepted_at,
            )
            if not self.store.compare_and_swap(storage.CONSENT_REQUESTS, request_id, request, accepted):
                raise ConflictError(f"Consent request '{request_id}' changed during acceptance")

        self.audit_log.append(
            "CONSENT_GRANTED",
            ref_id=request_id,
            receipt=receipt,
            metadata={"subjectDID": accepted.subject_did, "granteeDID": accepted.grantee_did},
        )
        return accepted
