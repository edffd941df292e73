import json
import hashlib
import re
from typing import Any

from floracore.errors import ValidationError

FINGERPRINT_PREFIX = "0x"
FINGERPRINT_PATTERN = re.compile(r"0x[0-9a-f]{64}")


def canonicalize(value: Any) -> bytes:
    """
    Deterministically serialize a JSON-like value.

    Mapping keys are sorted at every depth, sequences keep their order and
    None stands in for an absent field, so two logically equal documents
    always yield the same bytes regardless of key insertion order.
    Timestamps must be fixed by the caller before this is called.
    """
    try:
        serialized = json.dumps(
            value,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Document is not canonicalizable: {e}") from e

    return serialized.encode("utf-8")


def fingerprint(data: bytes) -> str:
    """
    SHA-256 digest of canonical bytes as 0x + 64 lowercase hex characters.
    """
    return FINGERPRINT_PREFIX + hashlib.sha256(data).hexdigest()


def fingerprint_document(document: Any) -> str:
    return fingerprint(canonicalize(document))


def is_fingerprint(value: Any) -> bool:
    return isinstance(value, str) and FINGERPRINT_PATTERN.fullmatch(value) is not None


def require_fingerprint(value: Any, field: str = "record_hash") -> str:
    """
    Guard used at every ledger-write boundary.
    """
    if not is_fingerprint(value):
        raise ValidationError(
            f"{field} must be 0x followed by 64 lowercase hex characters, got {value!r}"
        )
    return value
