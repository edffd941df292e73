from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Owner:
    id: str
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    share_contact: bool = True


# =========================================================
# Subject (pet) identity
# =========================================================
@dataclass(frozen=True)
class Pet:
    """
    A registered pet.

    `fingerprint` covers the core identity profile only
    (name, species, breed, sex, microchip). Pets are immutable once
    registered, so the fingerprint is never recomputed.
    """
    id: str
    fingerprint: str
    did: str
    owner_id: str
    name: str
    species: str
    created_at: int

    breed: Optional[str] = None
    sex: Optional[str] = None
    microchip: Optional[str] = None  # unique across pets when present
    photo_url: Optional[str] = None
    age_years: Optional[float] = None
    last_weight_kg: Optional[float] = None
