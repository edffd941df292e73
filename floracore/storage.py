import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from floracore.errors import ConflictError

logger = logging.getLogger("floracore.storage")

# Collection names
OWNERS = "owners"
PETS = "pets"
CONSENT_REQUESTS = "consent_requests"
APPOINTMENTS = "appointments"
ENCOUNTERS = "encounters"
VACCINES = "vaccines"
CREDENTIALS = "credentials"

# Fixed pool of per-key writer locks
KEY_LOCK_STRIPES = 64

# Unique secondary indexes: index name -> collection
MICROCHIP_INDEX = "pet_microchip"
OWNER_EMAIL_INDEX = "owner_email"

INDEXES = {
    MICROCHIP_INDEX: PETS,
    OWNER_EMAIL_INDEX: OWNERS,
}


class RecordStore(ABC):
    """
    Single persistence boundary for all domain entities.

    Entities are immutable values; a state change is a swap of one value
    for another under the same key.
    """

    @abstractmethod
    def get(self, collection: str, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def insert(
        self,
        collection: str,
        key: str,
        value: Any,
        unique: Optional[Tuple[str, str]] = None,
    ) -> None:
        """
        Atomically store a new value and, if given, claim a unique
        (index, index_key) slot. Raises ConflictError if either is taken.
        """
        pass

    @abstractmethod
    def put(self, collection: str, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def compare_and_swap(self, collection: str, key: str, expected: Any, new: Any) -> bool:
        """
        Replace the stored value only if it still equals `expected`.
        """
        pass

    @abstractmethod
    def lookup(self, index: str, index_key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def values(self, collection: str) -> List[Any]:
        pass

    @abstractmethod
    @contextmanager
    def key_lock(self, collection: str, key: str) -> Iterator[None]:
        """
        Serialize writers of a single key.
        """
        pass

    def find_first(self, collection: str, predicate: Callable[[Any], bool]) -> Optional[Any]:
        for value in self.values(collection):
            if predicate(value):
                return value
        return None


class InMemoryRecordStore(RecordStore):
    """
    Process-local store. All mutations go through one lock; a fixed pool of
    striped key locks serializes longer read-modify-write sequences
    (e.g. consent acceptance, which spans a ledger write).
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Any]] = defaultdict(dict)
        self._indexes: Dict[str, Dict[str, str]] = defaultdict(dict)
        self._lock = threading.RLock()
        self._key_locks = tuple(threading.Lock() for _ in range(KEY_LOCK_STRIPES))

    def get(self, collection: str, key: str) -> Optional[Any]:
        with self._lock:
            return self._collections[collection].get(key)

    def insert(
        self,
        collection: str,
        key: str,
        value: Any,
        unique: Optional[Tuple[str, str]] = None,
    ) -> None:
        with self._lock:
            if key in self._collections[collection]:
                raise ConflictError(f"{collection}/{key} already exists")

            if unique is not None:
                index, index_key = unique
                if INDEXES.get(index) != collection:
                    raise ValueError(f"Index '{index}' does not belong to '{collection}'")
                if index_key in self._indexes[index]:
                    raise ConflictError(f"{index} '{index_key}' is already claimed")
                self._indexes[index][index_key] = key

            self._collections[collection][key] = value

    def put(self, collection: str, key: str, value: Any) -> None:
        with self._lock:
            self._collections[collection][key] = value

    def compare_and_swap(self, collection: str, key: str, expected: Any, new: Any) -> bool:
        with self._lock:
            current = self._collections[collection].get(key)
            if current != expected:
                logger.debug(f"CAS lost on {collection}/{key}")
                return False
            self._collections[collection][key] = new
            return True

    def lookup(self, index: str, index_key: str) -> Optional[Any]:
        with self._lock:
            key = self._indexes[index].get(index_key)
            if key is None:
                return None
            return self._collections[INDEXES[index]].get(key)

    def values(self, collection: str) -> List[Any]:
        with self._lock:
            return list(self._collections[collection].values())

    @contextmanager
    def key_lock(self, collection: str, key: str) -> Iterator[None]:
        with self._lock_for(collection, key):
            yield

    def _lock_for(self, collection: str, key: str) -> threading.Lock:
        # Keys sharing a stripe serialize against each other; callers never nest key locks
        return self._key_locks[hash((collection, key)) % KEY_LOCK_STRIPES]
