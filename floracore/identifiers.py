import uuid


class IdGenerator:
    """
    Single source of random identifiers for entities and mock storage URIs.
    Injected wherever an id is minted so tests can substitute a sequence.
    """

    def new_id(self) -> str:
        return str(uuid.uuid4())

    def storage_uri(self, kind: str) -> str:
        # Placeholder content address until off-chain blob storage is wired in
        return f"ipfs://mock/{kind}/{self.new_id()}"
