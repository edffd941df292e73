import itertools

import pytest

from floracore.bootstrap import build_container
from floracore.config import Settings
from floracore.ledger.gateway import DisabledLedgerGateway
from floracore.ledger.simulated import SimulatedLedger
from pet_samples import NINA


class TickingClock:
    """Deterministic epoch-millis clock: every read advances one second."""

    def __init__(self, start: int = 1_735_689_600_000):
        self._ticks = itertools.count(start, 1000)

    def __call__(self) -> int:
        return next(self._ticks)


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def ledger():
    return SimulatedLedger()


@pytest.fixture
def container(ledger, clock):
    return build_container(settings=Settings(ledger_backend="simulated"), ledger=ledger, clock=clock)


@pytest.fixture
def offline_container(clock):
    return build_container(
        settings=Settings(ledger_backend="disabled"),
        ledger=DisabledLedgerGateway(),
        clock=clock,
    )


@pytest.fixture
def orchestrator(container):
    return container.orchestrator


@pytest.fixture
def consents(container):
    return container.consents


@pytest.fixture
def owner(orchestrator):
    return orchestrator.register_owner("owner@floracore.example", name="Ana", phone="+56 9 1234 5678")


@pytest.fixture
def pet(orchestrator, owner):
    return orchestrator.register_pet(owner_id=owner.id, **NINA)
