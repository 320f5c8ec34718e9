"""Shared fixtures: a controllable clock and freshly wired engines."""

import pytest

from economy.coordinator import SwarmCoordinator
from economy.ledger import PaymentLedger
from economy.molt import MoltEngine
from economy.store import MemoryStore

START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 0, seconds: float = 0, hours: float = 0, days: float = 0) -> int:
        self.now += int(ms + seconds * 1000 + hours * 3_600_000 + days * 86_400_000)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def ledger(store: MemoryStore, clock: FakeClock) -> PaymentLedger:
    return PaymentLedger(store, clock=clock)


@pytest.fixture
def molt(store: MemoryStore, ledger: PaymentLedger, clock: FakeClock) -> MoltEngine:
    """Molt engine that pulls transaction/balance aggregates from the ledger."""
    return MoltEngine(store, ledger=ledger, clock=clock)


@pytest.fixture
def standalone_molt(store: MemoryStore, clock: FakeClock) -> MoltEngine:
    """Molt engine fed only through update_stats."""
    return MoltEngine(store, clock=clock)


@pytest.fixture
def coordinator(store: MemoryStore, clock: FakeClock) -> SwarmCoordinator:
    return SwarmCoordinator(store, clock=clock)
