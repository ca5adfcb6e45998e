"""Test configuration to ensure project package import resolution.

Adds the repository root to sys.path so `import bookinghub` works in CI where
the checkout directory may not be on PYTHONPATH by default, and provides the
in-memory store fixtures shared by the engine and API tests.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[3]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bookinghub.app.services.booking_services import ReservationManager  # noqa: E402
from bookinghub.app.tests_new.fakes import DEFAULT_NOW, FrozenClock, InMemoryStore, seed_salon  # noqa: E402


@pytest.fixture
def clock():
    return FrozenClock(DEFAULT_NOW)


@pytest.fixture
def store(clock):
    return InMemoryStore(clock)


@pytest.fixture
def salon(store):
    return seed_salon(store)


@pytest.fixture
def manager(store, clock):
    return ReservationManager(store, hold_ttl_minutes=15, clock=clock)
