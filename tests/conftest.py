"""Shared test fixtures for the LocalHub test suite."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from localhub.identity import IdentifierSanitizer, Principal
from localhub.storage import DocumentStore

# Fixed epoch used by the fake clock: 2025-01-01T00:00:00Z.
FIXED_NOW = 1_735_689_600


@dataclass
class FakeClock:
    """Callable clock returning a settable epoch time."""

    now: float = FIXED_NOW

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path) -> DocumentStore:
    """Document store rooted in a fresh temporary directory, no allow-list."""
    return DocumentStore(tmp_path / "data", IdentifierSanitizer())


@pytest.fixture
def alice() -> Principal:
    return Principal("alice")


@pytest.fixture
def bob() -> Principal:
    return Principal("bob")
