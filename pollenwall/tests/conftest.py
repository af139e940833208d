"""
conftest.py

Test configuration for pollenwall tests.

Defines Pytest fixtures for supplying test data and fake collaborators across the entire
test suite. Fixtures used within only a single module are defined directly in that module.
The fakes themselves live in fakes.py.
"""

import random
from pathlib import Path

import pytest

from pollenwall.cache import CacheStore
from pollenwall.tracker import PollenTracker

from fakes import FakeApplier, make_image


@pytest.fixture(scope="session")
def image_bytes() -> bytes:
    return make_image()


@pytest.fixture
def test_image(tmp_path, image_bytes) -> Path:
    """A small valid jpeg on disk."""

    path = tmp_path / "pollen.jpg"
    path.write_bytes(image_bytes)
    return path


@pytest.fixture
def cache(tmp_path) -> CacheStore:
    return CacheStore(tmp_path / ".pollenwall")


@pytest.fixture
def tracker() -> PollenTracker:
    """Tracker with a seeded random source so attach selection is repeatable."""

    return PollenTracker(rng=random.Random(7))


@pytest.fixture
def applier() -> FakeApplier:
    return FakeApplier()
