"""Shared fixtures: a temp data store and a scripted weather provider."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from eco_capacity.store import DataStore
from factories import FakeProvider

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def store(tmp_path: Path) -> DataStore:
    return DataStore(tmp_path)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
