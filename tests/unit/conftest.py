"""Unit test fixtures: in-memory store and recording user loaders."""

from __future__ import annotations

from typing import Any

import pytest

from tests.unit.fakes import InMemoryStore, RecordingLoader


@pytest.fixture
def data() -> dict[str, Any]:
    """Values known to the user loader."""
    return {"json": {"foo": "bar"}, "null": None}


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def user_loader(data: dict[str, Any]) -> RecordingLoader:
    return RecordingLoader(data)
