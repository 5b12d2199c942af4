"""Global pytest configuration."""

from __future__ import annotations


def pytest_collection_modifyitems(items):
    """Tag everything under tests/integration with the integration marker."""
    for item in items:
        if "integration" in item.path.parts:
            item.add_marker("integration")
