"""
Pytest configuration and fixtures for Harbormaster tests.
"""

import tempfile
from pathlib import Path

import pytest

from .fakes import FakeRuntime, demo_state, write_tree


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def runtime():
    """Provide an empty in-memory runtime."""
    return FakeRuntime()


@pytest.fixture
def site_dir(temp_dir):
    """Fileset source with a.txt (1 byte) and sub/b.txt (2 bytes)."""
    return write_tree(temp_dir / "site", {"a.txt": "A", "sub/b.txt": "BB"})


@pytest.fixture
def desired(site_dir, temp_dir):
    """Desired state for the demo context."""
    return demo_state(site_dir, temp_dir)
