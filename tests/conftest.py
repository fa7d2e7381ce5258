"""Pytest configuration helpers for test collection.

Ensure the project root is on sys.path so tests can import the package
without requiring PYTHONPATH to be set externally.
"""
import sys
from pathlib import Path

import pytest


def pytest_configure(config):
    # Insert repo root (one level up from tests/) to sys.path
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))


@pytest.fixture
def store():
    from ohm_lib.storage.memory_backend import MemoryStore
    return MemoryStore()


@pytest.fixture
def cluster_store():
    from ohm_lib.storage.memory_backend import MemoryStore
    return MemoryStore(partitioned=True)


@pytest.fixture
def ohm(store):
    from ohm_lib.ohm import Ohm
    return Ohm(store)


@pytest.fixture
def cluster_ohm(cluster_store):
    from ohm_lib.ohm import Ohm
    return Ohm(cluster_store)
