"""
Pytest configuration and shared fixtures for primitive runtime tests.
"""
import os
import tempfile

import pytest

from primitive_runtime.kernel.engine import PrimitiveRuntime
from primitive_runtime.kernel.registry import PrimitiveRegistry
from primitive_runtime.kernel.store import PrimitiveStore


@pytest.fixture
def temp_db():
    """Create a temporary database file for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def store(temp_db):
    store = PrimitiveStore(temp_db)
    yield store
    store.close()


@pytest.fixture
def registry(store):
    return PrimitiveRegistry(store)


@pytest.fixture
def runtime(temp_db):
    runtime = PrimitiveRuntime(temp_db)
    yield runtime
    runtime.close()
