"""
Test configuration: repo root on sys.path and shared fixtures.
"""
import sys
from pathlib import Path

import pytest

# Add repo root to sys.path so tests can import opsintel.* and tests.fixtures.*
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from tests.fixtures.snapshots import NOW, make_thresholds  # noqa: E402


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def thresholds():
    return make_thresholds()


@pytest.fixture(scope="session")
def client():
    """TestClient over the application instance."""
    from fastapi.testclient import TestClient

    from opsintel.main import app

    return TestClient(app)
