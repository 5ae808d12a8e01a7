"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - component/  : Engine components and the HTTP host over in-memory collaborators
    - unit/       : Pure logic (state machine, merge templating, models, resolver)
"""
import os
import sys
from typing import Dict, List

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

# Keep settings loading away from developer env files
os.environ.setdefault("ENV", "test")


# =============================================================================
# Assertion Helpers
# =============================================================================

class AssertionHelpers:
    """Assertions shared by the API tests"""

    @staticmethod
    def assert_http_success(response, expected_status: int = 200):
        assert response.status_code == expected_status, \
            f"Expected {expected_status}, got {response.status_code}: {response.text}"

    @staticmethod
    def assert_has_fields(data: Dict, fields: List[str]):
        missing = [f for f in fields if f not in data]
        assert not missing, f"Missing fields: {missing}"


@pytest.fixture
def assertions() -> AssertionHelpers:
    return AssertionHelpers()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    config.addinivalue_line("markers", "component: Engine component tests with mocked collaborators")
    config.addinivalue_line("markers", "unit: Pure logic tests, no I/O")


def pytest_collection_modifyitems(config, items):
    """Tag each test with the layer it lives in"""
    for item in items:
        parts = item.path.parts
        if "unit" in parts:
            item.add_marker(pytest.mark.unit)
        elif "component" in parts:
            item.add_marker(pytest.mark.component)
