"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for kube_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from kube_mock import MockControlPlane  # noqa: E402

from machine_scope.config import ScopeConfig  # noqa: E402

CONTROLLER_TOKEN = "controller-api-token"
CONTROLLER_DNS_TOKEN = "controller-dns-token"


@pytest.fixture
def control_plane() -> MockControlPlane:
    """Empty in-memory control plane."""
    return MockControlPlane()


@pytest.fixture
def scope_config() -> ScopeConfig:
    """Scope configuration with controller credentials."""
    return ScopeConfig(api_token=CONTROLLER_TOKEN, dns_token=CONTROLLER_DNS_TOKEN)
