"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from hostconverge.adapters.control import DebugProvider, FailProvider
from hostconverge.adapters.fake_host import FakeHost
from hostconverge.adapters.mock import MockProvider
from hostconverge.adapters.registry import CapabilityRegistry
from hostconverge.core.facts.provider import FactProvider
from hostconverge.core.models.fact import NOT_FOUND


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def jenkins_plan(project_root: Path) -> Path:
    return project_root / "plans" / "jenkins.yml"


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for the run ledger."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def mock_provider() -> MockProvider:
    """A checkable mock: tasks converge once they have run."""
    return MockProvider(checkable=True)


@pytest.fixture
def registry(mock_provider: MockProvider) -> CapabilityRegistry:
    return CapabilityRegistry([mock_provider, DebugProvider(), FailProvider()])


@pytest.fixture
def facts() -> FactProvider:
    """Fact provider over a small in-memory table."""
    table = {
        "port": {"8080": ["java"]},
        "package": {"lsof": "4.93"},
    }
    probes = {
        kind: (lambda arg, values=values: values.get(arg, NOT_FOUND))
        for kind, values in table.items()
    }
    return FactProvider(probes=probes)


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost(hostname="testhost", users={"deploy": ["deploy"]})
