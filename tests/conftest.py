"""
Pytest configuration and shared fixtures for vmscout tests.
"""

import sys
from pathlib import Path

import pytest

# Add src and the repository root to path
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT))

from vmscout.registry import ProcessRegistry
from vmscout.utils.config import DiscoveryConfig
from tests.fixtures import FakeAttachTransport, FakePassiveMonitor


@pytest.fixture
def transport() -> FakeAttachTransport:
    """Empty in-memory attach transport."""
    return FakeAttachTransport()


@pytest.fixture
def monitor() -> FakePassiveMonitor:
    """Empty in-memory passive monitor."""
    return FakePassiveMonitor()


@pytest.fixture
def discovery_config() -> DiscoveryConfig:
    """Default discovery configuration."""
    return DiscoveryConfig()


@pytest.fixture
def registry(
    transport: FakeAttachTransport,
    monitor: FakePassiveMonitor,
    discovery_config: DiscoveryConfig,
) -> ProcessRegistry:
    """Registry wired to the in-memory collaborators."""
    return ProcessRegistry(transport, monitor, discovery_config)
