"""
Test fixtures for vmscout.

Provides in-memory collaborators for the process registry.
"""

from .transport_fixtures import (
    FakeAttachTransport,
    FakeHandle,
    FakeMonitoredVM,
    FakePassiveMonitor,
    FakeVM,
    TransportFixtures,
)

__all__ = [
    "FakeAttachTransport",
    "FakeHandle",
    "FakeMonitoredVM",
    "FakePassiveMonitor",
    "FakeVM",
    "TransportFixtures",
]
