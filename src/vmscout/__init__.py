"""
vmscout - discovery of local virtual machines and their management endpoints.

This package finds the VMs running on the host through a passive monitoring
source and an active attach source, and starts a VM's local management agent
on demand so a monitoring tool can connect to it.
"""

__version__ = "0.1.0"

from .utils.config import TransportProfile, DiscoveryConfig
from .registry import ProcessRegistry, ProcessRecord, LOCAL_CONNECTOR_ADDRESS_PROP

__all__ = [
    'ProcessRegistry',
    'ProcessRecord',
    'TransportProfile',
    'DiscoveryConfig',
    'LOCAL_CONNECTOR_ADDRESS_PROP',
]
