"""
Process discovery for vmscout.

This package provides:
- ProcessRegistry: merges passive and active discovery, bootstraps endpoints
- ProcessRecord: one discovered VM
- AttachTransport / PassiveMonitor: interfaces the host application implements
"""

from .record import ProcessRecord, display_label
from .transport import (
    AttachTransport,
    PassiveMonitor,
    VMDescriptor,
    LOCAL_CONNECTOR_ADDRESS_PROP,
    attached,
    monitor_session,
    canonical_pid,
)
from .probe import ProbeResult, run_probe, bounded
from .bootstrap import ManagementAgentBootstrapper, parse_major_version, locate_management_agent
from .registry import ProcessRegistry

__all__ = [
    # Records
    'ProcessRecord',
    'display_label',

    # Collaborators
    'AttachTransport',
    'PassiveMonitor',
    'VMDescriptor',
    'LOCAL_CONNECTOR_ADDRESS_PROP',
    'attached',
    'monitor_session',
    'canonical_pid',

    # Probing
    'ProbeResult',
    'run_probe',
    'bounded',

    # Bootstrap
    'ManagementAgentBootstrapper',
    'parse_major_version',
    'locate_management_agent',

    # Registry
    'ProcessRegistry',
]
