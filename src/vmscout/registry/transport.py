"""
Collaborator interfaces for process discovery.

The platform facilities that actually talk to a running VM are not part of
vmscout. A host application supplies them by implementing:

- ``AttachTransport``: the active attach / agent-injection mechanism
- ``PassiveMonitor``: the passive shared-memory monitoring mechanism
  (optional, absent on some runtimes)

Both are consumed through the scoped helpers ``attached()`` and
``monitor_session()`` so that every acquired handle is released.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, List, Mapping, Optional, Set, Union

from ..utils.logging import get_logger

logger = get_logger(__name__)


# Agent property under which a running management agent publishes its
# local connector address.
LOCAL_CONNECTOR_ADDRESS_PROP = "com.sun.management.jmxremote.localConnectorAddress"


@dataclass(frozen=True)
class VMDescriptor:
    """An attach-capable process as listed by the attach transport."""
    id: str
    display_name: str


def canonical_pid(raw: Any) -> Optional[int]:
    """
    Normalize an id reported by either discovery source.

    Returns the non-negative integer pid, or None when ``raw`` does not
    denote one (for example a vmid that is not a pid).
    """
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw >= 0 else None
    if isinstance(raw, str):
        text = raw.strip()
        if text.isdigit() and text.isascii():
            return int(text)
    return None


class AttachTransport(ABC):
    """Active attach mechanism of the monitored runtime.

    Handles returned by ``attach`` must expose an ``id`` attribute holding the
    target's pid as a string.
    """

    @abstractmethod
    def list_attachable_descriptors(self) -> List[VMDescriptor]:
        """List processes the transport believes it can attach to."""

    @abstractmethod
    def attach(self, target: Union[VMDescriptor, str]) -> Any:
        """
        Attach to a process.

        Raises:
            AttachUnsupportedError: The target declines dynamic attach
            AttachAccessDeniedError: The target belongs to another principal
            AttachIOError: The target could not be reached
        """

    @abstractmethod
    def get_agent_properties(self, handle: Any) -> Mapping[str, str]:
        """Read the agent properties of an attached process."""

    @abstractmethod
    def get_system_properties(self, handle: Any) -> Mapping[str, str]:
        """Read the system properties of an attached process."""

    @abstractmethod
    def load_agent(self, handle: Any, artifact_path: str, init_class: str) -> None:
        """
        Load an agent artifact into an attached process.

        Raises:
            AgentLoadError: The artifact could not be loaded
            AgentInitError: The agent failed to initialize
        """

    @abstractmethod
    def start_builtin_management_agent(self, handle: Any) -> None:
        """Ask the target to start its bundled local management agent."""

    @abstractmethod
    def detach(self, handle: Any) -> None:
        """Release an attach handle."""


class PassiveMonitor(ABC):
    """Passive shared-memory monitoring of the host's VMs."""

    @abstractmethod
    def list_active_ids(self) -> Set[int]:
        """List the ids of VMs currently publishing monitoring data."""

    @abstractmethod
    def open_session(self, pid: int) -> Any:
        """
        Open a monitoring session on one VM.

        Raises:
            MonitorError: The VM's monitoring data could not be opened
        """

    @abstractmethod
    def read_command_line(self, session: Any) -> str:
        """Read the invocation command line from a session."""

    @abstractmethod
    def read_attachable(self, session: Any) -> bool:
        """Read whether the VM advertises dynamic attach support."""

    @abstractmethod
    def close_session(self, session: Any) -> None:
        """Release a monitoring session."""


@contextmanager
def attached(transport: AttachTransport, target: Union[VMDescriptor, str]) -> Iterator[Any]:
    """Attach to ``target`` for the duration of the block, always detaching."""
    handle = transport.attach(target)
    try:
        yield handle
    finally:
        release_handle(transport, handle, _target_name(target))


def release_handle(transport: AttachTransport, handle: Any, target: str) -> None:
    """Detach ``handle``; a failing detach is logged, not raised."""
    try:
        transport.detach(handle)
    except Exception as e:
        logger.warning("detach_failed", target=target, error=str(e))


@contextmanager
def monitor_session(monitor: PassiveMonitor, pid: int) -> Iterator[Any]:
    """Open a passive monitoring session for the block, always closing it."""
    session = monitor.open_session(pid)
    try:
        yield session
    finally:
        try:
            monitor.close_session(session)
        except Exception as e:
            logger.warning("monitor_session_close_failed", pid=pid, error=str(e))


def _target_name(target: Union[VMDescriptor, str]) -> str:
    return target.id if isinstance(target, VMDescriptor) else target
