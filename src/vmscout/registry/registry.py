"""
Process Registry for vmscout.

Discovers the VMs running on this host by combining two sources:
- the passive monitoring source (shared-memory perf data), preferred
- the active attach source, for VMs the passive source does not see

and bootstraps a management endpoint for a discovered VM on demand.
Discovery is best-effort: a process that cannot be read is recorded with
degraded information instead of failing the whole pass.
"""

from functools import partial
from typing import Any, Callable, Dict, Mapping, Optional

import psutil

from ..utils.config import DiscoveryConfig, TransportProfile
from ..utils.errors import (
    MonitorError, NotAttachableError,
    ProcessNotAttachableError, ValidationError, error_context,
)
from ..utils.logging import get_logger, log_function_call
from .bootstrap import ManagementAgentBootstrapper
from .probe import bounded, run_probe
from .record import ProcessRecord
from .transport import (
    AttachTransport, LOCAL_CONNECTOR_ADDRESS_PROP, PassiveMonitor, VMDescriptor,
    attached, canonical_pid, monitor_session, release_handle,
)

logger = get_logger(__name__)

ProcessMap = Dict[int, ProcessRecord]


class ProcessRegistry:
    """Discovers local VMs and bootstraps their management endpoints."""

    def __init__(
        self,
        attach: AttachTransport,
        monitor: Optional[PassiveMonitor] = None,
        config: Optional[DiscoveryConfig] = None,
    ):
        """
        Initialize process registry.

        Args:
            attach: Active attach transport
            monitor: Passive monitoring source, if the runtime has one
            config: Discovery configuration (profile, timeouts)
        """
        self.attach = attach
        self.monitor = monitor
        self.config = config or DiscoveryConfig()
        self._bootstrapper = ManagementAgentBootstrapper(attach, self.config.profile)

    @property
    def profile(self) -> TransportProfile:
        return self.config.profile

    @property
    def passive_enabled(self) -> bool:
        """Whether the passive source takes part in discovery."""
        return (
            self.monitor is not None
            and self.config.include_passive
            and self.profile is not TransportProfile.ALTERNATE_VENDOR
        )

    @log_function_call(logger)
    def discover_all(self) -> ProcessMap:
        """Return every VM currently visible on the host, keyed by pid."""
        processes: ProcessMap = {}
        self.merge_passive(processes, {})
        self.merge_active(processes, {})
        logger.info("discovery_completed", count=len(processes))
        return processes

    def discover_new(self, existing: Mapping[int, ProcessRecord]) -> ProcessMap:
        """
        Return ``existing`` plus any VM not already in it.

        Known pids are not probed again; their records are carried over as is.
        """
        processes: ProcessMap = dict(existing)
        self.merge_passive(processes, existing)
        self.merge_active(processes, existing)
        logger.info(
            "incremental_discovery_completed",
            known=len(existing),
            new=len(processes) - len(existing),
        )
        return processes

    def merge_passive(self, target: ProcessMap, exclude: Mapping[int, Any]) -> None:
        """
        Add the VMs published by the passive source to ``target``.

        Every listed pid not in ``exclude`` gets a record; a pid whose
        monitoring data cannot be read is recorded under its bare id and as
        not attachable.
        """
        if not self.passive_enabled:
            return

        try:
            active_ids = self.monitor.list_active_ids()
        except MonitorError as e:
            logger.warning("passive_listing_failed", error=str(e))
            return

        for raw_id in active_ids:
            pid = canonical_pid(raw_id)
            if pid is None:
                logger.debug("passive_id_skipped", raw_id=repr(raw_id))
                continue
            if pid in exclude:
                continue

            result = run_probe(
                partial(self._bounded, f"passive probe of {pid}", self._probe_passive, pid)
            )
            target[pid] = result.degrade(partial(self._degraded_passive, pid))

    def _probe_passive(self, pid: int) -> ProcessRecord:
        with monitor_session(self.monitor, pid) as session:
            command_line = self.monitor.read_command_line(session)
            can_attach = self.monitor.read_attachable(session)
        return ProcessRecord(pid, command_line, can_attach)

    def _degraded_passive(self, pid: int, error: BaseException) -> ProcessRecord:
        logger.debug("passive_probe_degraded", pid=pid, error=repr(error))
        return ProcessRecord(pid, str(pid), False)

    def merge_active(self, target: ProcessMap, exclude: Mapping[int, Any]) -> None:
        """
        Add attachable VMs not already in ``target`` or ``exclude``.

        Each one is attached briefly to read the connector address of an
        agent that is already running. A VM that refuses the attach, or
        fails in any other way before the attach completes, is still
        recorded, as not attachable. Once attached, a VM stays attachable
        even when its properties cannot be read.
        """
        for descriptor in self.attach.list_attachable_descriptors():
            pid = canonical_pid(descriptor.id)
            if pid is None:
                # only pid-addressed VMs take part
                logger.debug("descriptor_skipped", vmid=descriptor.id)
                continue
            if pid in target or pid in exclude:
                continue

            result = run_probe(
                partial(self._bounded, f"attach probe of {pid}", self._probe_active, pid, descriptor)
            )
            target[pid] = result.degrade(partial(self._degraded_active, pid, descriptor))

    def _probe_active(self, pid: int, descriptor: VMDescriptor) -> ProcessRecord:
        with attached(self.attach, descriptor) as handle:
            result = run_probe(partial(self._connector_address, handle))
        if not result.ok:
            logger.debug("agent_properties_unreadable", pid=pid, error=repr(result.error))
        return ProcessRecord(pid, descriptor.display_name, True, result.value_or(None))

    def _degraded_active(
        self, pid: int, descriptor: VMDescriptor, error: BaseException
    ) -> ProcessRecord:
        logger.debug("attach_probe_degraded", pid=pid, error=repr(error))
        return ProcessRecord(pid, descriptor.display_name, False)

    def _connector_address(self, handle: Any) -> Optional[str]:
        props = self.attach.get_agent_properties(handle)
        if props is None:
            return None
        return props.get(LOCAL_CONNECTOR_ADDRESS_PROP)

    def _bounded(self, label: str, probe: Callable[..., ProcessRecord], *args: Any) -> ProcessRecord:
        return bounded(partial(probe, *args), self.config.probe_timeout, label=label)

    def lookup(self, pid: int) -> ProcessRecord:
        """
        Find the VM with the given pid.

        Falls back to attaching by pid directly when discovery does not list
        it, which happens for VMs running as another user that are still
        attachable (services running under a system account, for example).

        Raises:
            ProcessNotAttachableError: The pid is not discoverable and the
                direct attach failed
        """
        raw_pid = pid
        pid = canonical_pid(raw_pid)
        if pid is None:
            raise ValidationError("pid", raw_pid, "must be a non-negative integer")

        record = self.discover_all().get(pid)
        if record is not None:
            return record

        # NOTE: attaches by bare pid; if the pid was reused since discovery
        # this reaches whatever process owns it now.
        logger.info("lookup_direct_attach", pid=pid, owner=_process_owner(pid))
        try:
            return self._bounded(f"direct attach to {pid}", self._attach_by_pid, pid)
        except Exception as e:
            raise ProcessNotAttachableError(pid, cause=e) from e

    def _attach_by_pid(self, pid: int) -> ProcessRecord:
        name = str(pid)
        with attached(self.attach, name) as handle:
            address = run_probe(partial(self._connector_address, handle)).value_or(None)
        return ProcessRecord(pid, name, True, address)

    def from_attached(self, handle: Any) -> ProcessRecord:
        """
        Build a record for a VM the caller has already attached to.

        The handle is detached afterwards.

        Raises:
            ValidationError: The handle's id is not a pid
        """
        name = str(handle.id)
        pid = canonical_pid(name)
        if pid is None:
            release_handle(self.attach, handle, name)
            raise ValidationError("handle.id", name, "must be a process id")
        try:
            address = self._connector_address(handle)
        finally:
            release_handle(self.attach, handle, name)
        return ProcessRecord(pid, name, True, address)

    def ensure_endpoint(self, record: ProcessRecord) -> ProcessRecord:
        """
        Make sure ``record`` has a management endpoint, starting the agent if needed.

        Does nothing when the endpoint is already known. The record is only
        updated once the handshake has fully succeeded.

        Raises:
            NotAttachableError: The VM does not support dynamic attach
            BootstrapError: The handshake failed; ``step`` says where
        """
        if record.endpoint_address is not None:
            return record

        if not record.can_attach:
            raise NotAttachableError(record.pid)

        with error_context("registry", "ensure_endpoint", pid=record.pid):
            address = self._bootstrapper.bootstrap(record.pid)

        record.endpoint_address = address
        return record


def _process_owner(pid: int) -> Optional[str]:
    """Name of the user owning ``pid``, if this process may read it."""
    try:
        return psutil.Process(pid).username()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None
