"""
In-memory attach transport and passive monitor for registry tests.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

from vmscout.registry.transport import (
    AttachTransport, PassiveMonitor, VMDescriptor, LOCAL_CONNECTOR_ADDRESS_PROP,
)
from vmscout.utils.errors import AttachIOError, MonitorError


@dataclass
class FakeHandle:
    """Attach handle handed out by FakeAttachTransport."""
    id: str


@dataclass
class FakeVM:
    """A simulated VM as seen by the attach transport."""
    pid: int
    display_name: str = "com.example.Main"
    vmid: Optional[str] = None
    listed: bool = True
    agent_properties: Dict[str, str] = field(default_factory=dict)
    system_properties: Dict[str, str] = field(default_factory=lambda: {
        "java.home": "/usr/lib/jvm/java-17",
        "java.version": "17.0.8",
    })
    attach_error: Optional[Exception] = None
    properties_error: Optional[Exception] = None
    load_error: Optional[Exception] = None
    start_error: Optional[Exception] = None
    detach_error: Optional[Exception] = None
    # address published once the management agent is started
    started_address: Optional[str] = "service:jmx:rmi://127.0.0.1/stub/agent"
    publish_in_system_properties: bool = False

    @property
    def descriptor_id(self) -> str:
        return self.vmid if self.vmid is not None else str(self.pid)


class FakeAttachTransport(AttachTransport):
    """Attach transport over a dict of FakeVMs, recording every call."""

    def __init__(self, vms: Optional[List[FakeVM]] = None):
        self.vms: Dict[str, FakeVM] = {}
        self.calls: List[Tuple[str, str]] = []
        self.open_handles: Set[str] = set()
        self.loaded_agents: List[Tuple[str, str, str]] = []
        for vm in vms or []:
            self.add(vm)

    def add(self, vm: FakeVM) -> FakeVM:
        self.vms[vm.descriptor_id] = vm
        return vm

    def calls_for(self, name: str) -> List[Tuple[str, str]]:
        return [call for call in self.calls if call[1] == name]

    def _vm(self, handle: FakeHandle) -> FakeVM:
        return self.vms[handle.id]

    def list_attachable_descriptors(self) -> List[VMDescriptor]:
        self.calls.append(("list", ""))
        return [
            VMDescriptor(id=vm.descriptor_id, display_name=vm.display_name)
            for vm in self.vms.values() if vm.listed
        ]

    def attach(self, target: Union[VMDescriptor, str]) -> FakeHandle:
        name = target.id if isinstance(target, VMDescriptor) else target
        self.calls.append(("attach", name))
        vm = self.vms.get(name)
        if vm is None:
            raise AttachIOError(f"No such process: {name}")
        if vm.attach_error is not None:
            raise vm.attach_error
        self.open_handles.add(name)
        return FakeHandle(id=name)

    def get_agent_properties(self, handle: FakeHandle) -> Dict[str, str]:
        self.calls.append(("agent_properties", handle.id))
        vm = self._vm(handle)
        if vm.properties_error is not None:
            raise vm.properties_error
        return dict(vm.agent_properties)

    def get_system_properties(self, handle: FakeHandle) -> Dict[str, str]:
        self.calls.append(("system_properties", handle.id))
        vm = self._vm(handle)
        if vm.properties_error is not None:
            raise vm.properties_error
        return dict(vm.system_properties)

    def load_agent(self, handle: FakeHandle, artifact_path: str, init_class: str) -> None:
        self.calls.append(("load_agent", handle.id))
        vm = self._vm(handle)
        if vm.load_error is not None:
            raise vm.load_error
        self.loaded_agents.append((handle.id, artifact_path, init_class))
        self._publish(vm)

    def start_builtin_management_agent(self, handle: FakeHandle) -> None:
        self.calls.append(("start_agent", handle.id))
        vm = self._vm(handle)
        if vm.start_error is not None:
            raise vm.start_error
        self._publish(vm)

    def detach(self, handle: FakeHandle) -> None:
        self.calls.append(("detach", handle.id))
        self.open_handles.discard(handle.id)
        vm = self._vm(handle)
        if vm.detach_error is not None:
            raise vm.detach_error

    def _publish(self, vm: FakeVM) -> None:
        if vm.started_address is None:
            return
        if vm.publish_in_system_properties:
            vm.system_properties[LOCAL_CONNECTOR_ADDRESS_PROP] = vm.started_address
        else:
            vm.agent_properties[LOCAL_CONNECTOR_ADDRESS_PROP] = vm.started_address


@dataclass
class FakeMonitoredVM:
    """A VM as seen by the passive monitor; ``error`` makes it unreadable."""
    command_line: str = "com.example.Main"
    attachable: bool = True
    error: Optional[Exception] = None


class FakePassiveMonitor(PassiveMonitor):
    """Passive monitor over a dict of pid -> FakeMonitoredVM."""

    def __init__(self, vms: Optional[Dict[object, FakeMonitoredVM]] = None):
        self.vms: Dict[object, FakeMonitoredVM] = dict(vms or {})
        self.list_error: Optional[Exception] = None
        self.opened: List[int] = []
        self.open_sessions: Set[int] = set()

    def list_active_ids(self) -> Set[object]:
        if self.list_error is not None:
            raise self.list_error
        return set(self.vms)

    def open_session(self, pid: int) -> int:
        self.opened.append(pid)
        vm = self.vms.get(pid)
        if vm is None:
            raise MonitorError(f"Process {pid} is gone")
        if vm.error is not None:
            raise vm.error
        self.open_sessions.add(pid)
        return pid

    def read_command_line(self, session: int) -> str:
        return self.vms[session].command_line

    def read_attachable(self, session: int) -> bool:
        return self.vms[session].attachable

    def close_session(self, session: int) -> None:
        self.open_sessions.discard(session)


class TransportFixtures:
    """Builders for on-disk runtime layouts."""

    @staticmethod
    def create_java_home(base: Path, layout: str = "jre") -> Path:
        """
        Create a fake runtime installation containing management-agent.jar.

        ``layout`` is ``"jre"`` (jar under jre/lib), ``"lib"`` (jar under lib)
        or ``"none"`` (no jar).
        """
        home = base / "jdk"
        home.mkdir(parents=True, exist_ok=True)
        if layout == "jre":
            lib = home / "jre" / "lib"
        elif layout == "lib":
            lib = home / "lib"
        else:
            return home
        lib.mkdir(parents=True, exist_ok=True)
        (lib / "management-agent.jar").write_bytes(b"PK\x03\x04")
        return home
