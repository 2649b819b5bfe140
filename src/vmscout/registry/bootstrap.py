"""
Management agent bootstrap.

Starts the local management agent inside a target VM and returns the
connector address it publishes. Runtimes older than 8 need the bundled
``management-agent.jar`` loaded explicitly; newer runtimes start the agent
themselves on request.
"""

import re
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Tuple

from ..utils.config import TransportProfile
from ..utils.errors import (
    AgentInitError, BootstrapError, BootstrapStep,
)
from ..utils.logging import get_logger
from .transport import AttachTransport, LOCAL_CONNECTOR_ADDRESS_PROP, release_handle

logger = get_logger(__name__)

MANAGEMENT_AGENT_JAR = "management-agent.jar"
MANAGEMENT_AGENT_INIT_CLASS = "com.sun.management.jmxremote"

# First major version that can start its management agent without a jar.
BUILTIN_AGENT_MIN_VERSION = 8

_VERSION_RE = re.compile(r"\s*(\d+)(?:\.(\d+))?")


def parse_major_version(version: str) -> int:
    """
    Major version of a runtime version string.

    Handles the legacy ``1.N`` scheme (``"1.8.0_302"`` -> 8) and the later
    scheme where the first number is the major version (``"11.0.2"`` -> 11,
    ``"17"`` -> 17, ``"9-ea"`` -> 9).

    Raises:
        ValueError: ``version`` does not start with a number
    """
    match = _VERSION_RE.match(version)
    if match is None:
        raise ValueError(f"Unrecognized runtime version: {version!r}")
    major = int(match.group(1))
    if major == 1 and match.group(2) is not None:
        major = int(match.group(2))
    return major


def agent_search_paths(java_home: str) -> List[Path]:
    """Candidate locations of the management agent jar, in search order."""
    home = Path(java_home)
    return [
        home / "jre" / "lib" / MANAGEMENT_AGENT_JAR,
        # build environments put it directly under lib
        home / "lib" / MANAGEMENT_AGENT_JAR,
    ]


def locate_management_agent(java_home: str) -> Path:
    """
    Find the management agent jar of the installation at ``java_home``.

    Raises:
        FileNotFoundError: No candidate location holds the jar
    """
    candidates = agent_search_paths(java_home)
    for candidate in candidates:
        if candidate.is_file():
            return candidate.resolve()
    raise FileNotFoundError(
        "Management agent not found in " + ", ".join(str(c) for c in candidates)
    )


class ManagementAgentBootstrapper:
    """Runs the attach -> start agent -> read address handshake for one pid."""

    def __init__(
        self,
        transport: AttachTransport,
        profile: TransportProfile = TransportProfile.STANDARD,
    ):
        """
        Initialize bootstrapper.

        Args:
            transport: Attach transport to the target runtimes
            profile: Attach semantics of the runtime family
        """
        self.transport = transport
        self.profile = profile

    def bootstrap(self, pid: int) -> str:
        """
        Start the management agent in ``pid`` and return its connector address.

        Raises:
            BootstrapError: Any step of the handshake failed; ``step`` says which
        """
        with self._attach(pid) as handle:
            java_home, major = self._read_runtime(pid, handle)
            logger.debug("bootstrap_runtime", pid=pid, java_home=java_home, major=major)

            if major < BUILTIN_AGENT_MIN_VERSION:
                artifact = self._locate_artifact(pid, java_home)
                self._load_agent(pid, handle, artifact)
            else:
                self._start_builtin(pid, handle)

            address = self._read_address(pid, handle)

        logger.info("management_agent_started", pid=pid, address=address)
        return address

    @contextmanager
    def _attach(self, pid: int) -> Iterator[Any]:
        try:
            handle = self.transport.attach(str(pid))
        except Exception as e:
            raise BootstrapError(
                pid, BootstrapStep.ATTACH, f"Cannot attach to {pid}: {e}", cause=e
            ) from e
        try:
            yield handle
        finally:
            release_handle(self.transport, handle, str(pid))

    def _read_runtime(self, pid: int, handle: Any) -> Tuple[str, int]:
        try:
            props = self.transport.get_system_properties(handle) or {}
        except Exception as e:
            raise BootstrapError(
                pid, BootstrapStep.PROPERTIES, f"Cannot read system properties: {e}", cause=e
            ) from e

        java_home = props.get("java.home")
        java_version = props.get("java.version")
        if not java_home or not java_version:
            raise BootstrapError(
                pid, BootstrapStep.PROPERTIES, "Target does not report java.home/java.version"
            )
        try:
            return java_home, parse_major_version(java_version)
        except ValueError as e:
            raise BootstrapError(pid, BootstrapStep.PROPERTIES, str(e), cause=e) from e

    def _locate_artifact(self, pid: int, java_home: str) -> Path:
        try:
            return locate_management_agent(java_home)
        except OSError as e:
            raise BootstrapError(
                pid, BootstrapStep.ARTIFACT_NOT_FOUND, str(e), cause=e
            ) from e

    def _load_agent(self, pid: int, handle: Any, artifact: Path) -> None:
        try:
            self.transport.load_agent(handle, str(artifact), MANAGEMENT_AGENT_INIT_CLASS)
        except AgentInitError as e:
            raise BootstrapError(pid, BootstrapStep.INIT, str(e), cause=e) from e
        except Exception as e:
            raise BootstrapError(pid, BootstrapStep.LOAD, str(e), cause=e) from e

    def _start_builtin(self, pid: int, handle: Any) -> None:
        try:
            self.transport.start_builtin_management_agent(handle)
        except Exception as e:
            raise BootstrapError(pid, BootstrapStep.INIT, str(e), cause=e) from e

    def _read_address(self, pid: int, handle: Any) -> str:
        try:
            props = self._address_properties(handle) or {}
        except Exception as e:
            raise BootstrapError(
                pid, BootstrapStep.INIT, f"Cannot read connector address: {e}", cause=e
            ) from e

        address = props.get(LOCAL_CONNECTOR_ADDRESS_PROP)
        if not address:
            raise BootstrapError(pid, BootstrapStep.INIT, "Fails to find connector address")
        return address

    def _address_properties(self, handle: Any) -> Mapping[str, str]:
        # alternate-vendor runtimes publish the address as a system property
        if self.profile is TransportProfile.ALTERNATE_VENDOR:
            return self.transport.get_system_properties(handle)
        return self.transport.get_agent_properties(handle)
