"""
Process records produced by discovery.
"""

from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Dict, Optional

from ..utils.errors import ValidationError


def display_label(command_line: str) -> str:
    """
    Derive a short label from a process invocation.

    When the first token names a jar, the directory part is dropped:
    ``"/opt/app/service.jar --port 9090"`` becomes ``"service.jar --port 9090"``.
    Anything else is returned unchanged.
    """
    head, sep, rest = command_line.partition(" ")
    if not head.endswith(".jar"):
        return command_line
    label = PurePath(head).name
    if sep:
        label += " " + rest
    return label


@dataclass(eq=False)
class ProcessRecord:
    """A process observed during discovery.

    ``endpoint_address`` may be assigned exactly once, from ``None`` to a
    connector string; every other field is fixed at construction.
    """
    pid: int
    command_line: str
    can_attach: bool = False
    endpoint_address: Optional[str] = None
    display_label: str = field(init=False)

    def __post_init__(self):
        if isinstance(self.pid, bool) or not isinstance(self.pid, int) or self.pid < 0:
            raise ValidationError("pid", self.pid, "must be a non-negative integer")
        self.display_label = display_label(self.command_line)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self.__dict__:
            if name != "endpoint_address":
                raise AttributeError(f"ProcessRecord.{name} is read-only")
            if self.__dict__[name] is not None or value is None:
                raise AttributeError(
                    f"endpoint_address of process {self.pid} is already set"
                )
        super().__setattr__(name, value)

    @property
    def is_manageable(self) -> bool:
        """True once a management endpoint is known."""
        return self.endpoint_address is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "pid": self.pid,
            "display_label": self.display_label,
            "command_line": self.command_line,
            "can_attach": self.can_attach,
            "endpoint_address": self.endpoint_address,
        }

    def __str__(self) -> str:
        return self.command_line
