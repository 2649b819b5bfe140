"""
Error handling framework for vmscout.

This module provides:
- Hierarchical exception classes for discovery, attach and bootstrap
- Error context preservation
- Structured error responses
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import traceback
from contextlib import contextmanager

from .logging import get_logger


logger = get_logger("vmscout.errors")


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    DISCOVERY = "discovery"
    ATTACH = "attach"
    BOOTSTRAP = "bootstrap"
    AUTHORIZATION = "authorization"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=datetime.utcnow)
    pid: Optional[int] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None


class VMScoutError(Exception):
    """Base exception for all vmscout errors."""

    code: str = "VMSCOUT_ERROR"
    default_message: str = "An error occurred in vmscout"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        """Initialize vmscout error."""
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

        # Capture stack trace
        if not self.context.stack_trace and cause is not None:
            self.context.stack_trace = "".join(
                traceback.format_exception(type(cause), cause, cause.__traceback__)
            )

        super().__init__(self.message)

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "severity": self.severity.value,
                "category": self.category.value,
                "is_retryable": self.is_retryable,
                "suggestions": self.get_suggestions(),
                "cause": repr(self.cause) if self.cause is not None else None,
                "context": {
                    "timestamp": self.context.timestamp.isoformat(),
                    "pid": self.context.pid,
                    "component": self.context.component,
                    "operation": self.context.operation,
                    "metadata": self.context.metadata,
                },
            }
        }


# Configuration / validation

class ConfigurationError(VMScoutError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Check VMSCOUT_* environment variables",
        ]


class ValidationError(VMScoutError):
    """Input validation errors."""
    code = "VALIDATION_ERROR"
    default_message = "Validation error"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        message = f"Validation failed for field '{field}': {constraint}"
        super().__init__(message, **kwargs)


# Discovery

class DiscoveryError(VMScoutError):
    """A discovery source failed."""
    code = "DISCOVERY_ERROR"
    default_message = "Process discovery failed"
    category = ErrorCategory.DISCOVERY
    severity = ErrorSeverity.WARNING


class MonitorError(DiscoveryError):
    """The passive monitoring source could not be read."""
    code = "MONITOR_ERROR"
    default_message = "Passive monitoring source failed"


class ProbeTimeoutError(DiscoveryError):
    """A per-process probe did not complete in time."""
    code = "PROBE_TIMEOUT"
    default_message = "Probe timed out"
    is_retryable = True


# Attach transport

class AttachError(VMScoutError):
    """Base for failures reported by the attach transport."""
    code = "ATTACH_ERROR"
    default_message = "Attach operation failed"
    category = ErrorCategory.ATTACH


class AttachUnsupportedError(AttachError):
    """The target process declines dynamic attach."""
    code = "ATTACH_UNSUPPORTED"
    default_message = "Process does not support dynamic attach"


class AttachAccessDeniedError(AttachError):
    """The target process belongs to a principal we cannot attach to."""
    code = "ATTACH_ACCESS_DENIED"
    default_message = "Access denied while attaching"
    category = ErrorCategory.AUTHORIZATION

    def get_suggestions(self) -> List[str]:
        return ["Run as the same user as the target process, or with elevated privileges"]


class AttachIOError(AttachError):
    """I/O failure talking to the target (process exited, socket closed)."""
    code = "ATTACH_IO_ERROR"
    default_message = "I/O failure on attach channel"
    is_retryable = True


class AgentLoadError(AttachError):
    """The agent artifact could not be loaded into the target."""
    code = "AGENT_LOAD_ERROR"
    default_message = "Failed to load agent"


class AgentInitError(AttachError):
    """The agent was loaded but its initialization failed."""
    code = "AGENT_INIT_ERROR"
    default_message = "Agent initialization failed"


# Lookup / bootstrap

class ProcessNotAttachableError(VMScoutError):
    """A process is neither discoverable nor attachable by id."""
    code = "PROCESS_NOT_ATTACHABLE"
    default_message = "Process is not attachable"
    category = ErrorCategory.ATTACH

    def __init__(self, pid: int, **kwargs):
        self.pid = pid
        kwargs.setdefault("context", ErrorContext(pid=pid))
        super().__init__(f"Process {pid} is not attachable", **kwargs)


class BootstrapStep(str, Enum):
    """Step of the management-agent handshake that failed."""
    ATTACH = "attach"
    PROPERTIES = "properties"
    ARTIFACT_NOT_FOUND = "artifact_not_found"
    LOAD = "load"
    INIT = "init"


class BootstrapError(VMScoutError):
    """The management endpoint could not be established."""
    code = "BOOTSTRAP_ERROR"
    default_message = "Management agent bootstrap failed"
    category = ErrorCategory.BOOTSTRAP

    def __init__(self, pid: int, step: BootstrapStep, message: str, **kwargs):
        self.pid = pid
        self.step = step
        kwargs.setdefault("context", ErrorContext(pid=pid, operation=step.value))
        super().__init__(message, **kwargs)


class NotAttachableError(BootstrapError):
    """Bootstrap was requested for a process that does not support attach."""
    code = "NOT_ATTACHABLE"

    def __init__(self, pid: int, **kwargs):
        super().__init__(
            pid,
            BootstrapStep.ATTACH,
            f'This virtual machine "{pid}" does not support dynamic attach.',
            **kwargs,
        )


# Error Context Manager

@contextmanager
def error_context(component: str, operation: str, **metadata):
    """
    Context manager that tags errors with where they happened.

    vmscout errors get their context filled in and are re-raised; anything
    else is wrapped in a VMScoutError.

    Args:
        component: Component name
        operation: Operation name
        **metadata: Additional context metadata
    """
    context = ErrorContext(
        component=component,
        operation=operation,
        metadata=metadata,
    )

    try:
        yield context
    except VMScoutError as e:
        e.context.component = e.context.component or component
        e.context.operation = e.context.operation or operation
        e.context.metadata.update(metadata)
        logger.debug("vmscout_error_in_context", error=e.to_dict())
        raise
    except Exception as e:
        wrapped = VMScoutError(message=str(e), context=context, cause=e)
        logger.error(
            "unexpected_error_in_context",
            error=wrapped.to_dict(),
            exc_info=True,
        )
        raise wrapped from e


__all__ = [
    'VMScoutError',
    'ErrorContext',
    'ErrorSeverity',
    'ErrorCategory',
    'ConfigurationError',
    'ValidationError',
    'DiscoveryError',
    'MonitorError',
    'ProbeTimeoutError',
    'AttachError',
    'AttachUnsupportedError',
    'AttachAccessDeniedError',
    'AttachIOError',
    'AgentLoadError',
    'AgentInitError',
    'ProcessNotAttachableError',
    'BootstrapStep',
    'BootstrapError',
    'NotAttachableError',
    'error_context',
]
