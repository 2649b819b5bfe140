"""
Per-process probe results.

Discovery probes one process at a time and must keep going when a single
process is unreadable. A probe is run through ``run_probe``, which captures
the expected failures into a ``ProbeResult``; ``degrade`` then turns a failed
result into a fallback value. Failures outside ``recover`` propagate.
"""

import threading
from concurrent.futures import Future, wait
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Tuple, Type, TypeVar

from ..utils.logging import get_logger
from ..utils.errors import ProbeTimeoutError

logger = get_logger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class ProbeResult(Generic[T]):
    """Outcome of a probe: a value or the exception that prevented it."""
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def degrade(self, fallback: Callable[[BaseException], T]) -> T:
        """Return the value, or ``fallback(error)`` if the probe failed."""
        if self.error is None:
            return self.value
        return fallback(self.error)

    def value_or(self, default: T) -> T:
        return self.value if self.error is None else default


def run_probe(
    probe: Callable[[], T],
    recover: Tuple[Type[BaseException], ...] = (Exception,),
) -> ProbeResult[T]:
    """Run ``probe``, capturing any exception in ``recover`` as a failed result."""
    try:
        return ProbeResult(value=probe())
    except recover as e:
        return ProbeResult(error=e)


def bounded(probe: Callable[[], T], timeout: Optional[float], label: str = "probe") -> T:
    """
    Run ``probe`` with an upper bound on wall-clock time.

    With ``timeout=None`` the probe runs inline. Otherwise it runs on a
    daemon thread; if it has not finished after ``timeout`` seconds a
    ProbeTimeoutError is raised and the thread is abandoned, since a wedged
    attach cannot be interrupted. Daemon threads do not hold up interpreter
    exit.
    """
    if timeout is None:
        return probe()

    future: Future = Future()

    def worker() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(probe())
        except BaseException as e:
            future.set_exception(e)

    thread = threading.Thread(target=worker, name=f"vmscout-{label}", daemon=True)
    thread.start()

    done, _ = wait([future], timeout=timeout)
    if not done:
        logger.warning("probe_timed_out", probe=label, timeout=timeout)
        raise ProbeTimeoutError(f"{label} did not finish within {timeout}s")
    return future.result()
