"""
Tests for probe results, degradation and time bounds.
"""

import os
import subprocess
import sys
import textwrap
import threading
from pathlib import Path

import pytest

from vmscout.registry.probe import ProbeResult, bounded, run_probe
from vmscout.registry.transport import canonical_pid
from vmscout.utils.errors import AttachIOError, MonitorError, ProbeTimeoutError

SRC = Path(__file__).parent.parent.parent / "src"


class TestRunProbe:
    """Test run_probe and degrade."""

    def test_success(self):
        result = run_probe(lambda: 42)

        assert result.ok
        assert result.value == 42
        assert result.degrade(lambda e: -1) == 42

    def test_failure_is_captured(self):
        def probe():
            raise MonitorError("gone")

        result = run_probe(probe)

        assert not result.ok
        assert isinstance(result.error, MonitorError)
        assert result.degrade(lambda e: type(e).__name__) == "MonitorError"
        assert result.value_or("default") == "default"

    def test_unrecovered_error_propagates(self):
        def probe():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            run_probe(probe, recover=(AttachIOError,))

    def test_explicit_result(self):
        assert ProbeResult(value=None).ok
        assert ProbeResult(value=None).value_or(3) is None


class TestBounded:
    """Test time-bounded probes."""

    def test_unbounded_runs_inline(self):
        caller = threading.get_ident()

        assert bounded(threading.get_ident, None) == caller

    def test_finishes_in_time(self):
        assert bounded(lambda: "done", 5.0) == "done"

    def test_errors_propagate(self):
        def probe():
            raise AttachIOError("refused")

        with pytest.raises(AttachIOError):
            bounded(probe, 5.0)

    def test_timeout(self):
        release = threading.Event()

        try:
            with pytest.raises(ProbeTimeoutError):
                bounded(lambda: release.wait(10), 0.05, label="stuck probe")
        finally:
            release.set()

    def test_probe_timeout_error_from_probe_propagates(self):
        def probe():
            raise TimeoutError("probe's own timeout")

        with pytest.raises(TimeoutError) as exc_info:
            bounded(probe, 5.0)

        assert not isinstance(exc_info.value, ProbeTimeoutError)

    def test_abandoned_probe_does_not_block_exit(self):
        script = textwrap.dedent("""
            import time
            from vmscout.registry.probe import bounded
            from vmscout.utils.errors import ProbeTimeoutError

            try:
                bounded(lambda: time.sleep(60), 0.1, label="wedged attach")
            except ProbeTimeoutError:
                print("timed out")
        """)
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(
            filter(None, [str(SRC), env.get("PYTHONPATH")])
        )

        completed = subprocess.run(
            [sys.executable, "-c", script],
            env=env, capture_output=True, text=True, timeout=30,
        )

        assert completed.returncode == 0, completed.stderr
        assert "timed out" in completed.stdout


class TestCanonicalPid:
    """Test id normalization at the discovery boundary."""

    @pytest.mark.parametrize("raw,expected", [
        (100, 100),
        (0, 0),
        ("200", 200),
        (" 300 ", 300),
        ("vm-1", None),
        ("", None),
        ("-5", None),
        (-5, None),
        (True, None),
        (None, None),
        (1.0, None),
        ("١٢", None),
    ])
    def test_canonical_pid(self, raw, expected):
        assert canonical_pid(raw) == expected
