import os
import signal
import sys
import time

import pytest

from safe_cpp_engine import ExitStatus, SpawnError
from safe_cpp_engine.execution.process import ResourceLimits, run_bounded, spawn

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX process groups required")


def test_normal_exit_captures_output() -> None:
    outcome = run_bounded(["sh", "-c", "echo hello; echo oops >&2"], timeout_seconds=5, max_output_bytes=1024)

    assert outcome.status is ExitStatus.EXITED
    assert outcome.exit_code == 0
    assert outcome.signal is None
    assert outcome.stdout == "hello\n"
    assert outcome.stderr == "oops\n"
    assert not outcome.stdout_truncated
    assert outcome.elapsed_ms > 0


def test_nonzero_exit_is_not_a_crash() -> None:
    outcome = run_bounded(["sh", "-c", "exit 3"], timeout_seconds=5, max_output_bytes=1024)

    assert outcome.status is ExitStatus.EXITED
    assert outcome.exit_code == 3


def test_stdin_is_delivered() -> None:
    outcome = run_bounded(
        ["sh", "-c", "read a b; echo $((a + b))"],
        timeout_seconds=5,
        max_output_bytes=1024,
        stdin=b"3 4\n",
    )

    assert outcome.stdout == "7\n"


def test_output_is_capped_and_flagged() -> None:
    script = "i=0; while [ $i -lt 2000 ]; do echo 0123456789; i=$((i + 1)); done"

    outcome = run_bounded(["sh", "-c", script], timeout_seconds=10, max_output_bytes=1024)

    assert outcome.status is ExitStatus.EXITED
    assert len(outcome.stdout) == 1024
    assert outcome.stdout_truncated


def test_deadline_kills_the_child() -> None:
    started = time.monotonic()

    outcome = run_bounded(["sleep", "30"], timeout_seconds=0.5, max_output_bytes=1024)

    assert outcome.status is ExitStatus.TIMED_OUT
    assert outcome.timed_out
    assert outcome.exit_code is None
    assert time.monotonic() - started < 5


def test_signal_death_is_a_crash() -> None:
    outcome = run_bounded(["sh", "-c", "kill -SEGV $$"], timeout_seconds=5, max_output_bytes=1024)

    assert outcome.status is ExitStatus.CRASHED
    assert outcome.signal == signal.SIGSEGV
    assert outcome.exit_code is None


def test_orphaned_grandchildren_are_killed() -> None:
    started = time.monotonic()

    outcome = run_bounded(["sh", "-c", "sleep 30 & echo started"], timeout_seconds=5, max_output_bytes=1024)

    assert outcome.status is ExitStatus.EXITED
    assert outcome.stdout == "started\n"
    assert time.monotonic() - started < 5


def test_cpu_limit_stops_busy_loop() -> None:
    outcome = run_bounded(
        ["sh", "-c", "while :; do :; done"],
        timeout_seconds=20,
        max_output_bytes=1024,
        limits=ResourceLimits(memory_mb=256, cpu_seconds=1),
    )

    assert outcome.status is ExitStatus.CRASHED


def test_missing_executable_raises_spawn_error() -> None:
    with pytest.raises(SpawnError):
        spawn(["/nonexistent/program"], max_output_bytes=1024)


def test_handle_exposes_process_group() -> None:
    child = spawn(["sleep", "5"], max_output_bytes=1024)

    assert os.getpgid(child.pid) == child.pid
    assert child.wait(timeout_seconds=0.2).status is ExitStatus.TIMED_OUT
