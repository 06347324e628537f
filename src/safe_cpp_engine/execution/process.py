from __future__ import annotations

import contextlib
import os
import resource
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable, Mapping, Sequence

import structlog

from ..errors import SpawnError
from .types import ExitStatus

logger = structlog.get_logger(__name__)

_POLL_INTERVAL = 0.01
_READ_CHUNK = 65536
_DRAIN_GRACE_SECONDS = 2.0


@dataclass(frozen=True, slots=True)
class ResourceLimits:
    """Kernel limits applied to a child before it execs.

    Example:
        ```python
        limits = ResourceLimits(memory_mb=256, cpu_seconds=3)
        ```
    """

    memory_mb: int
    cpu_seconds: int

    def apply(self) -> None:
        """Apply the limits to the current process, never raising a hard limit.

        Example:
            ```python
            subprocess.Popen(["./main"], preexec_fn=limits.apply)
            ```
        """
        _lower_limit(resource.RLIMIT_AS, self.memory_mb * 1024 * 1024)
        _lower_limit(resource.RLIMIT_CPU, self.cpu_seconds)
        _lower_limit(resource.RLIMIT_CORE, 0)


def _lower_limit(which: int, value: int) -> None:
    """Set soft and hard limits to `value`, bounded by the current hard limit.

    Example:
        ```python
        _lower_limit(resource.RLIMIT_CPU, 5)
        ```
    """
    _, current_hard = resource.getrlimit(which)
    if current_hard in (-1, resource.RLIM_INFINITY):
        target = value
    else:
        target = min(value, current_hard)
    resource.setrlimit(which, (target, target))


@dataclass(slots=True)
class _Capture:
    """Byte sink that keeps at most `limit` bytes and remembers overflow.

    Example:
        ```python
        sink = _Capture(limit=1024)
        ```
    """

    limit: int
    data: bytearray = field(default_factory=bytearray)
    truncated: bool = False

    def feed(self, chunk: bytes) -> None:
        """Append a chunk, dropping whatever exceeds the limit.

        Example:
            ```python
            sink.feed(b"hello")
            ```
        """
        room = self.limit - len(self.data)
        if len(chunk) > room:
            self.truncated = True
        if room > 0:
            self.data.extend(chunk[:room])

    def text(self) -> str:
        """Decode captured bytes, replacing invalid UTF-8.

        Example:
            ```python
            out = sink.text()
            ```
        """
        return self.data.decode("utf-8", errors="replace")


def _drain(stream: IO[bytes], sink: _Capture) -> None:
    """Read a pipe to EOF into a bounded sink.

    Reading continues past the cap so the child never blocks on a full pipe.

    Example:
        ```python
        threading.Thread(target=_drain, args=(proc.stdout, sink)).start()
        ```
    """
    try:
        while True:
            chunk = stream.read1(_READ_CHUNK)  # type: ignore[attr-defined]
            if not chunk:
                break
            sink.feed(chunk)
    finally:
        stream.close()


def _feed_stdin(stream: IO[bytes], data: bytes) -> None:
    """Write stdin data and close the pipe; a child that exits early is fine.

    Example:
        ```python
        threading.Thread(target=_feed_stdin, args=(proc.stdin, b"3 4\\n")).start()
        ```
    """
    with contextlib.suppress(BrokenPipeError):
        try:
            if data:
                stream.write(data)
                stream.flush()
        finally:
            stream.close()


def _kill_group(pgid: int) -> None:
    """Send SIGKILL to a whole process group if it still exists.

    Example:
        ```python
        _kill_group(proc.pid)
        ```
    """
    with contextlib.suppress(ProcessLookupError, PermissionError):
        os.killpg(pgid, signal.SIGKILL)


@dataclass(slots=True)
class ProcessOutcome:
    """Raw result of one bounded child process.

    Example:
        ```python
        outcome = run_bounded(["echo", "hi"], timeout_seconds=2, max_output_bytes=1024)
        ```
    """

    status: ExitStatus
    exit_code: int | None
    signal: int | None
    stdout: str
    stderr: str
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    elapsed_ms: float = 0.0
    peak_memory_kb: int | None = None

    @property
    def timed_out(self) -> bool:
        """Return True when the deadline killed the child.

        Example:
            ```python
            if outcome.timed_out: print("too slow")
            ```
        """
        return self.status is ExitStatus.TIMED_OUT


class ProcessHandle:
    """A spawned child whose output is capped and whose lifetime is bounded.

    The child runs in its own session so the whole process group can be
    killed on timeout.

    Example:
        ```python
        child = ProcessHandle(["./main"], stdin=b"", max_output_bytes=65536)
        outcome = child.wait(timeout_seconds=5)
        ```
    """

    def __init__(
        self,
        argv: Sequence[str],
        *,
        stdin: bytes = b"",
        max_output_bytes: int,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        limits: ResourceLimits | None = None,
    ) -> None:
        """Spawn the child and start its I/O threads.

        Example:
            ```python
            child = ProcessHandle(["g++", "--version"], max_output_bytes=4096)
            ```
        """
        preexec: Callable[[], None] | None = limits.apply if limits is not None else None
        self._started = time.monotonic()
        try:
            self._proc = subprocess.Popen(
                list(argv),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=None if cwd is None else str(cwd),
                env=None if env is None else dict(env),
                preexec_fn=preexec,
                start_new_session=True,
                close_fds=True,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise SpawnError(f"Failed to start {argv[0]}: {exc}") from exc

        self._stdout = _Capture(max_output_bytes)
        self._stderr = _Capture(max_output_bytes)
        assert self._proc.stdin is not None
        assert self._proc.stdout is not None
        assert self._proc.stderr is not None
        self._threads = [
            threading.Thread(target=_feed_stdin, args=(self._proc.stdin, stdin), daemon=True),
            threading.Thread(target=_drain, args=(self._proc.stdout, self._stdout), daemon=True),
            threading.Thread(target=_drain, args=(self._proc.stderr, self._stderr), daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    @property
    def pid(self) -> int:
        """Return the child's pid, which is also its process group id.

        Example:
            ```python
            os.killpg(child.pid, signal.SIGTERM)
            ```
        """
        return self._proc.pid

    def wait(self, timeout_seconds: float) -> ProcessOutcome:
        """Wait for exit or kill the process group once the deadline passes.

        Example:
            ```python
            outcome = child.wait(timeout_seconds=2)
            ```
        """
        deadline = self._started + timeout_seconds
        timed_out = False
        while True:
            pid, status, usage = os.wait4(self._proc.pid, os.WNOHANG)
            if pid:
                break
            if time.monotonic() >= deadline:
                timed_out = True
                _kill_group(self._proc.pid)
                pid, status, usage = os.wait4(self._proc.pid, 0)
                break
            time.sleep(_POLL_INTERVAL)
        elapsed_ms = (time.monotonic() - self._started) * 1000.0
        returncode = os.waitstatus_to_exitcode(status)
        self._proc.returncode = returncode
        # Orphaned grandchildren may still hold the pipes open.
        _kill_group(self._proc.pid)
        for thread in self._threads:
            thread.join(_DRAIN_GRACE_SECONDS)

        if timed_out:
            logger.info("process_timed_out", argv0=self._proc.args[0], timeout_seconds=timeout_seconds)
            state = ExitStatus.TIMED_OUT
        elif returncode < 0:
            state = ExitStatus.CRASHED
        else:
            state = ExitStatus.EXITED
        return ProcessOutcome(
            status=state,
            exit_code=returncode if returncode >= 0 else None,
            signal=-returncode if returncode < 0 else None,
            stdout=self._stdout.text(),
            stderr=self._stderr.text(),
            stdout_truncated=self._stdout.truncated,
            stderr_truncated=self._stderr.truncated,
            elapsed_ms=elapsed_ms,
            peak_memory_kb=int(usage.ru_maxrss) or None,
        )


def spawn(
    argv: Sequence[str],
    *,
    max_output_bytes: int,
    stdin: bytes = b"",
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    limits: ResourceLimits | None = None,
) -> ProcessHandle:
    """Start a bounded child process.

    Example:
        ```python
        child = spawn(["./main"], max_output_bytes=65536, stdin=b"5\\n")
        ```
    """
    return ProcessHandle(
        argv,
        stdin=stdin,
        max_output_bytes=max_output_bytes,
        cwd=cwd,
        env=env,
        limits=limits,
    )


def run_bounded(
    argv: Sequence[str],
    *,
    timeout_seconds: float,
    max_output_bytes: int,
    stdin: bytes = b"",
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    limits: ResourceLimits | None = None,
) -> ProcessOutcome:
    """Spawn a child, wait for it under a deadline and return its outcome.

    Example:
        ```python
        outcome = run_bounded(["sh", "-c", "yes"], timeout_seconds=1, max_output_bytes=1024)
        ```
    """
    child = spawn(argv, max_output_bytes=max_output_bytes, stdin=stdin, cwd=cwd, env=env, limits=limits)
    return child.wait(timeout_seconds)
