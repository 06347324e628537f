from __future__ import annotations

import signal
from dataclasses import replace
from pathlib import Path
from typing import Protocol

import structlog

from ..config import EngineConfig
from ..errors import SpawnError
from .capabilities import IsolationCapabilities, capabilities_for_isolation
from .docker import DockerClient, new_container_name
from .process import ProcessOutcome, ResourceLimits, run_bounded
from .types import ExitStatus

logger = structlog.get_logger(__name__)

_DIRECT_ENV = {"PATH": "/usr/local/bin:/usr/bin:/bin", "LANG": "C.UTF-8", "HOME": "/nonexistent"}
_CRASH_SIGNALS = frozenset(
    {
        signal.SIGSEGV,
        signal.SIGABRT,
        signal.SIGFPE,
        signal.SIGILL,
        signal.SIGBUS,
        signal.SIGKILL,
        signal.SIGTRAP,
        signal.SIGSYS,
    }
)
_DOCKER_FAILURE_CODES = frozenset({125, 126, 127})
# Container start-up time allowed on top of the program's own deadline.
_CONTAINER_STARTUP_SECONDS = 2.0


class Isolation(Protocol):
    name: str
    link_flags: tuple[str, ...]

    def available(self) -> tuple[bool, str | None]:
        """Report whether this backend can run programs right now.

        Example:
            ```python
            ok, reason = isolation.available()
            ```
        """
        ...

    def prepare(self) -> bool:
        """Do one-time start-up work such as pulling an image.

        Example:
            ```python
            ready = isolation.prepare()
            ```
        """
        ...

    def run(
        self,
        artifact: Path,
        *,
        stdin: str,
        timeout_seconds: int,
        memory_limit_mb: int,
        max_output_bytes: int,
    ) -> ProcessOutcome:
        """Run a compiled program and return its classified outcome.

        Example:
            ```python
            outcome = isolation.run(ws.binary_path, stdin="", timeout_seconds=5,
                                    memory_limit_mb=256, max_output_bytes=65536)
            ```
        """
        ...


class DirectIsolation:
    """Run the program as a host child process under kernel resource limits.

    Example:
        ```python
        isolation = DirectIsolation()
        ```
    """

    name = "direct"
    link_flags: tuple[str, ...] = ()

    @property
    def capabilities(self) -> IsolationCapabilities:
        """Return what this backend enforces.

        Example:
            ```python
            caps = DirectIsolation().capabilities
            ```
        """
        return capabilities_for_isolation(self.name)

    def available(self) -> tuple[bool, str | None]:
        """Direct execution is always available.

        Example:
            ```python
            ok, _ = DirectIsolation().available()
            ```
        """
        return True, None

    def prepare(self) -> bool:
        """Nothing to prepare for direct execution.

        Example:
            ```python
            DirectIsolation().prepare()
            ```
        """
        return True

    def run(
        self,
        artifact: Path,
        *,
        stdin: str,
        timeout_seconds: int,
        memory_limit_mb: int,
        max_output_bytes: int,
    ) -> ProcessOutcome:
        """Run the binary in its workspace with a minimal environment.

        Example:
            ```python
            outcome = DirectIsolation().run(Path("/tmp/s/main"), stdin="", timeout_seconds=2,
                                            memory_limit_mb=128, max_output_bytes=4096)
            ```
        """
        limits = ResourceLimits(memory_mb=memory_limit_mb, cpu_seconds=int(timeout_seconds) + 1)
        return run_bounded(
            [str(artifact)],
            timeout_seconds=timeout_seconds,
            max_output_bytes=max_output_bytes,
            stdin=stdin.encode("utf-8"),
            cwd=artifact.parent,
            env=_DIRECT_ENV,
            limits=limits,
        )


class DockerIsolation:
    """Run the program in a one-shot hardened Docker container.

    Example:
        ```python
        isolation = DockerIsolation(DockerClient(image="debian:bookworm-slim"))
        ```
    """

    name = "isolated"
    link_flags: tuple[str, ...] = ("-static",)

    def __init__(self, client: DockerClient, *, cpu_limit: float = 1.0, pids_limit: int = 64) -> None:
        """Bind the backend to a Docker client and container limits.

        Example:
            ```python
            isolation = DockerIsolation(client, cpu_limit=0.5, pids_limit=32)
            ```
        """
        self._client = client
        self._cpu_limit = cpu_limit
        self._pids_limit = pids_limit

    @property
    def client(self) -> DockerClient:
        """Return the underlying Docker client.

        Example:
            ```python
            containers = isolation.client.list_containers()
            ```
        """
        return self._client

    @property
    def capabilities(self) -> IsolationCapabilities:
        """Return what this backend enforces.

        Example:
            ```python
            caps = isolation.capabilities
            ```
        """
        return capabilities_for_isolation(self.name)

    def available(self) -> tuple[bool, str | None]:
        """Probe the Docker CLI and daemon.

        Example:
            ```python
            ok, reason = isolation.available()
            ```
        """
        return self._client.is_available()

    def prepare(self) -> bool:
        """Make sure the sandbox image is present.

        Example:
            ```python
            isolation.prepare()
            ```
        """
        return self._client.ensure_image()

    def run(
        self,
        artifact: Path,
        *,
        stdin: str,
        timeout_seconds: int,
        memory_limit_mb: int,
        max_output_bytes: int,
    ) -> ProcessOutcome:
        """Run the statically linked binary inside a fresh container.

        Example:
            ```python
            outcome = isolation.run(Path("/tmp/s/main"), stdin="", timeout_seconds=2,
                                    memory_limit_mb=128, max_output_bytes=4096)
            ```
        """
        name = new_container_name()
        argv = self._client.run_command(
            name=name,
            artifact=artifact,
            memory_limit_mb=memory_limit_mb,
            cpu_limit=self._cpu_limit,
            pids_limit=self._pids_limit,
        )
        outcome = run_bounded(
            argv,
            timeout_seconds=timeout_seconds + _CONTAINER_STARTUP_SECONDS,
            max_output_bytes=max_output_bytes,
            stdin=stdin.encode("utf-8"),
            env=self._client.docker_env(),
        )
        outcome = replace(outcome, peak_memory_kb=None)
        if outcome.timed_out:
            self._client.remove_container(name)
            return outcome
        if outcome.exit_code in _DOCKER_FAILURE_CODES and outcome.stderr.lstrip().startswith("docker:"):
            raise SpawnError(f"Container failed to start: {outcome.stderr.strip()}")
        return _translate_container_exit(outcome)


def _translate_container_exit(outcome: ProcessOutcome) -> ProcessOutcome:
    """Map the shell convention `128 + signal` back to a crash classification.

    Example:
        ```python
        crashed = _translate_container_exit(outcome)  # exit 139 -> SIGSEGV
        ```
    """
    if outcome.exit_code is None or outcome.exit_code <= 128:
        return outcome
    signum = outcome.exit_code - 128
    if signum not in _CRASH_SIGNALS:
        return outcome
    return replace(outcome, status=ExitStatus.CRASHED, exit_code=None, signal=signum)


def build_isolation(mode: str, config: EngineConfig) -> DirectIsolation | DockerIsolation:
    """Construct the isolation backend for a mode name.

    Example:
        ```python
        isolation = build_isolation("isolated", EngineConfig())
        ```
    """
    if mode == "direct":
        return DirectIsolation()
    if mode == "isolated":
        execution = config.execution
        client = DockerClient(
            image=execution.docker_image,
            docker_context=execution.docker_context,
            command_timeout_seconds=execution.docker_command_timeout_seconds,
            pull_timeout_seconds=execution.docker_pull_timeout_seconds,
        )
        return DockerIsolation(client, cpu_limit=execution.cpu_limit, pids_limit=execution.pids_limit)
    raise ValueError(f"Unknown isolation mode: {mode}")
