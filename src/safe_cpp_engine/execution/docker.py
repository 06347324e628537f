from __future__ import annotations

import os
import shutil
import subprocess
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import structlog

logger = structlog.get_logger(__name__)

SANDBOX_PROGRAM_PATH = "/sandbox/program"
SANDBOX_USER = "65534:65534"
MANAGED_LABEL_VALUE = "true"
MANAGED_LABELS = {
    "safe_cpp_engine.managed": MANAGED_LABEL_VALUE,
    "safe_cpp_engine.project": "safe-cpp-engine",
}


@dataclass(frozen=True, slots=True)
class ContainerInfo:
    """Snapshot of a managed sandbox container.

    Example:
        ```python
        info = ContainerInfo("abc", "sce-1f2e", "debian:bookworm-slim", "running", "Up 2s")
        ```
    """

    id: str
    name: str
    image: str
    state: str
    status: str


@dataclass(frozen=True, slots=True)
class CleanupSummary:
    """Result summary from removing stale sandbox containers.

    Example:
        ```python
        summary = CleanupSummary(removed_containers=2)
        ```
    """

    removed_containers: int


def docker_is_available(*, docker_env: Mapping[str, str], docker_context: str | None) -> tuple[bool, str | None]:
    """Check Docker CLI and daemon accessibility for the selected target.

    Example:
        ```python
        ok, reason = docker_is_available(docker_env=os.environ, docker_context=None)
        ```
    """
    if shutil.which("docker") is None:
        return False, "Docker CLI was not found. Install Docker and ensure it is on PATH."
    cmd = ["docker"]
    if docker_context:
        cmd.extend(["--context", docker_context])
    cmd.append("info")
    try:
        probe = subprocess.run(cmd, capture_output=True, text=True, check=False, env=dict(docker_env), timeout=30)
    except subprocess.TimeoutExpired:
        return False, "Docker daemon did not answer within 30s."
    if probe.returncode != 0:
        return False, "Docker is installed but the daemon is not running or not accessible."
    return True, None


def new_container_name() -> str:
    """Return a unique name for a one-shot sandbox container.

    Example:
        ```python
        name = new_container_name()  # "sce-3f9c0d..."
        ```
    """
    return f"sce-{uuid.uuid4().hex[:16]}"


class DockerClient:
    """Thin wrapper over the Docker CLI for sandbox containers.

    Example:
        ```python
        client = DockerClient(image="debian:bookworm-slim")
        ```
    """

    def __init__(
        self,
        *,
        image: str,
        docker_context: str | None = None,
        command_timeout_seconds: int = 60,
        pull_timeout_seconds: int = 600,
    ) -> None:
        """Remember the sandbox image, the Docker target and CLI deadlines.

        Example:
            ```python
            client = DockerClient(image="debian:bookworm-slim", docker_context="remote", command_timeout_seconds=30)
            ```
        """
        cleaned = image.strip()
        if not cleaned:
            raise ValueError("DockerClient requires a non-empty 'image'")
        self._image = cleaned
        self._docker_context = docker_context
        self._command_timeout_seconds = command_timeout_seconds
        self._pull_timeout_seconds = pull_timeout_seconds

    @property
    def image(self) -> str:
        """Return the sandbox image reference.

        Example:
            ```python
            ref = client.image
            ```
        """
        return self._image

    def is_available(self) -> tuple[bool, str | None]:
        """Probe the Docker CLI and daemon.

        Example:
            ```python
            ok, reason = client.is_available()
            ```
        """
        return docker_is_available(docker_env=self.docker_env(), docker_context=self._docker_context)

    def ensure_image(self) -> bool:
        """Ensure the sandbox image exists locally, pulling when needed.

        Example:
            ```python
            ok = client.ensure_image()
            ```
        """
        if self._run_docker(["image", "inspect", self._image]).returncode == 0:
            return True
        logger.info("docker_image_pull", image=self._image)
        pulled = self._run_docker(["pull", self._image], timeout_seconds=self._pull_timeout_seconds)
        if pulled.returncode != 0:
            logger.warning("docker_image_pull_failed", image=self._image, stderr=pulled.stderr.strip())
        return pulled.returncode == 0

    def run_command(
        self,
        *,
        name: str,
        artifact: Path,
        memory_limit_mb: int,
        cpu_limit: float,
        pids_limit: int,
    ) -> list[str]:
        """Build the `docker run` argv for one hardened, one-shot container.

        Example:
            ```python
            argv = client.run_command(name="sce-1", artifact=Path("/tmp/s/main"),
                                      memory_limit_mb=256, cpu_limit=1.0, pids_limit=64)
            ```
        """
        cmd = ["docker"]
        if self._docker_context:
            cmd.extend(["--context", self._docker_context])
        cmd.extend(["run", "--rm", "-i", "--name", name])
        for key, value in MANAGED_LABELS.items():
            cmd.extend(["--label", f"{key}={value}"])
        cmd.extend(
            [
                "--network",
                "none",
                "--memory",
                f"{memory_limit_mb}m",
                "--memory-swap",
                f"{memory_limit_mb}m",
                "--cpus",
                str(cpu_limit),
                "--pids-limit",
                str(pids_limit),
                "--user",
                SANDBOX_USER,
                "--read-only",
                "--cap-drop",
                "ALL",
                "--security-opt",
                "no-new-privileges",
                "--tmpfs",
                "/tmp:rw,noexec,nosuid,size=16m",
                "-v",
                f"{artifact.resolve()}:{SANDBOX_PROGRAM_PATH}:ro",
                self._image,
                SANDBOX_PROGRAM_PATH,
            ]
        )
        return cmd

    def remove_container(self, name: str) -> bool:
        """Force-remove a container by name; used after a timeout.

        Example:
            ```python
            client.remove_container("sce-1f2e")
            ```
        """
        removed = self._run_docker(["rm", "-f", name])
        if removed.returncode != 0:
            logger.warning("docker_remove_failed", container=name, stderr=removed.stderr.strip())
        return removed.returncode == 0

    def list_containers(self, all_states: bool = False) -> list[ContainerInfo]:
        """List managed sandbox containers visible to this Docker target.

        Example:
            ```python
            containers = client.list_containers(all_states=True)
            ```
        """
        fmt = "{{.ID}}|{{.Names}}|{{.Image}}|{{.State}}|{{.Status}}"
        cmd = ["ps", "--filter", f"label=safe_cpp_engine.managed={MANAGED_LABEL_VALUE}", "--format", fmt]
        if all_states:
            cmd.insert(1, "-a")
        out = self._run_docker(cmd)
        if out.returncode != 0:
            raise RuntimeError(f"Failed to list containers: {out.stderr.strip()}")
        items: list[ContainerInfo] = []
        for line in out.stdout.splitlines():
            if not line.strip():
                continue
            c_id, name, image, state, status = line.split("|", 4)
            items.append(ContainerInfo(c_id, name, image, state, status))
        return items

    def cleanup_stale(self) -> CleanupSummary:
        """Force-remove every managed container, running or not.

        Sandbox containers are one-shot, so any survivor is left over from a
        crashed or killed request.

        Example:
            ```python
            summary = client.cleanup_stale()
            ```
        """
        removed = 0
        for container in self.list_containers(all_states=True):
            if self._run_docker(["rm", "-f", container.id]).returncode == 0:
                removed += 1
        return CleanupSummary(removed_containers=removed)

    def _run_docker(self, args: list[str], timeout_seconds: int | None = None) -> subprocess.CompletedProcess[str]:
        """Run a Docker CLI command against the configured target under a deadline.

        A command that outlives its deadline is killed and reported as a
        failed `CompletedProcess` with return code 124.

        Example:
            ```python
            completed = client._run_docker(["ps"])
            ```
        """
        cmd = ["docker"]
        if self._docker_context:
            cmd.extend(["--context", self._docker_context])
        cmd.extend(args)
        timeout = self._command_timeout_seconds if timeout_seconds is None else timeout_seconds
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                env=self.docker_env(),
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("docker_command_timeout", command=args[0], timeout_seconds=timeout)
            return subprocess.CompletedProcess(cmd, 124, "", f"docker {args[0]} timed out after {timeout}s")

    def docker_env(self) -> dict[str, str]:
        """Return the environment passed to Docker CLI calls.

        Example:
            ```python
            env = client.docker_env()
            ```
        """
        return dict(os.environ)
