from .docker import CleanupSummary, ContainerInfo, DockerClient
from .isolation import DirectIsolation, DockerIsolation, Isolation, build_isolation
from .orchestrator import Orchestrator
from .process import ProcessHandle, ProcessOutcome, ResourceLimits, run_bounded, spawn
from .types import (
    CompilationOptions,
    CompilationResult,
    ExecutionOptions,
    ExecutionResult,
    ExitStatus,
)

__all__ = [
    "CleanupSummary",
    "CompilationOptions",
    "CompilationResult",
    "ContainerInfo",
    "DirectIsolation",
    "DockerClient",
    "DockerIsolation",
    "ExecutionOptions",
    "ExecutionResult",
    "ExitStatus",
    "Isolation",
    "Orchestrator",
    "ProcessHandle",
    "ProcessOutcome",
    "ResourceLimits",
    "build_isolation",
    "run_bounded",
    "spawn",
]
