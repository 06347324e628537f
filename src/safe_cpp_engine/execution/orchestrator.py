from __future__ import annotations

import shutil
import signal
import time
from typing import Mapping

import structlog

from ..config import EngineConfig
from ..errors import EngineStartupError, SpawnError
from .capabilities import capabilities_for_isolation
from .compiler import Compiler
from .isolation import DirectIsolation, Isolation, build_isolation
from .types import (
    CompilationOptions,
    CompilationResult,
    ExecutionOptions,
    ExecutionResult,
    ExitStatus,
)
from .workspace import Workspace

logger = structlog.get_logger(__name__)

SELF_TEST_SOURCE = """#include <iostream>

int main() {
    std::cout << "Hello, World!" << std::endl;
    return 0;
}
"""
SELF_TEST_OUTPUT = "Hello, World!"


def _elapsed_ms(started: float) -> float:
    """Return milliseconds since a `time.monotonic()` reading.

    Example:
        ```python
        ms = _elapsed_ms(time.monotonic())
        ```
    """
    return (time.monotonic() - started) * 1000.0


def _signal_name(signum: int) -> str:
    """Return a readable name for a signal number.

    Example:
        ```python
        _signal_name(11)  # "SIGSEGV"
        ```
    """
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


class Orchestrator:
    """Compile untrusted C++ and run it under bounded resources.

    Every call gets its own workspace and child process; after
    `initialize()` the orchestrator holds only read-only state and may be
    shared between threads.

    Example:
        ```python
        orchestrator = Orchestrator(EngineConfig.load())
        orchestrator.initialize()
        result = orchestrator.execute('int main() { return 0; }')
        ```
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        isolations: Mapping[str, Isolation] | None = None,
    ) -> None:
        """Build the compiler and the isolation backends.

        Example:
            ```python
            orchestrator = Orchestrator(EngineConfig(), isolations={"direct": DirectIsolation()})
            ```
        """
        self._config = config
        self._compiler = Compiler(config.toolchain)
        if isolations is None:
            isolations = {"direct": DirectIsolation(), "isolated": build_isolation("isolated", config)}
        self._isolations: dict[str, Isolation] = dict(isolations)
        self._availability: dict[str, tuple[bool, str | None]] = {"direct": (True, None)}

    @property
    def config(self) -> EngineConfig:
        """Return the configuration this orchestrator was built with.

        Example:
            ```python
            timeout = orchestrator.config.execution.timeout_seconds
            ```
        """
        return self._config

    def isolation(self, mode: str) -> Isolation:
        """Return the backend registered for an isolation mode.

        Example:
            ```python
            docker = orchestrator.isolation("isolated")
            ```
        """
        try:
            return self._isolations[mode]
        except KeyError:
            raise ValueError(f"Unknown isolation mode: {mode}") from None

    def initialize(self) -> None:
        """Verify the toolchain and sandbox, then compile and run a self-test.

        Example:
            ```python
            orchestrator.initialize()  # raises EngineStartupError on failure
            ```
        """
        config = self._config
        try:
            config.scratch_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise EngineStartupError(f"Cannot create scratch directory {config.scratch_dir}: {exc}") from exc

        toolchain = config.toolchain
        for name, executable in toolchain.compilers.items():
            if shutil.which(executable) is not None:
                continue
            if name == toolchain.default_compiler:
                raise EngineStartupError(f"Default compiler '{name}' not found: {executable}")
            logger.warning("compiler_missing", compiler=name, executable=executable)

        default_mode = config.execution.isolation
        if default_mode != "direct":
            self._availability[default_mode] = self._prepare_isolation(default_mode)
        else:
            missing = capabilities_for_isolation("direct").missing()
            logger.warning("direct_isolation_limits", not_enforced=missing)

        result = self.execute(SELF_TEST_SOURCE, ExecutionOptions.from_mapping({}, config))
        if not result.success or result.stdout.strip() != SELF_TEST_OUTPUT:
            detail = result.error or f"status={result.status.value} stdout={result.stdout!r}"
            raise EngineStartupError(f"Self-test failed: {detail}")
        logger.info(
            "engine_initialized",
            environment=config.environment,
            compiler=toolchain.default_compiler,
            isolation=result.isolation,
        )

    def _prepare_isolation(self, mode: str) -> tuple[bool, str | None]:
        """Probe and prepare a sandbox backend at start-up.

        Example:
            ```python
            ok, reason = orchestrator._prepare_isolation("isolated")
            ```
        """
        isolation = self.isolation(mode)
        ok, reason = isolation.available()
        if ok and not isolation.prepare():
            ok, reason = False, f"Sandbox image for '{mode}' isolation could not be prepared"
        if ok:
            return True, None
        if self._config.is_production:
            raise EngineStartupError(f"Isolation '{mode}' unavailable: {reason}")
        logger.warning("isolation_downgraded", requested=mode, fallback="direct", reason=reason)
        return False, reason

    def _select_isolation(self, requested: str | None) -> tuple[Isolation | None, str | None]:
        """Pick the backend for a request, downgrading outside production.

        Example:
            ```python
            isolation, error = orchestrator._select_isolation("isolated")
            ```
        """
        mode = requested or self._config.execution.isolation
        isolation = self.isolation(mode)
        if mode == "direct":
            return isolation, None
        if mode in self._availability:
            ok, reason = self._availability[mode]
        else:
            ok, reason = isolation.available()
        if ok:
            return isolation, None
        if self._config.is_production:
            return None, f"Isolation '{mode}' unavailable: {reason}"
        logger.warning("isolation_downgraded", requested=mode, fallback="direct", reason=reason)
        return self.isolation("direct"), None

    def compile(self, source: str, options: CompilationOptions | None = None) -> CompilationResult:
        """Compile source in a throwaway workspace and report diagnostics.

        Example:
            ```python
            result = orchestrator.compile("int main() { return 0; }")
            ```
        """
        started = time.monotonic()
        try:
            if options is None:
                options = CompilationOptions.from_mapping({}, self._config)
            isolation, _ = self._select_isolation(None)
            link_flags = isolation.link_flags if isolation is not None else ()
            with Workspace(self._config.scratch_dir) as workspace:
                return self._compiler.compile_in(workspace, source, options, link_flags=link_flags)
        except Exception:
            logger.exception("compile_internal_error")
            return CompilationResult(
                success=False,
                errors=["Internal error during compilation"],
                elapsed_ms=_elapsed_ms(started),
            )

    def execute(self, source: str, options: ExecutionOptions | None = None) -> ExecutionResult:
        """Compile and run a program, returning its classified outcome.

        Example:
            ```python
            result = orchestrator.execute(source, ExecutionOptions(stdin="3 4\\n", timeout_seconds=2))
            ```
        """
        started = time.monotonic()
        try:
            if options is None:
                options = ExecutionOptions.from_mapping({}, self._config)
            return self._execute(source, options)
        except Exception:
            logger.exception("execute_internal_error")
            return ExecutionResult(
                status=ExitStatus.INTERNAL_ERROR,
                error="Internal error during execution",
                elapsed_ms=_elapsed_ms(started),
            )

    def _execute(self, source: str, options: ExecutionOptions) -> ExecutionResult:
        """Compile and run inside a single workspace.

        Example:
            ```python
            result = orchestrator._execute(source, ExecutionOptions())
            ```
        """
        isolation, error = self._select_isolation(options.isolation)
        if isolation is None:
            logger.warning("execute_spawn_failed", error=error)
            return ExecutionResult(status=ExitStatus.SPAWN_FAILED, error=error)

        with Workspace(self._config.scratch_dir) as workspace:
            compilation = self._compiler.compile_in(
                workspace,
                source,
                options.compilation,
                link_flags=isolation.link_flags,
            )
            if not compilation.success:
                return ExecutionResult(
                    status=ExitStatus.COMPILATION_FAILED,
                    error="\n".join(["Compilation failed", *compilation.errors]),
                    isolation=isolation.name,
                    compilation=compilation,
                )
            try:
                outcome = isolation.run(
                    workspace.binary_path,
                    stdin=options.stdin,
                    timeout_seconds=options.timeout_seconds,
                    memory_limit_mb=options.memory_limit_mb,
                    max_output_bytes=self._config.execution.max_output_kb * 1024,
                )
            except SpawnError as exc:
                logger.warning("execute_spawn_failed", isolation=isolation.name, error=str(exc))
                return ExecutionResult(
                    status=ExitStatus.SPAWN_FAILED,
                    error=str(exc),
                    isolation=isolation.name,
                    compilation=compilation,
                )

        error = None
        if outcome.status is ExitStatus.TIMED_OUT:
            error = f"Execution timed out after {options.timeout_seconds}s"
        elif outcome.status is ExitStatus.CRASHED and outcome.signal is not None:
            error = f"Program terminated by {_signal_name(outcome.signal)}"
        logger.info(
            "execute_finished",
            isolation=isolation.name,
            status=outcome.status.value,
            exit_code=outcome.exit_code,
            elapsed_ms=round(outcome.elapsed_ms, 1),
        )
        return ExecutionResult(
            status=outcome.status,
            exit_code=outcome.exit_code,
            signal=outcome.signal,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            stdout_truncated=outcome.stdout_truncated,
            stderr_truncated=outcome.stderr_truncated,
            elapsed_ms=outcome.elapsed_ms,
            peak_memory_kb=outcome.peak_memory_kb,
            error=error,
            isolation=isolation.name,
            compilation=compilation,
        )
