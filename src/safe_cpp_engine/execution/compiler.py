from __future__ import annotations

import os
from typing import Sequence

import structlog

from ..config import ToolchainSettings
from ..errors import SpawnError
from .process import run_bounded
from .types import CompilationOptions, CompilationResult
from .workspace import Workspace

logger = structlog.get_logger(__name__)

_WARNING_FLAGS = ("-Wall", "-Wextra", "-pedantic")


def build_compile_command(
    executable: str,
    options: CompilationOptions,
    *,
    source: str,
    output: str,
    link_flags: Sequence[str] = (),
) -> list[str]:
    """Build the compiler argv for one translation unit.

    Example:
        ```python
        argv = build_compile_command("g++", CompilationOptions(), source="main.cpp", output="main")
        ```
    """
    cmd = [executable, f"-std={options.standard}", f"-{options.optimization}"]
    if options.debug:
        cmd.append("-g")
    cmd.extend(_WARNING_FLAGS)
    cmd.extend(link_flags)
    cmd.extend(options.extra_flags)
    cmd.extend([source, "-o", output])
    return cmd


def classify_diagnostics(output: str) -> tuple[list[str], list[str]]:
    """Split compiler output into warning lines and error lines.

    Example:
        ```python
        warnings, errors = classify_diagnostics("main.cpp:3:5: warning: unused variable 'x'")
        ```
    """
    warnings: list[str] = []
    errors: list[str] = []
    for line in output.splitlines():
        if "error:" in line:
            errors.append(line)
        elif "warning:" in line:
            warnings.append(line)
    return warnings, errors


class Compiler:
    """Invoke the configured C++ toolchain inside a workspace.

    Example:
        ```python
        compiler = Compiler(EngineConfig().toolchain)
        ```
    """

    def __init__(self, toolchain: ToolchainSettings) -> None:
        """Bind the compiler to the toolchain settings.

        Example:
            ```python
            compiler = Compiler(ToolchainSettings())
            ```
        """
        self._toolchain = toolchain

    def compile_in(
        self,
        workspace: Workspace,
        source: str,
        options: CompilationOptions,
        *,
        link_flags: Sequence[str] = (),
    ) -> CompilationResult:
        """Write `source` into the workspace and compile it to `main`.

        Example:
            ```python
            with Workspace(root) as ws:
                result = compiler.compile_in(ws, "int main() {}", CompilationOptions())
            ```
        """
        workspace.write_source(source)
        argv = build_compile_command(
            self._toolchain.executable_for(options.compiler),
            options,
            source=workspace.source_path.name,
            output=workspace.binary_path.name,
            link_flags=link_flags,
        )
        logger.debug("compile_start", argv=argv, workspace=workspace.path.name)
        try:
            outcome = run_bounded(
                argv,
                timeout_seconds=options.timeout_seconds,
                max_output_bytes=self._toolchain.max_output_kb * 1024,
                cwd=workspace.path,
                env=os.environ,
            )
        except SpawnError as exc:
            logger.warning("compiler_spawn_failed", compiler=options.compiler, error=str(exc))
            return CompilationResult(success=False, output=str(exc), errors=[str(exc)])

        output = outcome.stderr + outcome.stdout
        warnings, errors = classify_diagnostics(output)
        if outcome.timed_out:
            message = f"Compilation timed out after {options.timeout_seconds}s"
            return CompilationResult(
                success=False,
                output=output,
                warnings=warnings,
                errors=[*errors, message],
                elapsed_ms=outcome.elapsed_ms,
                timed_out=True,
            )

        success = outcome.exit_code == 0 and workspace.binary_path.exists()
        if not success and not errors:
            errors.append(output.strip() or f"{options.compiler} exited with status {outcome.exit_code}")
        logger.info(
            "compile_finished",
            compiler=options.compiler,
            success=success,
            warnings=len(warnings),
            errors=len(errors),
            elapsed_ms=round(outcome.elapsed_ms, 1),
        )
        return CompilationResult(
            success=success,
            output=output,
            warnings=warnings,
            errors=errors,
            artifact=workspace.artifact_name if success else None,
            elapsed_ms=outcome.elapsed_ms,
        )
