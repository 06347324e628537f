from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from ..config import EngineConfig

SUPPORTED_STANDARDS = frozenset(
    {
        "c++11", "c++14", "c++17", "c++20", "c++23",
        "gnu++11", "gnu++14", "gnu++17", "gnu++20", "gnu++23",
    }
)
SUPPORTED_OPTIMIZATIONS = frozenset({"O0", "O1", "O2", "O3", "Os", "Og", "Ofast"})
_FORBIDDEN_FLAG_PREFIXES = (
    "-Wl,",
    "-Wa,",
    "-Wp,",
    "-Xlinker",
    "-Xassembler",
    "-Xpreprocessor",
    "-M",
    "--output",
    "-aux-info",
    "-fplugin",
)
_ALLOWED_FLAG_PREFIXES = ("-D", "-U", "-I", "-L", "-l", "-f", "-W", "-O", "-g", "-m")
_ALLOWED_FLAGS = frozenset({"-pthread", "-pedantic", "-pedantic-errors", "-w"})
_FLAG_PATTERN = re.compile(r"^-[A-Za-z0-9_+=,.:/-]+$")


def _int_option(raw: Mapping[str, Any], key: str, default: int) -> int:
    """Read an integer option, reporting bad values as `ValueError`.

    Example:
        ```python
        timeout = _int_option({"timeout_seconds": "2"}, "timeout_seconds", 10)  # 2
        ```
    """
    value = raw.get(key, default)
    if isinstance(value, bool):
        raise ValueError(f"'{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{key}' must be an integer, got {value!r}") from None


class ExitStatus(str, Enum):
    """Classification of how a run ended."""

    EXITED = "exited"
    TIMED_OUT = "timed_out"
    CRASHED = "crashed"
    SPAWN_FAILED = "spawn_failed"
    COMPILATION_FAILED = "compilation_failed"
    INTERNAL_ERROR = "internal_error"


def validate_extra_flags(flags: Any) -> tuple[str, ...]:
    """Validate caller supplied compiler flags.

    Only macro, include and library path, feature, warning, optimization,
    debug and machine flags are accepted. Flags that pass options through to
    the linker, assembler or preprocessor, write dependency files, load
    plugins or point a feature at a path are rejected.

    Example:
        ```python
        flags = validate_extra_flags(["-DNDEBUG", "-fno-exceptions"])
        ```
    """
    if flags is None:
        return ()
    if not isinstance(flags, (list, tuple)):
        raise ValueError("'extra_flags' must be a list of strings")
    out: list[str] = []
    for flag in flags:
        if not isinstance(flag, str):
            raise ValueError("'extra_flags' must contain only strings")
        cleaned = flag.strip()
        if not _FLAG_PATTERN.match(cleaned):
            raise ValueError(f"Invalid compiler flag: {flag!r}")
        if (
            cleaned.startswith(_FORBIDDEN_FLAG_PREFIXES)
            or not (cleaned in _ALLOWED_FLAGS or cleaned.startswith(_ALLOWED_FLAG_PREFIXES))
            or (cleaned.startswith("-f") and "/" in cleaned.partition("=")[2])
        ):
            raise ValueError(f"Compiler flag is not allowed: {cleaned}")
        out.append(cleaned)
    return tuple(out)


@dataclass(frozen=True, slots=True)
class CompilationOptions:
    """Per-request compiler settings.

    Example:
        ```python
        opts = CompilationOptions(compiler="clang++", standard="c++17", optimization="O0")
        ```
    """

    compiler: str = "g++"
    standard: str = "c++20"
    optimization: str = "O2"
    debug: bool = False
    extra_flags: tuple[str, ...] = ()
    timeout_seconds: int = 30

    def __post_init__(self) -> None:
        """Validate standard, optimization level and timeout.

        Example:
            ```python
            CompilationOptions(optimization="O9")  # raises ValueError
            ```
        """
        if self.standard not in SUPPORTED_STANDARDS:
            raise ValueError(f"Unsupported language standard: {self.standard}")
        if self.optimization not in SUPPORTED_OPTIMIZATIONS:
            raise ValueError(f"Unsupported optimization level: {self.optimization}")
        if self.timeout_seconds < 1:
            raise ValueError("Compilation timeout must be at least 1 second")

    @classmethod
    def from_mapping(
        cls,
        options: Mapping[str, Any] | None,
        config: EngineConfig,
    ) -> "CompilationOptions":
        """Build options from a request mapping, defaulting from config.

        Example:
            ```python
            opts = CompilationOptions.from_mapping({"standard": "c++17"}, EngineConfig())
            ```
        """
        raw = dict(options or {})
        toolchain = config.toolchain
        compiler = str(raw.get("compiler", toolchain.default_compiler))
        toolchain.executable_for(compiler)
        return cls(
            compiler=compiler,
            standard=str(raw.get("standard", toolchain.standard)),
            optimization=str(raw.get("optimization", toolchain.optimization)).lstrip("-"),
            debug=bool(raw.get("debug", False)),
            extra_flags=validate_extra_flags(raw.get("flags", raw.get("extra_flags"))),
            timeout_seconds=_int_option(raw, "compile_timeout_seconds", toolchain.compile_timeout_seconds),
        )


@dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """Per-request run settings, including how to compile first.

    Example:
        ```python
        opts = ExecutionOptions(stdin="3 4\\n", timeout_seconds=2, isolation="direct")
        ```
    """

    compilation: CompilationOptions = field(default_factory=CompilationOptions)
    stdin: str = ""
    timeout_seconds: int = 10
    memory_limit_mb: int = 512
    isolation: str | None = None

    def __post_init__(self) -> None:
        """Validate run limits.

        Example:
            ```python
            ExecutionOptions(timeout_seconds=0)  # raises ValueError
            ```
        """
        if not 1 <= self.timeout_seconds <= 300:
            raise ValueError(f"Invalid execution timeout: {self.timeout_seconds}")
        if not 1 <= self.memory_limit_mb <= 8192:
            raise ValueError(f"Invalid memory limit: {self.memory_limit_mb}")
        if self.isolation not in (None, "direct", "isolated"):
            raise ValueError("isolation must be 'direct' or 'isolated'")

    @classmethod
    def from_mapping(
        cls,
        options: Mapping[str, Any] | None,
        config: EngineConfig,
        stdin: str | None = None,
    ) -> "ExecutionOptions":
        """Build options from a request mapping, defaulting from config.

        Example:
            ```python
            opts = ExecutionOptions.from_mapping({"timeout_seconds": 2}, EngineConfig(), stdin="5")
            ```
        """
        raw = dict(options or {})
        execution = config.execution
        isolation = raw.get("isolation")
        if isolation is None and "sandbox" in raw:
            isolation = "isolated" if raw["sandbox"] else "direct"
        return cls(
            compilation=CompilationOptions.from_mapping(raw, config),
            stdin=str(stdin if stdin is not None else raw.get("stdin", "")),
            timeout_seconds=_int_option(raw, "timeout_seconds", execution.timeout_seconds),
            memory_limit_mb=_int_option(raw, "memory_limit_mb", execution.memory_limit_mb),
            isolation=None if isolation is None else str(isolation),
        )


@dataclass(slots=True)
class CompilationResult:
    """Outcome of one compiler invocation.

    Example:
        ```python
        result = CompilationResult(success=False, errors=["main.cpp:1:1: error: expected ';'"])
        ```
    """

    success: bool
    output: str = ""
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    artifact: str | None = None
    elapsed_ms: float = 0.0
    timed_out: bool = False


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of compiling and running one program.

    Example:
        ```python
        result = ExecutionResult(status=ExitStatus.EXITED, exit_code=0, stdout="42\\n")
        ```
    """

    status: ExitStatus
    exit_code: int | None = None
    signal: int | None = None
    stdout: str = ""
    stderr: str = ""
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    elapsed_ms: float = 0.0
    peak_memory_kb: int | None = None
    error: str | None = None
    isolation: str | None = None
    compilation: CompilationResult | None = None

    @property
    def success(self) -> bool:
        """Return True when the program exited normally with status 0.

        Example:
            ```python
            if result.success: print(result.stdout)
            ```
        """
        return self.status is ExitStatus.EXITED and self.exit_code == 0

    @property
    def truncated(self) -> bool:
        """Return True when any captured stream hit the output cap.

        Example:
            ```python
            if result.truncated: print("output clipped")
            ```
        """
        return self.stdout_truncated or self.stderr_truncated
