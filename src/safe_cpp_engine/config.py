from __future__ import annotations

import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

ENVIRONMENTS = frozenset({"development", "testing", "production"})
ISOLATION_MODES = frozenset({"direct", "isolated"})
EXTERNAL_TOOLS = frozenset({"clang-tidy", "cppcheck"})

_ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "SCE_ENVIRONMENT": ("engine", "environment", str),
    "SCE_LOG_LEVEL": ("engine", "log_level", str),
    "SCE_SCRATCH_DIR": ("engine", "scratch_dir", str),
    "SCE_COMPILER": ("toolchain", "default_compiler", str),
    "SCE_STANDARD": ("toolchain", "standard", str),
    "SCE_ISOLATION": ("execution", "isolation", str),
    "SCE_EXECUTION_TIMEOUT": ("execution", "timeout_seconds", int),
    "SCE_MEMORY_LIMIT_MB": ("execution", "memory_limit_mb", int),
    "SCE_DOCKER_IMAGE": ("execution", "docker_image", str),
}


def _default_config_path() -> Path:
    """Return bundled default configuration TOML path.

    Example:
        ```python
        path = _default_config_path()
        ```
    """
    return Path(__file__).with_name("default_config.toml")


def _read_config_toml(path: Path) -> dict[str, Any]:
    """Read a configuration TOML file into a plain dictionary.

    Example:
        ```python
        raw = _read_config_toml(Path("/etc/sce/config.toml"))
        ```
    """
    if not path.exists():
        raise ValueError(f"Config file not found: {path}")
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Config must be a TOML table")
    return raw


def _merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge two config tables, values from `override` winning.

    Example:
        ```python
        merged = _merge({"execution": {"timeout_seconds": 10}}, {"execution": {"timeout_seconds": 3}})
        ```
    """
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


def _table(raw: Mapping[str, Any], name: str) -> dict[str, Any]:
    """Return a named sub-table, validating its type.

    Example:
        ```python
        execution = _table(raw, "execution")
        ```
    """
    value = raw.get(name, {})
    if not isinstance(value, Mapping):
        raise ValueError(f"'{name}' must be a TOML table")
    return dict(value)


def _list_of_str(value: Any, field_name: str) -> tuple[str, ...]:
    """Validate and normalize a list-of-strings config field.

    Example:
        ```python
        paths = _list_of_str(["/usr/include"], "include_paths")
        ```
    """
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return tuple(out)


def _optional_str(value: Any) -> str | None:
    """Map empty strings to None so TOML can express unset values.

    Example:
        ```python
        context = _optional_str("")  # None
        ```
    """
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Build a config overlay from `SCE_*` environment variables.

    Example:
        ```python
        overlay = _env_overrides({"SCE_ISOLATION": "isolated"})
        ```
    """
    overlay: dict[str, Any] = {}
    for var, (section, key, kind) in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = kind(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid value for {var}: {raw!r}") from exc
        overlay.setdefault(section, {})[key] = value
    return overlay


def _build(settings_cls: type, values: Mapping[str, Any], table_name: str) -> Any:
    """Instantiate a settings dataclass, reporting unknown keys as ValueError.

    Example:
        ```python
        weights = _build(ScoringWeights, {"high_penalty": 12.0}, "analysis.scoring")
        ```
    """
    try:
        return settings_cls(**values)
    except TypeError as exc:
        raise ValueError(f"Invalid keys in '{table_name}': {exc}") from exc


@dataclass(frozen=True, slots=True)
class ToolchainSettings:
    """Compiler toolchain settings.

    Example:
        ```python
        toolchain = ToolchainSettings(compilers={"g++": "/usr/bin/g++"})
        ```
    """

    default_compiler: str = "g++"
    standard: str = "c++20"
    optimization: str = "O2"
    compile_timeout_seconds: int = 30
    max_output_kb: int = 64
    compilers: dict[str, str] = field(default_factory=lambda: {"g++": "g++", "clang++": "clang++"})

    def __post_init__(self) -> None:
        """Validate the default compiler against the configured compilers.

        Example:
            ```python
            ToolchainSettings(default_compiler="g++")
            ```
        """
        if self.default_compiler not in self.compilers:
            raise ValueError(
                f"default_compiler '{self.default_compiler}' is not one of {sorted(self.compilers)}"
            )
        if self.compile_timeout_seconds < 1:
            raise ValueError("compile_timeout_seconds must be at least 1")

    def executable_for(self, compiler: str) -> str:
        """Return the executable configured for a compiler choice.

        Example:
            ```python
            exe = toolchain.executable_for("clang++")
            ```
        """
        try:
            return self.compilers[compiler]
        except KeyError:
            raise ValueError(f"Unknown compiler '{compiler}'; expected one of {sorted(self.compilers)}") from None


@dataclass(frozen=True, slots=True)
class ExecutionSettings:
    """Defaults and limits for running compiled programs.

    Example:
        ```python
        execution = ExecutionSettings(isolation="isolated", timeout_seconds=5)
        ```
    """

    isolation: str = "direct"
    timeout_seconds: int = 10
    memory_limit_mb: int = 512
    cpu_limit: float = 1.0
    max_output_kb: int = 128
    pids_limit: int = 64
    docker_image: str = "debian:bookworm-slim"
    docker_context: str | None = None
    docker_command_timeout_seconds: int = 60
    docker_pull_timeout_seconds: int = 600

    def __post_init__(self) -> None:
        """Validate execution limits.

        Example:
            ```python
            ExecutionSettings(timeout_seconds=301)  # raises ValueError
            ```
        """
        if self.isolation not in ISOLATION_MODES:
            raise ValueError(f"isolation must be one of {sorted(ISOLATION_MODES)}")
        if not 1 <= self.timeout_seconds <= 300:
            raise ValueError(f"Invalid execution timeout: {self.timeout_seconds}")
        if not 1 <= self.memory_limit_mb <= 8192:
            raise ValueError(f"Invalid memory limit: {self.memory_limit_mb}")
        if self.cpu_limit <= 0:
            raise ValueError("cpu_limit must be positive")
        if self.max_output_kb < 1:
            raise ValueError("max_output_kb must be at least 1")
        if self.docker_command_timeout_seconds < 1 or self.docker_pull_timeout_seconds < 1:
            raise ValueError("Docker command timeouts must be at least 1 second")


@dataclass(frozen=True, slots=True)
class ParserSettings:
    """libclang front-end arguments.

    Example:
        ```python
        parser = ParserSettings(include_paths=("/usr/include",))
        ```
    """

    standard: str = "c++20"
    source_name: str = "main.cpp"
    include_paths: tuple[str, ...] = ()
    extra_args: tuple[str, ...] = ()
    resource_dir: str | None = None
    library_file: str | None = None


@dataclass(frozen=True, slots=True)
class ScoringWeights:
    """Penalties applied when computing the overall quality score.

    Example:
        ```python
        weights = ScoringWeights(high_penalty=15.0)
        ```
    """

    high_penalty: float = 10.0
    medium_penalty: float = 5.0
    low_penalty: float = 1.0
    cyclomatic_threshold: int = 10
    cyclomatic_penalty: float = 2.0
    nesting_threshold: int = 4
    nesting_penalty: float = 3.0


@dataclass(frozen=True, slots=True)
class MaintainabilityConstants:
    """Coefficients of the maintainability index heuristic.

    Example:
        ```python
        constants = MaintainabilityConstants(base=171.0)
        ```
    """

    base: float = 171.0
    volume_weight: float = 5.2
    complexity_weight: float = 0.23
    lines_weight: float = 16.2


@dataclass(frozen=True, slots=True)
class AnalysisSettings:
    """Analyzer tuning knobs.

    `external_tools` names the optional clang-tidy and cppcheck passes to run
    after the built-in catalog; each is skipped when its executable is missing.

    Example:
        ```python
        analysis = AnalysisSettings(suggestion_threshold=2, external_tools=("cppcheck",))
        ```
    """

    suggestion_threshold: int = 3
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    maintainability: MaintainabilityConstants = field(default_factory=MaintainabilityConstants)
    external_tools: tuple[str, ...] = ()
    external_timeout_seconds: int = 30
    clang_tidy_path: str = "clang-tidy"
    cppcheck_path: str = "cppcheck"

    def __post_init__(self) -> None:
        """Reject unknown external tools and non-positive deadlines.

        Example:
            ```python
            AnalysisSettings(external_tools=("pvs",))  # raises ValueError
            ```
        """
        unknown = sorted(set(self.external_tools) - EXTERNAL_TOOLS)
        if unknown:
            raise ValueError(f"external_tools must be drawn from {sorted(EXTERNAL_TOOLS)}, got {unknown}")
        if self.external_timeout_seconds < 1:
            raise ValueError("external_timeout_seconds must be at least 1")


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Immutable startup configuration shared by every component.

    Example:
        ```python
        config = EngineConfig.load()
        ```
    """

    environment: str = "development"
    log_level: str = "INFO"
    scratch_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "safe-cpp-engine")
    toolchain: ToolchainSettings = field(default_factory=ToolchainSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    parser: ParserSettings = field(default_factory=ParserSettings)
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)

    def __post_init__(self) -> None:
        """Validate the environment name.

        Example:
            ```python
            EngineConfig(environment="production")
            ```
        """
        if self.environment not in ENVIRONMENTS:
            raise ValueError(f"environment must be one of {sorted(ENVIRONMENTS)}")

    @property
    def is_production(self) -> bool:
        """Return True when running with production guarantees.

        Example:
            ```python
            strict = config.is_production
            ```
        """
        return self.environment == "production"

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> "EngineConfig":
        """Load bundled defaults, overlay a user TOML file and `SCE_*` variables.

        Example:
            ```python
            config = EngineConfig.load("/etc/sce/config.toml")
            ```
        """
        raw = _read_config_toml(_default_config_path())
        if config_path is not None:
            raw = _merge(raw, _read_config_toml(Path(config_path)))
        raw = _merge(raw, _env_overrides(os.environ if env is None else env))
        return cls.from_mapping(raw)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "EngineConfig":
        """Build a config from a parsed TOML mapping.

        Example:
            ```python
            config = EngineConfig.from_mapping({"execution": {"isolation": "isolated"}})
            ```
        """
        engine = _table(raw, "engine")
        toolchain = _table(raw, "toolchain")
        execution = _table(raw, "execution")
        parser = _table(raw, "parser")
        analysis = _table(raw, "analysis")

        compilers = toolchain.get("compilers", {"g++": "g++", "clang++": "clang++"})
        if not isinstance(compilers, Mapping):
            raise ValueError("'toolchain.compilers' must be a TOML table")

        scratch = _optional_str(engine.get("scratch_dir"))
        return cls(
            environment=str(engine.get("environment", "development")),
            log_level=str(engine.get("log_level", "INFO")).upper(),
            scratch_dir=(
                Path(scratch).expanduser()
                if scratch
                else Path(tempfile.gettempdir()) / "safe-cpp-engine"
            ),
            toolchain=ToolchainSettings(
                default_compiler=str(toolchain.get("default_compiler", "g++")),
                standard=str(toolchain.get("standard", "c++20")),
                optimization=str(toolchain.get("optimization", "O2")),
                compile_timeout_seconds=int(toolchain.get("compile_timeout_seconds", 30)),
                max_output_kb=int(toolchain.get("max_output_kb", 64)),
                compilers={str(k): str(v) for k, v in compilers.items()},
            ),
            execution=ExecutionSettings(
                isolation=str(execution.get("isolation", "direct")),
                timeout_seconds=int(execution.get("timeout_seconds", 10)),
                memory_limit_mb=int(execution.get("memory_limit_mb", 512)),
                cpu_limit=float(execution.get("cpu_limit", 1.0)),
                max_output_kb=int(execution.get("max_output_kb", 128)),
                pids_limit=int(execution.get("pids_limit", 64)),
                docker_image=str(execution.get("docker_image", "debian:bookworm-slim")),
                docker_context=_optional_str(execution.get("docker_context")),
                docker_command_timeout_seconds=int(execution.get("docker_command_timeout_seconds", 60)),
                docker_pull_timeout_seconds=int(execution.get("docker_pull_timeout_seconds", 600)),
            ),
            parser=ParserSettings(
                standard=str(parser.get("standard", "c++20")),
                source_name=str(parser.get("source_name", "main.cpp")),
                include_paths=_list_of_str(parser.get("include_paths", []), "include_paths"),
                extra_args=_list_of_str(parser.get("extra_args", []), "extra_args"),
                resource_dir=_optional_str(parser.get("resource_dir")),
                library_file=_optional_str(parser.get("library_file")),
            ),
            analysis=AnalysisSettings(
                suggestion_threshold=int(analysis.get("suggestion_threshold", 3)),
                scoring=_build(ScoringWeights, _table(analysis, "scoring"), "analysis.scoring"),
                maintainability=_build(
                    MaintainabilityConstants,
                    _table(analysis, "maintainability"),
                    "analysis.maintainability",
                ),
                external_tools=_list_of_str(analysis.get("external_tools", []), "external_tools"),
                external_timeout_seconds=int(analysis.get("external_timeout_seconds", 30)),
                clang_tidy_path=str(analysis.get("clang_tidy_path", "clang-tidy")),
                cppcheck_path=str(analysis.get("cppcheck_path", "cppcheck")),
            ),
        )
