from pathlib import Path

import pytest

from safe_cpp_engine import EngineConfig


def test_bundled_defaults_load() -> None:
    config = EngineConfig.load(env={})

    assert config.environment == "development"
    assert not config.is_production
    assert config.toolchain.default_compiler == "g++"
    assert config.toolchain.standard == "c++20"
    assert config.execution.isolation == "direct"
    assert config.execution.timeout_seconds == 10
    assert config.execution.docker_context is None
    assert config.execution.docker_command_timeout_seconds == 60
    assert config.execution.docker_pull_timeout_seconds == 600
    assert config.parser.resource_dir is None
    assert config.analysis.scoring.high_penalty == 10.0
    assert config.analysis.maintainability.base == 171.0


def test_user_file_overlays_defaults(tmp_path: Path) -> None:
    path = tmp_path / "sce.toml"
    path.write_text(
        "[execution]\n"
        "timeout_seconds = 3\n"
        "\n"
        "[analysis.scoring]\n"
        "low_penalty = 2.5\n",
        encoding="utf-8",
    )

    config = EngineConfig.load(path, env={})

    assert config.execution.timeout_seconds == 3
    assert config.execution.memory_limit_mb == 512
    assert config.analysis.scoring.low_penalty == 2.5
    assert config.analysis.scoring.high_penalty == 10.0


def test_environment_variables_override_file(tmp_path: Path) -> None:
    env = {
        "SCE_ENVIRONMENT": "production",
        "SCE_ISOLATION": "isolated",
        "SCE_EXECUTION_TIMEOUT": "7",
        "SCE_SCRATCH_DIR": str(tmp_path / "scratch"),
    }

    config = EngineConfig.load(env=env)

    assert config.is_production
    assert config.execution.isolation == "isolated"
    assert config.execution.timeout_seconds == 7
    assert config.scratch_dir == tmp_path / "scratch"


def test_invalid_environment_value_is_rejected() -> None:
    with pytest.raises(ValueError, match="SCE_EXECUTION_TIMEOUT"):
        EngineConfig.load(env={"SCE_EXECUTION_TIMEOUT": "soon"})


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ({"execution": {"timeout_seconds": 0}}, "Invalid execution timeout"),
        ({"execution": {"memory_limit_mb": 9000}}, "Invalid memory limit"),
        ({"execution": {"isolation": "vm"}}, "isolation"),
        ({"execution": {"docker_command_timeout_seconds": 0}}, "Docker command timeouts"),
        ({"engine": {"environment": "staging"}}, "environment"),
        ({"toolchain": {"default_compiler": "icc"}}, "default_compiler"),
        ({"analysis": {"scoring": {"bogus": 1}}}, "analysis.scoring"),
    ],
)
def test_invalid_values_raise(raw: dict, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        EngineConfig.from_mapping(raw)


def test_missing_config_file_is_reported(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="not found"):
        EngineConfig.load(tmp_path / "missing.toml", env={})


def test_unknown_compiler_choice_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown compiler"):
        EngineConfig().toolchain.executable_for("tcc")
