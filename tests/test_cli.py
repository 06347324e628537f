from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from safe_cpp_engine import (
    CompilationResult,
    EngineConfig,
    EngineService,
    EngineStartupError,
    ExecutionResult,
    ExitStatus,
    ParseResult,
    SyntaxTree,
)
from safe_cpp_engine.execution.docker import CleanupSummary, ContainerInfo
from sce import cli

LEAKY = "int main(){int*p=new int(5);return 0;}\n"


class _FakeOrchestrator:
    def __init__(self) -> None:
        self.executed: list[object] = []
        self.fail_start = False

    def initialize(self) -> None:
        if self.fail_start:
            raise EngineStartupError("Isolation unavailable in production: docker not found")

    def compile(self, source, options=None):
        if "oops" in source:
            return CompilationResult(success=False, errors=["main.cpp:1:1: error: 'oops' was not declared"])
        return CompilationResult(success=True, artifact="main", elapsed_ms=12.0)

    def execute(self, source, options=None):
        self.executed.append(options)
        return ExecutionResult(status=ExitStatus.EXITED, exit_code=0, stdout="7\n", isolation="direct")


class _FakeParser:
    def parse(self, source, include_tokens=False):
        return ParseResult(success=True, tree=SyntaxTree(), tokens=() if include_tokens else None)

    def validate_syntax(self, source):
        return "}" in source


class _FakeDockerClient:
    def __init__(self) -> None:
        self.cleaned = False

    def list_containers(self, all_states: bool = False):
        return [ContainerInfo("abc123", "sce-1f2e", "debian:bookworm-slim", "running", "Up 2s")]

    def cleanup_stale(self):
        self.cleaned = True
        return CleanupSummary(removed_containers=1)


@pytest.fixture
def orchestrator(monkeypatch: pytest.MonkeyPatch) -> _FakeOrchestrator:
    fake = _FakeOrchestrator()

    def _build(config: EngineConfig) -> EngineService:
        return EngineService(config, orchestrator=fake, parser=_FakeParser())

    monkeypatch.setattr(cli, "build_service", _build)
    return fake


@pytest.fixture
def docker_client(monkeypatch: pytest.MonkeyPatch) -> _FakeDockerClient:
    fake = _FakeDockerClient()
    monkeypatch.setattr(cli, "build_docker_client", lambda config: fake)
    return fake


@pytest.fixture
def source_file(tmp_path: Path) -> Path:
    path = tmp_path / "main.cpp"
    path.write_text(LEAKY, encoding="utf-8")
    return path


def test_cli_rules_json(orchestrator: _FakeOrchestrator, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--json", "rules"])
    rows = json.loads(capsys.readouterr().out)
    assert code == 0
    assert len(rows) == 16
    assert rows[0]["id"] == "memory_leak_potential"
    assert rows[0]["severity"] == "high"


def test_cli_rules_table(orchestrator: _FakeOrchestrator, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["rules"])
    output = capsys.readouterr().out
    assert code == 0
    assert "Analysis Rules" in output


def test_cli_analyze_json(
    orchestrator: _FakeOrchestrator,
    source_file: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = cli.main(["--json", "analyze", str(source_file)])
    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert [issue["rule_id"] for issue in payload["issues"]] == ["memory_leak_potential"]
    assert payload["score"] == 90.0


def test_cli_analyze_filters_by_rule(
    orchestrator: _FakeOrchestrator,
    source_file: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = cli.main(["--json", "analyze", str(source_file), "--disable-rule", "memory_leak_potential"])
    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["issues"] == []
    assert payload["score"] == 100.0


def test_cli_analyze_table(orchestrator: _FakeOrchestrator, source_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["analyze", str(source_file)])
    output = capsys.readouterr().out
    assert code == 0
    assert "Issues" in output
    assert "Score 90.0" in output


def test_cli_run_passes_stdin_and_limits(
    orchestrator: _FakeOrchestrator,
    source_file: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = cli.main(["run", str(source_file), "--stdin", "3 4", "--timeout", "2", "--std", "c++17"])
    output = capsys.readouterr().out
    assert code == 0
    assert "exited" in output
    assert "7" in output
    options = orchestrator.executed[0]
    assert options.stdin == "3 4"
    assert options.timeout_seconds == 2
    assert options.compilation.standard == "c++17"


def test_cli_run_reads_stdin_file(
    orchestrator: _FakeOrchestrator,
    source_file: Path,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    stdin_file = tmp_path / "input.txt"
    stdin_file.write_text("5\n", encoding="utf-8")
    code = cli.main(["--json", "run", str(source_file), "--stdin-file", str(stdin_file)])
    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["success"] is True
    assert orchestrator.executed[0].stdin == "5\n"


def test_cli_run_rejects_invalid_timeout(
    orchestrator: _FakeOrchestrator,
    source_file: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = cli.main(["run", str(source_file), "--timeout", "0"])
    output = capsys.readouterr().out
    assert code == 1
    assert "Invalid options" in output
    assert orchestrator.executed == []


def test_cli_missing_source_file(orchestrator: _FakeOrchestrator, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["check", str(tmp_path / "missing.cpp")])
    output = capsys.readouterr().out
    assert code == 1
    assert "Error:" in output


def test_cli_compile_failure(orchestrator: _FakeOrchestrator, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "bad.cpp"
    path.write_text("int main() { oops; }\n", encoding="utf-8")
    code = cli.main(["compile", str(path)])
    output = capsys.readouterr().out
    assert code == 1
    assert "Compilation failed" in output


def test_cli_check_and_parse(orchestrator: _FakeOrchestrator, source_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["check", str(source_file)]) == 0
    assert "Syntax OK" in capsys.readouterr().out
    assert cli.main(["parse", str(source_file), "--tokens"]) == 0
    assert "Syntax Tree" in capsys.readouterr().out


def test_cli_selftest_failure(orchestrator: _FakeOrchestrator, capsys: pytest.CaptureFixture[str]) -> None:
    orchestrator.fail_start = True
    code = cli.main(["selftest"])
    output = capsys.readouterr().out
    assert code == 1
    assert "Isolation unavailable" in output


def test_cli_selftest_success(orchestrator: _FakeOrchestrator, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["selftest"])
    assert code == 0
    assert "Self-test passed" in capsys.readouterr().out


def test_cli_list_containers(docker_client: _FakeDockerClient, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--json", "containers", "list"])
    rows = json.loads(capsys.readouterr().out)
    assert code == 0
    assert rows[0]["name"] == "sce-1f2e"


def test_cli_cleanup_containers(docker_client: _FakeDockerClient, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["containers", "cleanup"])
    output = capsys.readouterr().out
    assert code == 0
    assert docker_client.cleaned
    assert "Cleanup Summary" in output


def test_cli_invalid_config_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--config", str(tmp_path / "nope.toml"), "rules"])
    output = capsys.readouterr().out
    assert code == 1
    assert "Invalid configuration" in output


def test_cli_top_level_help_examples(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Quick Examples:" in output
    assert "python -m sce run hello.cpp" in output


def test_cli_print_help_writes_to_requested_stream(capsys: pytest.CaptureFixture[str]) -> None:
    parser = cli.build_parser()
    buffer = io.StringIO()
    parser.print_help(file=buffer)
    output = capsys.readouterr().out
    assert output == ""
    help_text = buffer.getvalue()
    assert "Usage:" in help_text
    assert "safe-cpp-engine CLI" in help_text
