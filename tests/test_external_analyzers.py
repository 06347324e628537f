from pathlib import Path

import pytest

from safe_cpp_engine import EngineConfig
from safe_cpp_engine.analysis import AnalysisOptions, Analyzer, default_rules, external_rules
from safe_cpp_engine.analysis import external as external_module
from safe_cpp_engine.execution import ExitStatus, ProcessOutcome

SOURCE = "int main() {\n    int a[2];\n    a[3] = 0;\n    return 0;\n}\n"

CLANG_TIDY_OUTPUT = (
    "{source}:3:5: warning: array index 3 is past the end of the array [clang-diagnostic-array-bounds]\n"
    "    a[3] = 0;\n"
    "    ^\n"
    "/usr/include/c++/12/bits/stl_vector.h:10:1: warning: noise from a header [misc-unused]\n"
    "{source}:2:5: note: array 'a' declared here [clang-diagnostic-array-bounds]\n"
)

CPPCHECK_OUTPUT = (
    "{source}:3:6: error: Array 'a[2]' accessed at index 3, which is out of bounds. [arrayIndexOutOfBounds]\n"
    "{source}:3:10: style: Variable 'a[3]' is assigned a value that is never used. [unreadVariable]\n"
    "nofile:0:0: information: Active checkers: 106/592 [checkersReport]\n"
)


def _config(tmp_path: Path, *tools: str) -> EngineConfig:
    return EngineConfig.from_mapping(
        {
            "engine": {"scratch_dir": str(tmp_path / "scratch")},
            "analysis": {"external_tools": list(tools), "external_timeout_seconds": 5},
        }
    )


class _FakeTool:
    def __init__(self, outputs: dict[str, str], status: ExitStatus = ExitStatus.EXITED) -> None:
        self.outputs = outputs
        self.status = status
        self.calls: list[tuple[list[str], dict]] = []

    def __call__(self, argv, **kwargs) -> ProcessOutcome:
        self.calls.append((list(argv), kwargs))
        source = next(arg for arg in argv if arg.endswith("main.cpp"))
        assert Path(source).read_text(encoding="utf-8") == SOURCE
        text = self.outputs[Path(argv[0]).name].format(source=source)
        if Path(argv[0]).name == "cppcheck":
            return ProcessOutcome(status=self.status, exit_code=0, signal=None, stdout="", stderr=text)
        return ProcessOutcome(status=self.status, exit_code=1, signal=None, stdout=text, stderr="")


@pytest.fixture
def installed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(external_module.shutil, "which", lambda name: f"/usr/bin/{name}")


def test_no_external_tools_by_default(tmp_path: Path) -> None:
    assert external_rules(_config(tmp_path)) == []


def test_missing_tool_is_left_out(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(external_module.shutil, "which", lambda name: None if name == "clang-tidy" else f"/usr/bin/{name}")

    rules = external_rules(_config(tmp_path, "clang-tidy", "cppcheck"))

    assert [rule.id for rule in rules] == ["cppcheck"]


def test_unknown_external_tool_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="external_tools"):
        _config(tmp_path, "pvs-studio")


def test_clang_tidy_diagnostics_become_tagged_issues(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, installed: None
) -> None:
    fake = _FakeTool({"clang-tidy": CLANG_TIDY_OUTPUT})
    monkeypatch.setattr(external_module, "run_bounded", fake)
    config = _config(tmp_path, "clang-tidy")
    analyzer = Analyzer(config.analysis, rules=[*default_rules(), *external_rules(config)])

    result = analyzer.analyze(SOURCE)

    tidy = [issue for issue in result.issues if issue.rule_id == "clang_tidy"]
    assert [(issue.line, issue.column) for issue in tidy] == [(3, 5)]
    assert "array index 3 is past the end" in tidy[0].message
    assert "[clang-tidy: clang-diagnostic-array-bounds]" in tidy[0].message
    argv, kwargs = fake.calls[0]
    assert argv[0] == "/usr/bin/clang-tidy"
    assert argv[-2:] == ["--", "-std=c++20"]
    assert kwargs["timeout_seconds"] == 5
    assert list((tmp_path / "scratch").iterdir()) == []


def test_cppcheck_reads_stderr_and_skips_other_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, installed: None) -> None:
    monkeypatch.setattr(external_module, "run_bounded", _FakeTool({"cppcheck": CPPCHECK_OUTPUT}))
    [rule] = external_rules(_config(tmp_path, "cppcheck"))

    violations = rule.check(SOURCE)

    assert [(v.line, v.column) for v in violations] == [(3, 6), (3, 10)]
    assert violations[0].message.endswith("[cppcheck: arrayIndexOutOfBounds]")


def test_hung_tool_is_reported_as_skipped(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, installed: None) -> None:
    monkeypatch.setattr(external_module, "run_bounded", _FakeTool({"cppcheck": ""}, status=ExitStatus.TIMED_OUT))
    config = _config(tmp_path, "cppcheck")
    analyzer = Analyzer(config.analysis, rules=[*default_rules(), *external_rules(config)])

    result = analyzer.analyze(SOURCE)

    assert result.success
    assert result.skipped_rules == ["cppcheck"]
    assert list((tmp_path / "scratch").iterdir()) == []


def test_external_rules_obey_rule_filters(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, installed: None) -> None:
    fake = _FakeTool({"cppcheck": CPPCHECK_OUTPUT})
    monkeypatch.setattr(external_module, "run_bounded", fake)
    config = _config(tmp_path, "cppcheck")
    analyzer = Analyzer(config.analysis, rules=[*default_rules(), *external_rules(config)])

    result = analyzer.analyze(SOURCE, AnalysisOptions(disabled_rules=frozenset({"cppcheck"})))

    assert result.success
    assert fake.calls == []
    assert all(issue.rule_id != "cppcheck" for issue in result.issues)
