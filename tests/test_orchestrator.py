import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from safe_cpp_engine import EngineConfig, EngineStartupError, ExecutionOptions, ExitStatus, Orchestrator
from safe_cpp_engine.execution.isolation import DirectIsolation

HELLO = '#include <iostream>\nint main(){std::cout<<"Hello, World!";return 0;}'
MISSING_SEMICOLON = "int main() {\n    int x = 1\n    return x;\n}\n"

needs_gxx = pytest.mark.skipif(shutil.which("g++") is None, reason="g++ is not installed")


class _UnavailableIsolation:
    name = "isolated"
    link_flags = ("-static",)

    def available(self):
        return False, "Docker CLI was not found."

    def prepare(self) -> bool:
        return False

    def run(self, artifact, **kwargs):
        raise AssertionError("must not run")


def _config(tmp_path: Path, **execution) -> EngineConfig:
    return EngineConfig.from_mapping(
        {
            "engine": {"scratch_dir": str(tmp_path)},
            "toolchain": {"compile_timeout_seconds": 60},
            "execution": execution,
        }
    )


@pytest.fixture
def orchestrator(tmp_path: Path) -> Orchestrator:
    config = _config(tmp_path)
    return Orchestrator(config, isolations={"direct": DirectIsolation(), "isolated": _UnavailableIsolation()})


def _options(orchestrator: Orchestrator, **raw) -> ExecutionOptions:
    stdin = raw.pop("stdin", None)
    return ExecutionOptions.from_mapping(raw, orchestrator.config, stdin=stdin)


def test_production_refuses_to_downgrade(tmp_path: Path) -> None:
    config = EngineConfig.from_mapping(
        {"engine": {"environment": "production", "scratch_dir": str(tmp_path)}, "execution": {"isolation": "isolated"}}
    )
    orchestrator = Orchestrator(config, isolations={"direct": DirectIsolation(), "isolated": _UnavailableIsolation()})

    result = orchestrator.execute("int main() { return 0; }")

    assert result.status is ExitStatus.SPAWN_FAILED
    assert "unavailable" in (result.error or "")
    assert result.compilation is None


def test_production_startup_fails_without_sandbox(tmp_path: Path) -> None:
    config = EngineConfig.from_mapping(
        {
            "engine": {"environment": "production", "scratch_dir": str(tmp_path)},
            "toolchain": {"compilers": {"g++": "sh", "clang++": "sh"}},
            "execution": {"isolation": "isolated"},
        }
    )
    orchestrator = Orchestrator(config, isolations={"direct": DirectIsolation(), "isolated": _UnavailableIsolation()})

    with pytest.raises(EngineStartupError, match="Isolation 'isolated' unavailable"):
        orchestrator.initialize()


def test_missing_default_compiler_is_fatal(tmp_path: Path) -> None:
    config = EngineConfig.from_mapping(
        {"engine": {"scratch_dir": str(tmp_path)}, "toolchain": {"compilers": {"g++": "/nonexistent/g++"}}}
    )

    with pytest.raises(EngineStartupError, match="Default compiler"):
        Orchestrator(config, isolations={"direct": DirectIsolation()}).initialize()


def test_development_downgrades_to_direct(orchestrator: Orchestrator) -> None:
    isolation, error = orchestrator._select_isolation("isolated")

    assert error is None
    assert isolation is not None
    assert isolation.name == "direct"


def test_unknown_isolation_mode(orchestrator: Orchestrator) -> None:
    with pytest.raises(ValueError, match="Unknown isolation mode"):
        orchestrator.isolation("vm")


@needs_gxx
def test_scenario_c_hello_world(orchestrator: Orchestrator, tmp_path: Path) -> None:
    compiled = orchestrator.compile(HELLO)
    result = orchestrator.execute(HELLO)

    assert compiled.success
    assert compiled.artifact is not None and compiled.artifact.endswith("/main")
    assert result.status is ExitStatus.EXITED
    assert result.success
    assert result.exit_code == 0
    assert result.stdout == "Hello, World!"
    assert result.isolation == "direct"
    assert list(tmp_path.iterdir()) == []


@needs_gxx
def test_scenario_b_compile_error_never_runs(orchestrator: Orchestrator, tmp_path: Path) -> None:
    compiled = orchestrator.compile(MISSING_SEMICOLON)
    result = orchestrator.execute(MISSING_SEMICOLON)

    assert not compiled.success
    assert compiled.errors
    assert compiled.artifact is None
    assert result.status is ExitStatus.COMPILATION_FAILED
    assert result.error is not None and result.error.startswith("Compilation failed")
    assert result.exit_code is None
    assert result.stdout == ""
    assert list(tmp_path.iterdir()) == []


@needs_gxx
def test_stdin_and_nonzero_exit(orchestrator: Orchestrator) -> None:
    source = "#include <iostream>\nint main(){int a,b;std::cin>>a>>b;std::cout<<a+b;return 3;}"

    result = orchestrator.execute(source, _options(orchestrator, stdin="3 4\n"))

    assert result.status is ExitStatus.EXITED
    assert result.exit_code == 3
    assert result.stdout == "7"
    assert not result.success


@needs_gxx
def test_infinite_loop_times_out(orchestrator: Orchestrator, tmp_path: Path) -> None:
    source = "int main(){volatile unsigned long n=0;for(;;){n++;}}"

    result = orchestrator.execute(source, _options(orchestrator, timeout_seconds=2))

    assert result.status is ExitStatus.TIMED_OUT
    assert result.error == "Execution timed out after 2s"
    assert 1900 <= result.elapsed_ms < 2500
    assert list(tmp_path.iterdir()) == []


@needs_gxx
def test_segfault_is_a_crash(orchestrator: Orchestrator) -> None:
    source = "#include <csignal>\nint main(){std::raise(SIGSEGV);return 0;}"

    result = orchestrator.execute(source)

    assert result.status is ExitStatus.CRASHED
    assert result.signal == 11
    assert result.error == "Program terminated by SIGSEGV"


@needs_gxx
def test_runaway_output_is_truncated(tmp_path: Path) -> None:
    config = _config(tmp_path, max_output_kb=1)
    orchestrator = Orchestrator(config, isolations={"direct": DirectIsolation()})
    source = "#include <cstdio>\nint main(){for(int i=0;i<100000;i++)std::putchar('x');return 0;}"

    result = orchestrator.execute(source)

    assert result.success
    assert result.stdout_truncated
    assert len(result.stdout) == 1024


@needs_gxx
def test_concurrent_requests_leave_no_workspaces(orchestrator: Orchestrator, tmp_path: Path) -> None:
    looping = "int main(){volatile unsigned long n=0;for(;;){n++;}}"
    crashing = "#include <csignal>\nint main(){std::raise(SIGSEGV);return 0;}"
    sources = [HELLO, looping, crashing, HELLO, looping, crashing]
    options = _options(orchestrator, timeout_seconds=1)

    with ThreadPoolExecutor(max_workers=len(sources)) as pool:
        results = list(pool.map(lambda source: orchestrator.execute(source, options), sources))

    assert [result.status for result in results] == [
        ExitStatus.EXITED,
        ExitStatus.TIMED_OUT,
        ExitStatus.CRASHED,
        ExitStatus.EXITED,
        ExitStatus.TIMED_OUT,
        ExitStatus.CRASHED,
    ]
    assert results[0].stdout == results[3].stdout == "Hello, World!"
    assert list(tmp_path.iterdir()) == []


@needs_gxx
def test_initialize_runs_self_test(orchestrator: Orchestrator) -> None:
    orchestrator.initialize()
