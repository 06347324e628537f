import pytest

from safe_cpp_engine import CompilationOptions, EngineConfig, ExecutionOptions, ExecutionResult, ExitStatus
from safe_cpp_engine.execution.types import validate_extra_flags


def test_compilation_options_default_from_config() -> None:
    options = CompilationOptions.from_mapping(None, EngineConfig())

    assert options.compiler == "g++"
    assert options.standard == "c++20"
    assert options.optimization == "O2"
    assert options.debug is False
    assert options.extra_flags == ()
    assert options.timeout_seconds == 30


def test_compilation_options_accept_dashed_optimization() -> None:
    options = CompilationOptions.from_mapping(
        {"compiler": "clang++", "standard": "c++17", "optimization": "-O0", "debug": True, "flags": ["-DNDEBUG"]},
        EngineConfig(),
    )

    assert options.compiler == "clang++"
    assert options.optimization == "O0"
    assert options.debug is True
    assert options.extra_flags == ("-DNDEBUG",)


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ({"standard": "c++98"}, "Unsupported language standard"),
        ({"optimization": "O9"}, "Unsupported optimization level"),
        ({"compiler": "tcc"}, "Unknown compiler"),
        ({"compile_timeout_seconds": 0}, "Compilation timeout"),
    ],
)
def test_compilation_options_reject_invalid_values(raw: dict, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        CompilationOptions.from_mapping(raw, EngineConfig())


@pytest.mark.parametrize(
    "flag",
    [
        "-o/tmp/evil",
        "-B/tmp",
        "-wrapper",
        "-fplugin=evil.so",
        "-specs=x",
        "-xc",
        "-save-temps",
        "@args.txt",
        "; rm -rf /",
        "-Wl,-o,/tmp/escaped_binary",
        "-Wa,-adhln=/tmp/listing",
        "-Wp,-MD,/tmp/deps",
        "-Xlinker",
        "-Xassembler",
        "-Xpreprocessor",
        "-MD",
        "-MF/tmp/escaped.d",
        "-MMD",
        "--output=/tmp/evil",
        "-aux-info",
        "-fdump-tree-all=/tmp/dump",
        "-nostdlib",
        "-shared",
    ],
)
def test_dangerous_flags_are_rejected(flag: str) -> None:
    with pytest.raises(ValueError):
        validate_extra_flags([flag])


@pytest.mark.parametrize("flags", [["-Wl,-o,/tmp/escaped_binary"], ["-MD", "-MF/tmp/escaped.d"]])
def test_output_escaping_flags_are_rejected_at_the_request_boundary(flags: list[str]) -> None:
    with pytest.raises(ValueError, match="not allowed"):
        CompilationOptions.from_mapping({"extra_flags": flags}, EngineConfig())


def test_ordinary_flags_are_allowed() -> None:
    flags = [
        "-I/usr/include/foo",
        "-DVALUE=1",
        "-UDEBUG",
        "-fno-exceptions",
        "-Wshadow",
        "-O3",
        "-lm",
        "-pthread",
        "-march=native",
        "-g3",
    ]

    assert validate_extra_flags(flags) == tuple(flags)


def test_flags_must_be_a_list_of_strings() -> None:
    with pytest.raises(ValueError, match="list of strings"):
        validate_extra_flags("-Wall")
    with pytest.raises(ValueError, match="only strings"):
        validate_extra_flags([3])


def test_execution_options_defaults_and_stdin() -> None:
    options = ExecutionOptions.from_mapping({"timeout_seconds": 2}, EngineConfig(), stdin="3 4\n")

    assert options.timeout_seconds == 2
    assert options.memory_limit_mb == 512
    assert options.stdin == "3 4\n"
    assert options.isolation is None
    assert options.compilation.standard == "c++20"


def test_sandbox_flag_selects_isolation() -> None:
    assert ExecutionOptions.from_mapping({"sandbox": True}, EngineConfig()).isolation == "isolated"
    assert ExecutionOptions.from_mapping({"sandbox": False}, EngineConfig()).isolation == "direct"


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ({"timeout_seconds": 0}, "Invalid execution timeout: 0"),
        ({"timeout_seconds": 301}, "Invalid execution timeout: 301"),
        ({"memory_limit_mb": 0}, "Invalid memory limit: 0"),
        ({"memory_limit_mb": 8193}, "Invalid memory limit: 8193"),
        ({"isolation": "vm"}, "isolation"),
    ],
)
def test_execution_options_reject_out_of_range_limits(raw: dict, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        ExecutionOptions.from_mapping(raw, EngineConfig())


def test_execution_result_success_requires_clean_exit() -> None:
    assert ExecutionResult(status=ExitStatus.EXITED, exit_code=0).success
    assert not ExecutionResult(status=ExitStatus.EXITED, exit_code=1).success
    assert not ExecutionResult(status=ExitStatus.TIMED_OUT).success
    assert ExecutionResult(status=ExitStatus.EXITED, exit_code=0, stderr_truncated=True).truncated


@pytest.mark.parametrize(
    "raw",
    [
        {"timeout_seconds": None},
        {"memory_limit_mb": "lots"},
        {"timeout_seconds": [2]},
        {"compile_timeout_seconds": None},
        {"timeout_seconds": True},
    ],
)
def test_non_integer_limits_are_value_errors(raw: dict) -> None:
    with pytest.raises(ValueError, match="must be an integer"):
        ExecutionOptions.from_mapping(raw, EngineConfig())
