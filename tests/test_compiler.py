from safe_cpp_engine import CompilationOptions
from safe_cpp_engine.execution.compiler import build_compile_command, classify_diagnostics


def test_compile_command_layout() -> None:
    options = CompilationOptions(standard="c++17", optimization="O0", debug=True, extra_flags=("-DX=1",))

    argv = build_compile_command("g++", options, source="main.cpp", output="main", link_flags=("-static",))

    assert argv == [
        "g++",
        "-std=c++17",
        "-O0",
        "-g",
        "-Wall",
        "-Wextra",
        "-pedantic",
        "-static",
        "-DX=1",
        "main.cpp",
        "-o",
        "main",
    ]


def test_compile_command_without_debug_or_link_flags() -> None:
    argv = build_compile_command("clang++", CompilationOptions(), source="main.cpp", output="main")

    assert argv[:3] == ["clang++", "-std=c++20", "-O2"]
    assert "-g" not in argv
    assert argv[-3:] == ["main.cpp", "-o", "main"]


def test_classify_diagnostics_splits_warnings_and_errors() -> None:
    output = (
        "main.cpp: In function 'int main()':\n"
        "main.cpp:3:9: warning: unused variable 'x' [-Wunused-variable]\n"
        "main.cpp:4:13: error: expected ';' before '}' token\n"
        "    4 |     return 0\n"
    )

    warnings, errors = classify_diagnostics(output)

    assert warnings == ["main.cpp:3:9: warning: unused variable 'x' [-Wunused-variable]"]
    assert errors == ["main.cpp:4:13: error: expected ';' before '}' token"]
