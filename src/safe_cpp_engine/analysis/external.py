from __future__ import annotations

import re
import shutil
from pathlib import Path
from typing import Sequence

import structlog

from ..config import EngineConfig
from ..execution.process import run_bounded
from ..execution.types import ExitStatus
from ..execution.workspace import Workspace
from .rules import Rule
from .types import Category, Severity, Violation

logger = structlog.get_logger(__name__)

EXTERNAL_OUTPUT_BYTES = 1024 * 1024
SOURCE_PLACEHOLDER = "{source}"
CLANG_TIDY_CHECKS = "*,-fuchsia-*,-llvm-header-guard,-google-readability-todo,-llvmlibc-*"

_CLANG_TIDY_LINE = re.compile(
    r"^(?P<file>.+?):(?P<line>\d+):(?P<column>\d+):\s+(?:warning|error):\s+(?P<message>.+?)\s+\[(?P<check>[^\]]+)\]$"
)
_CPPCHECK_LINE = re.compile(
    r"^(?P<file>.+?):(?P<line>\d+):(?P<column>\d+):\s+"
    r"(?:error|warning|style|performance|portability|information):\s+"
    r"(?P<message>.+?)(?:\s+\[(?P<check>[^\]]+)\])?$"
)


class ExternalToolRule:
    """Run an installed C++ analyzer over the source and report its diagnostics.

    The source is written into a private `Workspace`, the tool runs under a
    deadline via `run_bounded`, and every diagnostic line that names the
    workspace source becomes a `Violation` whose message carries the tool's
    check name. A tool that times out or dies on a signal raises, so the
    analyzer lists the rule as skipped instead of reporting a partial result.

    Example:
        ```python
        rule = ExternalToolRule(
            tool="cppcheck",
            command=["cppcheck", "--output-format=gcc", SOURCE_PLACEHOLDER],
            pattern=_CPPCHECK_LINE,
            scratch_root=Path("/tmp/sce"),
            timeout_seconds=30,
        )
        violations = rule.check("int main(){int a[2]; a[3] = 0;}")
        ```
    """

    severity = Severity.MEDIUM
    category = Category.BEST_PRACTICES

    def __init__(
        self,
        *,
        tool: str,
        command: Sequence[str],
        pattern: re.Pattern[str],
        scratch_root: Path,
        timeout_seconds: int,
    ) -> None:
        """Remember how to invoke the tool and read its output.

        `command` is the full argv with `SOURCE_PLACEHOLDER` standing in for
        the source file path.

        Example:
            ```python
            rule = ExternalToolRule(tool="clang-tidy", command=["clang-tidy", SOURCE_PLACEHOLDER], pattern=_CLANG_TIDY_LINE,
                                    scratch_root=Path("/tmp/sce"), timeout_seconds=30)
            ```
        """
        self.tool = tool
        self.id = tool.replace("-", "_")
        self.description = f"{tool} diagnostic"
        self._command = tuple(command)
        self._pattern = pattern
        self._scratch_root = scratch_root
        self._timeout_seconds = timeout_seconds

    def check(self, source: str) -> list[Violation]:
        """Run the tool on `source` and parse its diagnostics.

        Example:
            ```python
            violations = rule.check("int main(){char*p=0;return *p;}")
            ```
        """
        with Workspace(self._scratch_root) as workspace:
            path = workspace.write_source(source)
            outcome = run_bounded(
                [str(path) if arg == SOURCE_PLACEHOLDER else arg for arg in self._command],
                timeout_seconds=self._timeout_seconds,
                max_output_bytes=EXTERNAL_OUTPUT_BYTES,
                cwd=workspace.path,
            )
            if outcome.status is not ExitStatus.EXITED:
                logger.warning("external_tool_failed", tool=self.tool, status=outcome.status.value)
                raise RuntimeError(f"{self.tool} did not finish: {outcome.status.value}")
            violations = self.parse(outcome.stdout + "\n" + outcome.stderr, path.name)
        logger.debug("external_tool_finished", tool=self.tool, exit_code=outcome.exit_code, issues=len(violations))
        return violations

    def parse(self, output: str, source_name: str) -> list[Violation]:
        """Turn diagnostic lines about `source_name` into violations.

        Lines about other files, such as system headers, are ignored.

        Example:
            ```python
            rule.parse("/tmp/sce/session-1/main.cpp:3:5: warning: unused [misc-unused]", "main.cpp")
            ```
        """
        violations: list[Violation] = []
        seen: set[tuple[int, int, str]] = set()
        for raw in output.splitlines():
            match = self._pattern.match(raw.strip())
            if match is None or Path(match["file"]).name != source_name:
                continue
            message = match["message"]
            if match["check"]:
                message = f"{message} [{self.tool}: {match['check']}]"
            else:
                message = f"{message} [{self.tool}]"
            key = (int(match["line"]), int(match["column"]), message)
            if key in seen:
                continue
            seen.add(key)
            violations.append(Violation(key[0], key[1], message))
        return violations


def external_rules(config: EngineConfig) -> list[Rule]:
    """Build the configured external analyzer rules whose executables exist.

    A tool that is configured but not installed is logged and left out.

    Example:
        ```python
        rules = [*default_rules(), *external_rules(EngineConfig.load())]
        ```
    """
    analysis = config.analysis
    standard = config.toolchain.standard
    rules: list[Rule] = []
    for tool in analysis.external_tools:
        if tool == "clang-tidy":
            executable = shutil.which(analysis.clang_tidy_path)
            pattern = _CLANG_TIDY_LINE
            options = [SOURCE_PLACEHOLDER, f"-checks={CLANG_TIDY_CHECKS}", "--quiet", "--", f"-std={standard}"]
        else:
            executable = shutil.which(analysis.cppcheck_path)
            pattern = _CPPCHECK_LINE
            options = [
                "--enable=all",
                f"--std={standard}",
                "--platform=unix64",
                "--output-format=gcc",
                "--inline-suppr",
                "--suppress=missingIncludeSystem",
                SOURCE_PLACEHOLDER,
            ]
        if executable is None:
            logger.warning("external_tool_missing", tool=tool)
            continue
        rules.append(
            ExternalToolRule(
                tool=tool,
                command=[executable, *options],
                pattern=pattern,
                scratch_root=config.scratch_dir,
                timeout_seconds=analysis.external_timeout_seconds,
            )
        )
    return rules
