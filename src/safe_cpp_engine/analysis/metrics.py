from __future__ import annotations

import math
import re

from ..config import MaintainabilityConstants
from .source import mask_source, split_lines
from .types import CodeMetrics, ComplexityReport

_DECISION_KEYWORDS = re.compile(r"\b(?:if|while|for|case|catch)\b")
_COGNITIVE_KEYWORDS = ("if", "while", "for", "switch", "catch")
_INDICATOR_KEYWORDS = re.compile(r"\b(?:if|else|while|for|switch|case|catch)\b")
_LOGICAL_OPERATORS = ("&&", "||")
_FUNCTION_HEAD = re.compile(r"\b\w+\s+\w+\s*\(")
_CLASS_LINE = re.compile(r"\b(?:class|struct)\s+\w+\s*(?:final\s*)?(?::|\{|$)")
_STATEMENT_WORDS = frozenset(
    {"return", "else", "if", "while", "for", "switch", "case", "new", "delete", "throw", "using", "typedef", "goto"}
)


def _count_operators(text: str) -> int:
    """Count `&&` and `||` occurrences.

    Example:
        ```python
        _count_operators("a && b || c")  # 2
        ```
    """
    return sum(text.count(op) for op in _LOGICAL_OPERATORS)


def _looks_like_function(code: str) -> bool:
    """Heuristically decide whether a code line starts a function definition.

    Example:
        ```python
        _looks_like_function("int add(int a, int b) {")  # True
        ```
    """
    if code.endswith(";"):
        return False
    head = _FUNCTION_HEAD.search(code)
    if head is None or ")" not in code[head.end():]:
        return False
    first = re.match(r"\w+", code)
    return first is not None and first.group() not in _STATEMENT_WORDS


def calculate_metrics(source: str) -> CodeMetrics:
    """Count lines by kind plus rough structure and complexity indicators.

    Example:
        ```python
        metrics = calculate_metrics("// demo\\nint main() {\\n    return 0;\\n}\\n")
        ```
    """
    masked_lines = split_lines(mask_source(source))
    total = code = blank = comments = functions = classes = indicators = 0
    in_block_comment = False
    for raw, masked in zip(split_lines(source), masked_lines):
        total += 1
        trimmed = raw.strip()
        if not trimmed:
            blank += 1
            continue
        if in_block_comment:
            comments += 1
            in_block_comment = "*/" not in trimmed
            continue
        if trimmed.startswith("//"):
            comments += 1
            continue
        if trimmed.startswith("/*"):
            comments += 1
            in_block_comment = "*/" not in trimmed
            continue
        code += 1
        text = masked.strip()
        in_block_comment = raw.rfind("/*") > raw.rfind("*/")
        if _looks_like_function(text):
            functions += 1
        if _CLASS_LINE.search(text):
            classes += 1
        indicators += len(_INDICATOR_KEYWORDS.findall(text)) + _count_operators(text)
    return CodeMetrics(
        total_lines=total,
        code_lines=code,
        blank_lines=blank,
        comment_lines=comments,
        comment_ratio=comments / total if total else 0.0,
        function_count=functions,
        class_count=classes,
        complexity_indicators=indicators,
        complexity_density=indicators / code if code else 0.0,
    )


def cyclomatic_complexity(source: str) -> int:
    """Return 1 plus the number of decision points.

    Decision points are `if while for case catch` keywords and the `&&`,
    `||` and `?` operators, counted outside comments and string literals.

    Example:
        ```python
        cyclomatic_complexity("if (a && b) { x = c ? 1 : 2; }")  # 4
        ```
    """
    masked = mask_source(source)
    return 1 + len(_DECISION_KEYWORDS.findall(masked)) + _count_operators(masked) + masked.count("?")


def cognitive_complexity(source: str) -> int:
    """Nesting-weighted count of control structures and logical operators.

    Each line first updates the brace depth; every control keyword on the
    line then adds one plus that depth and every logical operator adds one.

    Example:
        ```python
        score = cognitive_complexity(source)
        ```
    """
    total = 0
    depth = 0
    for line in split_lines(mask_source(source)):
        for ch in line:
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth = max(0, depth - 1)
        for keyword in _COGNITIVE_KEYWORDS:
            if re.search(rf"\b{keyword}\b", line):
                total += 1 + depth
        total += _count_operators(line)
    return total


def max_nesting_depth(source: str) -> int:
    """Return the deepest brace nesting level.

    Example:
        ```python
        max_nesting_depth("int main() { if (x) { } }")  # 2
        ```
    """
    deepest = depth = 0
    for ch in mask_source(source):
        if ch == "{":
            depth += 1
            deepest = max(deepest, depth)
        elif ch == "}":
            depth = max(0, depth - 1)
    return deepest


def maintainability_index(code_lines: int, cyclomatic: int, constants: MaintainabilityConstants) -> float:
    """Simplified maintainability index, clamped to [0, 100].

    The volume proxy is `log2(L + 1) * (L + 1)` for `L` code lines.

    Example:
        ```python
        mi = maintainability_index(40, 6, MaintainabilityConstants())
        ```
    """
    lines = code_lines + 1
    volume = math.log2(lines) * lines
    value = (
        constants.base
        - constants.volume_weight * math.log(max(volume, 1.0))
        - constants.complexity_weight * cyclomatic
        - constants.lines_weight * math.log(lines)
    )
    return max(0.0, min(100.0, value))


def analyze_complexity(source: str, code_lines: int, constants: MaintainabilityConstants) -> ComplexityReport:
    """Compute every complexity figure for a source text.

    Example:
        ```python
        report = analyze_complexity(source, metrics.code_lines, MaintainabilityConstants())
        ```
    """
    cyclomatic = cyclomatic_complexity(source)
    return ComplexityReport(
        cyclomatic_complexity=cyclomatic,
        cognitive_complexity=cognitive_complexity(source),
        max_nesting_depth=max_nesting_depth(source),
        maintainability_index=round(maintainability_index(code_lines, cyclomatic, constants), 2),
    )
