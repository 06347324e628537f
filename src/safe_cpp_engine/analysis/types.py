from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Return an orderable weight, LOW lowest.

        Example:
            ```python
            Severity.HIGH.rank > Severity.LOW.rank  # True
            ```
        """
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


class Category(str, Enum):
    MEMORY_MANAGEMENT = "memory-management"
    PERFORMANCE = "performance"
    STYLE = "style"
    SECURITY = "security"
    BEST_PRACTICES = "best-practices"
    MODERNIZATION = "modernization"


@dataclass(frozen=True, slots=True)
class Violation:
    """One rule finding at a 1-based line and column.

    Example:
        ```python
        v = Violation(line=3, column=9, message="Potential memory leak detected")
        ```
    """

    line: int
    column: int
    message: str


@dataclass(frozen=True, slots=True)
class Issue:
    rule_id: str
    message: str
    severity: Severity
    category: Category
    line: int
    column: int
    suggestion: str


@dataclass(frozen=True, slots=True)
class CodeMetrics:
    total_lines: int = 0
    code_lines: int = 0
    blank_lines: int = 0
    comment_lines: int = 0
    comment_ratio: float = 0.0
    function_count: int = 0
    class_count: int = 0
    complexity_indicators: int = 0
    complexity_density: float = 0.0


@dataclass(frozen=True, slots=True)
class ComplexityReport:
    cyclomatic_complexity: int = 1
    cognitive_complexity: int = 0
    max_nesting_depth: int = 0
    maintainability_index: float = 100.0


@dataclass(frozen=True, slots=True)
class Suggestion:
    """A higher-level recommendation synthesised from several issues.

    Example:
        ```python
        s = Suggestion(Category.STYLE, "Consider using clang-format", 0.9)
        ```
    """

    category: Category
    description: str
    confidence: float
    kind: str = "refactoring"
    before_code: str | None = None
    after_code: str | None = None


def _str_set(value: Any, field_name: str) -> frozenset[str]:
    """Validate a list of strings from a request mapping.

    Example:
        ```python
        ids = _str_set(["prefer_auto"], "disabled_rules")
        ```
    """
    if value is None:
        return frozenset()
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise ValueError(f"'{field_name}' must be a list of strings")
    if not all(isinstance(item, str) for item in value):
        raise ValueError(f"'{field_name}' must contain only strings")
    return frozenset(value)


@dataclass(frozen=True, slots=True)
class AnalysisOptions:
    """Which rules an analysis applies.

    Example:
        ```python
        opts = AnalysisOptions(min_severity=Severity.MEDIUM,
                               disabled_categories=frozenset({Category.STYLE}))
        ```
    """

    min_severity: Severity = Severity.LOW
    disabled_categories: frozenset[Category] = frozenset()
    disabled_rules: frozenset[str] = frozenset()

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any] | None) -> "AnalysisOptions":
        """Build options from a request mapping, rejecting unknown names.

        Example:
            ```python
            opts = AnalysisOptions.from_mapping({"disabled_categories": ["style"]})
            ```
        """
        raw = dict(options or {})
        try:
            severity = Severity(str(raw.get("min_severity", "low")).lower())
        except ValueError:
            raise ValueError(f"Unknown severity: {raw.get('min_severity')!r}") from None
        categories: set[Category] = set()
        for name in _str_set(raw.get("disabled_categories"), "disabled_categories"):
            try:
                categories.add(Category(name))
            except ValueError:
                raise ValueError(f"Unknown category: {name!r}") from None
        return cls(
            min_severity=severity,
            disabled_categories=frozenset(categories),
            disabled_rules=_str_set(raw.get("disabled_rules"), "disabled_rules"),
        )


@dataclass(slots=True)
class AnalysisResult:
    """Everything one analysis run produced.

    Example:
        ```python
        result = analyzer.analyze("int main() { int* p = new int(5); return 0; }")
        print(result.score, [issue.rule_id for issue in result.issues])
        ```
    """

    success: bool
    issues: list[Issue] = field(default_factory=list)
    metrics: CodeMetrics = field(default_factory=CodeMetrics)
    complexity: ComplexityReport = field(default_factory=ComplexityReport)
    suggestions: list[Suggestion] = field(default_factory=list)
    score: float = 0.0
    skipped_rules: list[str] = field(default_factory=list)
    error: str | None = None
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready representation.

        Example:
            ```python
            payload = result.to_dict()
            ```
        """
        return asdict(self)
