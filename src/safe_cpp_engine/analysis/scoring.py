from __future__ import annotations

from collections import Counter
from typing import Sequence

from ..config import ScoringWeights
from .types import Category, ComplexityReport, Issue, Severity, Suggestion

_CATEGORY_ADVICE: dict[Category, tuple[str, float, str | None, str | None]] = {
    Category.MEMORY_MANAGEMENT: (
        "Consider using smart pointers (std::unique_ptr, std::shared_ptr) for automatic memory management",
        0.8,
        "int* ptr = new int(42);",
        "std::unique_ptr<int> ptr = std::make_unique<int>(42);",
    ),
    Category.PERFORMANCE: (
        "Multiple performance issues detected. Consider profiling and optimizing hot paths",
        0.6,
        None,
        None,
    ),
    Category.STYLE: (
        "Consider using a code formatter like clang-format for consistent style",
        0.9,
        None,
        None,
    ),
    Category.SECURITY: (
        "Security issues detected. Consider using safer alternatives and input validation",
        0.95,
        None,
        None,
    ),
    Category.BEST_PRACTICES: (
        "Several best-practice issues detected. Review const correctness and error handling",
        0.7,
        "void print(std::string& s);",
        "void print(const std::string& s);",
    ),
    Category.MODERNIZATION: (
        "Code relies on pre-C++11 idioms. Consider nullptr, auto and <random>",
        0.7,
        "int* p = NULL;",
        "int* p = nullptr;",
    ),
}


def build_suggestions(issues: Sequence[Issue], threshold: int) -> list[Suggestion]:
    """Synthesise one suggestion per category with at least `threshold` issues.

    Categories are reported in catalog order.

    Example:
        ```python
        suggestions = build_suggestions(result.issues, threshold=3)
        ```
    """
    counts = Counter(issue.category for issue in issues)
    suggestions = []
    for category in Category:
        if counts[category] < threshold:
            continue
        description, confidence, before, after = _CATEGORY_ADVICE[category]
        suggestions.append(Suggestion(category, description, confidence, before_code=before, after_code=after))
    return suggestions


def compute_score(issues: Sequence[Issue], complexity: ComplexityReport, weights: ScoringWeights) -> float:
    """Start at 100 and subtract issue and complexity penalties, clamped to [0, 100].

    Example:
        ```python
        score = compute_score(issues, complexity, ScoringWeights())
        ```
    """
    penalties = {
        Severity.HIGH: weights.high_penalty,
        Severity.MEDIUM: weights.medium_penalty,
        Severity.LOW: weights.low_penalty,
    }
    score = 100.0 - sum(penalties[issue.severity] for issue in issues)
    if complexity.cyclomatic_complexity > weights.cyclomatic_threshold:
        score -= (complexity.cyclomatic_complexity - weights.cyclomatic_threshold) * weights.cyclomatic_penalty
    if complexity.max_nesting_depth > weights.nesting_threshold:
        score -= (complexity.max_nesting_depth - weights.nesting_threshold) * weights.nesting_penalty
    return max(0.0, min(100.0, score))
