from .engine import Analyzer
from .external import ExternalToolRule, external_rules
from .rules import (
    LoopConcatenationRule,
    MemoryLeakRule,
    NestedLoopRule,
    PatternRule,
    Rule,
    SourceRule,
    VirtualDestructorRule,
    default_rules,
    remediation_for,
)
from .types import (
    AnalysisOptions,
    AnalysisResult,
    Category,
    CodeMetrics,
    ComplexityReport,
    Issue,
    Severity,
    Suggestion,
    Violation,
)

__all__ = [
    "AnalysisOptions",
    "AnalysisResult",
    "Analyzer",
    "Category",
    "CodeMetrics",
    "ComplexityReport",
    "ExternalToolRule",
    "Issue",
    "LoopConcatenationRule",
    "MemoryLeakRule",
    "NestedLoopRule",
    "PatternRule",
    "Rule",
    "Severity",
    "SourceRule",
    "Suggestion",
    "Violation",
    "VirtualDestructorRule",
    "default_rules",
    "external_rules",
    "remediation_for",
]
