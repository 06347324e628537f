from __future__ import annotations

import time
from typing import Sequence

import structlog

from ..config import AnalysisSettings
from .metrics import analyze_complexity, calculate_metrics
from .rules import Rule, default_rules, remediation_for
from .scoring import build_suggestions, compute_score
from .types import AnalysisOptions, AnalysisResult, Issue

logger = structlog.get_logger(__name__)


class Analyzer:
    """Apply the rule catalog to C++ source and score the result.

    The catalog is fixed at construction; `analyze` is a pure function of
    its arguments apart from timing and may be called concurrently.

    Example:
        ```python
        analyzer = Analyzer(EngineConfig().analysis)
        result = analyzer.analyze("int main(){int*p=new int(5);return 0;}")
        ```
    """

    def __init__(self, settings: AnalysisSettings, rules: Sequence[Rule] | None = None) -> None:
        """Freeze the settings and rule catalog.

        Example:
            ```python
            analyzer = Analyzer(AnalysisSettings(), rules=default_rules())
            ```
        """
        self._settings = settings
        self._rules = tuple(default_rules() if rules is None else rules)
        ids = [rule.id for rule in self._rules]
        if len(ids) != len(set(ids)):
            raise ValueError("Rule ids must be unique")

    @property
    def rules(self) -> tuple[Rule, ...]:
        """Return the rule catalog in reporting order.

        Example:
            ```python
            ids = [rule.id for rule in analyzer.rules]
            ```
        """
        return self._rules

    def applicable_rules(self, options: AnalysisOptions) -> list[Rule]:
        """Return rules that pass the severity, category and id filters.

        Example:
            ```python
            rules = analyzer.applicable_rules(AnalysisOptions(disabled_rules=frozenset({"prefer_auto"})))
            ```
        """
        return [
            rule
            for rule in self._rules
            if rule.severity.rank >= options.min_severity.rank
            and rule.category not in options.disabled_categories
            and rule.id not in options.disabled_rules
        ]

    def analyze(self, source: str, options: AnalysisOptions | None = None) -> AnalysisResult:
        """Run metrics, rules, complexity, suggestions and scoring.

        Example:
            ```python
            result = analyzer.analyze(source, AnalysisOptions(min_severity=Severity.MEDIUM))
            ```
        """
        started = time.monotonic()
        try:
            result = self._analyze(source, options or AnalysisOptions())
        except Exception:
            logger.exception("analyze_internal_error")
            result = AnalysisResult(success=False, error="Internal analysis error")
        result.elapsed_ms = (time.monotonic() - started) * 1000.0
        return result

    def _analyze(self, source: str, options: AnalysisOptions) -> AnalysisResult:
        """Do the work of `analyze` without the outer error boundary.

        Example:
            ```python
            result = analyzer._analyze(source, AnalysisOptions())
            ```
        """
        metrics = calculate_metrics(source)
        issues: list[Issue] = []
        skipped: list[str] = []
        for rule in self.applicable_rules(options):
            try:
                violations = rule.check(source)
            except Exception:
                logger.exception("rule_failed", rule=rule.id)
                skipped.append(rule.id)
                continue
            suggestion = remediation_for(rule.id)
            issues.extend(
                Issue(
                    rule_id=rule.id,
                    message=f"{rule.description}: {violation.message}",
                    severity=rule.severity,
                    category=rule.category,
                    line=violation.line,
                    column=violation.column,
                    suggestion=suggestion,
                )
                for violation in violations
            )
        complexity = analyze_complexity(source, metrics.code_lines, self._settings.maintainability)
        result = AnalysisResult(
            success=True,
            issues=issues,
            metrics=metrics,
            complexity=complexity,
            suggestions=build_suggestions(issues, self._settings.suggestion_threshold),
            score=compute_score(issues, complexity, self._settings.scoring),
            skipped_rules=skipped,
        )
        logger.info("analysis_finished", issues=len(issues), score=result.score, skipped=len(skipped))
        return result
