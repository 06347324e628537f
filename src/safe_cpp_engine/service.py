from __future__ import annotations

from dataclasses import asdict
from typing import Any, Mapping

import structlog

from .analysis import AnalysisOptions, AnalysisResult, Analyzer, default_rules, external_rules
from .config import EngineConfig
from .execution import (
    CompilationOptions,
    CompilationResult,
    ExecutionOptions,
    ExecutionResult,
    Orchestrator,
)
from .parsing import CppParser, ParseResult, TreeStatistics, get_ast_statistics

logger = structlog.get_logger(__name__)

LANGUAGES = frozenset({"cpp", "c++"})
MODES = ("compile", "execute", "parse", "validate", "analyze", "statistics")


def execution_payload(result: ExecutionResult) -> dict[str, Any]:
    """Serialize an execution result including its derived flags.

    Example:
        ```python
        payload = execution_payload(service.execute("int main() { return 0; }"))
        ```
    """
    payload = asdict(result)
    payload["success"] = result.success
    payload["truncated"] = result.truncated
    return payload


class EngineService:
    """Long-lived facade composing the orchestrator, parser and analyzer.

    Build one at the composition root, call `start()` once, then share it
    between request handlers.

    Example:
        ```python
        service = EngineService(EngineConfig.load())
        service.start()
        payload = service.handle({"language": "cpp", "mode": "analyze", "source": source})
        ```
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        orchestrator: Orchestrator | None = None,
        parser: CppParser | None = None,
        analyzer: Analyzer | None = None,
    ) -> None:
        """Wire the three components around one configuration.

        Example:
            ```python
            service = EngineService(EngineConfig(), analyzer=Analyzer(AnalysisSettings()))
            ```
        """
        self._config = config
        self._orchestrator = orchestrator or Orchestrator(config)
        self._parser = parser or CppParser(config.parser)
        self._analyzer = analyzer or Analyzer(config.analysis, rules=[*default_rules(), *external_rules(config)])

    @property
    def config(self) -> EngineConfig:
        """Return the startup configuration.

        Example:
            ```python
            env = service.config.environment
            ```
        """
        return self._config

    @property
    def orchestrator(self) -> Orchestrator:
        """Return the compile/execute component.

        Example:
            ```python
            service.orchestrator.initialize()
            ```
        """
        return self._orchestrator

    @property
    def analyzer(self) -> Analyzer:
        """Return the rule engine.

        Example:
            ```python
            ids = [rule.id for rule in service.analyzer.rules]
            ```
        """
        return self._analyzer

    def start(self) -> None:
        """Run start-up checks; raises EngineStartupError when unfit for traffic.

        Example:
            ```python
            service.start()
            ```
        """
        self._orchestrator.initialize()

    def compile(self, source: str, options: Mapping[str, Any] | None = None) -> CompilationResult:
        """Compile source with caller-supplied options.

        Example:
            ```python
            result = service.compile(source, {"standard": "c++17", "optimization": "O0"})
            ```
        """
        return self._orchestrator.compile(source, CompilationOptions.from_mapping(options, self._config))

    def execute(
        self,
        source: str,
        options: Mapping[str, Any] | None = None,
        stdin: str | None = None,
    ) -> ExecutionResult:
        """Compile and run source with caller-supplied options.

        Example:
            ```python
            result = service.execute(source, {"timeout_seconds": 2}, stdin="3 4\\n")
            ```
        """
        return self._orchestrator.execute(source, ExecutionOptions.from_mapping(options, self._config, stdin=stdin))

    def parse(self, source: str, include_tokens: bool = False) -> ParseResult:
        """Parse source into a syntax tree.

        Example:
            ```python
            result = service.parse(source, include_tokens=True)
            ```
        """
        return self._parser.parse(source, include_tokens=include_tokens)

    def validate_syntax(self, source: str) -> bool:
        """Return True when the source parses without errors.

        Example:
            ```python
            ok = service.validate_syntax("int main() { return 0; }")
            ```
        """
        return self._parser.validate_syntax(source)

    def statistics(self, source: str) -> tuple[ParseResult, TreeStatistics | None]:
        """Parse source and count its nodes.

        Example:
            ```python
            parsed, stats = service.statistics(source)
            ```
        """
        parsed = self._parser.parse(source)
        if not parsed.success or parsed.tree is None:
            return parsed, None
        return parsed, get_ast_statistics(parsed.tree)

    def analyze(self, source: str, options: Mapping[str, Any] | None = None) -> AnalysisResult:
        """Run the rule engine over source.

        Example:
            ```python
            result = service.analyze(source, {"disabled_categories": ["style"]})
            ```
        """
        return self._analyzer.analyze(source, AnalysisOptions.from_mapping(options))

    def handle(self, request: Mapping[str, Any]) -> dict[str, Any]:
        """Dispatch one request mapping and return a JSON-ready dict.

        Invalid requests come back as `{"ok": False, "error": ...}`; nothing
        raises past this call.

        Example:
            ```python
            payload = service.handle({"language": "cpp", "mode": "execute", "source": src, "stdin": "5\\n"})
            ```
        """
        if not isinstance(request, Mapping):
            return {"ok": False, "error": "Request must be a mapping"}
        mode = request.get("mode")
        try:
            return self._dispatch(request)
        except ValueError as exc:
            logger.info("request_rejected", mode=mode, error=str(exc))
            return {"ok": False, "mode": mode, "error": str(exc)}
        except Exception:
            logger.exception("request_internal_error", mode=mode)
            return {"ok": False, "mode": mode, "error": "Internal error"}

    def _dispatch(self, request: Mapping[str, Any]) -> dict[str, Any]:
        """Validate the envelope and run the requested operation.

        Example:
            ```python
            payload = service._dispatch({"language": "cpp", "mode": "validate", "source": "int x;"})
            ```
        """
        language = str(request.get("language", "")).lower()
        if language not in LANGUAGES:
            raise ValueError(f"Unsupported language: {request.get('language')!r}")
        mode = request.get("mode")
        if mode not in MODES:
            raise ValueError(f"Unsupported mode: {mode!r}")
        source = request.get("source")
        if not isinstance(source, str):
            raise ValueError("'source' must be a string")
        options = request.get("options") or {}
        if not isinstance(options, Mapping):
            raise ValueError("'options' must be a mapping")

        if mode == "compile":
            compiled = self.compile(source, options)
            return {"ok": compiled.success, "mode": mode, "result": asdict(compiled)}
        if mode == "execute":
            stdin = request.get("stdin")
            executed = self.execute(source, options, stdin=None if stdin is None else str(stdin))
            return {"ok": executed.success, "mode": mode, "result": execution_payload(executed)}
        if mode == "parse":
            parsed = self.parse(source, include_tokens=bool(options.get("include_tokens", False)))
            return {"ok": parsed.success, "mode": mode, "result": asdict(parsed)}
        if mode == "validate":
            return {"ok": True, "mode": mode, "result": {"valid": self.validate_syntax(source)}}
        if mode == "statistics":
            parsed, stats = self.statistics(source)
            if stats is None:
                return {"ok": False, "mode": mode, "error": parsed.error, "result": asdict(parsed)}
            return {"ok": True, "mode": mode, "result": stats.to_dict()}
        analyzed = self.analyze(source, options)
        return {"ok": analyzed.success, "mode": mode, "result": analyzed.to_dict()}
