from .analysis import AnalysisOptions, AnalysisResult, Analyzer, Category, Severity
from .config import EngineConfig
from .errors import EngineStartupError, SpawnError
from .execution import (
    CompilationOptions,
    CompilationResult,
    ExecutionOptions,
    ExecutionResult,
    ExitStatus,
    Orchestrator,
)
from .log import configure_logging
from .parsing import CppParser, ParseResult, SyntaxTree, get_ast_statistics
from .service import EngineService

__all__ = [
    "AnalysisOptions",
    "AnalysisResult",
    "Analyzer",
    "Category",
    "CompilationOptions",
    "CompilationResult",
    "CppParser",
    "EngineConfig",
    "EngineService",
    "EngineStartupError",
    "ExecutionOptions",
    "ExecutionResult",
    "ExitStatus",
    "Orchestrator",
    "ParseResult",
    "Severity",
    "SpawnError",
    "SyntaxTree",
    "configure_logging",
    "get_ast_statistics",
]
