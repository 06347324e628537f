from .frontend import CppParser, TreeBuilder, tokenize
from .nodes import (
    BaseSpecifier,
    CallNode,
    ControlFlowKind,
    ControlFlowNode,
    FieldNode,
    FunctionNode,
    Location,
    MethodNode,
    NodeKind,
    Parameter,
    ParseDiagnostic,
    ParseResult,
    RecordNode,
    SyntaxTree,
    Token,
    TokenKind,
    VariableNode,
)
from .statistics import TreeStatistics, get_ast_statistics

__all__ = [
    "BaseSpecifier",
    "CallNode",
    "ControlFlowKind",
    "ControlFlowNode",
    "CppParser",
    "FieldNode",
    "FunctionNode",
    "Location",
    "MethodNode",
    "NodeKind",
    "Parameter",
    "ParseDiagnostic",
    "ParseResult",
    "RecordNode",
    "SyntaxTree",
    "Token",
    "TokenKind",
    "TreeBuilder",
    "TreeStatistics",
    "VariableNode",
    "get_ast_statistics",
    "tokenize",
]
