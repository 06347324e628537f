from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Union


class NodeKind(str, Enum):
    FUNCTION = "function"
    RECORD = "record"
    VARIABLE = "variable"
    CALL = "call"
    CONTROL_FLOW = "control_flow"


class ControlFlowKind(str, Enum):
    IF = "if"
    WHILE = "while"
    FOR = "for"


class TokenKind(str, Enum):
    KEYWORD = "keyword"
    IDENTIFIER = "identifier"
    LITERAL = "literal"
    PUNCTUATION = "punctuation"
    COMMENT = "comment"


@dataclass(frozen=True, slots=True)
class Location:
    """Resolved source position; line and column are 1-based.

    Example:
        ```python
        loc = Location("main.cpp", 3, 5)
        ```
    """

    file: str
    line: int
    column: int


@dataclass(frozen=True, slots=True)
class Parameter:
    name: str
    type: str
    location: Location


@dataclass(frozen=True, slots=True)
class BaseSpecifier:
    name: str
    access: str
    virtual: bool


@dataclass(frozen=True, slots=True)
class MethodNode:
    name: str
    return_type: str
    access: str
    virtual: bool
    pure_virtual: bool
    const: bool
    static: bool
    has_body: bool
    location: Location


@dataclass(frozen=True, slots=True)
class FieldNode:
    name: str
    type: str
    access: str
    mutable: bool
    static: bool
    location: Location


@dataclass(frozen=True, slots=True)
class FunctionNode:
    """A function or method definition.

    Example:
        ```python
        fn = FunctionNode("main", "int", (), "none", False, False, True, Location("main.cpp", 1, 5))
        ```
    """

    name: str
    return_type: str
    parameters: tuple[Parameter, ...]
    storage_class: str
    inline: bool
    virtual: bool
    has_body: bool
    location: Location
    is_template: bool = False
    kind: NodeKind = field(default=NodeKind.FUNCTION, init=False)


@dataclass(frozen=True, slots=True)
class RecordNode:
    """A complete class, struct or union definition.

    Example:
        ```python
        record = RecordNode("Shape", "class", (), (), (), True, True, Location("main.cpp", 1, 7))
        ```
    """

    name: str
    tag: str
    bases: tuple[BaseSpecifier, ...]
    methods: tuple[MethodNode, ...]
    fields: tuple[FieldNode, ...]
    abstract: bool
    polymorphic: bool
    location: Location
    is_template: bool = False
    kind: NodeKind = field(default=NodeKind.RECORD, init=False)


@dataclass(frozen=True, slots=True)
class VariableNode:
    name: str
    type: str
    is_global: bool
    is_static: bool
    is_const: bool
    has_initializer: bool
    storage_class: str
    location: Location
    kind: NodeKind = field(default=NodeKind.VARIABLE, init=False)


@dataclass(frozen=True, slots=True)
class CallNode:
    callee: str
    argument_count: int
    location: Location
    kind: NodeKind = field(default=NodeKind.CALL, init=False)


@dataclass(frozen=True, slots=True)
class ControlFlowNode:
    """An `if`, `while` or `for` statement with flags for its optional clauses.

    Range-based `for` loops are `for` nodes with `range_based` set.

    Example:
        ```python
        node = ControlFlowNode(ControlFlowKind.IF, Location("main.cpp", 4, 5), has_else=True)
        ```
    """

    statement: ControlFlowKind
    location: Location
    has_else: bool = False
    is_constexpr: bool = False
    has_init: bool = False
    has_condition: bool = True
    has_increment: bool = False
    range_based: bool = False
    kind: NodeKind = field(default=NodeKind.CONTROL_FLOW, init=False)


Node = Union[FunctionNode, RecordNode, VariableNode, CallNode, ControlFlowNode]


@dataclass(frozen=True, slots=True)
class SyntaxTree:
    """Immutable tree of the main file's declarations and statements, one tuple per kind.

    Example:
        ```python
        tree = parser.parse(source).tree
        names = [fn.name for fn in tree.functions]
        ```
    """

    functions: tuple[FunctionNode, ...] = ()
    records: tuple[RecordNode, ...] = ()
    variables: tuple[VariableNode, ...] = ()
    calls: tuple[CallNode, ...] = ()
    control_flow: tuple[ControlFlowNode, ...] = ()

    def nodes(self, kind: NodeKind) -> tuple[Node, ...]:
        """Return every node of one kind.

        Example:
            ```python
            calls = tree.nodes(NodeKind.CALL)
            ```
        """
        return {
            NodeKind.FUNCTION: self.functions,
            NodeKind.RECORD: self.records,
            NodeKind.VARIABLE: self.variables,
            NodeKind.CALL: self.calls,
            NodeKind.CONTROL_FLOW: self.control_flow,
        }[kind]

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready representation.

        Example:
            ```python
            payload = json.dumps(tree.to_dict())
            ```
        """
        return asdict(self)


@dataclass(frozen=True, slots=True)
class Token:
    kind: TokenKind
    spelling: str
    line: int
    column: int


@dataclass(frozen=True, slots=True)
class ParseDiagnostic:
    severity: str
    message: str
    file: str
    line: int
    column: int

    def __str__(self) -> str:
        """Render in the compiler's `file:line:col: severity: message` style.

        Example:
            ```python
            text = str(diagnostic)
            ```
        """
        return f"{self.file}:{self.line}:{self.column}: {self.severity}: {self.message}"


@dataclass(slots=True)
class ParseResult:
    """Outcome of parsing one source text.

    On failure `tree` and `tokens` are None and `error` explains why.

    Example:
        ```python
        result = ParseResult(success=False, error="expected ';' after return statement")
        ```
    """

    success: bool
    tree: SyntaxTree | None = None
    tokens: tuple[Token, ...] | None = None
    diagnostics: tuple[ParseDiagnostic, ...] = ()
    error: str | None = None
    elapsed_ms: float = 0.0
