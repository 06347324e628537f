from __future__ import annotations

import time
from typing import Iterator

import structlog
from clang import cindex

from ..config import ParserSettings
from .nodes import (
    BaseSpecifier,
    CallNode,
    ControlFlowKind,
    ControlFlowNode,
    FieldNode,
    FunctionNode,
    Location,
    MethodNode,
    Parameter,
    ParseDiagnostic,
    ParseResult,
    RecordNode,
    SyntaxTree,
    Token,
    TokenKind,
    VariableNode,
)

logger = structlog.get_logger(__name__)

CK = cindex.CursorKind

_FUNCTION_KINDS = frozenset({CK.FUNCTION_DECL, CK.CXX_METHOD, CK.CONSTRUCTOR, CK.DESTRUCTOR, CK.FUNCTION_TEMPLATE})
_METHOD_KINDS = frozenset({CK.CXX_METHOD, CK.CONSTRUCTOR, CK.DESTRUCTOR})
# template kinds default to "class"; _record_tag reads the real keyword
_RECORD_TAGS = {
    CK.CLASS_DECL: "class",
    CK.STRUCT_DECL: "struct",
    CK.UNION_DECL: "union",
    CK.CLASS_TEMPLATE: "class",
    CK.CLASS_TEMPLATE_PARTIAL_SPECIALIZATION: "class",
}
_TEMPLATE_KINDS = frozenset({CK.FUNCTION_TEMPLATE, CK.CLASS_TEMPLATE, CK.CLASS_TEMPLATE_PARTIAL_SPECIALIZATION})
_GLOBAL_PARENTS = frozenset({CK.TRANSLATION_UNIT, CK.NAMESPACE})
_SEVERITY_NAMES = {
    cindex.Diagnostic.Ignored: "ignored",
    cindex.Diagnostic.Note: "note",
    cindex.Diagnostic.Warning: "warning",
    cindex.Diagnostic.Error: "error",
    cindex.Diagnostic.Fatal: "fatal error",
}
_OPEN = {"(": ")", "[": "]", "{": "}"}
_CLOSE = frozenset(_OPEN.values())


def _location(cursor: cindex.Cursor) -> Location:
    """Resolve a cursor's start position.

    Example:
        ```python
        loc = _location(cursor)
        ```
    """
    loc = cursor.location
    return Location(loc.file.name if loc.file is not None else "", loc.line, loc.column)


def _spellings(cursor: cindex.Cursor) -> list[str]:
    """Return the spellings of the tokens covered by a cursor.

    Example:
        ```python
        words = _spellings(cursor)  # ["if", "(", "x", ")", ...]
        ```
    """
    return [token.spelling for token in cursor.get_tokens()]


def _access(cursor: cindex.Cursor) -> str:
    """Return a cursor's access specifier as a lowercase word.

    Example:
        ```python
        _access(method)  # "public"
        ```
    """
    return cursor.access_specifier.name.lower()


def _storage(cursor: cindex.Cursor) -> str:
    """Return a cursor's storage class as a lowercase word.

    Example:
        ```python
        _storage(var)  # "static"
        ```
    """
    return cursor.storage_class.name.lower()


def _has_body(cursor: cindex.Cursor) -> bool:
    """Return True when a function cursor has a compound-statement body.

    Example:
        ```python
        _has_body(fn_cursor)
        ```
    """
    return any(child.kind == CK.COMPOUND_STMT for child in cursor.get_children())


def _paren_segments(words: list[str]) -> list[list[str]]:
    """Split the first parenthesised group on top-level `;`.

    Example:
        ```python
        _paren_segments(["for", "(", "int", "i", "=", "0", ";", ";", ")"])
        # [["int", "i", "=", "0"], [], []]
        ```
    """
    try:
        start = words.index("(")
    except ValueError:
        return []
    segments: list[list[str]] = [[]]
    depth = 0
    for word in words[start + 1:]:
        if word in _OPEN:
            depth += 1
        elif word in _CLOSE:
            if depth == 0:
                break
            depth -= 1
        elif word == ";" and depth == 0:
            segments.append([])
            continue
        segments[-1].append(word)
    return segments


def _words_before_name(words: list[str], name: str) -> list[str]:
    """Return the declaration specifiers that precede a declared name.

    Example:
        ```python
        _words_before_name(["static", "inline", "int", "f", "(", ")"], "f")
        ```
    """
    try:
        return words[: words.index(name)]
    except ValueError:
        return []


def _has_else(cursor: cindex.Cursor) -> bool:
    """Return True when an `if` statement carries an `else` branch.

    Example:
        ```python
        _has_else(if_cursor)
        ```
    """
    children = list(cursor.get_children())
    if len(children) < 2:
        return False
    last_offset = children[-1].extent.start.offset
    previous = None
    for token in cursor.get_tokens():
        if token.extent.start.offset >= last_offset:
            break
        previous = token.spelling
    return previous == "else"


def _parameters(cursor: cindex.Cursor) -> tuple[Parameter, ...]:
    """Return the declared parameters of a function or function template.

    libclang reports no arguments for a template, so its `PARM_DECL`
    children are read instead.

    Example:
        ```python
        params = _parameters(cursor)
        ```
    """
    if cursor.kind == CK.FUNCTION_TEMPLATE:
        arguments = [child for child in cursor.get_children() if child.kind == CK.PARM_DECL]
    else:
        arguments = list(cursor.get_arguments())
    return tuple(Parameter(arg.spelling, arg.type.spelling, _location(arg)) for arg in arguments)


def _record_tag(cursor: cindex.Cursor) -> str:
    """Return `class`, `struct` or `union` for a record or record template.

    Example:
        ```python
        _record_tag(cursor)  # "struct" for template <class T> struct Box {};
        ```
    """
    if cursor.kind not in _TEMPLATE_KINDS:
        return _RECORD_TAGS[cursor.kind]
    depth = 0
    for word in _spellings(cursor):
        if word == "<":
            depth += 1
        elif word == ">":
            depth -= 1
        elif word == ">>":
            depth -= 2
        elif depth == 0 and word in ("class", "struct", "union"):
            return word
    return _RECORD_TAGS[cursor.kind]


def _function(cursor: cindex.Cursor) -> FunctionNode:
    """Build a function node from a definition cursor.

    Example:
        ```python
        fn = _function(cursor)
        ```
    """
    specifiers = _words_before_name(_spellings(cursor), cursor.spelling)
    virtual = cursor.kind in _METHOD_KINDS and cursor.is_virtual_method()
    return FunctionNode(
        name=cursor.spelling,
        return_type=cursor.result_type.spelling,
        parameters=_parameters(cursor),
        storage_class=_storage(cursor),
        inline="inline" in specifiers,
        virtual=virtual,
        has_body=_has_body(cursor),
        location=_location(cursor),
        is_template=cursor.kind in _TEMPLATE_KINDS,
    )


def _method(cursor: cindex.Cursor) -> MethodNode:
    """Build a method entry for a record.

    Example:
        ```python
        method = _method(child)
        ```
    """
    return MethodNode(
        name=cursor.spelling,
        return_type=cursor.result_type.spelling,
        access=_access(cursor),
        virtual=cursor.is_virtual_method(),
        pure_virtual=cursor.is_pure_virtual_method(),
        const=cursor.is_const_method(),
        static=cursor.is_static_method(),
        has_body=_has_body(cursor),
        location=_location(cursor),
    )


def _record(cursor: cindex.Cursor) -> RecordNode:
    """Build a record node from a complete class, struct or union.

    Example:
        ```python
        record = _record(cursor)
        ```
    """
    bases: list[BaseSpecifier] = []
    methods: list[MethodNode] = []
    fields: list[FieldNode] = []
    for child in cursor.get_children():
        if child.kind == CK.CXX_BASE_SPECIFIER:
            bases.append(BaseSpecifier(child.type.spelling, _access(child), "virtual" in _spellings(child)))
        elif child.kind in _METHOD_KINDS or child.kind == CK.FUNCTION_TEMPLATE:
            methods.append(_method(child))
        elif child.kind == CK.FIELD_DECL:
            fields.append(
                FieldNode(
                    child.spelling,
                    child.type.spelling,
                    _access(child),
                    child.is_mutable_field(),
                    False,
                    _location(child),
                )
            )
        elif child.kind == CK.VAR_DECL:
            fields.append(FieldNode(child.spelling, child.type.spelling, _access(child), False, True, _location(child)))
    return RecordNode(
        name="" if cursor.is_anonymous() else cursor.spelling,
        tag=_record_tag(cursor),
        bases=tuple(bases),
        methods=tuple(methods),
        fields=tuple(fields),
        abstract=any(method.pure_virtual for method in methods),
        polymorphic=any(method.virtual for method in methods),
        location=_location(cursor),
        is_template=cursor.kind in _TEMPLATE_KINDS,
    )


def _variable(cursor: cindex.Cursor) -> VariableNode:
    """Build a variable node from a declaration cursor.

    Example:
        ```python
        var = _variable(cursor)
        ```
    """
    words = _spellings(cursor)
    try:
        after = words[words.index(cursor.spelling) + 1:]
    except ValueError:
        after = []
    has_initializer = "=" in after or (bool(after) and after[0] in ("(", "{"))
    parent = cursor.semantic_parent
    return VariableNode(
        name=cursor.spelling,
        type=cursor.type.spelling,
        is_global=parent is not None and parent.kind in _GLOBAL_PARENTS,
        is_static=cursor.storage_class == cindex.StorageClass.STATIC,
        is_const=cursor.type.is_const_qualified(),
        has_initializer=has_initializer,
        storage_class=_storage(cursor),
        location=_location(cursor),
    )


def _control_flow(cursor: cindex.Cursor) -> ControlFlowNode:
    """Build a control-flow node for `if`, `while`, `for` and range-for.

    Example:
        ```python
        node = _control_flow(cursor)
        ```
    """
    location = _location(cursor)
    if cursor.kind == CK.WHILE_STMT:
        return ControlFlowNode(ControlFlowKind.WHILE, location)
    if cursor.kind == CK.CXX_FOR_RANGE_STMT:
        return ControlFlowNode(ControlFlowKind.FOR, location, range_based=True)
    words = _spellings(cursor)
    segments = _paren_segments(words)
    if cursor.kind == CK.FOR_STMT:
        clauses = [bool(segment) for segment in segments] + [False, False, False]
        return ControlFlowNode(
            ControlFlowKind.FOR,
            location,
            has_init=clauses[0],
            has_condition=clauses[1],
            has_increment=clauses[2],
        )
    return ControlFlowNode(
        ControlFlowKind.IF,
        location,
        has_else=_has_else(cursor),
        is_constexpr=len(words) > 1 and words[1] == "constexpr",
        has_init=len(segments) > 1,
    )


class TreeBuilder:
    """Walk a translation unit and build an immutable tree of its main file.

    Example:
        ```python
        tree = TreeBuilder("main.cpp").build(translation_unit)
        ```
    """

    def __init__(self, main_file: str) -> None:
        """Remember which file's cursors belong in the tree.

        Example:
            ```python
            builder = TreeBuilder("main.cpp")
            ```
        """
        self._main_file = main_file

    def _in_main_file(self, cursor: cindex.Cursor) -> bool:
        """Return True when a cursor is located in the parsed source itself.

        Example:
            ```python
            builder._in_main_file(cursor)
            ```
        """
        loc = cursor.location
        return loc.file is not None and loc.file.name == self._main_file

    def _walk(self, root: cindex.Cursor) -> Iterator[cindex.Cursor]:
        """Yield main-file cursors depth-first, in source order, without recursion.

        Example:
            ```python
            for cursor in builder._walk(tu.cursor): ...
            ```
        """
        stack = [iter(root.get_children())]
        while stack:
            cursor = next(stack[-1], None)
            if cursor is None:
                stack.pop()
                continue
            if not self._in_main_file(cursor):
                continue
            yield cursor
            stack.append(iter(cursor.get_children()))

    def build(self, translation_unit: cindex.TranslationUnit) -> SyntaxTree:
        """Collect nodes of every kind and freeze them into a tree.

        Example:
            ```python
            tree = builder.build(tu)
            ```
        """
        functions: list[FunctionNode] = []
        records: list[RecordNode] = []
        variables: list[VariableNode] = []
        calls: list[CallNode] = []
        control_flow: list[ControlFlowNode] = []
        for cursor in self._walk(translation_unit.cursor):
            kind = cursor.kind
            if kind in _FUNCTION_KINDS and cursor.is_definition():
                functions.append(_function(cursor))
            elif kind in _RECORD_TAGS and cursor.is_definition():
                records.append(_record(cursor))
            elif kind == CK.VAR_DECL and cursor.semantic_parent.kind not in _RECORD_TAGS:
                variables.append(_variable(cursor))
            elif kind == CK.CALL_EXPR and cursor.spelling:
                calls.append(CallNode(cursor.spelling, len(list(cursor.get_arguments())), _location(cursor)))
            elif kind in (CK.IF_STMT, CK.WHILE_STMT, CK.FOR_STMT, CK.CXX_FOR_RANGE_STMT):
                control_flow.append(_control_flow(cursor))
        return SyntaxTree(
            functions=tuple(functions),
            records=tuple(records),
            variables=tuple(variables),
            calls=tuple(calls),
            control_flow=tuple(control_flow),
        )


_TOKEN_KINDS = {
    "KEYWORD": TokenKind.KEYWORD,
    "IDENTIFIER": TokenKind.IDENTIFIER,
    "LITERAL": TokenKind.LITERAL,
    "PUNCTUATION": TokenKind.PUNCTUATION,
    "COMMENT": TokenKind.COMMENT,
}


def tokenize(translation_unit: cindex.TranslationUnit, file_name: str, source: str) -> tuple[Token, ...]:
    """Lex the whole main file into a flat token stream.

    Example:
        ```python
        tokens = tokenize(tu, "main.cpp", source)
        ```
    """
    extent = translation_unit.get_extent(file_name, (0, len(source.encode("utf-8"))))
    return tuple(
        Token(_TOKEN_KINDS[token.kind.name], token.spelling, token.location.line, token.location.column)
        for token in translation_unit.get_tokens(extent=extent)
    )


def _diagnostic(diag: cindex.Diagnostic) -> ParseDiagnostic:
    """Convert a libclang diagnostic into a plain value.

    Example:
        ```python
        item = _diagnostic(tu.diagnostics[0])
        ```
    """
    loc = diag.location
    return ParseDiagnostic(
        severity=_SEVERITY_NAMES.get(diag.severity, "error"),
        message=diag.spelling,
        file=loc.file.name if loc.file is not None else "",
        line=loc.line,
        column=loc.column,
    )


class CppParser:
    """libclang front end that turns C++ source into a `SyntaxTree`.

    Each call creates its own index and translation unit, so one parser can
    serve concurrent callers.

    Example:
        ```python
        parser = CppParser(EngineConfig().parser)
        result = parser.parse("int main() { return 0; }", include_tokens=True)
        ```
    """

    def __init__(self, settings: ParserSettings) -> None:
        """Bind the parser to front-end settings and locate libclang if configured.

        Example:
            ```python
            parser = CppParser(ParserSettings(standard="c++17"))
            ```
        """
        self._settings = settings
        if settings.library_file and not cindex.Config.loaded:
            cindex.Config.set_library_file(settings.library_file)

    def arguments(self) -> list[str]:
        """Return the command-line arguments handed to the front end.

        Example:
            ```python
            args = parser.arguments()  # ["-x", "c++", "-std=c++20", ...]
            ```
        """
        settings = self._settings
        args = ["-x", "c++", f"-std={settings.standard}"]
        args.extend(f"-I{path}" for path in settings.include_paths)
        if settings.resource_dir:
            args.extend(["-resource-dir", settings.resource_dir])
        args.extend(settings.extra_args)
        return args

    def _translation_unit(self, source: str) -> cindex.TranslationUnit:
        """Parse in-memory source as the configured main file.

        Example:
            ```python
            tu = parser._translation_unit("int x;")
            ```
        """
        name = self._settings.source_name
        index = cindex.Index.create()
        return index.parse(
            name,
            args=self.arguments(),
            unsaved_files=[(name, source)],
            options=cindex.TranslationUnit.PARSE_NONE,
        )

    def parse(self, source: str, include_tokens: bool = False) -> ParseResult:
        """Parse source into a tree, failing on any error diagnostic.

        Example:
            ```python
            result = parser.parse(source)
            if result.success: print(len(result.tree.functions))
            ```
        """
        started = time.monotonic()
        try:
            return self._parse(source, include_tokens, started)
        except cindex.TranslationUnitLoadError as exc:
            logger.warning("parse_load_failed", error=str(exc))
            return ParseResult(success=False, error=f"Parser could not load source: {exc}", elapsed_ms=_since(started))
        except cindex.LibclangError as exc:
            logger.error("libclang_unavailable", error=str(exc))
            return ParseResult(success=False, error="C++ parser is unavailable", elapsed_ms=_since(started))
        except Exception:
            logger.exception("parse_internal_error")
            return ParseResult(success=False, error="Internal parser error", elapsed_ms=_since(started))

    def _parse(self, source: str, include_tokens: bool, started: float) -> ParseResult:
        """Run the front end and build the result.

        Example:
            ```python
            result = parser._parse(source, False, time.monotonic())
            ```
        """
        tu = self._translation_unit(source)
        raw = list(tu.diagnostics)
        diagnostics = tuple(_diagnostic(diag) for diag in raw)
        fatal = [diagnostics[i] for i, diag in enumerate(raw) if diag.severity >= cindex.Diagnostic.Error]
        if fatal:
            return ParseResult(
                success=False,
                diagnostics=diagnostics,
                error=str(fatal[0]),
                elapsed_ms=_since(started),
            )
        tree = TreeBuilder(self._settings.source_name).build(tu)
        tokens = tokenize(tu, self._settings.source_name, source) if include_tokens else None
        return ParseResult(
            success=True,
            tree=tree,
            tokens=tokens,
            diagnostics=diagnostics,
            elapsed_ms=_since(started),
        )

    def validate_syntax(self, source: str) -> bool:
        """Return True when the source parses without error diagnostics.

        Example:
            ```python
            ok = parser.validate_syntax("int main() { return 0 }")  # False
            ```
        """
        try:
            tu = self._translation_unit(source)
        except (cindex.TranslationUnitLoadError, cindex.LibclangError) as exc:
            logger.warning("validate_failed", error=str(exc))
            return False
        except Exception:
            logger.exception("validate_internal_error")
            return False
        return all(diag.severity < cindex.Diagnostic.Error for diag in tu.diagnostics)


def _since(started: float) -> float:
    """Return milliseconds elapsed since a monotonic reading.

    Example:
        ```python
        ms = _since(time.monotonic())
        ```
    """
    return (time.monotonic() - started) * 1000.0
