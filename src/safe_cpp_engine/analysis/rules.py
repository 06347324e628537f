from __future__ import annotations

import bisect
import re
from typing import Callable, Iterator, Protocol

from .source import line_index, mask_source
from .types import Category, Severity, Violation

DEFAULT_REMEDIATION = "Review and improve this code"
REMEDIATIONS = {
    "memory_leak_potential": "Consider using smart pointers or RAII patterns",
    "missing_virtual_destructor": "Declare a public virtual destructor in polymorphic base classes",
    "c_style_allocation": "Use new/delete, smart pointers or standard containers instead of malloc/free",
    "inefficient_string_concatenation": "Use std::stringstream or std::string::reserve()",
    "large_stack_array": "Use std::vector or another heap-backed container for large buffers",
    "deeply_nested_loops": "Extract inner loops into functions or restructure the algorithm",
    "naming_convention": "Follow camelCase for variables, PascalCase for classes",
    "using_namespace_std": "Qualify names with std:: or use targeted using-declarations",
    "unsafe_function_usage": "Use safer alternatives like strncpy, snprintf",
    "system_call": "Avoid spawning shells; call library APIs directly",
    "unchecked_stream_input": "Check the stream state (e.g. if (std::cin >> x)) after reading input",
    "missing_const_correctness": "Add const qualifier where appropriate",
    "catch_all_exceptions": "Catch specific exception types, or rethrow after logging",
    "prefer_auto": "Use auto for type deduction to improve readability",
    "null_macro": "Use nullptr instead of NULL",
    "c_random": "Use <random> engines and distributions instead of rand()",
}
LARGE_ARRAY_ELEMENTS = 10000

_NOT_PARAMETER_LISTS = frozenset({"if", "while", "for", "switch", "return", "sizeof", "catch", "decltype"})
_NOT_TYPES = frozenset({"new", "delete", "return", "throw", "sizeof"})
_LOOP_HEAD = re.compile(r"\b(?:for|while)\s*\(")
_SPACE = re.compile(r"\s*")


class Rule(Protocol):
    id: str
    description: str
    severity: Severity
    category: Category

    def check(self, source: str) -> list[Violation]:
        """Return every violation of this rule in `source`.

        Example:
            ```python
            violations = rule.check("int main() { char b[8]; gets(b); }")
            ```
        """
        ...


def remediation_for(rule_id: str) -> str:
    """Return the remediation text for a rule id.

    Example:
        ```python
        text = remediation_for("null_macro")
        ```
    """
    return REMEDIATIONS.get(rule_id, DEFAULT_REMEDIATION)


def _bracket_pairs(text: str, opener: str, closer: str) -> dict[int, int]:
    """Map every opening bracket offset to its closing offset in one pass.

    Brackets that are never closed map to `len(text)`.

    Example:
        ```python
        _bracket_pairs("f(a(b))", "(", ")")  # {1: 6, 3: 5}
        ```
    """
    pairs: dict[int, int] = {}
    stack: list[int] = []
    for i, ch in enumerate(text):
        if ch == opener:
            stack.append(i)
        elif ch == closer and stack:
            pairs[stack.pop()] = i
    for i in stack:
        pairs[i] = len(text)
    return pairs


def _previous_char(text: str, index: int) -> str:
    """Return the last non-whitespace character before `index`, or "".

    Example:
        ```python
        _previous_char("} while (x)", 2)  # "}"
        ```
    """
    i = index - 1
    while i >= 0 and text[i].isspace():
        i -= 1
    return text[i] if i >= 0 else ""


def _word_before(text: str, index: int) -> str:
    """Return the identifier ending just before `index`, skipping whitespace.

    Example:
        ```python
        _word_before("void f (int& x)", 7)  # "f"
        ```
    """
    end = index
    while end > 0 and text[end - 1].isspace():
        end -= 1
    start = end
    while start > 0 and (text[start - 1].isalnum() or text[start - 1] == "_"):
        start -= 1
    return text[start:end]


def _loop_spans(masked: str) -> list[tuple[int, int]]:
    """Return `(head, end)` for every `for`/`while` loop.

    `end` is the closing brace of a braced body, or the first `;` after the
    header otherwise.

    Example:
        ```python
        spans = _loop_spans("for (;;) { x += 1; }")  # [(0, 19)]
        ```
    """
    parens = _bracket_pairs(masked, "(", ")")
    braces = _bracket_pairs(masked, "{", "}")
    semicolons = [i for i, ch in enumerate(masked) if ch == ";"]
    spans: list[tuple[int, int]] = []
    for match in _LOOP_HEAD.finditer(masked):
        close = parens.get(match.end() - 1, len(masked))
        brace = _SPACE.match(masked, min(close + 1, len(masked))).end()
        if brace < len(masked) and masked[brace] == "{":
            spans.append((match.start(), braces[brace]))
            continue
        k = bisect.bisect_right(semicolons, close)
        spans.append((match.start(), semicolons[k] if k < len(semicolons) else len(masked)))
    return spans


class SourceRule:
    """Base for rules that scan masked source text.

    Subclasses implement `_scan`, yielding `(offset, message)` pairs.

    Example:
        ```python
        class TodoRule(SourceRule):
            def _scan(self, masked): ...
        ```
    """

    def __init__(self, rule_id: str, description: str, severity: Severity, category: Category) -> None:
        """Record the rule's catalog metadata.

        Example:
            ```python
            rule = PatternRule("null_macro", "NULL macro", Severity.LOW, Category.MODERNIZATION, r"\\bNULL\\b", "Use nullptr")
            ```
        """
        self.id = rule_id
        self.description = description
        self.severity = severity
        self.category = category

    def __repr__(self) -> str:
        """Show the rule id.

        Example:
            ```python
            repr(rule)  # "<PatternRule null_macro>"
            ```
        """
        return f"<{type(self).__name__} {self.id}>"

    def check(self, source: str) -> list[Violation]:
        """Scan masked source and map offsets to 1-based positions.

        Example:
            ```python
            violations = rule.check(source)
            ```
        """
        index = line_index(source)
        violations = []
        for offset, message in self._scan(mask_source(source)):
            line, column = index.position(offset)
            violations.append(Violation(line, column, message))
        return violations

    def _scan(self, masked: str) -> Iterator[tuple[int, str]]:
        """Yield `(offset, message)` for each finding.

        Example:
            ```python
            findings = list(rule._scan(mask_source(source)))
            ```
        """
        raise NotImplementedError


class PatternRule(SourceRule):
    """A rule defined by one regular expression over masked source.

    `message` is formatted with the match's named groups. `accept` can veto
    single matches; `unless` suppresses the rule when it matches anywhere.

    Example:
        ```python
        rule = PatternRule("null_macro", "Use of NULL macro", Severity.LOW,
                           Category.MODERNIZATION, r"\\bNULL\\b", "Use nullptr instead of NULL")
        ```
    """

    def __init__(
        self,
        rule_id: str,
        description: str,
        severity: Severity,
        category: Category,
        pattern: str,
        message: str,
        *,
        accept: Callable[[re.Match[str], str], bool] | None = None,
        unless: str | None = None,
    ) -> None:
        """Compile the rule's expressions.

        Example:
            ```python
            rule = PatternRule("x", "desc", Severity.LOW, Category.STYLE, r"\\bgoto\\b", "Avoid goto")
            ```
        """
        super().__init__(rule_id, description, severity, category)
        self._pattern = re.compile(pattern)
        self._message = message
        self._accept = accept
        self._unless = re.compile(unless) if unless else None

    def _scan(self, masked: str) -> Iterator[tuple[int, str]]:
        """Yield each accepted match of the pattern.

        Example:
            ```python
            findings = list(rule._scan("int* p = NULL;"))
            ```
        """
        if self._unless is not None and self._unless.search(masked):
            return
        for match in self._pattern.finditer(masked):
            if self._accept is not None and not self._accept(match, masked):
                continue
            groups = {key: value or "" for key, value in match.groupdict().items()}
            yield match.start(), self._message.format(**groups)


class MemoryLeakRule(SourceRule):
    """Flag every `new` when allocations outnumber deallocations.

    Example:
        ```python
        MemoryLeakRule().check("int main(){int*p=new int(5);return 0;}")
        ```
    """

    _NEW = re.compile(r"\bnew\s+(?:\w+(?:\s*\*)*|\w+\s*\[.*?\]|\(\s*\w+.*?\))")
    _DELETE = re.compile(r"\bdelete(?:\s*\[\s*\])?\s*\w+")

    def __init__(self) -> None:
        """Register catalog metadata.

        Example:
            ```python
            rule = MemoryLeakRule()
            ```
        """
        super().__init__(
            "memory_leak_potential",
            "Potential memory leak: 'new' without corresponding 'delete'",
            Severity.HIGH,
            Category.MEMORY_MANAGEMENT,
        )

    def _scan(self, masked: str) -> Iterator[tuple[int, str]]:
        """Yield each `new` expression when there are fewer `delete`s.

        Example:
            ```python
            findings = list(MemoryLeakRule()._scan("int* p = new int;"))
            ```
        """
        allocations = list(self._NEW.finditer(masked))
        if len(allocations) <= len(self._DELETE.findall(masked)):
            return
        for match in allocations:
            yield match.start(), "Potential memory leak detected"


class VirtualDestructorRule(SourceRule):
    """Flag classes that declare virtual methods but no virtual destructor.

    Example:
        ```python
        VirtualDestructorRule().check("class Shape { public: virtual double area() = 0; };")
        ```
    """

    _HEAD = re.compile(r"\b(?:class|struct)\s+(?P<name>[A-Za-z_]\w*)(?:\s+final)?\s*(?::[^;{]*)?\{")
    _VIRTUAL = re.compile(r"\bvirtual\b")

    def __init__(self) -> None:
        """Register catalog metadata.

        Example:
            ```python
            rule = VirtualDestructorRule()
            ```
        """
        super().__init__(
            "missing_virtual_destructor",
            "Polymorphic class without virtual destructor",
            Severity.HIGH,
            Category.MEMORY_MANAGEMENT,
        )

    def _scan(self, masked: str) -> Iterator[tuple[int, str]]:
        """Walk each class body by brace matching.

        Example:
            ```python
            findings = list(VirtualDestructorRule()._scan(masked))
            ```
        """
        braces = _bracket_pairs(masked, "{", "}")
        for match in self._HEAD.finditer(masked):
            body = masked[match.end():braces[match.end() - 1]]
            if not self._VIRTUAL.search(body):
                continue
            name = re.escape(match.group("name"))
            if re.search(rf"\bvirtual\s+~\s*{name}\b", body):
                continue
            if re.search(rf"~\s*{name}\s*\([^)]*\)[^;{{]*\b(?:override|final)\b", body):
                continue
            yield match.start(), f"Class '{match.group('name')}' has virtual methods but no virtual destructor"


class NestedLoopRule(SourceRule):
    """Flag loops nested three or more levels deep inside braced loop bodies.

    Example:
        ```python
        NestedLoopRule().check(source)
        ```
    """

    _HEAD = re.compile(r"\b(?:for|while)\s*\(|\bdo\s*\{")

    def __init__(self, max_depth: int = 2) -> None:
        """Register catalog metadata and the allowed loop depth.

        Example:
            ```python
            rule = NestedLoopRule(max_depth=2)
            ```
        """
        super().__init__(
            "deeply_nested_loops",
            "Deeply nested loops",
            Severity.MEDIUM,
            Category.PERFORMANCE,
        )
        self._max_depth = max_depth

    def _scan(self, masked: str) -> Iterator[tuple[int, str]]:
        """Yield each loop whose enclosing loop bodies exceed the allowed depth.

        Example:
            ```python
            findings = list(NestedLoopRule()._scan(masked))
            ```
        """
        parens = _bracket_pairs(masked, "(", ")")
        braces = _bracket_pairs(masked, "{", "}")
        heads: list[int] = []
        starts: list[int] = []
        ends: list[int] = []
        for match in self._HEAD.finditer(masked):
            if match.group().startswith("while") and _previous_char(masked, match.start()) == "}":
                continue
            heads.append(match.start())
            if match.group().startswith("do"):
                brace = match.end() - 1
            else:
                close = parens.get(match.end() - 1, len(masked))
                brace = _SPACE.match(masked, min(close + 1, len(masked))).end()
                if brace >= len(masked) or masked[brace] != "{":
                    continue
            starts.append(brace)
            ends.append(braces[brace])
        starts.sort()
        ends.sort()
        for head in heads:
            # bodies opened before the head minus those already closed
            depth = bisect.bisect_left(starts, head) - bisect.bisect_right(ends, head)
            if depth >= self._max_depth:
                yield head, f"Loop nested {depth + 1} levels deep"


class LoopConcatenationRule(SourceRule):
    """Flag loops whose header or body appends to a string with `+=`.

    An append counts when `string` appears later on the same line. Loops
    nested inside an already reported loop are not reported again.

    Example:
        ```python
        LoopConcatenationRule().check("for (int i = 0; i < n; ++i) { s += std::string(1, c); }")
        ```
    """

    def __init__(self) -> None:
        """Register catalog metadata.

        Example:
            ```python
            rule = LoopConcatenationRule()
            ```
        """
        super().__init__(
            "inefficient_string_concatenation",
            "Inefficient string concatenation in loop",
            Severity.MEDIUM,
            Category.PERFORMANCE,
        )

    @staticmethod
    def _appends(masked: str) -> list[int]:
        """Return the offsets of `+=` followed by `string` on the same line.

        Example:
            ```python
            LoopConcatenationRule._appends("s += string();")  # [2]
            ```
        """
        offsets: list[int] = []
        line_start = 0
        for line in masked.split("\n"):
            last = line.rfind("string")
            pos = line.find("+=")
            while pos != -1 and pos + 2 <= last:
                offsets.append(line_start + pos)
                pos = line.find("+=", pos + 2)
            line_start += len(line) + 1
        return offsets

    def _scan(self, masked: str) -> Iterator[tuple[int, str]]:
        """Yield each outermost loop span containing a string append.

        Example:
            ```python
            findings = list(LoopConcatenationRule()._scan(masked))
            ```
        """
        appends = self._appends(masked)
        if not appends:
            return
        reported_end = -1
        for head, end in _loop_spans(masked):
            if head < reported_end:
                continue
            k = bisect.bisect_left(appends, head)
            if k < len(appends) and appends[k] < end:
                reported_end = end
                yield head, "Consider using stringstream or reserve() for better performance"


def _large_array(match: re.Match[str], masked: str) -> bool:
    """Accept declarations of arrays above the element threshold.

    Example:
        ```python
        _large_array(match, masked)
        ```
    """
    return match.group("type") not in _NOT_TYPES and int(match.group("size")) > LARGE_ARRAY_ELEMENTS


def _non_const_reference_parameter(match: re.Match[str], masked: str) -> bool:
    """Accept `T& name` only inside a parameter list and without `const`.

    Example:
        ```python
        _non_const_reference_parameter(match, masked)
        ```
    """
    start = match.start()
    paren = masked.rfind("(", 0, start)
    if paren == -1:
        return False
    segment_start = max(paren, masked.rfind(",", paren, start))
    if "const" in masked[segment_start + 1:start].split() or match.group("type") == "const":
        return False
    before = _word_before(masked, paren)
    return bool(before) and before not in _NOT_PARAMETER_LISTS


def default_rules() -> tuple[Rule, ...]:
    """Build the rule catalog, in reporting order.

    Example:
        ```python
        ids = [rule.id for rule in default_rules()]
        ```
    """
    return (
        MemoryLeakRule(),
        VirtualDestructorRule(),
        PatternRule(
            "c_style_allocation",
            "C-style memory management",
            Severity.MEDIUM,
            Category.MEMORY_MANAGEMENT,
            r"(?<![\w.>])(?:std::)?(?P<func>malloc|calloc|realloc|free)\s*\(",
            "'{func}' used in C++ code",
        ),
        LoopConcatenationRule(),
        PatternRule(
            "large_stack_array",
            "Large fixed-size array",
            Severity.MEDIUM,
            Category.PERFORMANCE,
            r"\b(?P<type>[A-Za-z_][\w:]*)\s+(?P<name>[A-Za-z_]\w*)\s*\[\s*(?P<size>\d+)\s*\]",
            "Array '{name}' holds {size} elements",
            accept=_large_array,
        ),
        NestedLoopRule(),
        PatternRule(
            "naming_convention",
            "Variable naming convention violation",
            Severity.LOW,
            Category.STYLE,
            r"\b(?:int|double|float|char|bool|string|auto)\s+(?P<name>[A-Z][a-zA-Z0-9_]*)\s*[=;]",
            "Variable names should start with lowercase letter: {name}",
        ),
        PatternRule(
            "using_namespace_std",
            "Namespace pollution",
            Severity.LOW,
            Category.STYLE,
            r"\busing\s+namespace\s+std\s*;",
            "Avoid 'using namespace std'",
        ),
        PatternRule(
            "unsafe_function_usage",
            "Usage of unsafe C functions",
            Severity.HIGH,
            Category.SECURITY,
            r"\b(?P<func>strcpy|strcat|sprintf|gets|scanf)\s*\(",
            "Unsafe function '{func}' - consider safer alternatives",
        ),
        PatternRule(
            "system_call",
            "Shell command execution",
            Severity.HIGH,
            Category.SECURITY,
            r"(?<![\w.>])(?:std::)?(?P<func>system|popen)\s*\(",
            "Call to '{func}' runs a shell command",
        ),
        PatternRule(
            "unchecked_stream_input",
            "Unchecked stream input",
            Severity.MEDIUM,
            Category.SECURITY,
            r"\b(?:std::)?cin\s*>>",
            "Input read from std::cin is never checked for failure",
            unless=r"\bcin\s*\.\s*(?:fail|good|bad|eof)\s*\(|\b(?:if|while)\s*\(\s*!?\s*\(?\s*(?:std::)?cin\b",
        ),
        PatternRule(
            "missing_const_correctness",
            "Missing const correctness",
            Severity.MEDIUM,
            Category.BEST_PRACTICES,
            r"\b(?P<type>\w+)\s*&(?!&)\s*(?P<name>\w+)\s*[,)]",
            "Consider making reference parameter '{name}' const if not modified",
            accept=_non_const_reference_parameter,
        ),
        PatternRule(
            "catch_all_exceptions",
            "Catch-all exception handler",
            Severity.MEDIUM,
            Category.BEST_PRACTICES,
            r"\bcatch\s*\(\s*\.\.\.\s*\)",
            "Catching all exceptions with '...' can hide errors",
        ),
        PatternRule(
            "prefer_auto",
            "Consider using auto for type deduction",
            Severity.LOW,
            Category.MODERNIZATION,
            r"std::\w+(?:<[^>]+>)*\s+(?P<name>\w+)\s*=\s*std::\w+(?:<[^>]+>)*\s*\(",
            "Consider using 'auto' for type deduction",
        ),
        PatternRule(
            "null_macro",
            "Use of NULL macro",
            Severity.LOW,
            Category.MODERNIZATION,
            r"\bNULL\b",
            "Use nullptr instead of NULL",
        ),
        PatternRule(
            "c_random",
            "C random number generator",
            Severity.LOW,
            Category.MODERNIZATION,
            r"(?<![\w.>])(?:std::)?(?P<func>s?rand)\s*\(",
            "'{func}' is a low-quality random source",
        ),
    )
