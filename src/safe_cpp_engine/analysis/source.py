"""Source text helpers shared by the rules and metrics.

Rules scan a *masked* copy of the source in which comments and the contents
of string and character literals are replaced by spaces. Masking keeps every
character at its original offset and keeps newlines, so offsets found in the
masked text map straight back to lines and columns in the original.
"""

from __future__ import annotations

import bisect
import re
from functools import lru_cache

_RAW_STRING = re.compile(r'R"([^ ()\\\t\n]{0,16})\(')


def _blank(chars: list[str], start: int, end: int) -> None:
    """Overwrite a span with spaces, keeping newlines.

    Example:
        ```python
        _blank(chars, 4, 10)
        ```
    """
    for i in range(start, end):
        if chars[i] != "\n":
            chars[i] = " "


def _quoted_end(source: str, start: int, quote: str) -> int:
    """Return the offset just past a quoted literal opened at `start`.

    Example:
        ```python
        _quoted_end('"a\\\\"b"', 0, '"')
        ```
    """
    i = start + 1
    n = len(source)
    while i < n:
        ch = source[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote or ch == "\n":
            return i + 1
        i += 1
    return n


@lru_cache(maxsize=64)
def mask_source(source: str) -> str:
    """Blank out comments and literal contents without moving any character.

    Example:
        ```python
        mask_source('puts("gets(x)"); // strcpy')  # 'puts("       ");          '
        ```
    """
    chars = list(source)
    n = len(source)
    i = 0
    while i < n:
        ch = source[i]
        nxt = source[i + 1] if i + 1 < n else ""
        if ch == "/" and nxt == "/":
            end = source.find("\n", i)
            end = n if end == -1 else end
            _blank(chars, i, end)
            i = end
        elif ch == "/" and nxt == "*":
            end = source.find("*/", i + 2)
            end = n if end == -1 else end + 2
            _blank(chars, i, end)
            i = end
        elif ch == "R" and nxt == '"' and (i == 0 or not (source[i - 1].isalnum() or source[i - 1] == "_")):
            match = _RAW_STRING.match(source, i)
            if match is None:
                i += 1
                continue
            terminator = ")" + match.group(1) + '"'
            end = source.find(terminator, match.end())
            end = n if end == -1 else end + len(terminator)
            _blank(chars, match.end(), max(match.end(), end - len(terminator)))
            i = end
        elif ch == '"':
            end = _quoted_end(source, i, '"')
            _blank(chars, i + 1, max(i + 1, end - 1))
            i = end
        elif ch == "'" and not (i > 0 and source[i - 1].isdigit()):
            end = _quoted_end(source, i, "'")
            _blank(chars, i + 1, max(i + 1, end - 1))
            i = end
        else:
            i += 1
    return "".join(chars)


class LineIndex:
    """Map character offsets to 1-based line and column numbers.

    Example:
        ```python
        index = LineIndex("int a;\\nint b;")
        index.position(7)  # (2, 1)
        ```
    """

    def __init__(self, source: str) -> None:
        """Record where every line starts.

        Example:
            ```python
            index = LineIndex(source)
            ```
        """
        self._starts = [0]
        self._starts.extend(match.end() for match in re.finditer("\n", source))

    def position(self, offset: int) -> tuple[int, int]:
        """Return `(line, column)` for an offset, both 1-based.

        Example:
            ```python
            line, column = index.position(match.start())
            ```
        """
        line = bisect.bisect_right(self._starts, offset)
        return line, offset - self._starts[line - 1] + 1


@lru_cache(maxsize=64)
def line_index(source: str) -> LineIndex:
    """Return a cached `LineIndex` for a source text.

    Example:
        ```python
        line, column = line_index(source).position(42)
        ```
    """
    return LineIndex(source)


def split_lines(text: str) -> list[str]:
    """Split on newlines only, without a phantom line after a final newline.

    Masking keeps `\\n` but may blank a `\\r`, so both copies of a source must
    be split the same way to stay aligned.

    Example:
        ```python
        split_lines("a\\nb\\n")  # ["a", "b"]
        ```
    """
    if not text:
        return []
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
    return lines
