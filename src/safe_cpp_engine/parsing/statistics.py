from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from .nodes import SyntaxTree


@dataclass(frozen=True, slots=True)
class TreeStatistics:
    """Per-kind node counts and an approximate cyclomatic complexity.

    Example:
        ```python
        stats = get_ast_statistics(tree)
        print(stats.cyclomatic_complexity)
        ```
    """

    total_functions: int
    total_classes: int
    total_variables: int
    total_function_calls: int
    control_flow_statements: int
    cyclomatic_complexity: int

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready representation.

        Example:
            ```python
            payload = stats.to_dict()
            ```
        """
        return asdict(self)


def get_ast_statistics(tree: SyntaxTree) -> TreeStatistics:
    """Aggregate an already built tree.

    Cyclomatic complexity is the control-flow node count plus one.

    Example:
        ```python
        stats = get_ast_statistics(parser.parse(source).tree)
        ```
    """
    return TreeStatistics(
        total_functions=len(tree.functions),
        total_classes=len(tree.records),
        total_variables=len(tree.variables),
        total_function_calls=len(tree.calls),
        control_flow_statements=len(tree.control_flow),
        cyclomatic_complexity=len(tree.control_flow) + 1,
    )
