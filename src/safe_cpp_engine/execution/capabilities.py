from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True, slots=True)
class IsolationCapabilities:
    """Guarantees an isolation backend can enforce for a running program.

    Example:
        ```python
        caps = IsolationCapabilities(True, True, True, True, True, False)
        ```
    """

    enforces_memory_limit: bool
    enforces_cpu_limit: bool
    blocks_network: bool
    drops_privileges: bool
    read_only_artifact: bool
    measures_peak_memory: bool

    def missing(self) -> list[str]:
        """Return the names of guarantees this backend does not provide.

        Example:
            ```python
            gaps = capabilities_for_isolation("direct").missing()
            ```
        """
        return [name for name, value in asdict(self).items() if not value and name != "measures_peak_memory"]


def capabilities_for_isolation(isolation: str) -> IsolationCapabilities:
    """Return capability flags for an isolation mode name.

    Example:
        ```python
        caps = capabilities_for_isolation("isolated")
        ```
    """
    if isolation == "isolated":
        return IsolationCapabilities(True, True, True, True, True, False)
    if isolation == "direct":
        return IsolationCapabilities(True, True, False, False, False, True)
    return IsolationCapabilities(False, False, False, False, False, False)
