from __future__ import annotations


class EngineStartupError(RuntimeError):
    """Raised when the engine cannot safely accept traffic.

    Example:
        ```python
        raise EngineStartupError("Compiler not found: g++")
        ```
    """


class SpawnError(OSError):
    """Raised when a child process cannot be started.

    Example:
        ```python
        raise SpawnError("No such file or directory: 'g++'")
        ```
    """
