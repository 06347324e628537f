from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from types import TracebackType

import structlog

logger = structlog.get_logger(__name__)


class Workspace:
    """Private scratch directory for one compile or execute request.

    The directory is removed on exit regardless of how the request ended.

    Example:
        ```python
        with Workspace(Path("/tmp/sce")) as ws:
            ws.write_source("int main() {}")
        ```
    """

    def __init__(self, scratch_root: Path, source_name: str = "main.cpp", binary_name: str = "main") -> None:
        """Remember where to create the directory and what to call its files.

        Example:
            ```python
            ws = Workspace(Path("/tmp/sce"))
            ```
        """
        self._scratch_root = scratch_root
        self._source_name = source_name
        self._binary_name = binary_name
        self._path: Path | None = None

    def __enter__(self) -> "Workspace":
        """Create a uniquely named session directory.

        Example:
            ```python
            with Workspace(root) as ws: ...
            ```
        """
        self._scratch_root.mkdir(parents=True, exist_ok=True)
        self._path = Path(tempfile.mkdtemp(prefix="session-", dir=self._scratch_root))
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Delete the session directory and everything in it.

        Example:
            ```python
            ws.__exit__(None, None, None)
            ```
        """
        if self._path is None:
            return
        try:
            shutil.rmtree(self._path)
        except OSError as err:
            logger.warning("workspace_cleanup_failed", path=str(self._path), error=str(err))
        self._path = None

    @property
    def path(self) -> Path:
        """Return the session directory.

        Example:
            ```python
            cwd = ws.path
            ```
        """
        if self._path is None:
            raise RuntimeError("Workspace is not active")
        return self._path

    @property
    def source_path(self) -> Path:
        """Return the path the source file is written to.

        Example:
            ```python
            src = ws.source_path
            ```
        """
        return self.path / self._source_name

    @property
    def binary_path(self) -> Path:
        """Return the path the compiled program is written to.

        Example:
            ```python
            exe = ws.binary_path
            ```
        """
        return self.path / self._binary_name

    @property
    def artifact_name(self) -> str:
        """Return a reference to the binary relative to the scratch root.

        Example:
            ```python
            ref = ws.artifact_name  # "session-abc123/main"
            ```
        """
        return f"{self.path.name}/{self._binary_name}"

    def write_source(self, source: str) -> Path:
        """Write source text into the workspace.

        Example:
            ```python
            path = ws.write_source("int main() { return 0; }")
            ```
        """
        self.source_path.write_text(source, encoding="utf-8")
        return self.source_path
