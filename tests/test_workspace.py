from pathlib import Path

import pytest

from safe_cpp_engine.execution.workspace import Workspace


def test_workspace_lifecycle(tmp_path: Path) -> None:
    with Workspace(tmp_path) as ws:
        path = ws.path
        source = ws.write_source("int main() { return 0; }")
        assert path.parent == tmp_path
        assert path.name.startswith("session-")
        assert source == path / "main.cpp"
        assert source.read_text(encoding="utf-8") == "int main() { return 0; }"
        assert ws.binary_path == path / "main"
        assert ws.artifact_name == f"{path.name}/main"

    assert not path.exists()
    assert list(tmp_path.iterdir()) == []


def test_workspace_removed_when_request_fails(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError, match="boom"):
        with Workspace(tmp_path) as ws:
            ws.write_source("int main() {}")
            (ws.path / "main").write_bytes(b"\x7fELF")
            raise RuntimeError("boom")

    assert list(tmp_path.iterdir()) == []


def test_workspaces_are_unique(tmp_path: Path) -> None:
    with Workspace(tmp_path) as first, Workspace(tmp_path) as second:
        assert first.path != second.path


def test_inactive_workspace_has_no_path(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError, match="not active"):
        Workspace(tmp_path).path


def test_scratch_root_is_created(tmp_path: Path) -> None:
    root = tmp_path / "nested" / "scratch"

    with Workspace(root) as ws:
        assert ws.path.parent == root
