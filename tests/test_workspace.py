"""Tests for workspace.py."""

import pytest

from linux_imagegen.errors import ResourceAcquisitionError
from linux_imagegen.workspace import IMAGE_FILENAME, create_workspace


class TestCreateWorkspace:
    """Tests for create_workspace function."""

    def test_created_under_parent(self, tmp_path):
        """The workspace is a fresh directory under the parent."""
        ws = create_workspace("tmpdir.linuximage.", parent=tmp_path)

        assert ws.exists()
        assert ws.root.parent == tmp_path.resolve()
        assert ws.root.name.startswith("tmpdir.linuximage.")
        assert ws.root.is_absolute()

    def test_log_dir_created(self, tmp_path):
        """The command log directory exists right away."""
        ws = create_workspace("ws.", parent=tmp_path)
        assert ws.log_dir.is_dir()
        assert ws.log_dir.name == "cmd_logs"

    def test_defaults_to_cwd(self, tmp_path, monkeypatch):
        """Without a parent the workspace lives in the current directory."""
        monkeypatch.chdir(tmp_path)
        ws = create_workspace("ws.")
        assert ws.root.parent == tmp_path.resolve()

    def test_unique_names(self, tmp_path):
        """Two invocations never share a workspace."""
        first = create_workspace("ws.", parent=tmp_path)
        second = create_workspace("ws.", parent=tmp_path)
        assert first.root != second.root

    def test_missing_parent(self, tmp_path):
        """Failure to create the directory is a resource error."""
        with pytest.raises(ResourceAcquisitionError) as exc_info:
            create_workspace("ws.", parent=tmp_path / "missing")
        assert exc_info.value.code == "workspace_error"


class TestWorkspace:
    """Tests for Workspace layout and discard."""

    def test_layout(self, tmp_path):
        """Every path lives inside the workspace root."""
        ws = create_workspace("ws.", parent=tmp_path)

        assert ws.image_path == ws.root / IMAGE_FILENAME
        assert ws.mount_point == ws.root / "mnt" / "p1"
        for path in (ws.download_dir, ws.staging_dir, ws.log_dir):
            assert path.parent == ws.root

    def test_discard(self, tmp_path):
        """discard removes the whole tree."""
        ws = create_workspace("ws.", parent=tmp_path)
        (ws.log_dir / "0001-true.stdout").write_text("")
        ws.image_path.write_bytes(b"x")

        ws.discard()

        assert not ws.root.exists()

    def test_discard_twice(self, tmp_path):
        """Discarding an already removed workspace is a no-op."""
        ws = create_workspace("ws.", parent=tmp_path)
        ws.discard()
        ws.discard()
        assert not ws.exists()
