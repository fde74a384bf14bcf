"""Tests for path resolution and containment."""

import os

import pytest

from workspace_fs.filesystem.config import FileSystemServiceConfig
from workspace_fs.filesystem.paths import (
    PathResolver,
    is_within,
    list_policy_allows,
    relative_depth,
)


@pytest.fixture
def resolver(config):
    """Create a PathResolver for the test workspace."""
    return PathResolver(config)


class TestHelpers:
    """Test module-level path helpers."""

    def test_is_within_respects_separator_boundary(self):
        """Test that /ws-other is not inside /ws."""
        assert is_within("/ws", "/ws")
        assert is_within("/ws/a/b", "/ws")
        assert not is_within("/ws-other/a", "/ws")
        assert not is_within("/", "/ws")

    def test_relative_depth(self):
        """Test depth counting below a root."""
        assert relative_depth("/ws", "/ws") == 0
        assert relative_depth("/ws/a/b", "/ws") == 2
        assert relative_depth("/other/x", "/ws") == 3

    def test_list_policy_denylist_wins(self):
        """Test that a denylist match denies even when allowlisted."""
        assert not list_policy_allows("/data/secret/x", ["/data"], ["/data/secret"])

    def test_list_policy_empty_allowlist(self):
        """Test that an empty allowlist adds no restriction."""
        assert list_policy_allows("/data/x", [], ["/etc"])

    def test_list_policy_allowlist_required(self):
        """Test that a non-empty allowlist must match."""
        assert list_policy_allows("/data/x", ["/data"], [])
        assert not list_policy_allows("/other/x", ["/data"], [])


class TestResolve:
    """Test PathResolver.resolve."""

    @pytest.mark.parametrize("token", ["", "   ", ".", "./", "/", "\\", None])
    def test_root_tokens(self, resolver, workspace, token):
        """Test that sentinel inputs resolve to the workspace root."""
        result = resolver.resolve(token)
        assert result.is_valid
        assert result.resolved_path == str(workspace)
        assert result.normalized_path == "/"

    def test_relative_path(self, resolver, workspace):
        """Test a plain relative path."""
        result = resolver.resolve("src/main.py")
        assert result.is_valid
        assert result.resolved_path == str(workspace / "src" / "main.py")
        assert result.normalized_path == "/src/main.py"

    def test_leading_backslash_is_root_relative(self, resolver, workspace):
        """Test that a leading separator on a relative input means the root."""
        result = resolver.resolve("\\notes.txt")
        assert result.is_valid
        assert result.resolved_path == str(workspace / "notes.txt")
        assert result.normalized_path == "/notes.txt"

    def test_dot_dot_collapsed_inside_workspace(self, resolver, workspace):
        """Test lexical normalization of .. segments."""
        result = resolver.resolve("a/../b/./c.txt")
        assert result.is_valid
        assert result.resolved_path == str(workspace / "b" / "c.txt")

    @pytest.mark.parametrize("path", ["..", "../escape", "a/../../x", "./../../etc/passwd"])
    def test_escape_is_rejected(self, resolver, path):
        """Test that traversal out of the workspace is invalid."""
        result = resolver.resolve(path)
        assert not result.is_valid
        assert result.error == "Path outside workspace"

    def test_containment_invariant(self, resolver, workspace):
        """Test that every valid result lies inside the workspace root."""
        inputs = [
            "a", "a/b/../c", "../ws/a", "..\\..\\x", "/", "x/../../..", "a/./b/",
            "....", "a/..", "./a/../../ws", str(workspace / "a"), "/tmp/elsewhere",
            "~/file", "a\\..\\..\\b",
        ]
        root = str(workspace)
        for value in inputs:
            result = resolver.resolve(value)
            if result.is_valid:
                assert result.resolved_path == root or result.resolved_path.startswith(
                    root + os.sep
                ), value

    def test_absolute_inside_workspace(self, resolver, workspace):
        """Test that absolute paths inside the workspace are honored."""
        result = resolver.resolve(str(workspace / "docs" / "a.md"))
        assert result.is_valid
        assert result.normalized_path == "/docs/a.md"

    def test_absolute_not_allowed(self, resolver, workspace):
        """Test refusing absolute paths by caller option."""
        result = resolver.resolve(str(workspace / "a.md"), allow_absolute=False)
        assert not result.is_valid
        assert result.error == "Absolute paths not allowed"

    def test_relative_not_allowed(self, resolver):
        """Test refusing relative paths by caller option."""
        result = resolver.resolve("a.md", allow_relative=False)
        assert not result.is_valid
        assert result.error == "Relative paths not allowed"

    def test_null_byte_rejected(self, resolver):
        """Test that NUL bytes are rejected."""
        result = resolver.resolve("a\x00b")
        assert not result.is_valid
        assert "null byte" in result.error

    def test_denied_system_path(self, workspace):
        """Test that a denied absolute path is invalid."""
        config = FileSystemServiceConfig(workspace_root=workspace, denied_paths=["/etc"])
        result = PathResolver(config).resolve("/etc/passwd")
        assert not result.is_valid

    def test_denied_without_containment(self, workspace):
        """Test the policy reason when containment is not required."""
        config = FileSystemServiceConfig(
            workspace_root=workspace,
            denied_paths=["/etc"],
            require_workspace_containment=False,
        )
        result = PathResolver(config).resolve("/etc/passwd")
        assert not result.is_valid
        assert result.error == "Path not allowed by security policy"

    def test_outside_allowed_without_containment(self, workspace, temp_dir):
        """Test that containment can be switched off."""
        config = FileSystemServiceConfig(
            workspace_root=workspace, denied_paths=[], require_workspace_containment=False
        )
        result = PathResolver(config).resolve(str(temp_dir / "outside.txt"))
        assert result.is_valid
        assert result.normalized_path == str(temp_dir / "outside.txt")

    def test_containment_override(self, resolver, temp_dir):
        """Test the per-call containment override."""
        result = resolver.resolve(
            str(temp_dir / "outside.txt"), require_workspace_containment=False
        )
        assert result.is_valid

    def test_denied_inside_workspace(self, workspace):
        """Test a denylist entry inside the workspace."""
        config = FileSystemServiceConfig(
            workspace_root=workspace, denied_paths=[str(workspace / "secret")]
        )
        resolver = PathResolver(config)
        assert resolver.resolve("public/key").is_valid
        result = resolver.resolve("secret/key")
        assert not result.is_valid
        assert result.error == "Path not allowed by security policy"

    def test_allowlist(self, workspace):
        """Test that a non-empty allowlist restricts resolution."""
        config = FileSystemServiceConfig(
            workspace_root=workspace, allowed_paths=[str(workspace / "src")]
        )
        resolver = PathResolver(config)
        assert resolver.resolve("src/a.py").is_valid
        assert not resolver.resolve("docs/a.md").is_valid

    def test_symlink_escape_rejected(self, resolver, workspace, temp_dir):
        """Test that a symlink inside the workspace cannot reach outside."""
        outside = temp_dir / "outside"
        outside.mkdir()
        (outside / "secret.txt").write_text("s")
        os.symlink(outside, workspace / "link")

        result = resolver.resolve("link/secret.txt")
        assert not result.is_valid
        assert result.error == "Path outside workspace"

    def test_symlink_followed_when_allowed(self, workspace):
        """Test realpath substitution with allow_symlinks and follow_symlinks."""
        (workspace / "real").mkdir()
        os.symlink(workspace / "real", workspace / "alias")
        config = FileSystemServiceConfig(workspace_root=workspace, allow_symlinks=True)
        resolver = PathResolver(config)

        followed = resolver.resolve("alias/f.txt", follow_symlinks=True)
        assert followed.resolved_path == str(workspace / "real" / "f.txt")
        assert followed.normalized_path == "/alias/f.txt"

        lexical = resolver.resolve("alias/f.txt")
        assert lexical.resolved_path == str(workspace / "alias" / "f.txt")

    def test_symlink_not_followed_when_disallowed(self, resolver, workspace):
        """Test that follow_symlinks needs allow_symlinks."""
        (workspace / "real").mkdir()
        os.symlink(workspace / "real", workspace / "alias")
        result = resolver.resolve("alias/f.txt", follow_symlinks=True)
        assert result.resolved_path == str(workspace / "alias" / "f.txt")

    def test_symlinked_workspace_root(self, temp_dir):
        """Test that the root is canonicalized before comparing."""
        real = temp_dir / "real-ws"
        real.mkdir()
        os.symlink(real, temp_dir / "ws-link")
        config = FileSystemServiceConfig(workspace_root=real).model_copy(
            update={"workspace_root": temp_dir / "ws-link"}
        )
        resolver = PathResolver(config)
        result = resolver.resolve("a.txt")
        assert result.is_valid
        assert result.resolved_path == str(real / "a.txt")


class TestWorkspaceRelative:
    """Test to_workspace_relative and metadata helpers."""

    def test_root(self, resolver, workspace):
        assert resolver.to_workspace_relative(workspace) == "/"

    def test_descendant(self, resolver, workspace):
        assert resolver.to_workspace_relative(workspace / "a" / "b.txt") == "/a/b.txt"

    def test_outside(self, resolver):
        """Test the absolute fallback for paths outside the workspace."""
        assert resolver.to_workspace_relative("/other/place") == "/other/place"

    def test_validate_path_depth(self, workspace):
        """Test the depth limit check."""
        config = FileSystemServiceConfig(workspace_root=workspace, max_tree_depth=2)
        resolver = PathResolver(config)

        assert resolver.validate_path_depth(workspace / "a" / "b") == (True, 2, None)
        valid, depth, error = resolver.validate_path_depth(workspace / "a" / "b" / "c")
        assert valid is False
        assert depth == 3
        assert "exceeds maximum allowed depth" in error

    def test_get_file_info(self, resolver, workspace):
        """Test metadata for an existing file."""
        target = workspace / "a.txt"
        target.write_text("hello")

        info = resolver.get_file_info(target)
        assert info.exists
        assert info.is_file
        assert not info.is_directory
        assert not info.is_symbolic_link
        assert info.size == 5
        assert info.modified is not None
        assert info.permissions.isdigit()
        assert info.to_dict()["isFile"] is True

    def test_get_file_info_missing(self, resolver, workspace):
        """Test that a missing path reports exists=False."""
        info = resolver.get_file_info(workspace / "missing")
        assert info.exists is False
        assert info.to_dict()["modified"] is None

    def test_get_directory_size(self, resolver, workspace):
        """Test recursive size and count."""
        (workspace / "a.txt").write_text("12345")
        (workspace / "sub").mkdir()
        (workspace / "sub" / "b.txt").write_text("123")

        assert resolver.get_directory_size(workspace) == (8, 2, None)

    def test_get_directory_size_missing(self, resolver, workspace):
        """Test the error result for a missing directory."""
        size, count, error = resolver.get_directory_size(workspace / "missing")
        assert (size, count) == (0, 0)
        assert error

    def test_expand_home(self):
        assert PathResolver.expand_home("~/x") == os.path.expanduser("~/x")
