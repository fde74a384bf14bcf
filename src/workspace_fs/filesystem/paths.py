"""
Path resolution and containment for the workspace filesystem service.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Union

from workspace_fs.filesystem.config import FileSystemServiceConfig
from workspace_fs.filesystem.types import FileInfo, ResolvedPath

logger = logging.getLogger(__name__)

# Inputs that always mean "the workspace root"
ROOT_TOKENS = frozenset({"", "/", "\\", ".", "./"})

PathLike = Union[str, Path]


def is_within(path: str, directory: str) -> bool:
    """True if ``path`` equals ``directory`` or lies below it (separator aware)."""
    path = os.path.normcase(path)
    directory = os.path.normcase(directory)
    if path == directory:
        return True
    prefix = directory if directory.endswith(os.sep) else directory + os.sep
    return path.startswith(prefix)


def expand_entry(entry: PathLike) -> str:
    """Expand ``~`` and make a configured list entry absolute."""
    return os.path.abspath(os.path.expanduser(str(entry)))


def matches_any(path: str, entries: Iterable[PathLike]) -> Optional[str]:
    """Return the first entry that contains ``path``, if any."""
    for entry in entries:
        if is_within(path, expand_entry(entry)):
            return str(entry)
    return None


def relative_depth(path: PathLike, root: str) -> int:
    """Number of segments below ``root`` (absolute segment count if outside)."""
    resolved = os.path.abspath(str(path))
    if is_within(resolved, root):
        relative = os.path.relpath(resolved, root)
        return 0 if relative == os.curdir else len(Path(relative).parts)
    return len(Path(resolved).parts)


def list_policy_allows(
    path: str, allowed_paths: list[str], denied_paths: list[str]
) -> bool:
    """
    Apply allow/deny list semantics.

    A denylist match always denies. Otherwise a non-empty allowlist must
    contain the path; an empty allowlist adds no restriction.
    """
    resolved = os.path.abspath(path)
    if matches_any(resolved, denied_paths):
        return False
    if allowed_paths:
        return matches_any(resolved, allowed_paths) is not None
    return True


class PathResolver:
    """
    Turns client-supplied path strings into checked absolute paths.

    Resolution is lexical: ``..`` segments are collapsed arithmetically
    without consulting the filesystem, so a valid result may not exist.
    Containment is checked both on the lexical path and on its realpath,
    so a symlink inside the workspace cannot be used to reach outside it.

    Usage:
        resolver = PathResolver(config)
        result = resolver.resolve("src/main.py")
        if result.is_valid:
            open(result.resolved_path)
    """

    def __init__(self, config: FileSystemServiceConfig):
        """
        Initialize the resolver.

        Args:
            config: Service configuration
        """
        self.config = config
        self.workspace_root = os.path.realpath(str(config.workspace_root))

    def resolve(
        self,
        input_path: Optional[str],
        *,
        allow_absolute: Optional[bool] = None,
        allow_relative: Optional[bool] = None,
        require_workspace_containment: Optional[bool] = None,
        follow_symlinks: bool = False,
    ) -> ResolvedPath:
        """
        Resolve and validate a path.

        Never raises for rejected input; the reason is reported in
        ``ResolvedPath.error``.

        Args:
            input_path: Path as sent by the client
            allow_absolute: Refuse absolute paths when False
            allow_relative: Refuse relative paths when False
            require_workspace_containment: Override the configured setting
            follow_symlinks: Substitute the realpath (needs allow_symlinks)

        Returns:
            ResolvedPath describing the outcome
        """
        root = self.workspace_root

        if input_path is None or input_path.strip() == "" or input_path in ROOT_TOKENS:
            return ResolvedPath(resolved_path=root, normalized_path="/", is_valid=True)

        if "\x00" in input_path:
            return self._invalid(input_path, "Path contains null byte")

        try:
            if os.path.isabs(input_path):
                if allow_absolute is False:
                    return self._invalid(input_path, "Absolute paths not allowed")
                candidate = input_path
            else:
                if allow_relative is False:
                    return self._invalid(input_path, "Relative paths not allowed")
                # A leading separator means "relative to the workspace root"
                relative = input_path.lstrip("/\\")
                candidate = os.path.join(root, relative)

            normalized = os.path.normpath(candidate)

            require_containment = (
                self.config.require_workspace_containment
                if require_workspace_containment is None
                else require_workspace_containment
            )
            if require_containment and not self._contained(normalized, root):
                logger.debug(f"Path outside workspace: {input_path!r} -> {normalized}")
                return self._invalid(normalized, "Path outside workspace")

            if not list_policy_allows(
                normalized, self.config.allowed_paths, self.config.denied_paths
            ):
                logger.debug(f"Path not allowed by policy: {normalized}")
                return self._invalid(normalized, "Path not allowed by security policy")

            resolved = normalized
            if self.config.allow_symlinks and follow_symlinks:
                resolved = os.path.realpath(normalized)

            return ResolvedPath(
                resolved_path=resolved,
                normalized_path=self.to_workspace_relative(normalized),
                is_valid=True,
            )
        except (OSError, ValueError) as e:
            return self._invalid(input_path, str(e))

    def to_workspace_relative(self, absolute_path: PathLike) -> str:
        """
        Map an absolute path back to its workspace-relative form.

        Returns ``/`` for the root and ``/a/b`` for descendants. Paths
        outside the workspace come back absolute, with forward slashes.
        """
        resolved = os.path.abspath(str(absolute_path))
        root = self.workspace_root

        if os.path.normcase(resolved) == os.path.normcase(root):
            return "/"

        if is_within(resolved, root):
            relative = os.path.relpath(resolved, root)
            return "/" + relative.replace(os.sep, "/")

        return resolved.replace("\\", "/")

    def path_depth(self, path: PathLike) -> int:
        """Number of segments below the workspace root (absolute if outside)."""
        return relative_depth(path, self.workspace_root)

    def validate_path_depth(self, path: PathLike) -> tuple[bool, int, Optional[str]]:
        """
        Check a path against ``max_tree_depth``.

        Returns:
            Tuple of (valid, depth, error)
        """
        depth = self.path_depth(path)
        if depth > self.config.max_tree_depth:
            return (
                False,
                depth,
                f"Path depth {depth} exceeds maximum allowed depth "
                f"{self.config.max_tree_depth}",
            )
        return True, depth, None

    def get_file_info(self, path: PathLike) -> FileInfo:
        """Filesystem metadata for ``path``. Missing paths report ``exists=False``."""
        try:
            stats = os.stat(path)
        except OSError:
            return FileInfo(exists=False)

        return FileInfo(
            exists=True,
            is_file=os.path.isfile(path),
            is_directory=os.path.isdir(path),
            is_symbolic_link=os.path.islink(path),
            size=stats.st_size,
            modified=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
            permissions=oct(stats.st_mode)[2:],
        )

    def get_directory_size(self, path: PathLike) -> tuple[int, int, Optional[str]]:
        """
        Total size and file count below a directory.

        Unreadable entries are skipped. Symbolic links are not followed.

        Returns:
            Tuple of (size, file_count, error)
        """
        total_size = 0
        file_count = 0

        try:
            entries = list(os.scandir(path))
        except OSError as e:
            return 0, 0, str(e)

        for entry in entries:
            try:
                if entry.is_file(follow_symlinks=False):
                    total_size += entry.stat(follow_symlinks=False).st_size
                    file_count += 1
                elif entry.is_dir(follow_symlinks=False):
                    size, count, _ = self.get_directory_size(entry.path)
                    total_size += size
                    file_count += count
            except OSError as e:
                logger.debug(f"Skipping {entry.path} while sizing: {e}")
                continue

        return total_size, file_count, None

    @staticmethod
    def expand_home(path: str) -> str:
        """Expand a leading ``~`` to the user's home directory."""
        return os.path.expanduser(path)

    def _contained(self, normalized: str, root: str) -> bool:
        if not is_within(normalized, root):
            return False
        return is_within(os.path.realpath(normalized), root)

    @staticmethod
    def _invalid(path: str, reason: str) -> ResolvedPath:
        return ResolvedPath(
            resolved_path=path,
            normalized_path=path.replace("\\", "/"),
            is_valid=False,
            error=reason,
        )
