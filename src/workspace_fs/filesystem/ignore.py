"""
Gitignore-style filtering for directory listings.

Supports the practical subset of gitignore syntax: ``*``, ``?``, ``**``,
character classes, anchored patterns, directory-only patterns, ``!``
negation, comments and backslash-escaped leading ``#``/``!``.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from workspace_fs.filesystem.config import FileSystemServiceConfig

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_PATTERNS = [
    "node_modules/",
    ".git/",
    ".hg/",
    ".svn/",
    ".DS_Store",
    "out/",
    "dist/",
    "build/",
]


def _translate(pattern: str) -> str:
    """Translate a glob body to a regex fragment over ``/``-separated paths."""
    out = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    # "**/" matches zero or more directories
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            start = i + 1
            negate = pattern[start : start + 1] in ("!", "^")
            if negate:
                start += 1
            # A "]" right after the opening bracket is a member, not the close
            end = pattern.find("]", start + 1 if pattern[start : start + 1] == "]" else start)
            if end == -1:
                out.append(re.escape(c))
            else:
                members = "".join(
                    ch if ch == "-" else re.escape(ch) for ch in pattern[start:end]
                )
                out.append("[" + ("^" if negate else "") + members + "]")
                i = end
        elif c == "\\" and i + 1 < n:
            i += 1
            out.append(re.escape(pattern[i]))
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


@dataclass
class IgnoreRule:
    """One parsed ignore pattern."""

    pattern: str
    regex: re.Pattern
    negated: bool = False
    directory_only: bool = False

    @classmethod
    def parse(cls, line: str) -> Optional["IgnoreRule"]:
        """
        Parse a single pattern line.

        Returns:
            The rule, or None for blank lines, comments and patterns that
            cannot be compiled
        """
        line = line.rstrip("\r\n")
        if not line.endswith("\\ "):
            line = line.rstrip()
        if not line or line.startswith("#"):
            return None

        negated = False
        if line.startswith("!"):
            negated = True
            line = line[1:]
        elif line.startswith("\\#") or line.startswith("\\!"):
            line = line[1:]

        directory_only = line.endswith("/")
        body = line.rstrip("/")
        if not body:
            return None

        # A slash anywhere but the end anchors the pattern at the root
        anchored = "/" in body
        body = body.lstrip("/")

        prefix = "^" if anchored else "^(?:.*/)?"
        try:
            regex = re.compile(prefix + _translate(body) + "$")
        except re.error as e:
            logger.warning(f"Skipping invalid ignore pattern {line!r}: {e}")
            return None

        return cls(
            pattern=line,
            regex=regex,
            negated=negated,
            directory_only=directory_only,
        )

    def matches(self, relative_path: str, is_directory: bool) -> bool:
        if self.directory_only and not is_directory:
            return False
        return self.regex.match(relative_path) is not None


class IgnoreFilter:
    """
    Decides whether a path is hidden from listings.

    Rules are evaluated in order (built-in defaults, caller extras, then
    ``.gitignore`` lines) and the last matching rule wins. A path below an
    ignored directory is ignored as well. The workspace root is never
    ignored.

    Usage:
        ignore = IgnoreFilter("/ws", ["*.log"])
        ignore.is_ignored("/ws/node_modules", is_directory=True)  # True
    """

    def __init__(
        self,
        workspace_root: Union[str, Path],
        extra_patterns: Optional[Iterable[str]] = None,
        gitignore_file: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize the filter.

        Args:
            workspace_root: Directory paths are made relative to
            extra_patterns: Patterns appended after the built-in defaults
            gitignore_file: Explicit ignore file (default: <root>/.gitignore)
        """
        self.workspace_root = os.path.realpath(str(workspace_root))
        self.gitignore_file = (
            Path(gitignore_file)
            if gitignore_file
            else Path(self.workspace_root) / ".gitignore"
        )

        self.rules: list[IgnoreRule] = []
        self.add_patterns(DEFAULT_IGNORE_PATTERNS)
        self.add_patterns(extra_patterns or [])
        self.add_patterns(self._read_gitignore())

    @classmethod
    def from_config(cls, config: FileSystemServiceConfig) -> "IgnoreFilter":
        return cls(
            config.workspace_root,
            config.default_ignore_globs,
            config.git_ignore_file,
        )

    @property
    def patterns(self) -> list[str]:
        return [("!" if rule.negated else "") + rule.pattern for rule in self.rules]

    def add_patterns(self, lines: Iterable[str]) -> None:
        for line in lines:
            rule = IgnoreRule.parse(line)
            if rule is not None:
                self.rules.append(rule)

    def is_ignored(self, absolute_path: Union[str, Path], is_directory: bool) -> bool:
        """
        Check a path against the rules.

        Args:
            absolute_path: Path to check (relative paths are taken from cwd)
            is_directory: Whether the path is a directory

        Returns:
            True if the path should be hidden
        """
        relative = self._relative(absolute_path)
        if relative is None:
            return False

        parts = relative.split("/")
        for depth in range(1, len(parts)):
            if self._evaluate("/".join(parts[:depth]), True):
                return True

        return self._evaluate(relative, is_directory)

    def _evaluate(self, relative: str, is_directory: bool) -> bool:
        ignored = False
        for rule in self.rules:
            if rule.matches(relative, is_directory):
                ignored = not rule.negated
        return ignored

    def _relative(self, absolute_path: Union[str, Path]) -> Optional[str]:
        resolved = os.path.abspath(str(absolute_path))
        relative = os.path.relpath(resolved, self.workspace_root).replace("\\", "/")
        if relative in ("", ".") or relative == ".." or relative.startswith("../"):
            return None
        return relative

    def _read_gitignore(self) -> list[str]:
        if not self.gitignore_file.is_file():
            return []
        try:
            content = self.gitignore_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read {self.gitignore_file}: {e}")
            return []
        # splitlines handles both LF and CRLF
        return [line for line in content.splitlines() if line]
