"""
Security policy for workspace filesystem operations.

Classifies prospective operations against the configured denylist, a
fixed set of protected system paths, risky extensions, size limits and
hidden-file rules. Expected negative outcomes are returned as
``SecurityVerdict`` values, never raised.
"""

import logging
import os
import re
from typing import Optional, Union

from workspace_fs.filesystem.config import FileSystemServiceConfig
from workspace_fs.filesystem.paths import (
    PathLike,
    is_within,
    list_policy_allows,
    matches_any,
    relative_depth,
)
from workspace_fs.filesystem.types import (
    AccessPermissions,
    ContentScanResult,
    FileOperation,
    PathOperation,
    RiskLevel,
    SecurityVerdict,
)

logger = logging.getLogger(__name__)

# Non-configurable safety floor, independent of the denylist
SYSTEM_PATHS = [
    "/etc/passwd",
    "/etc/shadow",
    "/etc/sudoers",
    "/usr/bin",
    "/usr/sbin",
    "/bin",
    "/sbin",
    "/proc",
    "/sys",
    "/dev",
]

# Never deletable
SYSTEM_FILES = [
    "/etc/passwd",
    "/etc/shadow",
    "/etc/sudoers",
    "/boot",
    "/system",
    "/Windows/System32",
]

RISKY_EXTENSIONS = {
    PathOperation.WRITE: {".exe", ".dll", ".so", ".dylib", ".sh", ".bat", ".cmd", ".ps1"},
    PathOperation.EXECUTE: {".exe", ".sh", ".bat", ".cmd", ".ps1", ".py", ".js"},
}

RESERVED_FILE_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)

_ILLEGAL_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_EDGE_DOTS_AND_SPACES = re.compile(r"^[. ]+|[. ]+$")
_SEPARATORS = re.compile(r"[\\/]")

CONTENT_RULES = [
    (re.compile(r"<script[\s>]", re.IGNORECASE), RiskLevel.HIGH, "JavaScript script tag detected"),
    (re.compile(r"eval\s*\(", re.IGNORECASE), RiskLevel.HIGH, "eval() function detected"),
    (re.compile(r"exec\s*\(", re.IGNORECASE), RiskLevel.HIGH, "exec() function detected"),
    (re.compile(r"system\s*\(", re.IGNORECASE), RiskLevel.HIGH, "system() function detected"),
    (re.compile(r"shell_exec\s*\(", re.IGNORECASE), RiskLevel.HIGH, "shell_exec() function detected"),
    (re.compile(r"passthru\s*\(", re.IGNORECASE), RiskLevel.HIGH, "passthru() function detected"),
    (re.compile(r"document\.cookie", re.IGNORECASE), RiskLevel.MEDIUM, "Cookie access detected"),
    (re.compile(r"localStorage", re.IGNORECASE), RiskLevel.MEDIUM, "Local storage access detected"),
    (re.compile(r"sessionStorage", re.IGNORECASE), RiskLevel.MEDIUM, "Session storage access detected"),
]

# Content findings at or above this level block a write
CONTENT_BLOCK_LEVEL = RiskLevel.HIGH


class SecurityPolicy:
    """
    Risk classification for filesystem operations.

    Checks run in order of severity and the first failing check decides:
    denylist, system paths, risky extension, oversized file on write,
    hidden file, traversal marker with validation disabled.

    Usage:
        policy = SecurityPolicy(config)
        verdict = policy.check_file_operation("delete", "/ws/build.log")
        if not verdict.allowed:
            print(verdict.reason, verdict.suggestions)
    """

    def __init__(self, config: FileSystemServiceConfig):
        self.config = config
        self.workspace_root = os.path.realpath(str(config.workspace_root))

    def is_path_allowed(self, path: PathLike) -> bool:
        """Allow/deny list check shared with the path resolver."""
        return list_policy_allows(
            str(path), self.config.allowed_paths, self.config.denied_paths
        )

    def check_path_safety(
        self, path: PathLike, operation: Union[PathOperation, str]
    ) -> SecurityVerdict:
        """
        Classify a single-path operation.

        Args:
            path: Target path (the raw form is kept for the traversal check)
            operation: read, write, delete or execute

        Returns:
            SecurityVerdict; the first failing check wins
        """
        operation = PathOperation(operation)
        raw = str(path)
        resolved = os.path.abspath(raw)

        denied = matches_any(resolved, self.config.denied_paths)
        if denied is not None:
            return SecurityVerdict.deny(
                f"Path is in denied list: {denied}",
                RiskLevel.CRITICAL,
                ["Choose a different path", "Update configuration to allow this path"],
            )

        for system_path in SYSTEM_PATHS:
            if is_within(resolved, system_path):
                return SecurityVerdict.deny(
                    f"Access to system path denied: {system_path}",
                    RiskLevel.CRITICAL,
                    ["System paths are protected", "Use user-writable locations"],
                )

        risky = RISKY_EXTENSIONS.get(operation)
        if risky:
            ext = os.path.splitext(resolved)[1].lower()
            if ext in risky:
                return SecurityVerdict.deny(
                    f"Risky file extension for {operation.value}: {ext}",
                    RiskLevel.HIGH,
                    [
                        "Consider if this operation is necessary",
                        "Use a different file extension",
                        "Enable unsafe mode if required",
                    ],
                )

        if operation == PathOperation.WRITE:
            try:
                size = os.stat(resolved).st_size
            except OSError:
                size = None  # not created yet
            if size is not None and size > self.config.max_binary_file_size:
                return SecurityVerdict.deny(
                    f"File too large: {size} bytes",
                    RiskLevel.MEDIUM,
                    [
                        "Use a smaller file",
                        "Increase size limits in configuration",
                        "Compress the file first",
                    ],
                )

        if os.path.basename(resolved).startswith(".") and not self.config.allow_hidden_files:
            return SecurityVerdict.deny(
                "Hidden files are not allowed",
                RiskLevel.LOW,
                ["Enable hidden files in configuration", "Use a different filename"],
            )

        if ".." in _SEPARATORS.split(raw) and not self.config.enable_path_validation:
            return SecurityVerdict.deny(
                "Path traversal detected",
                RiskLevel.HIGH,
                [
                    "Use absolute paths",
                    "Enable proper path validation",
                    "Sanitize input paths",
                ],
            )

        return SecurityVerdict.allow()

    def check_file_operation(
        self,
        operation: Union[FileOperation, str],
        path: PathLike,
        destination: Optional[PathLike] = None,
    ) -> SecurityVerdict:
        """
        Classify a façade-level operation.

        Runs the base check on the source (read stays read, everything
        else is checked as a write), then the operation refinements.

        Args:
            operation: read, write, delete, create or rename
            path: Source path
            destination: Rename target

        Returns:
            SecurityVerdict
        """
        operation = FileOperation(operation)
        base_operation = (
            PathOperation.READ if operation == FileOperation.READ else PathOperation.WRITE
        )

        verdict = self.check_path_safety(path, base_operation)
        if not verdict.allowed:
            return verdict

        if operation == FileOperation.RENAME and destination is not None:
            verdict = self.check_path_safety(destination, PathOperation.WRITE)
            if not verdict.allowed:
                return verdict

        if operation == FileOperation.DELETE:
            if self._is_system_file(path):
                return SecurityVerdict.deny(
                    "Cannot delete system files",
                    RiskLevel.CRITICAL,
                    ["System files are protected from deletion"],
                )
            if os.path.normcase(os.path.abspath(str(path))) == os.path.normcase(
                self.workspace_root
            ):
                return SecurityVerdict.deny(
                    "Cannot delete the workspace root",
                    RiskLevel.CRITICAL,
                    ["Delete individual files or subdirectories instead"],
                )

        elif operation == FileOperation.CREATE:
            parent = os.path.dirname(os.path.abspath(str(path)))
            verdict = self.check_directory_safety(parent)
            if not verdict.allowed:
                return verdict

        elif operation == FileOperation.RENAME and destination is not None:
            source_drive = os.path.splitdrive(os.path.abspath(str(path)))[0]
            dest_drive = os.path.splitdrive(os.path.abspath(str(destination)))[0]
            if source_drive.lower() != dest_drive.lower():
                return SecurityVerdict.deny(
                    "Cannot rename files across different drives",
                    RiskLevel.MEDIUM,
                    ["Copy the file instead of renaming across drives"],
                )

        return SecurityVerdict.allow()

    def check_directory_safety(self, path: PathLike) -> SecurityVerdict:
        """
        Check that a directory is a sane place to add entries.

        A missing directory passes, so parents can be created on demand.
        """
        resolved = os.path.abspath(str(path))

        if os.path.exists(resolved) and not os.path.isdir(resolved):
            return SecurityVerdict.deny(
                "Path is not a directory",
                RiskLevel.MEDIUM,
                ["Check the path and try again"],
            )

        depth = relative_depth(resolved, self.workspace_root)
        if depth > self.config.max_tree_depth:
            return SecurityVerdict.deny(
                f"Directory depth too great: {depth} levels",
                RiskLevel.MEDIUM,
                [
                    "Use a shallower directory structure",
                    "Increase max depth in configuration",
                ],
            )

        try:
            entry_count = len(os.listdir(resolved))
        except OSError:
            entry_count = 0
        if entry_count > self.config.max_files_per_directory:
            return SecurityVerdict.deny(
                f"Too many files in directory: {entry_count}",
                RiskLevel.LOW,
                [
                    "Organize files into subdirectories",
                    "Increase file limit in configuration",
                ],
            )

        return SecurityVerdict.allow()

    def check_content_write(self, path: PathLike, content: bytes) -> SecurityVerdict:
        """
        Unified verdict for writing ``content`` to ``path``.

        Combines the size limit and, when ``scan_file_content`` is set,
        the content scan into one verdict whose risk is the highest of
        the findings.
        """
        findings: list[tuple[RiskLevel, str]] = []

        if len(content) > self.config.max_binary_file_size:
            findings.append(
                (
                    RiskLevel.MEDIUM,
                    f"Content too large: {len(content)} bytes "
                    f"(limit {self.config.max_binary_file_size})",
                )
            )

        if self.config.scan_file_content:
            scan = self.validate_file_content(content)
            if scan.risk >= CONTENT_BLOCK_LEVEL:
                findings.append((scan.risk, "Risky content: " + ", ".join(scan.issues)))

        if not findings:
            return SecurityVerdict.allow()

        logger.warning(f"Write to {path} refused: {[message for _, message in findings]}")
        return SecurityVerdict.deny(
            "; ".join(message for _, message in findings),
            RiskLevel.highest(risk for risk, _ in findings),
            ["Review the content before writing", "Adjust limits in configuration"],
        )

    def validate_file_content(self, content: Union[str, bytes]) -> ContentScanResult:
        """
        Regex scan for embedded scripts, shell calls and storage access.

        Oversized content is reported as an issue but is not the only
        thing that decides ``valid``.
        """
        if isinstance(content, (bytes, bytearray)):
            text = bytes(content).decode("utf-8", errors="replace")
        else:
            text = content

        issues: list[str] = []
        risk = RiskLevel.NONE

        for pattern, rule_risk, message in CONTENT_RULES:
            if pattern.search(text):
                issues.append(message)
                risk = RiskLevel.highest([risk, rule_risk])

        if len(text) > self.config.max_text_file_size:
            issues.append(f"Content size {len(text)} exceeds maximum allowed size")
            if risk == RiskLevel.NONE:
                risk = RiskLevel.MEDIUM

        return ContentScanResult(valid=not issues, risk=risk, issues=issues)

    @staticmethod
    def sanitize_file_name(file_name: str) -> str:
        """
        Make a name safe on common filesystems.

        Idempotent: sanitizing a sanitized name returns it unchanged.
        """
        sanitized = _ILLEGAL_FILENAME_CHARS.sub("_", file_name)
        sanitized = _EDGE_DOTS_AND_SPACES.sub("", sanitized)

        stem = os.path.splitext(sanitized)[0]
        if stem.upper() in RESERVED_FILE_NAMES:
            sanitized = f"_{sanitized}"

        if not sanitized:
            sanitized = "unnamed_file"

        return sanitized

    @staticmethod
    def check_access_permissions(path: PathLike) -> AccessPermissions:
        """Probe read, write and execute access for the current process."""
        try:
            os.stat(path)
        except OSError as e:
            return AccessPermissions(error=str(e))

        return AccessPermissions(
            can_read=os.access(path, os.R_OK),
            can_write=os.access(path, os.W_OK),
            can_execute=os.access(path, os.X_OK),
        )

    @staticmethod
    def _is_system_file(path: PathLike) -> bool:
        resolved = os.path.abspath(str(path))
        return any(is_within(resolved, system_file) for system_file in SYSTEM_FILES)
