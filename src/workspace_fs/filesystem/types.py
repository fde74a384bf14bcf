"""
Types for the workspace filesystem service.

Defines risk levels, path resolution results, security verdicts, tree
nodes and watcher events. Every result type serialises to a
JSON-compatible dict via ``to_dict()`` using the camelCase keys of the
wire protocol.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional


class RiskLevel(str, Enum):
    """Severity of a security finding. Members are totally ordered."""

    NONE = "none"
    """No risk."""

    LOW = "low"
    """Minor concern, usually a policy preference."""

    MEDIUM = "medium"
    """Resource or structure limit exceeded."""

    HIGH = "high"
    """Potentially dangerous operation."""

    CRITICAL = "critical"
    """Protected system location."""

    @property
    def severity(self) -> int:
        return _RISK_ORDER.index(self)

    def __lt__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other: "RiskLevel") -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.severity >= other.severity

    @classmethod
    def highest(cls, levels: Iterable["RiskLevel"]) -> "RiskLevel":
        """Return the most severe level, NONE for an empty iterable."""
        return max(levels, key=lambda level: level.severity, default=cls.NONE)


_RISK_ORDER = [
    RiskLevel.NONE,
    RiskLevel.LOW,
    RiskLevel.MEDIUM,
    RiskLevel.HIGH,
    RiskLevel.CRITICAL,
]


class PathOperation(str, Enum):
    """Operation kinds understood by the base path safety check."""

    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    EXECUTE = "execute"


class FileOperation(str, Enum):
    """Operations of the composite file operation check."""

    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    CREATE = "create"
    RENAME = "rename"


class NodeType(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


class WatchEventKind(str, Enum):
    CREATE = "create"
    CHANGE = "change"
    DELETE = "delete"
    RENAME = "rename"


@dataclass
class ResolvedPath:
    """
    Result of resolving a client-supplied path.

    When ``is_valid`` is True, ``resolved_path`` is absolute, lexically
    normalized and (when containment is required) inside the canonical
    workspace root.
    """

    resolved_path: str
    """Absolute path used for I/O."""

    normalized_path: str
    """Workspace-relative path with forward slashes, ``/`` for the root."""

    is_valid: bool
    """True if the path may be used."""

    error: Optional[str] = None
    """Reason the path was rejected."""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "resolvedPath": self.resolved_path,
            "normalizedPath": self.normalized_path,
            "isValid": self.is_valid,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class SecurityVerdict:
    """Outcome of a security policy check."""

    allowed: bool
    """True if the operation may proceed."""

    risk: RiskLevel = RiskLevel.NONE
    """Severity; at least LOW whenever ``allowed`` is False."""

    reason: Optional[str] = None
    """Human-readable explanation of a denial."""

    suggestions: list[str] = field(default_factory=list)
    """Actionable hints shown verbatim to the user."""

    @classmethod
    def allow(cls) -> "SecurityVerdict":
        return cls(allowed=True, risk=RiskLevel.NONE)

    @classmethod
    def deny(
        cls,
        reason: str,
        risk: RiskLevel,
        suggestions: Optional[list[str]] = None,
    ) -> "SecurityVerdict":
        if risk == RiskLevel.NONE:
            risk = RiskLevel.LOW
        return cls(
            allowed=False,
            risk=risk,
            reason=reason,
            suggestions=list(suggestions or []),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"allowed": self.allowed, "risk": self.risk.value}
        if self.reason:
            data["reason"] = self.reason
        if self.suggestions:
            data["suggestions"] = list(self.suggestions)
        return data


@dataclass
class FileNode:
    """A single entry of a directory tree."""

    name: str
    path: str
    type: NodeType
    size: Optional[int] = None
    modified: Optional[datetime] = None
    children: Optional[list["FileNode"]] = None

    @property
    def is_directory(self) -> bool:
        return self.type == NodeType.DIRECTORY

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "path": self.path,
            "type": self.type.value,
        }
        if self.size is not None:
            data["size"] = self.size
        if self.modified is not None:
            data["modified"] = self.modified.isoformat()
        if self.children is not None:
            data["children"] = [child.to_dict() for child in self.children]
        return data


@dataclass
class TreeResult:
    """Directory listing rooted at ``path`` (workspace-relative)."""

    path: str
    children: list[FileNode] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class FileReadResult:
    """Content of a file read through the service."""

    path: str
    content: str
    encoding: str
    truncated: bool
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "content": self.content,
            "encoding": self.encoding,
            "truncated": self.truncated,
            "size": self.size,
        }


@dataclass
class FileInfo:
    """Filesystem metadata for a path."""

    exists: bool
    is_file: bool = False
    is_directory: bool = False
    is_symbolic_link: bool = False
    size: int = 0
    modified: Optional[datetime] = None
    permissions: str = "0"

    def to_dict(self) -> dict[str, Any]:
        return {
            "exists": self.exists,
            "isFile": self.is_file,
            "isDirectory": self.is_directory,
            "isSymbolicLink": self.is_symbolic_link,
            "size": self.size,
            "modified": self.modified.isoformat() if self.modified else None,
            "permissions": self.permissions,
        }


@dataclass
class WatchEvent:
    """A debounced change notification delivered to a watching client."""

    kind: WatchEventKind
    path: str
    timestamp: float
    """Seconds since the epoch of the most recent raw change."""

    size: Optional[int] = None
    is_directory: Optional[bool] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "path": self.path,
            "timestamp": int(self.timestamp * 1000),
        }
        if self.size is not None:
            data["size"] = self.size
        if self.is_directory is not None:
            data["isDirectory"] = self.is_directory
        return data


@dataclass
class ContentScanResult:
    """Findings of the content risk scan."""

    valid: bool
    risk: RiskLevel = RiskLevel.NONE
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "risk": self.risk.value, "issues": list(self.issues)}


@dataclass
class AccessPermissions:
    """Effective permissions of the current process on a path."""

    can_read: bool = False
    can_write: bool = False
    can_execute: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "canRead": self.can_read,
            "canWrite": self.can_write,
            "canExecute": self.can_execute,
        }
        if self.error:
            data["error"] = self.error
        return data
