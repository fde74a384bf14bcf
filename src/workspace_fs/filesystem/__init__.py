"""
Workspace-scoped filesystem access.

This module provides path resolution with containment checks, a
risk-classifying security policy, gitignore-style filtering, a short
TTL result cache, debounced per-client watches and the service façade
that ties them together.
"""

from workspace_fs.filesystem.cache import ResultCache
from workspace_fs.filesystem.config import EnvironmentSettings, FileSystemServiceConfig
from workspace_fs.filesystem.exceptions import (
    ConfigValidationError,
    FileOperationError,
    FileSystemError,
    InvalidPathError,
    SecurityDeniedError,
    UnsupportedOperationError,
    WatchLimitExceededError,
)
from workspace_fs.filesystem.ignore import IgnoreFilter
from workspace_fs.filesystem.paths import PathResolver
from workspace_fs.filesystem.security import SecurityPolicy
from workspace_fs.filesystem.service import FileSystemService
from workspace_fs.filesystem.types import (
    AccessPermissions,
    ContentScanResult,
    FileInfo,
    FileNode,
    FileOperation,
    FileReadResult,
    NodeType,
    PathOperation,
    ResolvedPath,
    RiskLevel,
    SecurityVerdict,
    TreeResult,
    WatchEvent,
    WatchEventKind,
)
from workspace_fs.filesystem.watcher import FileWatcher

__all__ = [
    "FileSystemServiceConfig",
    "EnvironmentSettings",
    "FileSystemError",
    "InvalidPathError",
    "SecurityDeniedError",
    "FileOperationError",
    "WatchLimitExceededError",
    "ConfigValidationError",
    "UnsupportedOperationError",
    "PathResolver",
    "SecurityPolicy",
    "IgnoreFilter",
    "ResultCache",
    "FileWatcher",
    "FileSystemService",
    "AccessPermissions",
    "ContentScanResult",
    "FileInfo",
    "FileNode",
    "FileOperation",
    "FileReadResult",
    "NodeType",
    "PathOperation",
    "ResolvedPath",
    "RiskLevel",
    "SecurityVerdict",
    "TreeResult",
    "WatchEvent",
    "WatchEventKind",
]
