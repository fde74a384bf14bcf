"""
Workspace FS - secure, workspace-scoped filesystem service.

This package lets remote clients browse, read, create, delete, rename
and watch files inside a sandboxed workspace root, enforcing path
containment, a risk-based access policy, size limits and gitignore-style
filtering.
"""

__version__ = "0.1.0"

from workspace_fs.filesystem import (
    ConfigValidationError,
    EnvironmentSettings,
    FileOperationError,
    FileSystemError,
    FileSystemService,
    FileSystemServiceConfig,
    FileWatcher,
    IgnoreFilter,
    InvalidPathError,
    PathResolver,
    ResultCache,
    RiskLevel,
    SecurityDeniedError,
    SecurityPolicy,
    WatchLimitExceededError,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "FileSystemServiceConfig",
    "EnvironmentSettings",
    # Components
    "PathResolver",
    "SecurityPolicy",
    "IgnoreFilter",
    "ResultCache",
    "FileWatcher",
    "FileSystemService",
    "RiskLevel",
    # Exceptions
    "FileSystemError",
    "InvalidPathError",
    "SecurityDeniedError",
    "FileOperationError",
    "WatchLimitExceededError",
    "ConfigValidationError",
]
