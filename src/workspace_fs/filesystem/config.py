"""
Configuration for the workspace filesystem service.

The configuration is a typed pydantic model. Process environment
influences (debug flag, working directory) are read once through
``EnvironmentSettings`` and injected when the configuration is built,
never consulted by the components that consume it.
"""

import json
import logging
from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from workspace_fs.filesystem.exceptions import ConfigValidationError

logger = logging.getLogger(__name__)

LogLevel = Literal["error", "warn", "info", "debug"]

_LOG_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

DEFAULT_DENIED_PATHS = [
    "/etc",
    "/usr",
    "/bin",
    "/sbin",
    "/proc",
    "/sys",
    "~/.ssh",
    "~/.aws",
    "~/.config",
]


class EnvironmentSettings(BaseSettings):
    """
    Process environment influences on the service configuration.

    Environment variables:
        WORKSPACE_FS_DEBUG - Enable debug logging ("1", "true")
        WORKSPACE_FS_CONFIG - Default configuration file path
        PWD - Default workspace root (falls back to the process cwd)
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKSPACE_FS_",
        extra="ignore",
        populate_by_name=True,
    )

    debug: bool = Field(default=False, description="Enable debug logging")
    config: Optional[Path] = Field(
        default=None,
        description="Configuration file loaded when none is given explicitly",
    )
    pwd: Optional[str] = Field(
        default=None,
        validation_alias="PWD",
        description="Working directory of the launching shell",
    )

    def default_workspace_root(self) -> Path:
        if self.pwd:
            return Path(self.pwd)
        return Path.cwd()


class FileSystemServiceConfig(BaseModel):
    """
    Operating parameters of the workspace filesystem service.

    Field names are snake_case in Python; the JSON file format uses the
    camelCase aliases (``workspaceRoot``, ``maxTextFileSize``, ...). Both
    spellings are accepted on input.

    Range invariants are checked by ``validate_config()`` rather than by
    field constraints so that all violations are reported together.

    Usage:
        config = FileSystemServiceConfig.load("~/.workspace-fs.json")
        errors = config.validate_config()
        if errors:
            ...
    """

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "ignore",
    }

    # Workspace
    workspace_root: Path = Field(
        default_factory=Path.cwd,
        description="Root directory every client path is resolved against",
    )
    allowed_paths: list[str] = Field(
        default_factory=list,
        description="If non-empty, paths must fall under one of these entries",
    )
    denied_paths: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DENIED_PATHS),
        description="Paths that are always refused (prefix match, ~ expanded)",
    )

    # Limits
    max_text_file_size: int = Field(
        default=1024 * 1024,  # 1 MB
        description="Maximum bytes returned by a file read",
    )
    max_binary_file_size: int = Field(
        default=100 * 1024 * 1024,  # 100 MB
        description="Maximum size of a file that may be written or replaced",
    )
    max_tree_depth: int = Field(
        default=10,
        description="Default and maximum directory tree depth",
    )
    max_files_per_directory: int = Field(
        default=1000,
        description="Maximum entries listed or tolerated per directory",
    )

    # Security
    enable_path_validation: bool = Field(default=True)
    require_workspace_containment: bool = Field(default=True)
    allow_symlinks: bool = Field(
        default=False,
        description="Allow resolving symbolic links to their targets",
    )
    allow_hidden_files: bool = Field(default=True)
    scan_file_content: bool = Field(
        default=False,
        description="Run the content risk scan on every file write",
    )

    # Watcher
    enable_file_watching: bool = Field(default=True)
    max_watchers_per_client: int = Field(default=50)
    watcher_debounce_ms: int = Field(default=100)

    # Performance
    enable_caching: bool = Field(default=True)
    cache_timeout_ms: int = Field(default=5000)
    enable_parallel_operations: bool = Field(default=True)

    # Ignore rules
    use_git_ignore: bool = Field(default=True)
    git_ignore_file: Optional[Path] = Field(
        default=None,
        description="Explicit .gitignore path (default: <workspace_root>/.gitignore)",
    )
    default_ignore_globs: list[str] = Field(
        default_factory=list,
        description="Extra ignore patterns appended to the built-in defaults",
    )

    # Logging
    enable_debug: bool = Field(default=False)
    log_level: LogLevel = Field(default="info")

    @field_validator("workspace_root", mode="before")
    @classmethod
    def resolve_workspace_root(cls, v):
        """Resolve the workspace root to its canonical absolute path."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return Path.cwd().resolve()
        return Path(v).expanduser().resolve()

    @field_validator("git_ignore_file", mode="before")
    @classmethod
    def expand_git_ignore_file(cls, v):
        if v is None or v == "":
            return None
        return Path(v).expanduser()

    @property
    def python_log_level(self) -> int:
        """Logging level implied by ``enable_debug`` and ``log_level``."""
        if self.enable_debug:
            return logging.DEBUG
        return _LOG_LEVELS[self.log_level]

    def validate_config(self) -> list[str]:
        """
        Check the configuration invariants.

        Returns:
            List of violated invariants (empty if the configuration is valid)
        """
        errors: list[str] = []

        if self.workspace_root.exists() and not self.workspace_root.is_dir():
            errors.append(f"Workspace root is not a directory: {self.workspace_root}")

        if self.max_text_file_size <= 0:
            errors.append("Max text file size must be positive")

        if self.max_binary_file_size <= 0:
            errors.append("Max binary file size must be positive")

        if self.max_text_file_size > self.max_binary_file_size:
            errors.append(
                "Max text file size cannot be larger than max binary file size"
            )

        if self.max_tree_depth <= 0:
            errors.append("Max tree depth must be positive")

        if self.max_files_per_directory <= 0:
            errors.append("Max files per directory must be positive")

        if self.max_watchers_per_client <= 0:
            errors.append("Max watchers per client must be positive")

        if self.watcher_debounce_ms < 0:
            errors.append("Watcher debounce time cannot be negative")

        if self.cache_timeout_ms < 0:
            errors.append("Cache timeout cannot be negative")

        return errors

    def ensure_valid(self) -> "FileSystemServiceConfig":
        """
        Raise if any invariant is violated.

        Raises:
            ConfigValidationError: With every violated invariant
        """
        errors = self.validate_config()
        if errors:
            raise ConfigValidationError(errors)
        return self

    def updated(self, **changes: Any) -> "FileSystemServiceConfig":
        """
        Return a copy with ``changes`` applied and re-validated.

        Keys may be snake_case field names or camelCase aliases.

        Raises:
            ConfigValidationError: If the result violates an invariant
        """
        data = self.model_dump()
        data.update(_normalize_keys(changes))
        return type(self).model_validate(data).ensure_valid()

    def to_dict(self) -> dict[str, Any]:
        """Export the configuration using the camelCase file format."""
        return self.model_dump(mode="json", by_alias=True)

    def save(self, path: Union[str, Path]) -> None:
        """
        Save the effective configuration.

        JSON is written unless the file name ends in ``.yaml``/``.yml``.

        Args:
            path: Output file path
        """
        path = Path(path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.to_dict()
        if path.suffix in (".yaml", ".yml"):
            content = yaml.dump(data, default_flow_style=False, sort_keys=False)
        else:
            content = json.dumps(data, indent=2)

        path.write_text(content, encoding="utf-8")
        logger.info(f"Configuration saved to {path}")

    @classmethod
    def defaults(
        cls, env: Optional[EnvironmentSettings] = None
    ) -> "FileSystemServiceConfig":
        """Built-in defaults with environment influences applied."""
        env = env or EnvironmentSettings()
        return cls(
            workspace_root=env.default_workspace_root(),
            enable_debug=env.debug,
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "FileSystemServiceConfig":
        """
        Load configuration from a JSON or YAML file, without fallback.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration (unset fields keep their defaults)

        Raises:
            FileNotFoundError: If the config file doesn't exist
        """
        return cls.model_validate(_read_config_file(path))

    @classmethod
    def load(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        env: Optional[EnvironmentSettings] = None,
    ) -> "FileSystemServiceConfig":
        """
        Build the effective configuration.

        File values take precedence over defaults field by field. A
        missing or corrupt file is logged as a warning and the defaults
        are used.

        Args:
            config_path: Optional config file (default: WORKSPACE_FS_CONFIG)
            env: Environment settings (read from the process if omitted)

        Returns:
            The effective configuration
        """
        env = env or EnvironmentSettings()
        defaults = cls.defaults(env)

        config_path = config_path or env.config
        if not config_path:
            return defaults

        try:
            data = _read_config_file(config_path)
            merged = defaults.model_dump()
            merged.update(_normalize_keys(data))
            return cls.model_validate(merged)
        except (OSError, ValueError, yaml.YAMLError, ValidationError) as e:
            logger.warning(f"Failed to load filesystem config from {config_path}: {e}")
            return defaults

    def __repr__(self) -> str:
        return (
            f"FileSystemServiceConfig("
            f"workspace_root={str(self.workspace_root)!r}, "
            f"caching={self.enable_caching}, "
            f"watching={self.enable_file_watching})"
        )


def _read_config_file(path: Union[str, Path]) -> dict[str, Any]:
    path = Path(path).expanduser().resolve()

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    content = path.read_text(encoding="utf-8")

    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(content)
    else:
        data = json.loads(content)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Configuration file must contain an object")
    return data


def _normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Map camelCase aliases onto field names."""
    by_alias = {to_camel(name): name for name in FileSystemServiceConfig.model_fields}
    normalized = {}
    for key, value in data.items():
        normalized[by_alias.get(key, key)] = value
    return normalized
