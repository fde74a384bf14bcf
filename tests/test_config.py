"""Tests for the service configuration."""

import json
import logging

import pytest
import yaml

from workspace_fs.filesystem.config import (
    DEFAULT_DENIED_PATHS,
    EnvironmentSettings,
    FileSystemServiceConfig,
)
from workspace_fs.filesystem.exceptions import ConfigValidationError


class TestFileSystemServiceConfig:
    """Test FileSystemServiceConfig defaults and validation."""

    def test_default_config(self, workspace):
        """Test default limits and flags."""
        config = FileSystemServiceConfig(workspace_root=workspace)
        assert config.max_text_file_size == 1024 * 1024
        assert config.max_binary_file_size == 100 * 1024 * 1024
        assert config.max_tree_depth == 10
        assert config.max_files_per_directory == 1000
        assert config.max_watchers_per_client == 50
        assert config.watcher_debounce_ms == 100
        assert config.cache_timeout_ms == 5000
        assert config.allow_symlinks is False
        assert config.allow_hidden_files is True
        assert config.use_git_ignore is True
        assert config.denied_paths == DEFAULT_DENIED_PATHS
        assert config.validate_config() == []

    def test_accepts_camel_case_keys(self, workspace):
        """Test that the JSON file spelling is accepted."""
        config = FileSystemServiceConfig.model_validate(
            {"workspaceRoot": str(workspace), "maxTreeDepth": 3, "allowHiddenFiles": False}
        )
        assert config.workspace_root == workspace
        assert config.max_tree_depth == 3
        assert config.allow_hidden_files is False

    def test_workspace_root_expanded(self):
        """Test that ~ in the workspace root is expanded."""
        config = FileSystemServiceConfig(workspace_root="~")
        assert "~" not in str(config.workspace_root)
        assert config.workspace_root.is_absolute()

    def test_text_larger_than_binary_fails(self, workspace):
        """Test the text/binary size invariant."""
        config = FileSystemServiceConfig(
            workspace_root=workspace, max_text_file_size=100, max_binary_file_size=50
        )
        assert "Max text file size cannot be larger than max binary file size" in (
            config.validate_config()
        )

    def test_all_violations_reported(self, workspace):
        """Test that every invariant violation is listed."""
        config = FileSystemServiceConfig(
            workspace_root=workspace,
            max_tree_depth=0,
            max_watchers_per_client=0,
            cache_timeout_ms=-1,
        )
        errors = config.validate_config()
        assert "Max tree depth must be positive" in errors
        assert "Max watchers per client must be positive" in errors
        assert "Cache timeout cannot be negative" in errors

    def test_workspace_root_must_be_directory(self, workspace):
        """Test that a file is rejected as workspace root."""
        file_path = workspace / "file.txt"
        file_path.write_text("x")
        config = FileSystemServiceConfig(workspace_root=file_path)
        assert any("not a directory" in error for error in config.validate_config())

    def test_ensure_valid_raises(self, workspace):
        """Test that ensure_valid raises with the violations."""
        config = FileSystemServiceConfig(workspace_root=workspace, max_text_file_size=0)
        with pytest.raises(ConfigValidationError) as exc_info:
            config.ensure_valid()
        assert exc_info.value.code == "ValidationError"
        assert "Max text file size must be positive" in exc_info.value.errors
        assert exc_info.value.to_dict()["errors"] == exc_info.value.errors

    def test_updated_applies_changes(self, config):
        """Test updating a copy with both key spellings."""
        updated = config.updated(maxTreeDepth=4, allow_hidden_files=False)
        assert updated.max_tree_depth == 4
        assert updated.allow_hidden_files is False
        assert config.max_tree_depth == 10

    def test_updated_rejects_invalid(self, config):
        """Test that an invalid update raises."""
        with pytest.raises(ConfigValidationError):
            config.updated(max_text_file_size=config.max_binary_file_size + 1)

    def test_python_log_level(self, workspace):
        """Test the logging level derived from the config."""
        assert FileSystemServiceConfig(workspace_root=workspace).python_log_level == logging.INFO
        assert (
            FileSystemServiceConfig(workspace_root=workspace, log_level="warn").python_log_level
            == logging.WARNING
        )
        assert (
            FileSystemServiceConfig(workspace_root=workspace, enable_debug=True).python_log_level
            == logging.DEBUG
        )

    def test_to_dict_uses_camel_case(self, config):
        """Test the export format."""
        data = config.to_dict()
        assert data["workspaceRoot"] == str(config.workspace_root)
        assert data["maxTextFileSize"] == config.max_text_file_size
        assert "max_text_file_size" not in data


class TestConfigLoading:
    """Test loading and saving configuration files."""

    def test_load_without_file_uses_defaults(self, workspace):
        """Test that defaults come from the injected environment."""
        env = EnvironmentSettings(PWD=str(workspace))
        config = FileSystemServiceConfig.load(env=env)
        assert config.workspace_root == workspace
        assert config.max_tree_depth == 10

    def test_file_overrides_defaults_field_by_field(self, temp_dir, workspace):
        """Test that only the fields in the file change."""
        config_file = temp_dir / "fs.json"
        config_file.write_text(json.dumps({"maxTreeDepth": 4, "enableCaching": False}))

        env = EnvironmentSettings(PWD=str(workspace))
        config = FileSystemServiceConfig.load(config_file, env=env)

        assert config.max_tree_depth == 4
        assert config.enable_caching is False
        assert config.max_files_per_directory == 1000
        assert config.workspace_root == workspace

    def test_yaml_file(self, temp_dir, workspace):
        """Test loading a YAML configuration."""
        config_file = temp_dir / "fs.yaml"
        config_file.write_text(
            yaml.dump({"workspace_root": str(workspace), "max_watchers_per_client": 5})
        )

        config = FileSystemServiceConfig.load(config_file)
        assert config.workspace_root == workspace
        assert config.max_watchers_per_client == 5

    def test_missing_file_falls_back(self, temp_dir, workspace, caplog):
        """Test that a missing file is a warning, not an error."""
        env = EnvironmentSettings(PWD=str(workspace))
        with caplog.at_level(logging.WARNING):
            config = FileSystemServiceConfig.load(temp_dir / "missing.json", env=env)

        assert config.workspace_root == workspace
        assert "Failed to load filesystem config" in caplog.text

    def test_corrupt_file_falls_back(self, temp_dir, workspace, caplog):
        """Test that unparsable JSON falls back to defaults."""
        config_file = temp_dir / "fs.json"
        config_file.write_text("{not json")

        env = EnvironmentSettings(PWD=str(workspace))
        with caplog.at_level(logging.WARNING):
            config = FileSystemServiceConfig.load(config_file, env=env)

        assert config.max_tree_depth == 10
        assert "Failed to load filesystem config" in caplog.text

    def test_from_file_is_strict(self, temp_dir):
        """Test that from_file raises for a missing file."""
        with pytest.raises(FileNotFoundError):
            FileSystemServiceConfig.from_file(temp_dir / "missing.json")

    def test_save_and_reload(self, temp_dir, config):
        """Test that a saved config loads back unchanged."""
        output = temp_dir / "saved" / "fs.json"
        config.updated(max_tree_depth=7).save(output)

        data = json.loads(output.read_text())
        assert data["maxTreeDepth"] == 7

        reloaded = FileSystemServiceConfig.from_file(output)
        assert reloaded.max_tree_depth == 7
        assert reloaded.workspace_root == config.workspace_root


class TestEnvironmentSettings:
    """Test environment influences."""

    def test_debug_flag(self, monkeypatch, workspace):
        """Test WORKSPACE_FS_DEBUG enables debug."""
        monkeypatch.setenv("WORKSPACE_FS_DEBUG", "1")
        env = EnvironmentSettings()
        assert env.debug is True
        assert FileSystemServiceConfig.defaults(env).enable_debug is True

    def test_pwd_is_default_workspace_root(self, monkeypatch, workspace):
        """Test PWD supplies the default workspace root."""
        monkeypatch.setenv("PWD", str(workspace))
        env = EnvironmentSettings()
        assert env.default_workspace_root() == workspace

    def test_config_path_from_environment(self, monkeypatch, temp_dir, workspace):
        """Test WORKSPACE_FS_CONFIG names the default config file."""
        config_file = temp_dir / "fs.json"
        config_file.write_text(json.dumps({"maxTreeDepth": 2}))
        monkeypatch.setenv("WORKSPACE_FS_CONFIG", str(config_file))
        monkeypatch.setenv("PWD", str(workspace))

        config = FileSystemServiceConfig.load()
        assert config.max_tree_depth == 2
        assert config.workspace_root == workspace
