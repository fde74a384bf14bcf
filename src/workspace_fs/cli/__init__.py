"""
CLI module for workspace-fs.

Provides command-line access to the filesystem service for inspecting
a workspace and exercising its operations.
"""

from workspace_fs.cli.main import cli

__all__ = ["cli"]
