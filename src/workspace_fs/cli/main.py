"""
CLI for workspace-fs.

Runs the filesystem service operations against a local workspace, for
inspecting configuration and trying out the policy without a client.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from workspace_fs import __version__
from workspace_fs.filesystem.config import EnvironmentSettings, FileSystemServiceConfig
from workspace_fs.filesystem.exceptions import FileSystemError
from workspace_fs.filesystem.security import SecurityPolicy
from workspace_fs.filesystem.service import FileSystemService
from workspace_fs.filesystem.types import FileNode, RiskLevel

# Load environment variables
load_dotenv()

console = Console()

RISK_STYLES = {
    RiskLevel.NONE: "green",
    RiskLevel.LOW: "cyan",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "red",
    RiskLevel.CRITICAL: "bold red",
}


def setup_logging(level: int = logging.INFO) -> None:
    """Setup rich logging."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    # Reduce noise from the OS watcher
    logging.getLogger("watchfiles").setLevel(logging.WARNING)


def format_bytes(size: int) -> str:
    """Human-readable byte count (1024-based)."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.2f}".rstrip("0").rstrip(".") + f" {unit}"
        value /= 1024
    return f"{size} B"


def _fail(message: str, error: Any = None) -> None:
    detail = f" {error}" if error is not None else ""
    console.print(f"[bold red]{message}:[/bold red]{detail}")
    if isinstance(error, FileSystemError) and getattr(error, "suggestions", None):
        for suggestion in error.suggestions:
            console.print(f"  • {suggestion}")
    sys.exit(1)


def _service(ctx: click.Context) -> FileSystemService:
    try:
        return FileSystemService(ctx.obj["config"])
    except FileSystemError as e:
        _fail("Invalid configuration", e)


def _run(coro) -> Any:
    try:
        return asyncio.run(coro)
    except (FileSystemError, OSError) as e:
        _fail("Error", e)


@click.group()
@click.version_option(version=__version__)
@click.option("--workspace", "-w", default=None, help="Workspace root (default: $PWD)")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (JSON or YAML)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, workspace: Optional[str], config_path: Optional[Path], verbose: bool):
    """Workspace FS - secure workspace-scoped filesystem service."""
    env = EnvironmentSettings()
    config = FileSystemServiceConfig.load(config_path, env=env)

    if workspace:
        config = config.model_copy(
            update={"workspace_root": Path(workspace).expanduser().resolve()}
        )

    setup_logging(logging.DEBUG if verbose else config.python_log_level)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.pass_context
def info(ctx: click.Context):
    """Show a summary of the service configuration."""
    config: FileSystemServiceConfig = ctx.obj["config"]

    text = (
        f"[bold]Workspace Root:[/bold] {config.workspace_root}\n"
        f"[bold]Max Text File Size:[/bold] {format_bytes(config.max_text_file_size)}\n"
        f"[bold]Max Binary File Size:[/bold] {format_bytes(config.max_binary_file_size)}\n"
        f"[bold]File Watching:[/bold] {config.enable_file_watching}\n"
        f"[bold]Debug:[/bold] {config.enable_debug}"
    )
    console.print(Panel(text, title="File System Service"))


@cli.command()
@click.argument("path", default=".")
@click.option("--depth", "-d", type=int, default=5, help="Maximum depth")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def tree(ctx: click.Context, path: str, depth: int, as_json: bool):
    """Show a directory tree."""
    result = _run(_service(ctx).get_tree(path, max_depth=depth))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    root = Tree(f"[bold blue]{result.path}[/bold blue]")
    _add_nodes(root, result.children)
    console.print(root)


def _add_nodes(branch: Tree, nodes: list[FileNode]) -> None:
    for node in nodes:
        if node.is_directory:
            child = branch.add(f"[blue]{node.name}/[/blue]")
            if node.children:
                _add_nodes(child, node.children)
        else:
            size = f" [dim]({format_bytes(node.size)})[/dim]" if node.size is not None else ""
            branch.add(f"{node.name}{size}")


@cli.command()
@click.argument("path")
@click.option("--encoding", default="utf-8", help="File encoding")
@click.option("--max-bytes", type=int, default=None, help="Maximum bytes to read")
@click.pass_context
def read(ctx: click.Context, path: str, encoding: str, max_bytes: Optional[int]):
    """Read file contents."""
    result = _run(_service(ctx).open_file(path, encoding=encoding, max_length=max_bytes))

    truncated = " (truncated)" if result.truncated else ""
    console.print(f"[bold]File:[/bold] {result.path}")
    console.print(f"[bold]Size:[/bold] {format_bytes(result.size)}{truncated}")
    console.print(f"[bold]Encoding:[/bold] {result.encoding}")
    console.rule("Content")
    click.echo(result.content)


@cli.command()
@click.argument("path")
@click.option(
    "--type",
    "entry_type",
    type=click.Choice(["file", "directory"]),
    default="file",
    help="Type to create",
)
@click.option("--content", default=None, help="File content (for files)")
@click.option("--no-overwrite", is_flag=True, help="Fail if the file already exists")
@click.pass_context
def create(
    ctx: click.Context,
    path: str,
    entry_type: str,
    content: Optional[str],
    no_overwrite: bool,
):
    """Create a file or directory."""
    _run(
        _service(ctx).create_file(
            path, content, type=entry_type, overwrite=not no_overwrite
        )
    )
    console.print(f"[green]Created {entry_type}:[/green] {path}")


@cli.command()
@click.argument("path")
@click.option("--recursive", "-r", is_flag=True, help="Delete directories recursively")
@click.pass_context
def delete(ctx: click.Context, path: str, recursive: bool):
    """Delete a file or directory."""
    _run(_service(ctx).delete_file(path, recursive=recursive))
    console.print(f"[green]Deleted:[/green] {path}")


@cli.command()
@click.argument("source")
@click.argument("destination")
@click.pass_context
def rename(ctx: click.Context, source: str, destination: str):
    """Rename a file or directory."""
    _run(_service(ctx).rename_file(source, destination))
    console.print(f"[green]Renamed:[/green] {source} -> {destination}")


@cli.command()
@click.argument("path")
@click.option("--timeout", "-t", type=float, default=60.0, help="Watch duration in seconds")
@click.pass_context
def watch(ctx: click.Context, path: str, timeout: float):
    """Watch a file or directory for changes."""
    _run(_watch(ctx.obj["config"], path, timeout))
    console.print("[yellow]Watch completed[/yellow]")


async def _watch(config: FileSystemServiceConfig, path: str, timeout: float) -> None:
    def show(client_id: str, message: dict[str, Any]) -> None:
        event = message["data"]
        console.print(f"[cyan]{event['kind'].upper()}[/cyan]: {event['path']}")

    async with FileSystemService(config, send=show) as service:
        await service.add_watcher("cli", path)
        console.print(f"[green]Watching:[/green] {path}")
        await asyncio.sleep(timeout)


@cli.command()
@click.argument("path")
@click.pass_context
def stats(ctx: click.Context, path: str):
    """Show file or directory metadata."""
    result = _run(_service(ctx).get_file_stats(path))

    if result.is_file:
        kind = "File"
    elif result.is_directory:
        kind = "Directory"
    else:
        kind = "Other"

    table = Table(title=f"Stats for {path}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Exists", str(result.exists))
    table.add_row("Type", kind if result.exists else "-")
    table.add_row("Size", format_bytes(result.size))
    table.add_row("Modified", result.modified.isoformat() if result.modified else "-")
    table.add_row("Permissions", result.permissions)
    table.add_row("Symbolic Link", str(result.is_symbolic_link))
    console.print(table)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option(
    "--save",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Save the effective configuration to a file",
)
@click.pass_context
def config(ctx: click.Context, as_json: bool, save: Optional[Path]):
    """Show or save the effective configuration."""
    cfg: FileSystemServiceConfig = ctx.obj["config"]
    data = cfg.to_dict()

    if as_json:
        click.echo(json.dumps(data, indent=2))
    else:
        table = Table(title="File System Configuration")
        table.add_column("Setting", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            table.add_row(key, str(value))
        console.print(table)

    if save:
        cfg.save(save)
        console.print(f"[green]Configuration saved to {save}[/green]")


@cli.command()
@click.pass_context
def validate(ctx: click.Context):
    """Check the configuration invariants."""
    errors = ctx.obj["config"].validate_config()
    if not errors:
        console.print("[green]Configuration is valid[/green]")
        return

    console.print("[bold red]Configuration is invalid:[/bold red]")
    for error in errors:
        console.print(f"  • {error}")
    sys.exit(1)


@cli.command()
@click.argument("name")
def sanitize(name: str):
    """Print a filesystem-safe version of a file name."""
    click.echo(SecurityPolicy.sanitize_file_name(name))


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def scan(ctx: click.Context, path: Path):
    """Scan a local file for risky content."""
    policy = SecurityPolicy(ctx.obj["config"])
    result = policy.validate_file_content(path.read_bytes())

    style = RISK_STYLES[result.risk]
    console.print(f"[bold]Risk:[/bold] [{style}]{result.risk.value}[/{style}]")
    for issue in result.issues:
        console.print(f"  • {issue}")
    if not result.valid:
        sys.exit(1)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
