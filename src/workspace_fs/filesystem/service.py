"""
Workspace filesystem service.

Orchestrates path resolution, the security policy, ignore filtering,
the result cache and the watcher to implement the public operations:
tree, open, create, delete, rename, watch, unwatch and stats.

Façade methods raise ``FileSystemError`` subclasses (or ``OSError``
from the OS); ``handle()`` turns a request dict into an
``{"ok": ...}`` response envelope.
"""

import asyncio
import inspect
import logging
import os
import shutil
import stat
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from workspace_fs.filesystem.cache import ResultCache, file_key, tree_key
from workspace_fs.filesystem.config import FileSystemServiceConfig
from workspace_fs.filesystem.exceptions import (
    FileOperationError,
    FileSystemError,
    InvalidPathError,
    SecurityDeniedError,
    UnsupportedOperationError,
    WatchLimitExceededError,
)
from workspace_fs.filesystem.ignore import IgnoreFilter
from workspace_fs.filesystem.paths import PathResolver, is_within
from workspace_fs.filesystem.security import SecurityPolicy
from workspace_fs.filesystem.types import (
    FileInfo,
    FileNode,
    FileOperation,
    FileReadResult,
    NodeType,
    PathOperation,
    ResolvedPath,
    SecurityVerdict,
    TreeResult,
    WatchEvent,
)
from workspace_fs.filesystem.watcher import FileWatcher, WatchFactory

logger = logging.getLogger(__name__)

# Called with (client_id, message); may return an awaitable
SendFn = Callable[[str, dict[str, Any]], Any]

WATCHER_SETTINGS = ("enable_file_watching", "watcher_debounce_ms", "max_watchers_per_client")


class FileSystemService:
    """
    Secure filesystem access scoped to one workspace.

    Usage:
        service = FileSystemService(FileSystemServiceConfig.load(), send=transport.send)
        async with service:
            tree = await service.get_tree("/", max_depth=2)
            response = await service.handle("client-1", {"operation": "open", "path": "README.md"})
    """

    def __init__(
        self,
        config: Optional[FileSystemServiceConfig] = None,
        send: Optional[SendFn] = None,
        *,
        watch_factory: Optional[WatchFactory] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the service.

        Args:
            config: Service configuration (default: loaded from environment)
            send: Delivers watch events to clients
            watch_factory: OS-level watch used by the watcher
            clock: Cache time source in seconds

        Raises:
            ConfigValidationError: If the configuration is invalid
        """
        self.config = (config or FileSystemServiceConfig.load()).ensure_valid()
        self.send = send
        self._watch_factory = watch_factory
        self._clock = clock
        self._drain_task: Optional[asyncio.Task] = None

        self._build_components()
        self.watcher = FileWatcher(self.config, watch_factory=watch_factory)

    def _build_components(self) -> None:
        self.resolver = PathResolver(self.config)
        self.security = SecurityPolicy(self.config)
        self.ignore_filter = (
            IgnoreFilter.from_config(self.config) if self.config.use_git_ignore else None
        )
        cache_options: dict[str, Any] = {}
        if self._clock is not None:
            cache_options["clock"] = self._clock
        self.cache = ResultCache(
            ttl_ms=self.config.cache_timeout_ms,
            enabled=self.config.enable_caching,
            **cache_options,
        )

    # Lifecycle

    async def start(self) -> None:
        """Start delivering watch events through ``send``."""
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(
                self._drain_events(), name="workspace-fs-events"
            )

    async def stop(self) -> None:
        """Stop event delivery and tear down every watch."""
        await self._stop_draining()
        await self.watcher.close()

    async def __aenter__(self) -> "FileSystemService":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    def on_client_disconnect(self, client_id: str) -> None:
        """Drop every watch and pending event of a disconnected client."""
        self.watcher.remove_all_for_client(client_id)

    def cleanup(self) -> None:
        self.watcher.cleanup()
        self.cache.clear()

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_watcher_stats(self) -> dict[str, Any]:
        return self.watcher.get_watcher_stats()

    async def update_config(self, **changes: Any) -> FileSystemServiceConfig:
        """
        Apply configuration changes and rebuild the dependent components.

        The watcher is recreated (dropping all watches) only when one of
        its own settings changed.

        Raises:
            ConfigValidationError: If the new configuration is invalid
        """
        new_config = self.config.updated(**changes)
        restart_watcher = any(
            getattr(new_config, name) != getattr(self.config, name)
            for name in WATCHER_SETTINGS
        )

        self.config = new_config
        self._build_components()

        if restart_watcher:
            draining = self._drain_task is not None and not self._drain_task.done()
            await self._stop_draining()
            await self.watcher.close()
            self.watcher = FileWatcher(self.config, watch_factory=self._watch_factory)
            if draining:
                await self.start()
        else:
            self.watcher.config = self.config

        logger.info(f"Configuration updated: {sorted(changes)}")
        return self.config

    # Operations

    async def get_tree(
        self,
        path: Optional[str] = ".",
        max_depth: Optional[int] = None,
        allow_hidden_files: Optional[bool] = None,
        use_git_ignore: Optional[bool] = None,
    ) -> TreeResult:
        """
        List a directory tree.

        Args:
            path: Directory to list (default: workspace root)
            max_depth: Levels to descend (default and cap: max_tree_depth)
            allow_hidden_files: Override the configured hidden-file flag
            use_git_ignore: Override the configured ignore filtering

        Returns:
            TreeResult in directory enumeration order

        Raises:
            InvalidPathError: If the path cannot be resolved
            FileNotFoundError: If the directory does not exist
            FileOperationError: If the path is not a directory
        """
        resolved = self._resolve(path)
        target = resolved.resolved_path

        depth = self.config.max_tree_depth
        if max_depth is not None and 0 < max_depth < depth:
            depth = max_depth

        cacheable = allow_hidden_files is None and use_git_ignore is None
        key = tree_key(target, depth)
        if cacheable:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        if not await asyncio.to_thread(os.path.isdir, target):
            if not await asyncio.to_thread(os.path.exists, target):
                raise FileNotFoundError(f"No such directory: {resolved.normalized_path}")
            raise FileOperationError("Path is not a directory", path=resolved.normalized_path)

        allow_hidden = (
            self.config.allow_hidden_files if allow_hidden_files is None else allow_hidden_files
        )
        use_ignore = self.config.use_git_ignore if use_git_ignore is None else use_git_ignore

        children = await self._build_tree(target, depth, 0, allow_hidden, use_ignore)
        result = TreeResult(path=resolved.normalized_path, children=children)

        if cacheable:
            self.cache.set(key, result)
        return result

    async def open_file(
        self,
        path: str,
        encoding: str = "utf-8",
        max_length: Optional[int] = None,
    ) -> FileReadResult:
        """
        Read a text file, truncated to the configured limit.

        Args:
            path: File to read
            encoding: Text encoding used to decode the bytes
            max_length: Byte limit (capped at max_text_file_size)

        Raises:
            InvalidPathError: If the path cannot be resolved
            SecurityDeniedError: If reading is not allowed
            FileNotFoundError: If the file does not exist
            FileOperationError: If the path is not a file
        """
        resolved = self._resolve(path)
        target = resolved.resolved_path
        self._authorize(
            self.security.check_path_safety(target, PathOperation.READ), resolved
        )

        cacheable = encoding == "utf-8" and max_length is None
        key = file_key(target)
        if cacheable:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        stats = await asyncio.to_thread(os.stat, target)
        if not stat.S_ISREG(stats.st_mode):
            raise FileOperationError("Path is not a file", path=resolved.normalized_path)

        limit = self.config.max_text_file_size
        if max_length is not None and 0 < max_length < limit:
            limit = max_length

        data = await asyncio.to_thread(_read_head, target, limit)
        try:
            content = data.decode(encoding, errors="replace")
        except LookupError:
            raise FileOperationError(
                f"Unsupported encoding: {encoding}", path=resolved.normalized_path
            )

        result = FileReadResult(
            path=resolved.normalized_path,
            content=content,
            encoding=encoding,
            truncated=stats.st_size > limit,
            size=stats.st_size,
        )

        if cacheable:
            self.cache.set(key, result)
        return result

    async def create_file(
        self,
        path: str,
        content: Union[str, bytes, None] = None,
        type: str = "file",
        overwrite: bool = True,
    ) -> None:
        """
        Create a file or directory.

        Missing parent directories are created.

        Args:
            path: Path to create
            content: File content (str is encoded as UTF-8)
            type: "file" or "directory"
            overwrite: Replace an existing file when True

        Raises:
            InvalidPathError: If the path cannot be resolved
            SecurityDeniedError: If the policy refuses the create or the content
            FileOperationError: If the file exists and overwrite is False
        """
        resolved = self._resolve(path)
        target = resolved.resolved_path
        self._authorize(
            self.security.check_file_operation(FileOperation.CREATE, target), resolved
        )

        if type not in (NodeType.FILE.value, NodeType.DIRECTORY.value):
            raise FileOperationError(f"Unsupported entry type: {type}", path=resolved.normalized_path)

        if type == NodeType.DIRECTORY.value:
            await asyncio.to_thread(os.makedirs, target, exist_ok=True)
            logger.info(f"Created directory {resolved.normalized_path}")
        else:
            if isinstance(content, str):
                data = content.encode("utf-8")
            else:
                data = bytes(content or b"")

            self._authorize(self.security.check_content_write(target, data), resolved)

            if not overwrite and await asyncio.to_thread(os.path.lexists, target):
                raise FileOperationError(
                    f"File already exists: {resolved.normalized_path}",
                    path=resolved.normalized_path,
                )

            await asyncio.to_thread(_write_file, target, data)
            logger.info(f"Wrote {len(data)} bytes to {resolved.normalized_path}")

        self.cache.invalidate(target)

    async def delete_file(self, path: str, recursive: bool = True) -> None:
        """
        Delete a file or directory.

        Recursive deletion removes directories with their contents and
        tolerates a missing path. Non-recursive deletion is a strict
        single-file unlink.

        Raises:
            InvalidPathError: If the path cannot be resolved
            SecurityDeniedError: If the policy refuses the delete
            FileNotFoundError: Non-recursive delete of a missing file
        """
        resolved = self._resolve(path)
        target = resolved.resolved_path
        self._authorize(
            self.security.check_file_operation(FileOperation.DELETE, target), resolved
        )

        if recursive:
            await asyncio.to_thread(_remove_tree, target)
        else:
            await asyncio.to_thread(os.unlink, target)

        logger.info(f"Deleted {resolved.normalized_path}")
        self.cache.invalidate(target)

    async def rename_file(self, source: str, destination: str) -> None:
        """
        Rename or move a path inside the workspace.

        Raises:
            InvalidPathError: If either path cannot be resolved
            SecurityDeniedError: If the policy refuses either endpoint
        """
        source_resolved = self._resolve(source, label="source")
        dest_resolved = self._resolve(destination, label="destination")

        self._authorize(
            self.security.check_file_operation(
                FileOperation.RENAME,
                source_resolved.resolved_path,
                dest_resolved.resolved_path,
            ),
            source_resolved,
        )

        await asyncio.to_thread(
            os.rename, source_resolved.resolved_path, dest_resolved.resolved_path
        )

        logger.info(
            f"Renamed {source_resolved.normalized_path} -> {dest_resolved.normalized_path}"
        )
        self.cache.invalidate(source_resolved.resolved_path)
        self.cache.invalidate(dest_resolved.resolved_path)

    async def add_watcher(self, client_id: str, path: str) -> bool:
        """
        Watch a file or directory (recursively) for a client.

        The first successful watch starts event delivery if ``start()`` has
        not been called yet; ``stop()`` (or leaving ``async with``) ends it.

        Raises:
            InvalidPathError: If the path cannot be resolved
            FileOperationError: If the path is missing, unreadable or special
            WatchLimitExceededError: If the client holds too many watches
            FileSystemError: If watching is disabled
        """
        resolved = self._resolve(path)
        target = resolved.resolved_path

        valid, error = await self.watcher.validate_watch_path(target)
        if not valid:
            raise FileOperationError(
                f"Invalid watch path: {error}", path=resolved.normalized_path
            )

        if await self.watcher.add(client_id, target):
            await self.start()
            return True

        if not self.config.enable_file_watching:
            raise FileSystemError("File watching is disabled", path=resolved.normalized_path)
        raise WatchLimitExceededError(
            client_id, self.config.max_watchers_per_client, path=resolved.normalized_path
        )

    def remove_watcher(self, client_id: str, path: str) -> bool:
        """Stop a watch. Returns False if the client was not watching the path."""
        resolved = self._resolve(path)
        return self.watcher.remove(client_id, resolved.resolved_path)

    async def get_file_stats(self, path: str) -> FileInfo:
        """Filesystem metadata; only resolution applies, no content is revealed."""
        resolved = self._resolve(path)
        return await asyncio.to_thread(self.resolver.get_file_info, resolved.resolved_path)

    # Request dispatch

    async def handle(self, client_id: str, request: dict[str, Any]) -> dict[str, Any]:
        """
        Execute one request and return its response envelope.

        The request carries ``operation``, ``path`` and an optional
        ``options`` dict (``content`` may also be given at top level).
        A ``watch`` request starts event delivery through ``send``; call
        ``stop()`` when done with the service.

        Returns:
            ``{"ok": True, "result": ...}`` or
            ``{"ok": False, "error": ..., "code": ...}``
        """
        operation = request.get("operation")
        options = request.get("options") or {}
        path = request.get("path")

        logger.debug(f"Handling {operation} for client {client_id}: {path}")

        try:
            result = await self._dispatch(client_id, operation, path, options, request)
        except FileSystemError as e:
            if isinstance(e, SecurityDeniedError):
                logger.warning(f"{operation} denied for {client_id}: {e.message}")
            return e.to_dict()
        except FileNotFoundError as e:
            return {"ok": False, "error": _os_error_message(e), "code": "NotFound"}
        except OSError as e:
            logger.warning(f"{operation} failed for {client_id}: {e}")
            return {"ok": False, "error": _os_error_message(e), "code": "IOError"}
        except Exception as e:
            logger.error(f"Unexpected error in {operation} for {client_id}: {e}")
            return {"ok": False, "error": f"Unexpected error: {e}", "code": "InternalError"}

        return result

    async def _dispatch(
        self,
        client_id: str,
        operation: Optional[str],
        path: Optional[str],
        options: dict[str, Any],
        request: dict[str, Any],
    ) -> dict[str, Any]:
        if operation == "tree":
            tree = await self.get_tree(
                path or ".",
                max_depth=options.get("depth"),
                allow_hidden_files=options.get("allowHiddenFiles"),
                use_git_ignore=options.get("useGitIgnore"),
            )
            return {"ok": True, "result": tree.to_dict()}

        if operation not in (
            "open", "create", "delete", "rename", "watch", "unwatch", "stats"
        ):
            raise UnsupportedOperationError(operation)

        if not path:
            raise InvalidPathError("", f"Path is required for {operation} operation")

        if operation == "open":
            opened = await self.open_file(
                path,
                encoding=options.get("encoding", "utf-8"),
                max_length=options.get("maxLength"),
            )
            return {"ok": True, "result": opened.to_dict()}

        if operation == "create":
            await self.create_file(
                path,
                request.get("content", options.get("content")),
                type=options.get("type", "file"),
                overwrite=options.get("overwrite", True),
            )
            return {"ok": True}

        if operation == "delete":
            await self.delete_file(path, recursive=options.get("recursive", True) is not False)
            return {"ok": True}

        if operation == "rename":
            destination = options.get("newPath") or request.get("destination")
            if not destination:
                raise InvalidPathError(
                    path, "Both source and destination paths are required for rename"
                )
            await self.rename_file(path, destination)
            return {"ok": True}

        if operation == "watch":
            await self.add_watcher(client_id, path)
            return {"ok": True}

        if operation == "unwatch":
            if not self.remove_watcher(client_id, path):
                return {"ok": False, "error": "Path is not being watched", "code": "NotFound"}
            return {"ok": True}

        info = await self.get_file_stats(path)
        return {"ok": True, "result": info.to_dict()}

    # Internals

    def _resolve(self, path: Optional[str], label: str = "path") -> ResolvedPath:
        resolved = self.resolver.resolve(path)
        if not resolved.is_valid:
            logger.debug(f"Rejected {label} {path!r}: {resolved.error}")
            raise InvalidPathError(str(path), resolved.error or "Invalid path")
        return resolved

    @staticmethod
    def _authorize(verdict: SecurityVerdict, resolved: ResolvedPath) -> None:
        if verdict.allowed:
            return
        logger.warning(
            f"Security check failed for {resolved.normalized_path}: "
            f"{verdict.reason} ({verdict.risk.value})"
        )
        raise SecurityDeniedError(
            resolved.normalized_path,
            verdict.reason or "Operation not allowed",
            risk=verdict.risk.value,
            suggestions=verdict.suggestions,
        )

    async def _build_tree(
        self,
        directory: str,
        max_depth: int,
        current_depth: int,
        allow_hidden: bool,
        use_ignore: bool,
    ) -> list[FileNode]:
        if current_depth >= max_depth:
            return []

        try:
            entries = await asyncio.to_thread(
                self._scan_directory, directory, allow_hidden, use_ignore
            )
        except OSError as e:
            if current_depth == 0:
                raise
            logger.debug(f"Skipping unreadable directory {directory}: {e}")
            return []

        expand = current_depth < max_depth - 1
        subdirectories = [(node, path) for node, path in entries if path is not None]

        if expand and subdirectories:
            listings = [
                self._build_tree(path, max_depth, current_depth + 1, allow_hidden, use_ignore)
                for _, path in subdirectories
            ]
            if self.config.enable_parallel_operations:
                children = await asyncio.gather(*listings)
            else:
                children = [await listing for listing in listings]
            for (node, _), subtree in zip(subdirectories, children):
                node.children = subtree

        return [node for node, _ in entries]

    def _scan_directory(
        self, directory: str, allow_hidden: bool, use_ignore: bool
    ) -> list[tuple[FileNode, Optional[str]]]:
        """
        List one directory level.

        Returns:
            (node, path to descend into or None) pairs in enumeration order
        """
        limit = self.config.max_files_per_directory
        entries: list[tuple[FileNode, Optional[str]]] = []

        with os.scandir(directory) as iterator:
            for entry in iterator:
                if len(entries) >= limit:
                    logger.debug(f"Listing of {directory} capped at {limit} entries")
                    break

                if not allow_hidden and entry.name.startswith("."):
                    continue

                try:
                    is_dir = entry.is_dir()
                    stats = entry.stat()
                except OSError:
                    continue

                if (
                    use_ignore
                    and self.ignore_filter is not None
                    and self.ignore_filter.is_ignored(entry.path, is_dir)
                ):
                    continue

                node = FileNode(
                    name=entry.name,
                    path=self.resolver.to_workspace_relative(entry.path),
                    type=NodeType.DIRECTORY if is_dir else NodeType.FILE,
                    size=stats.st_size,
                    modified=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
                )
                entries.append((node, entry.path if self._can_descend(entry, is_dir) else None))

        return entries

    def _can_descend(self, entry: os.DirEntry, is_dir: bool) -> bool:
        if not is_dir:
            return False
        if not entry.is_symlink():
            return True
        return self.config.allow_symlinks and is_within(
            os.path.realpath(entry.path), self.resolver.workspace_root
        )

    async def _drain_events(self) -> None:
        while True:
            client_id, event = await self.watcher.events.get()
            await self._deliver(client_id, event)

    async def _deliver(self, client_id: str, event: WatchEvent) -> None:
        if self.send is None:
            return

        data = {"event": "watch", **event.to_dict()}
        data["path"] = self.resolver.to_workspace_relative(event.path)
        message = {"type": "fileSystem", "data": data}

        try:
            outcome = self.send(client_id, message)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Failed to deliver watch event to {client_id}: {e}")

    async def _stop_draining(self) -> None:
        task, self._drain_task = self._drain_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


def _read_head(path: str, limit: int) -> bytes:
    with open(path, "rb") as f:
        return f.read(limit)


def _write_file(path: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def _remove_tree(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.remove(path)


def _os_error_message(error: OSError) -> str:
    if error.strerror and error.filename:
        return f"{error.strerror}: {error.filename}"
    return str(error)
