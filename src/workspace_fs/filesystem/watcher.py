"""
Per-client change notification with debouncing.

Each (client, path) registration owns its own recursive OS-level watch,
driven by ``watchfiles.awatch`` in a background task. Raw changes are
debounced per (client, changed path) with ``loop.call_later`` handles
kept in an explicit timer map, enriched with a fresh stat and put on
``events`` for the service to drain.
"""

import asyncio
import logging
import os
import stat
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional

from watchfiles import Change, awatch

from workspace_fs.filesystem.config import FileSystemServiceConfig
from workspace_fs.filesystem.paths import is_within
from workspace_fs.filesystem.types import WatchEvent, WatchEventKind

logger = logging.getLogger(__name__)

# Signature of the OS-level watch: (path, stop_event) -> batches of raw changes
WatchFactory = Callable[[str, asyncio.Event], AsyncIterator[set[tuple[Change, str]]]]

CHANGE_KINDS = {
    Change.added: WatchEventKind.CREATE,
    Change.modified: WatchEventKind.CHANGE,
    Change.deleted: WatchEventKind.DELETE,
}


@dataclass
class WatchRegistration:
    """A live watch owned by one client on one absolute path."""

    client_id: str
    path: str
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None
    created_at: float = field(default_factory=time.time)


@dataclass
class PendingEvent:
    """
    Debounce state for one (client, changed path) pair.

    ``watch_path`` is the client's watch the event is delivered under. When
    that watch is removed while another of the client's watches still
    contains the changed path, the event moves over to it.
    """

    handle: asyncio.TimerHandle
    event: WatchEvent
    watch_path: str


class FileWatcher:
    """
    Registry of per-client recursive watches.

    Usage:
        watcher = FileWatcher(config)
        await watcher.add("client-1", "/ws/src")
        client_id, event = await watcher.events.get()
        watcher.remove_all_for_client("client-1")
    """

    def __init__(
        self,
        config: FileSystemServiceConfig,
        watch_factory: Optional[WatchFactory] = None,
    ):
        """
        Initialize the watcher.

        Args:
            config: Service configuration (quota, debounce, enable flag)
            watch_factory: OS-level watch (default: watchfiles.awatch)
        """
        self.config = config
        self._watch_factory = watch_factory or self._awatch
        self._registrations: dict[str, dict[str, WatchRegistration]] = {}
        self._pending: dict[tuple[str, str], PendingEvent] = {}
        self._emit_tasks: dict[asyncio.Task, str] = {}
        self.events: asyncio.Queue[tuple[str, WatchEvent]] = asyncio.Queue()

    @property
    def debounce_seconds(self) -> float:
        return self.config.watcher_debounce_ms / 1000.0

    async def add(self, client_id: str, path: str) -> bool:
        """
        Start watching ``path`` recursively for ``client_id``.

        Fails softly: returns False when watching is disabled or the
        client already holds ``max_watchers_per_client`` watches.
        Watching a path the client already watches succeeds without
        creating a second watch.
        """
        if not self.config.enable_file_watching:
            logger.debug(f"File watching disabled, refusing {path} for {client_id}")
            return False

        client_watches = self._registrations.get(client_id, {})
        if path in client_watches:
            return True

        if len(client_watches) >= self.config.max_watchers_per_client:
            logger.warning(
                f"Client {client_id} reached the watch limit "
                f"({self.config.max_watchers_per_client})"
            )
            return False

        registration = WatchRegistration(client_id=client_id, path=path)
        self._registrations.setdefault(client_id, {})[path] = registration
        registration.task = asyncio.get_running_loop().create_task(
            self._run(registration), name=f"watch:{client_id}:{path}"
        )

        logger.info(f"Client {client_id} watching {path}")
        return True

    def remove(self, client_id: str, path: str) -> bool:
        """
        Stop a watch and drop its pending events.

        Returns:
            False if the client was not watching ``path``
        """
        client_watches = self._registrations.get(client_id)
        if not client_watches or path not in client_watches:
            return False

        registration = client_watches.pop(path)
        if not client_watches:
            del self._registrations[client_id]

        for key, pending in self._pending.items():
            if key[0] == client_id and pending.watch_path == path:
                # Another watch of this client may still cover the change
                pending.watch_path = self._covering_watch(client_id, key[1]) or path
        self._cancel_pending(
            lambda key, pending: key[0] == client_id and pending.watch_path == path
        )
        self._stop(registration)

        logger.info(f"Client {client_id} stopped watching {path}")
        return True

    def remove_all_for_client(self, client_id: str) -> int:
        """
        Tear down every watch of a client, including pending debounce timers.

        Returns:
            Number of watches removed
        """
        client_watches = self._registrations.pop(client_id, {})
        self._cancel_pending(lambda key, pending: key[0] == client_id)
        for task, owner in list(self._emit_tasks.items()):
            if owner == client_id:
                task.cancel()

        for registration in client_watches.values():
            self._stop(registration)

        if client_watches:
            logger.info(f"Removed {len(client_watches)} watches for client {client_id}")
        return len(client_watches)

    async def restart_watcher(self, client_id: str, path: str) -> bool:
        self.remove(client_id, path)
        return await self.add(client_id, path)

    async def validate_watch_path(self, path: str) -> tuple[bool, Optional[str]]:
        """
        Check that ``path`` exists, is a file or directory, and is readable.

        Returns:
            Tuple of (valid, error)
        """
        return await asyncio.to_thread(self._validate_watch_path, path)

    def has_watcher(self, client_id: str, path: str) -> bool:
        return path in self._registrations.get(client_id, {})

    def get_client_watchers(self, client_id: str) -> list[str]:
        return list(self._registrations.get(client_id, {}))

    def get_all_watched_paths(self) -> list[str]:
        paths: dict[str, None] = {}
        for client_watches in self._registrations.values():
            paths.update(dict.fromkeys(client_watches))
        return list(paths)

    def is_path_watched(self, path: str) -> bool:
        return any(path in watches for watches in self._registrations.values())

    def get_clients_watching_path(self, path: str) -> list[str]:
        return [
            client_id
            for client_id, watches in self._registrations.items()
            if path in watches
        ]

    def get_watcher_stats(self) -> dict[str, Any]:
        client_stats = [
            {"clientId": client_id, "watcherCount": len(watches)}
            for client_id, watches in self._registrations.items()
        ]
        return {
            "totalClients": len(self._registrations),
            "totalWatchers": sum(entry["watcherCount"] for entry in client_stats),
            "pendingEvents": len(self._pending),
            "clientStats": client_stats,
        }

    def cleanup(self) -> None:
        """Stop every watch and cancel every pending timer."""
        self._cancel_pending(lambda key, pending: True)
        for task in list(self._emit_tasks):
            task.cancel()

        registrations = [
            registration
            for watches in self._registrations.values()
            for registration in watches.values()
        ]
        self._registrations.clear()
        for registration in registrations:
            self._stop(registration)

    async def close(self) -> None:
        """Clean up and wait for the background watch tasks to finish."""
        tasks = [
            registration.task
            for watches in self._registrations.values()
            for registration in watches.values()
            if registration.task is not None
        ]
        tasks.extend(self._emit_tasks)
        self.cleanup()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Internals

    def _awatch(
        self, path: str, stop_event: asyncio.Event
    ) -> AsyncIterator[set[tuple[Change, str]]]:
        return awatch(
            path,
            watch_filter=None,
            stop_event=stop_event,
            recursive=True,
            debounce=max(self.config.watcher_debounce_ms, 50),
        )

    async def _run(self, registration: WatchRegistration) -> None:
        client_id, path = registration.client_id, registration.path
        try:
            async for changes in self._watch_factory(path, registration.stop_event):
                if not self._is_live(registration):
                    break
                for change, changed_path in changes:
                    self._on_raw_change(registration, change, changed_path)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"File watcher error for {path} (client {client_id}): {e}")
        finally:
            if self._is_live(registration):
                # The stream ended on its own, so the watch is gone
                self.remove(client_id, path)

    def _on_raw_change(
        self, registration: WatchRegistration, change: Change, changed_path: str
    ) -> None:
        kind = CHANGE_KINDS.get(change)
        if kind is None:
            return

        key = (registration.client_id, changed_path)
        previous = self._pending.pop(key, None)
        if previous is not None:
            previous.handle.cancel()

        event = WatchEvent(kind=kind, path=changed_path, timestamp=time.time())
        handle = asyncio.get_running_loop().call_later(
            self.debounce_seconds, self._fire, key
        )
        self._pending[key] = PendingEvent(
            handle=handle, event=event, watch_path=registration.path
        )

    def _fire(self, key: tuple[str, str]) -> None:
        pending = self._pending.pop(key, None)
        if pending is None:
            return

        task = asyncio.get_running_loop().create_task(
            self._emit(key[0], pending.watch_path, pending.event)
        )
        self._emit_tasks[task] = key[0]
        task.add_done_callback(lambda done: self._emit_tasks.pop(done, None))

    async def _emit(self, client_id: str, watch_path: str, event: WatchEvent) -> None:
        try:
            info = await asyncio.to_thread(os.stat, event.path)
        except OSError:
            # Deleted in the meantime: emit without size information
            info = None

        if self._covering_watch(client_id, event.path) is None:
            logger.debug(f"Dropping event for torn-down watch {client_id}:{watch_path}")
            return

        if info is not None:
            event.size = info.st_size
            event.is_directory = stat.S_ISDIR(info.st_mode)

        self.events.put_nowait((client_id, event))

    def _covering_watch(self, client_id: str, path: str) -> Optional[str]:
        """Return a live watch of the client that contains ``path``."""
        for watch_path in self._registrations.get(client_id, {}):
            if is_within(path, watch_path):
                return watch_path
        return None

    def _is_live(self, registration: WatchRegistration) -> bool:
        current = self._registrations.get(registration.client_id, {}).get(registration.path)
        return current is registration

    def _cancel_pending(self, predicate: Callable[[tuple[str, str], PendingEvent], bool]) -> None:
        for key, pending in list(self._pending.items()):
            if predicate(key, pending):
                pending.handle.cancel()
                del self._pending[key]

    @staticmethod
    def _stop(registration: WatchRegistration) -> None:
        registration.stop_event.set()
        task = registration.task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    @staticmethod
    def _validate_watch_path(path: str) -> tuple[bool, Optional[str]]:
        try:
            os.stat(path)
        except OSError as e:
            return False, str(e)

        if not os.path.isfile(path) and not os.path.isdir(path):
            return False, "Path must be a file or directory"

        if not os.access(path, os.R_OK):
            return False, "No read permission for path"

        return True, None
