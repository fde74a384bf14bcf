"""Shared fixtures for workspace-fs tests."""

import asyncio
import tempfile
from pathlib import Path

import pytest
from watchfiles import Change

from workspace_fs.filesystem.config import FileSystemServiceConfig


class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWatchSource:
    """
    Stand-in for watchfiles.awatch.

    Each watched path gets a queue; pushing a set of (Change, path)
    tuples delivers one batch, an exception makes the stream fail and
    None ends it.
    """

    def __init__(self):
        self.streams: dict[str, asyncio.Queue] = {}
        self.calls: list[str] = []

    def __call__(self, path: str, stop_event: asyncio.Event):
        queue: asyncio.Queue = asyncio.Queue()
        self.streams[path] = queue
        self.calls.append(path)
        return self._iterate(queue)

    async def _iterate(self, queue: asyncio.Queue):
        while True:
            item = await queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def push(self, watch_path: str, *changes: tuple[Change, str]) -> None:
        await settle()
        self.streams[str(watch_path)].put_nowait(set(changes))
        await settle()

    async def fail(self, watch_path: str, error: Exception) -> None:
        await settle()
        self.streams[str(watch_path)].put_nowait(error)
        await settle()

    async def end(self, watch_path: str) -> None:
        await settle()
        self.streams[str(watch_path)].put_nowait(None)
        await settle()


async def settle(rounds: int = 5) -> None:
    """Let pending tasks run a few steps."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def workspace(temp_dir):
    """Workspace root inside the temporary directory."""
    root = temp_dir / "ws"
    root.mkdir()
    return root


@pytest.fixture
def config(workspace):
    """Default configuration rooted at the test workspace."""
    return FileSystemServiceConfig(workspace_root=workspace, watcher_debounce_ms=20)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def watch_source():
    return FakeWatchSource()
