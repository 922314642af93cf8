"""
Port Discovery Watcher
======================

Learns the config port a freshly spawned PocketIC server picked, without
polling. The server is started with ``--port-file <path>`` and writes the port
followed by a newline once it is listening.

Architecture:
    ┌──────────────────────────────┐         ┌──────────────────────────────┐
    │ watchdog Observer thread     │         │ asyncio event loop           │
    │                              │         │                              │
    │  on_any_event()              │         │  wait_for_port()             │
    │    read port file            │ call_   │    await result future       │
    │    complete line? parse      │ soon_   │    stop observer             │
    │    latch + hand off ─────────┼─threadsafe──► set_result/set_exception│
    └──────────────────────────────┘         └──────────────────────────────┘

Rules:
- The watch is armed before the server is spawned, so no write can be missed.
- A missing file means the write has not started yet and is ignored.
- Content without a trailing newline is a partial write and is ignored.
- The first complete line is parsed as a u16. Success or failure is delivered
  exactly once; every later notification is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from network_launcher.errors import DiscoveryError

logger = logging.getLogger(__name__)

_PORT_PATTERN = re.compile(r"^\+?[0-9]+$")


def parse_port_line(contents: str) -> int:
    """Parse a completed port-file line into a port number."""
    text = contents.strip()
    if not _PORT_PATTERN.match(text):
        raise ValueError(f"invalid digit found in {text!r}")
    port = int(text)
    if port > 0xFFFF:
        raise ValueError(f"number too large to fit in target type: {text}")
    return port


@dataclass
class PortDiscoveryState:
    """Watched directory, expected port file and the single-delivery slot."""
    directory: Path
    port_file: Path
    result: "asyncio.Future[int]"


class _PortFileEventHandler(FileSystemEventHandler):
    """Runs on the observer thread; hands outcomes to the owning loop."""

    def __init__(self, watcher: "PortDiscoveryWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._watcher._on_filesystem_event()


class PortDiscoveryWatcher:
    """
    Watches a directory for the port file and resolves the port exactly once.

    Usage:
        with PortDiscoveryWatcher(tmpdir) as watcher:
            watcher.start()
            child = await supervisor.spawn(port_file=watcher.port_file, ...)
            port = await watcher.wait_for_port()
    """

    def __init__(self, directory: Union[str, Path], file_name: str = "pocketic.port"):
        self.directory = Path(directory)
        self.port_file = self.directory / file_name
        self._state: Optional[PortDiscoveryState] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observer: Optional[Observer] = None
        self._latched = threading.Event()
        self._stopped = False

    @property
    def state(self) -> Optional[PortDiscoveryState]:
        return self._state

    @property
    def delivered(self) -> bool:
        return self._latched.is_set()

    def start(self) -> None:
        """
        Arm the watch. Must be called from the running event loop, before the
        process that writes the port file is spawned.
        """
        if self._observer is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._state = PortDiscoveryState(
            directory=self.directory,
            port_file=self.port_file,
            result=self._loop.create_future(),
        )

        observer = Observer()
        try:
            observer.schedule(_PortFileEventHandler(self), str(self.directory), recursive=True)
            observer.start()
        except Exception as e:
            raise DiscoveryError("failed to watch temporary directory for port file", cause=e) from e

        self._observer = observer
        logger.debug(f"[PortDiscovery] Watching {self.directory} for {self.port_file.name}")

    def _on_filesystem_event(self) -> None:
        """Called for every filesystem notification, on the observer thread."""
        if self._latched.is_set():
            return

        try:
            contents = self.port_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError as e:
            self._deliver(DiscoveryError("failed to read port file", cause=e))
            return
        except UnicodeDecodeError as e:
            self._deliver(DiscoveryError("failed to parse port from port file", cause=e))
            return

        if not contents.endswith("\n"):
            return

        try:
            port = parse_port_line(contents)
        except ValueError as e:
            self._deliver(DiscoveryError("failed to parse port from port file", cause=e))
            return

        self._deliver(port)

    def _deliver(self, outcome: Union[int, DiscoveryError]) -> None:
        # Only the first outcome is handed off; the rest are dropped.
        if self._latched.is_set():
            return
        self._latched.set()

        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._resolve, outcome)
        except RuntimeError:
            # loop closed between the check and the call
            logger.debug("[PortDiscovery] Event loop closed before delivery")

    def _resolve(self, outcome: Union[int, DiscoveryError]) -> None:
        """Runs on the loop thread."""
        if self._state is None or self._state.result.done():
            return
        if isinstance(outcome, BaseException):
            self._state.result.set_exception(outcome)
        else:
            self._state.result.set_result(outcome)

    async def wait_for_port(self) -> int:
        """
        Wait for the port (or the discovery failure) and cancel the watch.

        Raises:
            DiscoveryError: if the port file could not be read or parsed
        """
        if self._state is None:
            raise DiscoveryError("port discovery was not started")
        try:
            port = await self._state.result
        finally:
            self.stop()
        logger.info(f"[PortDiscovery] Server reported config port {port}")
        return port

    def stop(self) -> None:
        """Cancel the watch. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        # nothing delivered after teardown
        self._latched.set()

        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        if observer.is_alive():
            observer.join(timeout=5.0)
        logger.debug("[PortDiscovery] Watch cancelled")

    def __enter__(self) -> "PortDiscoveryWatcher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
