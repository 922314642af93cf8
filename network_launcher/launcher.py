"""
Network Launcher
================

Main control flow. One asyncio task graph drives the whole lifecycle:

    install signal handlers
    ┌── startup (raced against SIGINT/SIGTERM) ─────────────────────────────┐
    │  resolve binary → arm port-file watch → spawn server → await port     │
    │  → create instance over the control API → write status.json           │
    └───────────────────────────────────────────────────────────────────────┘
    wait for SIGINT/SIGTERM
    ordered shutdown: stop instance → SIGINT server → 5s race → kill

A signal that arrives during startup cancels it; shutdown then cleans up
whatever had been created. A startup failure after the spawn still takes the
server down before the error propagates.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import tempfile
from pathlib import Path
from typing import Optional

from network_launcher.clients.pocketic_client import ConfiguredInstance, ControlChannelConfigurator
from network_launcher.config.launch_config import LaunchConfiguration
from network_launcher.config.settings import LauncherSettings
from network_launcher.core.port_discovery import PortDiscoveryWatcher
from network_launcher.core.process_supervisor import (
    ChildProcessHandle,
    ProcessSupervisor,
    resolve_server_binary,
)
from network_launcher.core.shutdown import ShutdownCoordinator, ShutdownResult
from network_launcher.core.status import StatusPublisher, StatusRecord
from network_launcher.core.stream_redirect import captured_stderr
from network_launcher.errors import DiscoveryError, LauncherError

logger = logging.getLogger(__name__)


class NetworkLauncher:
    """
    Owns one launcher run: the temporary discovery directory, the server
    process and the network instance.

    Usage:
        exit_code = asyncio.run(NetworkLauncher(config).run())
    """

    def __init__(
        self,
        config: LaunchConfiguration,
        settings: Optional[LauncherSettings] = None,
        coordinator: Optional[ShutdownCoordinator] = None,
    ):
        self.config = config
        self.settings = settings or LauncherSettings()
        self.coordinator = coordinator or ShutdownCoordinator()
        self.supervisor = ProcessSupervisor(config, self.settings)
        self.configurator = ControlChannelConfigurator(config, self.settings)

        self.child: Optional[ChildProcessHandle] = None
        self.instance: Optional[ConfiguredInstance] = None
        self.status_file: Optional[Path] = None
        self.shutdown_result: Optional[ShutdownResult] = None

    async def run(self) -> int:
        """Start the network, serve until signaled, shut down. Returns the exit code."""
        self.coordinator.install()
        try:
            with tempfile.TemporaryDirectory(prefix="network-launcher-") as tmpdir:
                started = await self._race_startup(Path(tmpdir))
                if started:
                    logger.info(
                        f"[Launcher] Network running: config port {self.instance.config_port}, "
                        f"gateway port {self.instance.gateway_port}. Press Ctrl-C to stop."
                    )
                    await self.coordinator.wait_for_signal()
                await self._teardown()
        finally:
            self.coordinator.restore()
        return 0

    async def _race_startup(self, tmpdir: Path) -> bool:
        """
        Run startup unless a signal wins the race.

        Returns True when startup finished, False when it was interrupted.
        Startup errors are re-raised after the server has been taken down.
        """
        startup = asyncio.ensure_future(self._startup(tmpdir))
        signaled = asyncio.ensure_future(self.coordinator.wait_for_signal())
        try:
            await asyncio.wait({startup, signaled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            signaled.cancel()

        if startup.done():
            try:
                startup.result()
            except Exception as e:
                logger.debug(f"[Launcher] Startup failed, cleaning up: {e}")
                await self._teardown()
                raise
            return True

        logger.info("[Launcher] Shutdown requested during startup")
        startup.cancel()
        with contextlib.suppress(asyncio.CancelledError, LauncherError):
            await startup
        return False

    async def _startup(self, tmpdir: Path) -> None:
        binary = resolve_server_binary(self.config.pocketic_server_path, self.settings)

        capture = contextlib.nullcontext() if self.config.verbose else captured_stderr()
        with capture as handle:
            inherited_stderr = handle.original_fd if handle is not None else None

            with PortDiscoveryWatcher(tmpdir, self.settings.port_file_name) as watcher:
                # armed before the spawn so the server's write cannot be missed
                watcher.start()
                self.child = await self.supervisor.spawn(
                    binary, watcher.port_file, inherited_stderr=inherited_stderr
                )
                config_port = await self._await_port(watcher)

            self.instance = await self.configurator.configure(config_port)

        if self.config.status_dir is not None:
            publisher = StatusPublisher(self.config.status_dir, self.settings.status_file_name)
            self.status_file = publisher.publish(StatusRecord.from_instance(self.instance))

    async def _await_port(self, watcher: PortDiscoveryWatcher) -> int:
        """Wait for the reported port; a server that exits first aborts startup."""
        port_task = asyncio.ensure_future(watcher.wait_for_port())
        exit_task = asyncio.ensure_future(self.child.wait())
        try:
            await asyncio.wait({port_task, exit_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            exit_task.cancel()
            if not port_task.done():
                port_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await port_task

        if port_task.cancelled():
            raise DiscoveryError(
                f"pocket-ic server exited with status {self.child.returncode} before reporting its port"
            )
        return port_task.result()

    async def _teardown(self) -> ShutdownResult:
        stop_instance = self.configurator.stop if self.configurator.instance is not None else None
        try:
            self.shutdown_result = await self.coordinator.shutdown(
                self.child, stop_instance=stop_instance
            )
        finally:
            await self.configurator.close()
        return self.shutdown_result
