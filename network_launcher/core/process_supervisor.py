"""
Process Supervisor
==================

Spawns the PocketIC server binary as a child process and keeps the means to
control it later.

The child is started in its own session / process group. Signals the terminal
delivers to the launcher's group (Ctrl-C) therefore never reach the server
directly; the launcher decides when the server should stop and sends it an
explicit SIGINT during shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, List, Optional

import psutil

from network_launcher.config.launch_config import LaunchConfiguration
from network_launcher.config.settings import (
    SERVER_BINARY_NAME,
    LauncherSettings,
)
from network_launcher.errors import SpawnError

logger = logging.getLogger(__name__)

IS_POSIX = os.name == "posix"
KILL_REAP_TIMEOUT = 1.0


# =============================================================================
# Child Process Handle
# =============================================================================

@dataclass
class ChildProcessHandle:
    """Ownership of the spawned server: identity, group and output files."""
    process: asyncio.subprocess.Process
    pgid: Optional[int] = None
    owned_files: List[IO[bytes]] = field(default_factory=list)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    def interrupt(self) -> bool:
        """
        Ask the server to shut itself down (SIGINT, not SIGKILL).

        Returns False when the process is already gone, in which case nothing
        is sent.
        """
        if self.process.returncode is not None:
            return False
        try:
            proc = psutil.Process(self.pid)
            if proc.status() == psutil.STATUS_ZOMBIE:
                return False
            proc.send_signal(signal.SIGINT)
        except (psutil.NoSuchProcess, ProcessLookupError):
            return False
        except psutil.AccessDenied as e:
            logger.warning(f"[Supervisor] Permission denied interrupting PID {self.pid}: {e}")
            return False
        logger.debug(f"[Supervisor] Sent SIGINT to PID {self.pid}")
        return True

    async def wait(self) -> int:
        """Wait for the server to exit without blocking the event loop."""
        return await self.process.wait()

    async def kill(self, reap_timeout: float = KILL_REAP_TIMEOUT) -> None:
        """Forcefully kill the server. Best effort; gives up reaping after ``reap_timeout``."""
        if self.process.returncode is not None:
            return
        try:
            self.process.kill()
        except ProcessLookupError:
            return
        logger.warning(f"[Supervisor] Force killed PID {self.pid}")
        try:
            await asyncio.wait_for(self.process.wait(), timeout=reap_timeout)
        except asyncio.TimeoutError:
            logger.error(f"[Supervisor] PID {self.pid} not reaped {reap_timeout}s after SIGKILL")

    def close_files(self) -> None:
        for handle in self.owned_files:
            try:
                handle.close()
            except OSError as e:
                logger.debug(f"[Supervisor] Failed to close {handle}: {e}")
        self.owned_files.clear()


# =============================================================================
# Supervisor
# =============================================================================

def resolve_server_binary(
    explicit: Optional[Path],
    settings: Optional[LauncherSettings] = None,
    launcher_path: Optional[Path] = None,
) -> Path:
    """
    Find the PocketIC server binary.

    Order: explicit --pocketic-server-path, then POCKET_IC_BIN, then a
    ``pocket-ic`` file installed next to the launcher entry point. An
    explicit path is returned as-is; exec reports whether it is usable.
    """
    if explicit is not None:
        return explicit

    settings = settings or LauncherSettings()
    if settings.server_binary:
        return Path(settings.server_binary)

    launcher_path = launcher_path or Path(sys.argv[0]).resolve()
    assumed = launcher_path.parent / SERVER_BINARY_NAME
    if not assumed.exists():
        raise SpawnError(
            "--pocketic-server-path not provided and could not find "
            f"{SERVER_BINARY_NAME} next to the launcher"
        )
    return assumed


class ProcessSupervisor:
    """Starts the server binary and hands back a ChildProcessHandle."""

    def __init__(self, config: LaunchConfiguration, settings: Optional[LauncherSettings] = None):
        self.config = config
        self.settings = settings or LauncherSettings()

    def build_arguments(self, port_file: Path) -> List[str]:
        """Server arguments derived from the launch configuration."""
        # The launcher owns the lifecycle; push the server's idle TTL far out.
        args = ["--ttl", str(self.settings.server_ttl_seconds)]
        args += ["--port-file", str(port_file)]
        if self.config.config_port is not None:
            args += ["--port", str(self.config.config_port)]
        if self.config.bind is not None:
            args += ["--ip-addr", str(self.config.bind)]
        if not self.config.verbose:
            args += ["--log-levels", "error"]
        return args

    async def spawn(
        self,
        binary: Path,
        port_file: Path,
        inherited_stderr: Optional[int] = None,
    ) -> ChildProcessHandle:
        """
        Spawn the server.

        Args:
            binary: server executable
            port_file: path the server writes its port to
            inherited_stderr: fd to hand the child as stderr when no
                --stderr-file is configured (used while the launcher's own
                stderr is being captured)

        Raises:
            SpawnError: if an output file cannot be created or exec fails
        """
        owned: List[IO[bytes]] = []
        stdout = self._open_output(self.config.stdout_file, "stdout", owned)
        stderr = self._open_output(self.config.stderr_file, "stderr", owned)
        if stderr is None and inherited_stderr is not None:
            stderr = inherited_stderr

        args = self.build_arguments(port_file)
        logger.debug(f"[Supervisor] Spawning {binary} {' '.join(args)}")

        kwargs = {}
        if IS_POSIX:
            kwargs["start_new_session"] = True

        try:
            process = await asyncio.create_subprocess_exec(
                str(binary),
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
                **kwargs,
            )
        except OSError as e:
            for handle in owned:
                handle.close()
            raise SpawnError("failed to spawn pocket-ic server process", cause=e) from e

        pgid = None
        if IS_POSIX:
            try:
                pgid = os.getpgid(process.pid)
            except ProcessLookupError:
                pgid = None

        logger.info(f"[Supervisor] Started {binary.name} (PID {process.pid}, PGID {pgid})")
        return ChildProcessHandle(process=process, pgid=pgid, owned_files=owned)

    @staticmethod
    def _open_output(path: Optional[Path], label: str, owned: List[IO[bytes]]) -> Optional[IO[bytes]]:
        if path is None:
            return None
        try:
            handle = open(path, "wb")
        except OSError as e:
            for existing in owned:
                existing.close()
            raise SpawnError(f"failed to create {label} file {path}", cause=e) from e
        owned.append(handle)
        return handle

