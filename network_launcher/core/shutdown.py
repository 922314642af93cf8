"""
Shutdown Coordinator - Ordered, Timeout-Bounded Teardown.
=========================================================

Waits for the first termination request (SIGINT or SIGTERM) and then tears the
network down in a fixed order:

    RUNNING
       │  first of SIGINT / SIGTERM
       ▼
    SHUTDOWN_REQUESTED
       │  stop the logical instance over the control API (awaited, not retried)
       ▼
    INSTANCE_STOPPING
       │  child still in the process table? send it SIGINT
       ▼
    CHILD_SIGNALED
       │  race child exit against the grace period
       ▼
    CHILD_WAIT_RACE
       │  grace period won? SIGKILL (best effort)
       ▼
    TERMINATED

Only the first signal counts. Later ones are logged and ignored, so a second
Ctrl-C cannot cut the teardown short. A failed instance stop is logged and the
child is still signaled; leaving the server running would leak it.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import signal
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from network_launcher.config.settings import CHILD_EXIT_GRACE_SECONDS
from network_launcher.core.process_supervisor import ChildProcessHandle

logger = logging.getLogger(__name__)


# =============================================================================
# Types and Enums
# =============================================================================

class ShutdownSignal(enum.Enum):
    """Which termination trigger fired."""
    INTERRUPT = "SIGINT"
    TERMINATE = "SIGTERM"


class ShutdownState(enum.IntEnum):
    """Coordinator states in execution order."""
    RUNNING = 0
    SHUTDOWN_REQUESTED = 1
    INSTANCE_STOPPING = 2
    CHILD_SIGNALED = 3
    CHILD_WAIT_RACE = 4
    TERMINATED = 5


@dataclass
class ShutdownResult:
    """Result of a shutdown run."""
    signal: Optional[ShutdownSignal]
    instance_stopped: bool = False
    child_signaled: bool = False
    forced_kill: bool = False
    elapsed_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)


InstanceStopper = Callable[[], Awaitable[None]]


# =============================================================================
# Shutdown Coordinator
# =============================================================================

class ShutdownCoordinator:
    """
    Races the termination signals and runs the ordered teardown.

    Usage:
        coordinator = ShutdownCoordinator()
        coordinator.install()
        try:
            ...startup...
            await coordinator.wait_for_signal()
            await coordinator.shutdown(child, stop_instance=instance.stop)
        finally:
            coordinator.restore()
    """

    def __init__(self, grace_period: float = CHILD_EXIT_GRACE_SECONDS):
        self.grace_period = grace_period
        self._state = ShutdownState.RUNNING
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._requested: Optional["asyncio.Future[ShutdownSignal]"] = None
        self._original_handlers: Dict[int, Any] = {}
        self._loop_handlers: List[int] = []

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def trigger(self) -> Optional[ShutdownSignal]:
        if self._requested is not None and self._requested.done():
            return self._requested.result()
        return None

    @property
    def is_shutdown_requested(self) -> bool:
        return self.trigger is not None

    def _transition_to(self, new_state: ShutdownState) -> None:
        old_state = self._state
        self._state = new_state
        logger.debug(f"[Shutdown] {old_state.name} -> {new_state.name}")

    def _ensure_future(self) -> "asyncio.Future[ShutdownSignal]":
        if self._requested is None:
            self._loop = asyncio.get_running_loop()
            self._requested = self._loop.create_future()
        return self._requested

    # -------------------------------------------------------------------------
    # Signal handling
    # -------------------------------------------------------------------------

    @staticmethod
    def _signals_to_handle() -> List[tuple]:
        signals = [(signal.SIGINT, ShutdownSignal.INTERRUPT)]
        # SIGTERM handling is not available everywhere (Windows)
        if hasattr(signal, "SIGTERM"):
            signals.append((signal.SIGTERM, ShutdownSignal.TERMINATE))
        return signals

    def install(self) -> None:
        """Register SIGINT/SIGTERM handlers on the running loop."""
        self._ensure_future()
        loop = self._loop

        for sig, trigger in self._signals_to_handle():
            try:
                loop.add_signal_handler(sig, self.request_shutdown, trigger)
                self._loop_handlers.append(sig)
                logger.debug(f"[Shutdown] Registered handler for {sig.name}")
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                try:
                    def fallback_handler(signum, frame, captured=trigger):
                        loop.call_soon_threadsafe(self.request_shutdown, captured)

                    self._original_handlers[sig] = signal.signal(sig, fallback_handler)
                except (ValueError, OSError) as e:
                    logger.warning(f"[Shutdown] Could not register handler for {sig.name}: {e}")

    def restore(self) -> None:
        """Remove the handlers installed by install()."""
        if self._loop is not None and not self._loop.is_closed():
            for sig in self._loop_handlers:
                self._loop.remove_signal_handler(sig)
        self._loop_handlers.clear()

        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def request_shutdown(self, trigger: ShutdownSignal) -> None:
        """Latch the first termination request; ignore the rest."""
        requested = self._ensure_future()
        if requested.done():
            logger.debug(f"[Shutdown] Ignoring {trigger.value}, shutdown already in progress")
            return
        requested.set_result(trigger)
        self._transition_to(ShutdownState.SHUTDOWN_REQUESTED)
        logger.info(f"[Shutdown] Received {trigger.value} - shutting down")

    async def wait_for_signal(self) -> ShutdownSignal:
        """Block until SIGINT or SIGTERM, whichever arrives first."""
        return await asyncio.shield(self._ensure_future())

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def shutdown(
        self,
        child: Optional[ChildProcessHandle],
        stop_instance: Optional[InstanceStopper] = None,
    ) -> ShutdownResult:
        """
        Stop the instance, then interrupt the child and bound its exit.

        Never raises for step failures; they are logged and collected in the
        result.
        """
        started = time.monotonic()
        result = ShutdownResult(signal=self.trigger)

        if self._state is ShutdownState.RUNNING:
            # startup failure path, no signal involved
            self._transition_to(ShutdownState.SHUTDOWN_REQUESTED)

        self._transition_to(ShutdownState.INSTANCE_STOPPING)
        if stop_instance is not None:
            try:
                await stop_instance()
                result.instance_stopped = True
            except Exception as e:
                logger.error(f"[Shutdown] Failed to stop network instance: {e}")
                result.errors.append(f"instance stop: {e}")

        self._transition_to(ShutdownState.CHILD_SIGNALED)
        if child is not None:
            result.child_signaled = child.interrupt()
            if not result.child_signaled:
                logger.debug(f"[Shutdown] PID {child.pid} already gone, nothing to signal")

        self._transition_to(ShutdownState.CHILD_WAIT_RACE)
        if child is not None:
            try:
                await asyncio.wait_for(child.wait(), timeout=self.grace_period)
                logger.info(f"[Shutdown] Server exited with code {child.returncode}")
            except asyncio.TimeoutError:
                logger.warning(
                    f"[Shutdown] Server did not exit within {self.grace_period:.1f}s, killing it"
                )
                result.forced_kill = True
                try:
                    await child.kill()
                except Exception as e:
                    logger.debug(f"[Shutdown] Kill failed: {e}")
                    result.errors.append(f"kill: {e}")
            finally:
                child.close_files()

        self._transition_to(ShutdownState.TERMINATED)
        result.elapsed_seconds = time.monotonic() - started
        logger.info(f"[Shutdown] Complete in {result.elapsed_seconds:.2f}s")
        return result
