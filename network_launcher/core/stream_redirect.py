"""
Startup stderr capture.

While the network is starting, diagnostics from libraries the launcher uses
would interleave with the output of the automation driving it. The startup
phase therefore runs with file descriptor 2 redirected to a temporary log:

- on success the log is discarded and fd 2 is restored;
- on failure fd 2 is restored and the captured text is replayed to it so the
  user sees what went wrong.

Restoration happens on every exit path. The duplicate of the original stderr
stays available as ``original_fd`` for the duration, so a child process can be
handed the real terminal even while the launcher's own fd 2 is captured.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from typing import IO, Iterator

logger = logging.getLogger(__name__)

STDERR_FD = 2


@dataclass
class StderrCapture:
    """Handle for an active capture."""
    original_fd: int
    log: IO[bytes]

    def read(self) -> bytes:
        self.log.flush()
        self.log.seek(0)
        return self.log.read()


def _flush_stderr() -> None:
    try:
        sys.stderr.flush()
    except (AttributeError, ValueError):
        pass


@contextmanager
def captured_stderr() -> Iterator[StderrCapture]:
    """Redirect fd 2 to a temp log for the duration of the block."""
    _flush_stderr()
    original_fd = os.dup(STDERR_FD)
    log = tempfile.TemporaryFile(prefix="network-launcher-", suffix=".log")
    capture = StderrCapture(original_fd=original_fd, log=log)

    try:
        os.dup2(log.fileno(), STDERR_FD)
    except OSError:
        os.close(original_fd)
        log.close()
        raise

    failed = False
    try:
        yield capture
    except BaseException:
        failed = True
        raise
    finally:
        _flush_stderr()
        os.dup2(original_fd, STDERR_FD)
        try:
            if failed:
                pending = memoryview(capture.read())
                while pending:
                    written = os.write(STDERR_FD, pending)
                    pending = pending[written:]
        except OSError as e:
            logger.debug(f"[StreamRedirect] Could not replay captured output: {e}")
        finally:
            os.close(original_fd)
            log.close()
