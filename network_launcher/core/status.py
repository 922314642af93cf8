"""
Status Publisher
================

Writes the connection facts of a configured network to ``status.json`` so
that orchestration polling the status directory knows the network is ready.

The file is written once, atomically (temp file in the same directory, then
rename), and ends with a newline. Readers either see no file or the complete
record.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

from network_launcher.config.settings import STATUS_SCHEMA_VERSION
from network_launcher.core.principal import Principal
from network_launcher.errors import StatusWriteError

if TYPE_CHECKING:
    from network_launcher.clients.pocketic_client import ConfiguredInstance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusRecord:
    """Snapshot of a configured network, in status.json field order."""
    v: str
    instance_id: int
    config_port: int
    gateway_port: int
    root_key: str
    default_effective_canister_id: str

    @classmethod
    def from_instance(cls, instance: "ConfiguredInstance") -> "StatusRecord":
        return cls(
            v=STATUS_SCHEMA_VERSION,
            instance_id=instance.instance_id,
            config_port=instance.config_port,
            gateway_port=instance.gateway_port,
            root_key=instance.root_key.hex(),
            default_effective_canister_id=Principal(instance.default_effective_canister_id).to_text(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":")) + "\n"


@contextmanager
def _atomic_target(target: Path) -> Iterator[Path]:
    """Yield a temp path next to ``target``; rename over it on success."""
    fd, temp_name = tempfile.mkstemp(dir=str(target.parent), prefix=target.stem + "_", suffix=".tmp")
    os.close(fd)
    temp_path = Path(temp_name)
    try:
        yield temp_path
        temp_path.replace(target)
    except BaseException:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        raise


class StatusPublisher:
    """Writes status.json into the status directory, at most once."""

    def __init__(self, status_dir: Path, file_name: str = "status.json"):
        self.status_dir = Path(status_dir)
        self.status_file = self.status_dir / file_name
        self._published: Optional[StatusRecord] = None

    @property
    def published(self) -> Optional[StatusRecord]:
        return self._published

    def publish(self, record: StatusRecord) -> Path:
        """
        Write the record.

        Raises:
            StatusWriteError: on I/O failure, or if a record was already written
        """
        if self._published is not None:
            raise StatusWriteError(f"status already written to {self.status_file}")

        # consumers parse this line from stdout
        print(f"launcher: writing status to {self.status_file}", flush=True)

        contents = record.to_json()
        try:
            with _atomic_target(self.status_file) as temp_path:
                with open(temp_path, "w", encoding="utf-8") as f:
                    f.write(contents)
                    f.flush()
                    os.fsync(f.fileno())
        except OSError as e:
            raise StatusWriteError("failed to write status file", cause=e) from e

        self._published = record
        logger.info(f"[Status] Published instance {record.instance_id} to {self.status_file}")
        return self.status_file
