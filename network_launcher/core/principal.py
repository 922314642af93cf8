"""
Principal text encoding.

Canister and subnet identifiers travel as raw bytes on the control API but are
shown to people (and written to status.json) in textual form:

    base32( crc32_be(bytes) + bytes ), lowercase, unpadded, dash every 5 chars

e.g. ``rrkah-fqaaa-aaaaa-aaaaq-cai`` for canister ``00000000000000010101``.
"""

from __future__ import annotations

import base64
import zlib
from dataclasses import dataclass

MAX_PRINCIPAL_LENGTH = 29


@dataclass(frozen=True)
class Principal:
    """Opaque identifier of a canister, subnet or user."""
    raw: bytes

    def __post_init__(self):
        if len(self.raw) > MAX_PRINCIPAL_LENGTH:
            raise ValueError(
                f"principal is {len(self.raw)} bytes, at most {MAX_PRINCIPAL_LENGTH} allowed"
            )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Principal":
        return cls(bytes(raw))

    @classmethod
    def from_base64(cls, text: str) -> "Principal":
        return cls(base64.b64decode(text))

    @classmethod
    def from_text(cls, text: str) -> "Principal":
        """Parse the dashed textual form, verifying the checksum."""
        compact = text.replace("-", "").upper()
        padding = "=" * (-len(compact) % 8)
        try:
            decoded = base64.b32decode(compact + padding)
        except ValueError as e:
            raise ValueError(f"invalid principal text {text!r}: {e}") from e
        if len(decoded) < 4:
            raise ValueError(f"invalid principal text {text!r}: too short")

        checksum, raw = decoded[:4], decoded[4:]
        principal = cls(raw)
        if principal.to_text() != text.lower():
            raise ValueError(f"invalid principal text {text!r}: checksum mismatch")
        if int.from_bytes(checksum, "big") != zlib.crc32(raw):
            raise ValueError(f"invalid principal text {text!r}: checksum mismatch")
        return principal

    def to_text(self) -> str:
        checksum = zlib.crc32(self.raw).to_bytes(4, "big")
        encoded = base64.b32encode(checksum + self.raw).decode("ascii").lower().rstrip("=")
        return "-".join(encoded[i:i + 5] for i in range(0, len(encoded), 5))

    def to_base64(self) -> str:
        return base64.b64encode(self.raw).decode("ascii")

    def __str__(self) -> str:
        return self.to_text()
