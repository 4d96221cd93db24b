"""Compression schemes supported when shipping export files."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Sequence


@dataclass(frozen=True)
class Compression:
    names: tuple[str, ...]
    extension: str
    executable: str

    def command(self, source: str, binary: str | None = None) -> list[str]:
        """Return the command that writes the compressed ``source`` to stdout."""

        return [binary or self.executable, "--stdout", source]


GZIP = Compression(names=("gzip", "gz"), extension="gz", executable="gzip")

COMPRESSIONS: Sequence[Compression] = (GZIP,)

COMPRESSION_BY_NAME: Dict[str, Compression] = {
    name: compression for compression in COMPRESSIONS for name in compression.names
}


def compression_by_name(name: str) -> Compression:
    try:
        return COMPRESSION_BY_NAME[name]
    except KeyError as exc:
        raise ValueError(f"Unsupported compression '{name}'.") from exc


__all__ = ["COMPRESSIONS", "COMPRESSION_BY_NAME", "Compression", "GZIP", "compression_by_name"]
