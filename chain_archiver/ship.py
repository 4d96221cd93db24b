"""Compress finished walk output into the archive and clean up after it."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path

from .compression import Compression
from .errors import ShipError
from .manifest import ExportFile
from .walk import WalkInfo

LOG = logging.getLogger(__name__)


def _resolve_binary(binary: str) -> str:
    resolved = shutil.which(binary)
    if resolved is None:
        raise ShipError(f"{binary} executable not found on PATH")
    return resolved


def _destination_exists(destination: Path) -> bool:
    try:
        destination.stat()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise ShipError(f"file {destination} stat error: {exc}") from exc
    return True


def ship_export_file(ef: ExportFile, walk_info: WalkInfo, ship_path: Path | str) -> Path:
    """Compress the walk output for ``ef`` to its archive path.

    Shipping a file whose destination already exists only removes the leftover
    working copy. The compressed output is written to a temporary name and
    renamed into place, so a destination never holds a partial file.
    """

    extra = {"table": ef.table_name, "date": str(ef.date)}
    destination = Path(ship_path) / ef.path()
    walk_file = walk_info.walk_file(ef.table_name)

    if _destination_exists(destination):
        LOG.info("Export file %s already shipped", ef, extra=extra)
        remove_export_file(ef, walk_info, missing_ok=True)
        return destination

    compression: Compression = ef.compression
    binary = _resolve_binary(compression.executable)
    LOG.info("Shipping export file %s", ef, extra=extra)

    try:
        info = walk_file.stat()
    except OSError as exc:
        raise ShipError(f"file {walk_file} stat error: {exc}") from exc
    if not walk_file.is_file():
        raise ShipError(f"file {walk_file} is not regular")
    LOG.debug("Found export file %s (%d bytes)", walk_file, info.st_size, extra=extra)

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ShipError(f"mkdir {destination.parent}: {exc}") from exc

    partial = destination.with_name(destination.name + ".partial")
    command = compression.command(str(walk_file), binary)
    LOG.debug("Compressing to %s", destination, extra=extra)
    try:
        with partial.open("wb") as handle:
            subprocess.run(command, check=True, stdout=handle, stderr=subprocess.PIPE)
        os.replace(partial, destination)
    except subprocess.CalledProcessError as exc:
        partial.unlink(missing_ok=True)
        stderr = exc.stderr.decode("utf-8", errors="replace") if exc.stderr else ""
        LOG.error("%s failed: %s", compression.executable, stderr.strip(), extra=extra)
        raise ShipError(f"{compression.executable}: exit status {exc.returncode}") from exc
    except OSError as exc:
        partial.unlink(missing_ok=True)
        raise ShipError(f"compress {walk_file}: {exc}") from exc

    try:
        size = destination.stat().st_size
    except OSError as exc:
        raise ShipError(f"file {destination} stat error: {exc}") from exc
    LOG.debug("Compressed file size: %d", size, extra=extra)
    return destination


def remove_export_file(ef: ExportFile, walk_info: WalkInfo, missing_ok: bool = False) -> None:
    walk_file = walk_info.walk_file(ef.table_name)
    try:
        walk_file.unlink(missing_ok=missing_ok)
    except OSError as exc:
        raise ShipError(f"remove {walk_file}: {exc}") from exc


__all__ = ["remove_export_file", "ship_export_file"]
