"""Expected archive contents for an export period.

A manifest is never persisted. It is rebuilt from the period, the table
catalog and the archive filesystem every time it is needed, so the ``shipped``
flag of each file always reflects what is on disk right now.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List

from .compression import GZIP, Compression
from .errors import ManifestError
from .periods import Date, ExportPeriod, export_period_for_date
from .tables import DEFAULT_CATALOG, Table, TableCatalog

LOG = logging.getLogger(__name__)

DEFAULT_FORMAT = "csv"


@dataclass
class ExportFile:
    """One archived artefact expected for a period."""

    date: Date
    schema: int
    network: str
    table_name: str
    format: str = DEFAULT_FORMAT
    compression: Compression = GZIP
    shipped: bool = False
    content_id: str | None = None

    def filename(self) -> str:
        return f"{self.table_name}-{self.date}.{self.format}.{self.compression.extension}"

    def path(self) -> str:
        """Return the archive-relative path the file is shipped to."""

        return os.path.join(
            self.network,
            self.format,
            str(self.schema),
            self.table_name,
            str(self.date.year),
            self.filename(),
        )

    def __str__(self) -> str:
        return f"{self.table_name}-{self.date}"


@dataclass
class ExportManifest:
    period: ExportPeriod
    network: str
    files: List[ExportFile] = field(default_factory=list)
    catalog: TableCatalog = field(default=DEFAULT_CATALOG, repr=False, compare=False)

    def has_unshipped_files(self) -> bool:
        return any(not ef.shipped for ef in self.files)

    def unshipped_files(self) -> List[ExportFile]:
        return [ef for ef in self.files if not ef.shipped]

    def files_for_task(self, task: str) -> List[ExportFile]:
        files: List[ExportFile] = []
        for ef in self.files:
            table = self.catalog.get(ef.table_name)
            if table is None:
                LOG.warning("Skipping file for unknown table", extra={"table": ef.table_name})
                continue
            if table.task == task:
                files.append(ef)
        return files

    def filter_tables(self, allowed: Iterable[Table | str]) -> "ExportManifest":
        names = {item.name if isinstance(item, Table) else item for item in allowed}
        return ExportManifest(
            period=self.period,
            network=self.network,
            files=[ef for ef in self.files if ef.table_name in names],
            catalog=self.catalog,
        )


def _is_shipped(path: Path) -> bool:
    try:
        path.stat()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise ManifestError(f"stat {path}: {exc}") from exc
    return True


def manifest_for_period(
    period: ExportPeriod,
    network: str,
    genesis_ts: int,
    ship_path: Path | str,
    schema_version: int,
    allowed_tables: Iterable[Table | str],
    compression: Compression = GZIP,
    catalog: TableCatalog = DEFAULT_CATALOG,
) -> ExportManifest:
    """Build the manifest for ``period`` and probe the archive for each file.

    Files follow catalog declaration order. ``genesis_ts`` is accepted so every
    manifest builder shares one signature with :func:`manifest_for_date`.
    """

    manifest = ExportManifest(period=period, network=network, catalog=catalog)
    root = Path(ship_path)
    for table in catalog.select(schema_version, allowed_tables):
        ef = ExportFile(
            date=period.date,
            schema=schema_version,
            network=network,
            table_name=table.name,
            format=DEFAULT_FORMAT,
            compression=compression,
        )
        ef.shipped = _is_shipped(root / ef.path())
        manifest.files.append(ef)
    return manifest


def manifest_for_date(
    date: Date,
    network: str,
    genesis_ts: int,
    ship_path: Path | str,
    schema_version: int,
    allowed_tables: Iterable[Table | str],
    compression: Compression = GZIP,
    catalog: TableCatalog = DEFAULT_CATALOG,
) -> ExportManifest:
    period = export_period_for_date(date, genesis_ts)
    return manifest_for_period(
        period,
        network,
        genesis_ts,
        ship_path,
        schema_version,
        allowed_tables,
        compression=compression,
        catalog=catalog,
    )


__all__ = [
    "DEFAULT_FORMAT",
    "ExportFile",
    "ExportManifest",
    "manifest_for_date",
    "manifest_for_period",
]
