"""Drive export periods from walk scheduling through to shipped archive files.

Nothing here keeps state between runs. Every attempt rebuilds the manifest
from the archive, so re-running a period after a crash or a partial failure
only walks and ships what is still missing.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List

from . import metrics
from .config import Settings
from .errors import ArchiverError, ShipError, ShipFailed
from .lily import ApiFactory, api_factory
from .manifest import ExportFile, ExportManifest, manifest_for_period
from .periods import (
    FINALITY,
    Date,
    ExportPeriod,
    export_period_for_date,
    first_export_period_after,
    height_to_unix,
)
from .ship import remove_export_file, ship_export_file
from .tables import DEFAULT_CATALOG, TableCatalog
from .verify import VerificationReport, verify_tasks
from .wait import Condition, time_is_after, wait_until
from .walk import WalkInfo, WalkScheduler, tasks_for_manifest

LOG = logging.getLogger(__name__)


@dataclass
class ShipSummary:
    """Outcome of shipping the files of the tasks that passed verification."""

    shipped: List[ExportFile] = field(default_factory=list)
    failed_tasks: List[str] = field(default_factory=list)
    failed_files: List[ExportFile] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_tasks and not self.failed_files


def _period_extra(period: ExportPeriod) -> dict[str, object]:
    return {"date": str(period.date), "from": period.start_height, "to": period.end_height}


def ship_verified_files(
    manifest: ExportManifest,
    walk_info: WalkInfo,
    report: VerificationReport,
    ship_path: Path | str,
) -> ShipSummary:
    """Ship the unshipped files of every task that passed verification.

    Failures are collected per task and per file; a failure never stops the
    remaining files from being shipped.
    """

    summary = ShipSummary()
    extra = _period_extra(manifest.period)
    for task, status in report.task_status.items():
        if not status.is_ok():
            metrics.VERIFY_TABLE_ERRORS.inc()
            summary.failed_tasks.append(task)
            continue

        for ef in manifest.files_for_task(task):
            if ef.shipped:
                continue
            try:
                ship_export_file(ef, walk_info, ship_path)
            except ShipError as exc:
                metrics.SHIP_TABLE_ERRORS.inc()
                summary.failed_files.append(ef)
                LOG.error("Failed to ship export file %s: %s", ef, exc, extra=extra)
                continue

            ef.shipped = True
            summary.shipped.append(ef)
            metrics.FILES_SHIPPED.inc()
            try:
                remove_export_file(ef, walk_info, missing_ok=True)
            except ShipError as exc:
                LOG.error("Failed to remove export file: %s", exc, extra=extra)
    return summary


class ExportRunner:
    """Processes export periods one at a time in ascending date order."""

    def __init__(
        self,
        settings: Settings,
        catalog: TableCatalog = DEFAULT_CATALOG,
        *,
        cancel: threading.Event | None = None,
        open_api: ApiFactory | None = None,
        clock: Callable[[], float] = time.time,
        walk_clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.catalog = catalog
        self.cancel = cancel or threading.Event()
        self.clock = clock
        self.open_api = open_api or api_factory(
            settings.lily_api_url,
            settings.lily_api_token,
            timeout=settings.lily_timeout,
        )
        self.scheduler = WalkScheduler(
            self.open_api,
            settings.storage_name,
            settings.storage_path,
            poll_interval=settings.poll_interval_seconds,
            cancel=self.cancel,
            clock=walk_clock,
        )

    @property
    def genesis_ts(self) -> int:
        return self.settings.network_genesis_ts

    def manifest_for(self, period: ExportPeriod) -> ExportManifest:
        return manifest_for_period(
            period,
            self.settings.network,
            self.genesis_ts,
            self.settings.ship_path,
            self.settings.schema_version,
            self.settings.allowed_tables(self.catalog),
            compression=self.settings.compression_scheme,
            catalog=self.catalog,
        )

    def wait_for_finality(self, period: ExportPeriod) -> None:
        """Block until the end of ``period`` is a full finality in the past."""

        earliest_start_ts = height_to_unix(period.end_height + FINALITY, self.genesis_ts)
        if self.clock() < earliest_start_ts:
            LOG.info(
                "Cannot start export until %s",
                dt.datetime.fromtimestamp(earliest_start_ts, tz=dt.timezone.utc).isoformat(),
                extra=_period_extra(period),
            )
        wait_until(
            time_is_after(earliest_start_ts, self.clock),
            0,
            self.settings.poll_interval_seconds,
            self.cancel,
        )

    def process_export(self, manifest: ExportManifest) -> ShipSummary:
        """Walk, verify and ship everything still missing from ``manifest``.

        Raises :class:`ShipFailed` when any task or file could not be shipped.
        """

        extra = _period_extra(manifest.period)
        if not manifest.has_unshipped_files():
            LOG.info("All files shipped for %s, nothing to do", manifest.period.date, extra=extra)
            return ShipSummary()

        metrics.PROCESS_EXPORT_STARTED.inc()
        LOG.info("Preparing to export files for %s", manifest.period.date, extra=extra)
        self.wait_for_finality(manifest.period)

        walk_info = self.scheduler.complete_walk(manifest)
        LOG.info("Export complete for %s", manifest.period.date, extra=extra)

        report = verify_tasks(walk_info, tasks_for_manifest(manifest))
        summary = ship_verified_files(manifest, walk_info, report, self.settings.ship_path)
        if not summary.ok:
            raise ShipFailed(
                f"failed to ship one or more export files "
                f"(tasks: {', '.join(summary.failed_tasks) or '-'}, "
                f"files: {', '.join(str(ef) for ef in summary.failed_files) or '-'})"
            )
        return summary

    def export_is_processed(self, period: ExportPeriod) -> Condition:
        """Condition that holds once every file of ``period`` has been shipped."""

        def _condition() -> bool:
            try:
                manifest = self.manifest_for(period)
                self.process_export(manifest)
            except ArchiverError as exc:
                metrics.PROCESS_EXPORT_ERRORS.inc()
                LOG.error("Failed to process export: %s", exc, extra=_period_extra(period))
                return False
            return True

        return _condition

    def export_period(self, period: ExportPeriod) -> None:
        wait_until(
            self.export_is_processed(period),
            0,
            self.settings.poll_interval_seconds,
            self.cancel,
        )

    def export_date(self, date: Date) -> ExportPeriod:
        period = export_period_for_date(date, self.genesis_ts)
        self.export_period(period)
        return period

    def run(self, min_height: int | None = None) -> None:
        """Export every period from ``min_height`` onwards until cancelled."""

        if min_height is None:
            min_height = self.settings.min_height
        period = first_export_period_after(min_height, self.genesis_ts)
        while not self.cancel.is_set():
            LOG.info("Processing export period %s", period.date, extra=_period_extra(period))
            self.export_period(period)
            period = period.next()


__all__ = ["ExportRunner", "ShipSummary", "ship_verified_files"]
