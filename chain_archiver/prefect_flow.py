"""Prefect orchestration helpers for the chain archiver."""

from __future__ import annotations

from prefect import flow, get_run_logger, task
from prefect.cache_policies import NO_CACHE

from .config import Settings, get_settings
from .export import ExportRunner
from .periods import Date, ExportPeriod, export_period_for_date


def _load_settings(network: str | None) -> Settings:
    settings = get_settings()
    if network and network != settings.network:
        settings = Settings(**{**settings.model_dump(), "network": network, "genesis_ts": None})
    return settings


@task(cache_policy=NO_CACHE)
def inspect_period(runner: ExportRunner, period: ExportPeriod) -> list[str]:
    """Return the tables still missing from the archive for ``period``."""

    logger = get_run_logger()
    manifest = runner.manifest_for(period)
    missing = [ef.table_name for ef in manifest.unshipped_files()]
    logger.info("%d of %d files unshipped for %s", len(missing), len(manifest.files), period.date)
    return missing


@task(cache_policy=NO_CACHE)
def archive_period(runner: ExportRunner, period: ExportPeriod) -> None:
    logger = get_run_logger()
    logger.info("Archiving %s (heights %d-%d)", period.date, period.start_height, period.end_height)
    runner.export_period(period)


@flow(name="chain-archiver")
def archive_period_flow(date: str, network: str | None = None) -> list[str]:
    """Prefect flow exporting and shipping the tables for ``date``.

    Returns the tables that were missing before the flow ran.
    """

    settings = _load_settings(network)
    runner = ExportRunner(settings)
    period = export_period_for_date(Date.parse(date), settings.network_genesis_ts)
    missing = inspect_period(runner, period)
    if missing:
        archive_period(runner, period)
    return missing


__all__ = ["archive_period_flow"]
