"""Scheduling of Lily walks for the unshipped files of a manifest.

A walk moves through the states of :class:`WalkState`. Before submitting, the
running jobs on the node are inspected and a job with the same storage, height
range and task set is adopted instead of submitting a duplicate. This matching
is the only protection against duplicate work after a restart: there is no
lock on the node's job registry, so two archivers that query at the same
moment with different task sets can both submit.
"""

from __future__ import annotations

import datetime as dt
import logging
import random
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List

from . import metrics
from .errors import (
    ArchiverError,
    JobNotFound,
    LilyAPIError,
    LilyConnectionError,
    StorageError,
    WalkFailed,
    WalkNameUnavailable,
)
from .lily import ApiFactory, JobListResult, LilyClient, WalkConfig
from .manifest import DEFAULT_FORMAT, ExportManifest
from .tables import CONSENSUS_TASK
from .wait import Condition, wait_until

LOG = logging.getLogger(__name__)

PROCESSING_REPORT_TABLE = "visor_processing_reports"
MAX_WALK_NAME_ATTEMPTS = 500

Clock = Callable[[], dt.datetime]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(tz=dt.timezone.utc)


class WalkState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    RUNNING = "running"
    ENDED = "ended"
    RESULT_FETCHED = "result_fetched"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass
class WalkInfo:
    """Location of the files written by a completed walk."""

    name: str
    path: Path
    format: str = DEFAULT_FORMAT

    def walk_file(self, table: str) -> Path:
        return walk_file_path(self.path, self.name, table, self.format)


@dataclass
class WalkAttempt:
    """Progress of one walk through the scheduling states."""

    config: WalkConfig
    state: WalkState = WalkState.IDLE
    job_id: int | None = None
    adopted: bool = False
    result: JobListResult | None = None


def walk_file_path(export_path: Path | str, prefix: str, table: str, fmt: str = DEFAULT_FORMAT) -> Path:
    return Path(export_path) / f"{prefix}-{table}.{fmt}"


def tasks_for_manifest(manifest: ExportManifest) -> List[str]:
    """Return the tasks needed to produce the unshipped files of ``manifest``."""

    tasks: List[str] = []
    for ef in manifest.files:
        if ef.shipped:
            continue
        table = manifest.catalog.get(ef.table_name)
        if table is None:
            LOG.warning("No task known for table %s", ef.table_name, extra={"table": ef.table_name})
            continue
        if table.task not in tasks:
            tasks.append(table.task)
    return tasks


def _report_exists(path: Path) -> bool:
    try:
        path.stat()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise StorageError(f"stat {path}: {exc}") from exc
    return True


def unused_walk_name(
    export_path: Path | str,
    suffix: str,
    clock: Clock = _utcnow,
    rng: random.Random | None = None,
) -> str:
    """Return a walk name whose processing report does not exist yet."""

    rng = rng or random.Random()
    stamp = clock().strftime("%m%d")
    walk_name = f"arch{stamp}-{suffix}"
    for _ in range(MAX_WALK_NAME_ATTEMPTS):
        if not _report_exists(walk_file_path(export_path, walk_name, PROCESSING_REPORT_TABLE)):
            return walk_name
        walk_name = f"arch{stamp}-{rng.randrange(10000)}-{suffix}"
    raise WalkNameUnavailable(
        f"failed to find an unused walk name after {MAX_WALK_NAME_ATTEMPTS} attempts"
    )


def walk_for_manifest(
    manifest: ExportManifest,
    storage_name: str,
    storage_path: Path | str,
    clock: Clock = _utcnow,
) -> WalkConfig:
    """Create the walk configuration for the unshipped files of ``manifest``."""

    name = unused_walk_name(storage_path, str(manifest.period.date), clock=clock)
    tasks = tasks_for_manifest(manifest)
    # Always produce chain_consensus so the task set of repeated attempts matches
    if CONSENSUS_TASK not in tasks:
        tasks.append(CONSENSUS_TASK)
    return WalkConfig(
        name=name,
        tasks=tasks,
        from_height=manifest.period.start_height,
        to_height=manifest.period.end_height,
        storage=storage_name,
    )


def equal_task_sets(a: List[str], b: List[str]) -> bool:
    return sorted(a) == sorted(b)


def _parse_height(raw: str | None) -> int | None:
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


def job_matches(job: JobListResult, walk_cfg: WalkConfig) -> bool:
    """Return whether ``job`` is a running walk doing the work of ``walk_cfg``."""

    if job.type != "walk" or not job.running:
        return False
    if job.params.get("storage") != walk_cfg.storage:
        return False
    if _parse_height(job.params.get("minHeight")) != walk_cfg.from_height:
        return False
    if _parse_height(job.params.get("maxHeight")) != walk_cfg.to_height:
        return False
    return equal_task_sets(job.tasks, walk_cfg.tasks)


def find_existing_job(api: LilyClient, walk_cfg: WalkConfig) -> JobListResult:
    for job in api.job_list():
        if job_matches(job, walk_cfg):
            return job
    raise JobNotFound()


def get_job_result(api: LilyClient, job_id: int) -> JobListResult:
    for job in api.job_list():
        if job.id == job_id:
            return job
    raise JobNotFound(job_id)


def _log_api_error(exc: LilyAPIError, message: str, **extra: object) -> None:
    if isinstance(exc, LilyConnectionError):
        metrics.LILY_CONNECTION_ERRORS.inc()
        LOG.error("Failed to connect to lily api: %s", exc, extra=extra)
    else:
        metrics.LILY_JOB_ERRORS.inc()
        LOG.error("%s: %s", message, exc, extra=extra)


def job_has_been_started(open_api: ApiFactory, attempt: WalkAttempt) -> Condition:
    """Adopt a matching running job or submit ``attempt.config`` as a new one.

    On adoption the configuration takes the name of the adopted job so that its
    output files are found afterwards.
    """

    walk_cfg = attempt.config

    def _condition() -> bool:
        attempt.state = WalkState.SUBMITTING
        try:
            with open_api() as api:
                try:
                    existing = find_existing_job(api, walk_cfg)
                except JobNotFound:
                    result = api.walk(walk_cfg)
                    attempt.job_id = result.id
                    attempt.adopted = False
                else:
                    LOG.info(
                        "Adopting running walk %s that matched required job",
                        existing.name,
                        extra={"job_id": existing.id, "walk": existing.name},
                    )
                    attempt.job_id = existing.id
                    attempt.adopted = True
                    walk_cfg.name = existing.name
        except LilyAPIError as exc:
            _log_api_error(exc, "Failed to start walk", walk=walk_cfg.name)
            return False

        attempt.state = WalkState.RUNNING
        return True

    return _condition


def job_has_ended(open_api: ApiFactory, attempt: WalkAttempt) -> Condition:
    """Poll until the job is no longer running.

    Every error is retried except :class:`JobNotFound`, which ends the wait.
    """

    def _condition() -> bool:
        try:
            with open_api() as api:
                job = get_job_result(api, attempt.job_id)
        except JobNotFound:
            metrics.LILY_JOB_ERRORS.inc()
            attempt.state = WalkState.FAILED
            raise
        except LilyAPIError as exc:
            _log_api_error(exc, "Failed to get job result", job_id=attempt.job_id)
            return False

        if job.running:
            return False
        attempt.state = WalkState.ENDED
        return True

    return _condition


def job_get_result(open_api: ApiFactory, attempt: WalkAttempt) -> Condition:
    def _condition() -> bool:
        try:
            with open_api() as api:
                attempt.result = get_job_result(api, attempt.job_id)
        except JobNotFound as exc:
            metrics.LILY_JOB_ERRORS.inc()
            LOG.error(
                "Failed reading job result for walk %s: %s",
                attempt.config.name,
                exc,
                extra={"job_id": attempt.job_id},
            )
            return False
        except LilyAPIError as exc:
            _log_api_error(exc, "Failed reading job result", job_id=attempt.job_id)
            return False
        attempt.state = WalkState.RESULT_FETCHED
        return True

    return _condition


def touch_export_files(manifest: ExportManifest, walk_info: WalkInfo) -> None:
    """Ensure a file exists for every table expected from the walk.

    Tables with no rows for the period produce no file, so an empty one is
    created to tell them apart from output that went missing.
    """

    for ef in manifest.files:
        walk_info.walk_file(ef.table_name).touch(exist_ok=True)


class WalkScheduler:
    """Runs the walk needed by a manifest through to a verified result."""

    def __init__(
        self,
        open_api: ApiFactory,
        storage_name: str,
        storage_path: Path | str,
        *,
        poll_interval: float = 30.0,
        cancel: threading.Event | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.open_api = open_api
        self.storage_name = storage_name
        self.storage_path = Path(storage_path)
        self.poll_interval = poll_interval
        self.cancel = cancel or threading.Event()
        self.clock = clock or _utcnow
        self.last_attempt: WalkAttempt | None = None

    def attempt_walk(self, manifest: ExportManifest) -> WalkInfo:
        """Run a single walk attempt, raising :class:`ArchiverError` on failure."""

        walk_cfg = walk_for_manifest(manifest, self.storage_name, self.storage_path, clock=self.clock)
        attempt = WalkAttempt(config=walk_cfg)
        self.last_attempt = attempt
        LOG.debug("Using tasks %s", ",".join(walk_cfg.tasks), extra={"walk": walk_cfg.name})

        LOG.info("Starting walk %s", walk_cfg.name, extra={"walk": walk_cfg.name})
        wait_until(job_has_been_started(self.open_api, attempt), 0, self.poll_interval, self.cancel)

        LOG.info(
            "Waiting for walk %s to complete",
            walk_cfg.name,
            extra={"walk": walk_cfg.name, "job_id": attempt.job_id},
        )
        wait_until(
            job_has_ended(self.open_api, attempt),
            self.poll_interval,
            self.poll_interval,
            self.cancel,
        )

        LOG.info("Walk %s complete", walk_cfg.name, extra={"walk": walk_cfg.name, "job_id": attempt.job_id})
        wait_until(job_get_result(self.open_api, attempt), 0, self.poll_interval, self.cancel)

        if attempt.result is not None and attempt.result.error:
            attempt.state = WalkState.FAILED
            raise WalkFailed(f"walk {walk_cfg.name} failed: {attempt.result.error}")

        walk_info = WalkInfo(name=walk_cfg.name, path=self.storage_path, format=DEFAULT_FORMAT)
        try:
            touch_export_files(manifest, walk_info)
        except OSError as exc:
            attempt.state = WalkState.FAILED
            raise WalkFailed(f"failed to touch export files: {exc}") from exc

        attempt.state = WalkState.FINALIZED
        return walk_info

    def walk_is_completed(self, manifest: ExportManifest, out: List[WalkInfo]) -> Condition:
        """Condition that retries whole walk attempts until one succeeds.

        The resulting :class:`WalkInfo` is appended to ``out``.
        """

        def _condition() -> bool:
            try:
                walk_info = self.attempt_walk(manifest)
            except ArchiverError as exc:
                metrics.WALK_ERRORS.inc()
                LOG.error("Walk attempt failed: %s", exc, extra={"date": str(manifest.period.date)})
                return False
            out.append(walk_info)
            return True

        return _condition

    def complete_walk(self, manifest: ExportManifest) -> WalkInfo:
        completed: List[WalkInfo] = []
        wait_until(self.walk_is_completed(manifest, completed), 0, self.poll_interval, self.cancel)
        return completed[-1]


__all__ = [
    "MAX_WALK_NAME_ATTEMPTS",
    "PROCESSING_REPORT_TABLE",
    "WalkAttempt",
    "WalkInfo",
    "WalkScheduler",
    "WalkState",
    "equal_task_sets",
    "find_existing_job",
    "get_job_result",
    "job_get_result",
    "job_has_been_started",
    "job_has_ended",
    "job_matches",
    "tasks_for_manifest",
    "touch_export_files",
    "unused_walk_name",
    "walk_file_path",
]
