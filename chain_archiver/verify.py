"""Classify the outcome of each task of a walk from its processing report."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .errors import VerificationError
from .walk import PROCESSING_REPORT_TABLE, WalkInfo

LOG = logging.getLogger(__name__)

REPORT_FIELDS = (
    "height",
    "state_root",
    "reporter",
    "task",
    "started_at",
    "completed_at",
    "status",
    "status_information",
    "errors_detected",
)

STATUS_ERROR = "ERROR"


@dataclass
class TaskStatus:
    task: str
    reports: int = 0
    error_heights: List[int] = field(default_factory=list)
    error: Optional[str] = None

    def is_ok(self) -> bool:
        return self.error is None


@dataclass
class VerificationReport:
    walk: str
    task_status: Dict[str, TaskStatus] = field(default_factory=dict)

    def ok_tasks(self) -> List[str]:
        return [task for task, status in self.task_status.items() if status.is_ok()]

    def failed_tasks(self) -> List[str]:
        return [task for task, status in self.task_status.items() if not status.is_ok()]


def _read_report_rows(walk_info: WalkInfo) -> List[dict[str, str]]:
    report_path = walk_info.walk_file(PROCESSING_REPORT_TABLE)
    try:
        with report_path.open(newline="", encoding="utf-8") as handle:
            lines = handle.read().splitlines()
    except OSError as exc:
        raise VerificationError(f"read processing report {report_path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise VerificationError(f"decode processing report {report_path}: {exc}") from exc

    if not lines:
        return []
    header = next(csv.reader(lines[:1]))
    if "task" in header:
        reader = csv.DictReader(lines)
    else:
        reader = csv.DictReader(lines, fieldnames=REPORT_FIELDS)
    try:
        return list(reader)
    except csv.Error as exc:
        raise VerificationError(f"parse processing report {report_path}: {exc}") from exc


def verify_tasks(walk_info: WalkInfo, tasks: Iterable[str]) -> VerificationReport:
    """Return a :class:`TaskStatus` for every task in ``tasks``.

    A task is considered OK when the report holds at least one entry for it and
    none of its entries has an ``ERROR`` status.
    """

    report = VerificationReport(walk=walk_info.name)
    for task in tasks:
        report.task_status[task] = TaskStatus(task=task)

    for row in _read_report_rows(walk_info):
        status = report.task_status.get((row.get("task") or "").strip())
        if status is None:
            continue
        status.reports += 1
        if (row.get("status") or "").strip().upper() == STATUS_ERROR:
            try:
                status.error_heights.append(int(row.get("height") or -1))
            except ValueError:
                status.error_heights.append(-1)

    for status in report.task_status.values():
        if status.reports == 0:
            status.error = "no processing reports found"
        elif status.error_heights:
            status.error = f"errors reported at {len(status.error_heights)} heights"
        if status.error:
            LOG.warning(
                "Task %s failed verification: %s",
                status.task,
                status.error,
                extra={"walk": walk_info.name, "task": status.task},
            )
    return report


__all__ = ["REPORT_FIELDS", "TaskStatus", "VerificationReport", "verify_tasks"]
