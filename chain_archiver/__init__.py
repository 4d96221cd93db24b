"""Archive derived chain tables exported by a Lily node.

The package computes the files expected for each UTC day of chain history,
schedules (or adopts) the Lily walk that produces them, verifies the walk's
processing report and ships compressed copies into the archive. State is never
stored outside the archive itself, so interrupted runs resume by recomputing
what is missing. See ``DESIGN.md`` for an overview.
"""

from __future__ import annotations

__all__ = [
    "DEFAULT_SCHEDULE",
    "ExportRunner",
    "create_cron_entry",
]

from .schedule import DEFAULT_SCHEDULE, create_cron_entry  # noqa: E402
from .export import ExportRunner  # noqa: E402
