"""Crontab lines for hosts that export each day without Prefect.

A day can only be walked once its last height is a full finality old, which on
every supported network is 07:30 UTC the following day. The default schedule
starts shortly after that so the finality wait inside the export is brief.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

DEFAULT_SCHEDULE: Dict[str, str] = {
    "mainnet": "0 8 * * *",
    "calibnet": "30 8 * * *",
}

DEFAULT_PYTHON = "/usr/local/bin/python"


@dataclass
class CronEntry:
    """One crontab line exporting the previous UTC day of ``network``."""

    network: str
    expression: str
    command: str
    environment: Dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        assignments = " ".join(f"{key}={value}" for key, value in sorted(self.environment.items()))
        command = f"{assignments} {self.command}" if assignments else self.command
        return f"{self.expression} {command}"


def create_cron_entry(network: str, command: str | None = None) -> CronEntry:
    """Return the crontab line for ``network`` from :data:`DEFAULT_SCHEDULE`.

    Without ``command`` the line runs ``python -m chain_archiver export`` with
    ``ARCHIVER_NETWORK`` set, so the remaining settings come from the host's
    environment or ``.env`` file. A custom ``command`` is used verbatim.
    """

    try:
        expression = DEFAULT_SCHEDULE[network]
    except KeyError as exc:
        raise ValueError(f"Unsupported network '{network}'.") from exc

    if command is not None:
        return CronEntry(network=network, expression=expression, command=command)
    return CronEntry(
        network=network,
        expression=expression,
        command=f"{DEFAULT_PYTHON} -m chain_archiver export",
        environment={"ARCHIVER_NETWORK": network},
    )


__all__ = ["CronEntry", "DEFAULT_PYTHON", "DEFAULT_SCHEDULE", "create_cron_entry"]
