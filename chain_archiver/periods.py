"""Calendar model mapping chain heights onto UTC day-sized export periods.

Heights are Filecoin epochs: one epoch every thirty seconds counted from the
genesis timestamp. An export period covers every height whose timestamp falls
on one UTC calendar day. Periods tile the height space without gaps, so the
period following ``p`` always starts at ``p.end_height + 1``.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

from .errors import DateBeforeGenesis

EPOCH_DURATION_SECONDS = 30
EPOCHS_IN_DAY = 24 * 60 * 60 // EPOCH_DURATION_SECONDS
FINALITY = 900
"""Number of epochs after which a tipset is considered final."""


def unix_to_height(ts: int, genesis_ts: int) -> int:
    return (ts - genesis_ts) // EPOCH_DURATION_SECONDS


def height_to_unix(height: int, genesis_ts: int) -> int:
    return height * EPOCH_DURATION_SECONDS + genesis_ts


@dataclass(frozen=True, order=True)
class Date:
    """A UTC calendar day."""

    year: int
    month: int
    day: int

    @classmethod
    def from_date(cls, value: dt.date) -> "Date":
        return cls(value.year, value.month, value.day)

    @classmethod
    def from_timestamp(cls, ts: int) -> "Date":
        return cls.from_date(dt.datetime.fromtimestamp(ts, tz=dt.timezone.utc).date())

    @classmethod
    def parse(cls, raw: str) -> "Date":
        """Parse a ``YYYY-MM-DD`` string."""

        return cls.from_date(dt.datetime.strptime(raw.strip(), "%Y-%m-%d").date())

    def as_date(self) -> dt.date:
        return dt.date(self.year, self.month, self.day)

    def next(self) -> "Date":
        return Date.from_date(self.as_date() + dt.timedelta(days=1))

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"


@dataclass(frozen=True)
class ExportPeriod:
    """Inclusive range of heights covering one calendar day."""

    date: Date
    start_height: int
    end_height: int

    def next(self) -> "ExportPeriod":
        """Return the period covering the following calendar day."""

        return ExportPeriod(
            date=self.date.next(),
            start_height=self.end_height + 1,
            end_height=self.end_height + EPOCHS_IN_DAY,
        )


def midnight_epoch_for_ts(ts: int, genesis_ts: int) -> int:
    """Return the height at UTC midnight at the start of the day holding ``ts``."""

    moment = dt.datetime.fromtimestamp(ts, tz=dt.timezone.utc)
    midnight = dt.datetime(moment.year, moment.month, moment.day, tzinfo=dt.timezone.utc)
    return unix_to_height(int(midnight.timestamp()), genesis_ts)


def first_export_period(genesis_ts: int) -> ExportPeriod:
    """Return the period running from genesis to the end of that UTC day."""

    genesis = dt.datetime.fromtimestamp(genesis_ts, tz=dt.timezone.utc)
    next_day_ts = int((genesis + dt.timedelta(days=1)).timestamp())
    midnight_after_genesis = midnight_epoch_for_ts(next_day_ts, genesis_ts)
    return ExportPeriod(
        date=Date.from_date(genesis.date()),
        start_height=0,
        end_height=midnight_after_genesis - 1,
    )


def first_export_period_after(min_height: int, genesis_ts: int) -> ExportPeriod:
    """Return the first period starting at or after ``min_height``."""

    # Iterating keeps the result consistent with the ranges produced by next()
    period = first_export_period(genesis_ts)
    while period.start_height < min_height:
        period = period.next()
    return period


def export_period_for_date(date: Date, genesis_ts: int) -> ExportPeriod:
    """Return the period covering ``date``.

    Raises :class:`DateBeforeGenesis` when ``date`` is earlier than the day of
    genesis.
    """

    period = first_export_period(genesis_ts)
    if period.date > date:
        raise DateBeforeGenesis(date)
    while period.date != date:
        period = period.next()
    return period


__all__ = [
    "Date",
    "EPOCHS_IN_DAY",
    "EPOCH_DURATION_SECONDS",
    "ExportPeriod",
    "FINALITY",
    "export_period_for_date",
    "first_export_period",
    "first_export_period_after",
    "height_to_unix",
    "midnight_epoch_for_ts",
    "unix_to_height",
]
