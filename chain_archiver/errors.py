"""Exception hierarchy shared by the archiver components."""

from __future__ import annotations


class ArchiverError(RuntimeError):
    """Base class for errors raised while archiving an export period."""


class DateBeforeGenesis(ArchiverError):
    """Raised when a requested date precedes the network genesis."""

    def __init__(self, date: object) -> None:
        super().__init__(f"date precedes genesis: {date}")
        self.date = date


class ManifestError(ArchiverError):
    """Raised when the archive filesystem cannot be inspected."""


class WalkNameUnavailable(ArchiverError):
    """Raised when no unused walk name could be found."""


class LilyAPIError(ArchiverError):
    """Raised when the Lily node cannot be reached or rejects a request."""


class JobNotFound(ArchiverError):
    """Raised when a job id is missing from the Lily job list."""

    def __init__(self, job_id: int | None = None) -> None:
        detail = "job not found" if job_id is None else f"job not found: {job_id}"
        super().__init__(detail)
        self.job_id = job_id


class WalkFailed(ArchiverError):
    """Raised when a walk finished with an error reported by Lily."""


class VerificationError(ArchiverError):
    """Raised when the processing report of a walk cannot be read."""


class ShipError(ArchiverError):
    """Raised when a single export file could not be shipped."""


class ShipFailed(ArchiverError):
    """Raised when one or more tasks or files of a period failed to ship."""


class LilyConnectionError(LilyAPIError):
    """Raised when no connection to the Lily node could be established."""


class StorageError(ArchiverError):
    """Raised when the walk working directory cannot be inspected."""
