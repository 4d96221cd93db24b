"""Prometheus counters describing archiver progress and failures."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, start_http_server

METRICS_REGISTRY = CollectorRegistry()

PROCESS_EXPORT_STARTED = Counter(
    "archiver_process_export_started_total",
    "Number of times processing of an export period was started",
    registry=METRICS_REGISTRY,
)
PROCESS_EXPORT_ERRORS = Counter(
    "archiver_process_export_errors_total",
    "Number of failed attempts to process an export period",
    registry=METRICS_REGISTRY,
)
WALK_ERRORS = Counter(
    "archiver_walk_errors_total",
    "Number of errors encountered while running a walk",
    registry=METRICS_REGISTRY,
)
LILY_CONNECTION_ERRORS = Counter(
    "archiver_lily_connection_errors_total",
    "Number of failed connections to the Lily API",
    registry=METRICS_REGISTRY,
)
LILY_JOB_ERRORS = Counter(
    "archiver_lily_job_errors_total",
    "Number of errors reading or creating Lily jobs",
    registry=METRICS_REGISTRY,
)
VERIFY_TABLE_ERRORS = Counter(
    "archiver_verify_table_errors_total",
    "Number of tasks that failed verification",
    registry=METRICS_REGISTRY,
)
SHIP_TABLE_ERRORS = Counter(
    "archiver_ship_table_errors_total",
    "Number of export files that could not be shipped",
    registry=METRICS_REGISTRY,
)
FILES_SHIPPED = Counter(
    "archiver_files_shipped_total",
    "Number of export files shipped to the archive",
    registry=METRICS_REGISTRY,
)


def serve_metrics(port: int, addr: str = "0.0.0.0") -> None:
    """Expose :data:`METRICS_REGISTRY` on a background HTTP server."""

    start_http_server(port, addr=addr, registry=METRICS_REGISTRY)
