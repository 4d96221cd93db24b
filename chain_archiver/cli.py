"""Export derived chain tables from a Lily node into a durable archive."""

from __future__ import annotations

import argparse
import datetime as dt
import logging
import signal
import sys
import threading

from pydantic import ValidationError

from .config import get_settings
from .errors import ArchiverError
from .export import ExportRunner
from .manifest import manifest_for_date
from .metrics import serve_metrics
from .periods import Date
from .schedule import DEFAULT_SCHEDULE, create_cron_entry
from .wait import WaitCancelled

LOG = logging.getLogger(__name__)


def _parse_date(raw: str) -> Date:
    try:
        return Date.parse(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date '{raw}', expected YYYY-MM-DD") from exc


def _yesterday() -> Date:
    return Date.from_date(dt.datetime.now(tz=dt.timezone.utc).date() - dt.timedelta(days=1))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="chain_archiver", description=__doc__)
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Continuously export every period from a minimum height")
    run.add_argument("--min-height", type=int, default=None, help="Lowest height to export")
    run.add_argument("--metrics-port", type=int, default=None, help="Serve Prometheus metrics on this port")

    export = sub.add_parser("export", help="Export a single day")
    export.add_argument(
        "date",
        nargs="?",
        type=_parse_date,
        default=None,
        help="Day to export (YYYY-MM-DD); defaults to the previous UTC day",
    )

    manifest = sub.add_parser("manifest", help="Show the shipped status of a day's files")
    manifest.add_argument("date", type=_parse_date, help="Day to inspect (YYYY-MM-DD)")

    cron = sub.add_parser("cron", help="Print the cron entry for a network")
    cron.add_argument("network", choices=sorted(DEFAULT_SCHEDULE))
    cron.add_argument("--command", dest="cron_command", help="Override the command executed by cron")
    return parser.parse_args(argv)


def _install_signal_handlers(cancel: threading.Event) -> None:
    def _handler(signum, frame):  # pragma: no cover - signal delivery
        LOG.info("Received signal %s, shutting down", signum)
        cancel.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _print_manifest(date: Date) -> int:
    settings = get_settings()
    em = manifest_for_date(
        date,
        settings.network,
        settings.network_genesis_ts,
        settings.ship_path,
        settings.schema_version,
        settings.allowed_tables(),
        compression=settings.compression_scheme,
    )
    print(f"{em.period.date} heights {em.period.start_height}-{em.period.end_height}")
    for ef in em.files:
        print(f"{'shipped' if ef.shipped else 'missing':8} {ef.path()}")
    return 0 if not em.has_unshipped_files() else 3


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.command == "cron":
        print(create_cron_entry(args.network, args.cron_command))
        return 0

    try:
        settings = get_settings()
    except ValidationError as exc:
        LOG.error("Invalid configuration: %s", exc)
        return 2

    try:
        if args.command == "manifest":
            return _print_manifest(args.date)

        cancel = threading.Event()
        _install_signal_handlers(cancel)
        runner = ExportRunner(settings, cancel=cancel)
        if args.command == "run":
            metrics_port = args.metrics_port or settings.metrics_port
            if metrics_port:
                serve_metrics(metrics_port)
            runner.run(args.min_height)
        else:
            runner.export_date(args.date or _yesterday())
    except WaitCancelled:
        LOG.info("Stopped before completion")
        return 0 if args.command == "run" else 1
    except ArchiverError as exc:
        LOG.error("Export failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - manual execution
    raise SystemExit(main(sys.argv[1:]))
