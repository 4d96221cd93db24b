"""CLI helper that proxies to :func:`chain_archiver.cli.main`."""

from __future__ import annotations

import sys

from . import cli


def main(argv: list[str] | None = None) -> int:
    return cli.main(argv)


if __name__ == "__main__":  # pragma: no cover - manual execution
    raise SystemExit(main(sys.argv[1:]))
