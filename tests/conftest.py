from __future__ import annotations

import gzip
import sys
from pathlib import Path
from types import SimpleNamespace

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from chain_archiver import ship as ship_mod


@pytest.fixture()
def fake_gzip(monkeypatch: pytest.MonkeyPatch) -> list[list[str]]:
    """Replace the gzip subprocess with an in-process compressor."""

    commands: list[list[str]] = []

    def fake_run(command, check, stdout, stderr):
        commands.append(list(command))
        stdout.write(gzip.compress(Path(command[-1]).read_bytes()))
        return SimpleNamespace(returncode=0)

    monkeypatch.setattr(ship_mod.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(ship_mod.subprocess, "run", fake_run)
    return commands
