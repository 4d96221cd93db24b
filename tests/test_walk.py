from __future__ import annotations

import datetime as dt
import random
from pathlib import Path

import httpx
import pytest

from chain_archiver import metrics
from chain_archiver.errors import JobNotFound, StorageError, WalkFailed, WalkNameUnavailable
from chain_archiver.lily import JobListResult, WalkConfig, api_factory
from chain_archiver.manifest import manifest_for_period
from chain_archiver.periods import first_export_period
from chain_archiver.walk import (
    MAX_WALK_NAME_ATTEMPTS,
    WalkAttempt,
    WalkInfo,
    WalkScheduler,
    WalkState,
    job_has_been_started,
    job_has_ended,
    job_matches,
    tasks_for_manifest,
    unused_walk_name,
    walk_for_manifest,
)

from fakes import MAINNET_GENESIS, FakeLilyAPI

FIXED_NOW = dt.datetime(2020, 8, 25, 9, 0, tzinfo=dt.timezone.utc)


def _clock() -> dt.datetime:
    return FIXED_NOW


def _manifest(ship_path: Path, tables):
    return manifest_for_period(
        first_export_period(MAINNET_GENESIS), "mainnet", MAINNET_GENESIS, ship_path, 1, tables
    )


def _running_walk(job_id: int, tasks: list[str], *, storage: str = "CSV", to: int = 239) -> JobListResult:
    return JobListResult(
        id=job_id,
        name=f"arch0824-{job_id}-2020-08-24",
        type="walk",
        running=True,
        tasks=tasks,
        params={"storage": storage, "minHeight": "0", "maxHeight": str(to)},
    )


def _scheduler(api: FakeLilyAPI, storage_path: Path) -> WalkScheduler:
    return WalkScheduler(api.open, "CSV", storage_path, poll_interval=0, clock=_clock)


def test_tasks_for_manifest_only_covers_unshipped_files(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path, ["block_headers", "block_parents", "messages", "receipts", "chain_consensus"])
    for ef in manifest.files:
        if ef.table_name in {"messages", "receipts"}:
            ef.shipped = True
    assert tasks_for_manifest(manifest) == ["blocks", "consensus"]


def test_walk_config_always_includes_consensus(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path / "archive", ["messages"])
    config = walk_for_manifest(manifest, "CSV", tmp_path, clock=_clock)
    assert config.name == "arch0825-2020-08-24"
    assert config.tasks == ["messages", "consensus"]
    assert (config.from_height, config.to_height) == (0, 239)
    assert config.storage == "CSV"
    assert config.restart_on_failure is False


def test_unused_walk_name_avoids_existing_reports(tmp_path: Path) -> None:
    (tmp_path / "arch0825-2020-08-24-visor_processing_reports.csv").write_text("")
    name = unused_walk_name(tmp_path, "2020-08-24", clock=_clock, rng=random.Random(1))
    assert name.startswith("arch0825-")
    assert name.endswith("-2020-08-24")
    assert name != "arch0825-2020-08-24"


def test_unused_walk_name_gives_up(tmp_path: Path) -> None:
    class ConstantRandom(random.Random):
        def randrange(self, *args, **kwargs) -> int:
            return 42

    (tmp_path / "arch0825-2020-08-24-visor_processing_reports.csv").write_text("")
    (tmp_path / "arch0825-42-2020-08-24-visor_processing_reports.csv").write_text("")
    with pytest.raises(WalkNameUnavailable, match=str(MAX_WALK_NAME_ATTEMPTS)):
        unused_walk_name(tmp_path, "2020-08-24", clock=_clock, rng=ConstantRandom())


def test_job_matching_ignores_task_order() -> None:
    config = WalkConfig(name="x", tasks=["blocks", "consensus", "messages"], from_height=0, to_height=239, storage="CSV")
    assert job_matches(_running_walk(1, ["messages", "consensus", "blocks"]), config)
    assert not job_matches(_running_walk(1, ["messages", "consensus"]), config)
    assert not job_matches(_running_walk(1, ["blocks", "consensus", "messages"], storage="other"), config)
    assert not job_matches(_running_walk(1, ["blocks", "consensus", "messages"], to=240), config)

    finished = _running_walk(1, ["blocks", "consensus", "messages"])
    finished.running = False
    assert not job_matches(finished, config)

    watch = _running_walk(1, ["blocks", "consensus", "messages"])
    watch.type = "watch"
    assert not job_matches(watch, config)


def test_running_matching_job_is_adopted() -> None:
    existing = _running_walk(55, ["consensus", "blocks"])
    api = FakeLilyAPI([existing])
    config = WalkConfig(name="arch0825-2020-08-24", tasks=["blocks", "consensus"], from_height=0, to_height=239, storage="CSV")
    attempt = WalkAttempt(config=config)

    assert job_has_been_started(api.open, attempt)() is True
    assert attempt.job_id == 55
    assert attempt.adopted is True
    assert attempt.state is WalkState.RUNNING
    assert config.name == existing.name
    assert api.submitted == []
    assert api.opened == api.closed == 1


def test_new_job_is_submitted_when_nothing_matches() -> None:
    api = FakeLilyAPI([_running_walk(55, ["messages", "consensus"])])
    config = WalkConfig(name="arch0825-2020-08-24", tasks=["blocks", "consensus"], from_height=0, to_height=239, storage="CSV")
    attempt = WalkAttempt(config=config)

    assert job_has_been_started(api.open, attempt)() is True
    assert attempt.adopted is False
    assert attempt.job_id == 101
    assert api.submitted == [config]


def test_start_retries_on_connection_failure() -> None:
    api = FakeLilyAPI()
    api.connection_failures = 1
    config = WalkConfig(name="w", tasks=["consensus"], from_height=0, to_height=239, storage="CSV")
    attempt = WalkAttempt(config=config)
    condition = job_has_been_started(api.open, attempt)

    assert condition() is False
    assert api.submitted == []
    assert condition() is True
    assert len(api.submitted) == 1
    assert api.opened == api.closed == 2


def test_job_has_ended_treats_missing_job_as_permanent() -> None:
    api = FakeLilyAPI()
    attempt = WalkAttempt(config=WalkConfig("w", ["consensus"], 0, 239, "CSV"), job_id=404)
    with pytest.raises(JobNotFound):
        job_has_ended(api.open, attempt)()
    assert attempt.state is WalkState.FAILED


def test_job_has_ended_retries_transient_errors() -> None:
    job = _running_walk(5, ["consensus"])
    api = FakeLilyAPI([job], polls_until_done=1)
    api.connection_failures = 1
    attempt = WalkAttempt(config=WalkConfig("w", ["consensus"], 0, 239, "CSV"), job_id=5)
    condition = job_has_ended(api.open, attempt)

    assert condition() is False  # connection refused
    assert condition() is False  # still running
    assert condition() is True
    assert attempt.state is WalkState.ENDED


def test_attempt_walk_submits_and_touches_files(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path / "archive", ["block_headers", "chain_consensus"])
    api = FakeLilyAPI(polls_until_done=2)
    walk_info = _scheduler(api, tmp_path).attempt_walk(manifest)

    assert walk_info.name == "arch0825-2020-08-24"
    assert len(api.submitted) == 1
    assert api.submitted[0].tasks == ["blocks", "consensus"]
    assert walk_info.walk_file("block_headers").read_bytes() == b""
    assert walk_info.walk_file("chain_consensus").exists()
    assert api.opened == api.closed


def test_attempt_walk_keeps_existing_output(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path / "archive", ["block_headers"])

    def write_output(config: WalkConfig) -> None:
        (tmp_path / f"{config.name}-block_headers.csv").write_text("height,cid\n1,bafy\n")

    api = FakeLilyAPI(on_submit=write_output)
    walk_info = _scheduler(api, tmp_path).attempt_walk(manifest)
    assert walk_info.walk_file("block_headers").read_text() == "height,cid\n1,bafy\n"


def test_attempt_walk_adopts_running_job(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path / "archive", ["block_headers"])
    existing = _running_walk(77, ["consensus", "blocks"])
    api = FakeLilyAPI([existing])

    walk_info = _scheduler(api, tmp_path).attempt_walk(manifest)
    assert api.submitted == []
    assert walk_info.name == existing.name


def test_attempt_walk_fails_on_job_error(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path / "archive", ["block_headers"])
    api = FakeLilyAPI(job_error="out of memory")
    with pytest.raises(WalkFailed, match="out of memory"):
        _scheduler(api, tmp_path).attempt_walk(manifest)


def test_complete_walk_retries_after_failed_attempt(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path / "archive", ["block_headers"])

    def recover_on_second_submit(config: WalkConfig) -> None:
        if len(api.submitted) == 2:
            api.job_error = ""

    api = FakeLilyAPI(job_error="out of memory", on_submit=recover_on_second_submit)
    before = metrics.METRICS_REGISTRY.get_sample_value("archiver_walk_errors_total") or 0.0

    walk_info = _scheduler(api, tmp_path).complete_walk(manifest)

    assert len(api.submitted) == 2
    assert walk_info.name == "arch0825-2020-08-24"
    assert api.jobs[0].error == "out of memory"
    assert api.jobs[1].error == ""
    assert metrics.METRICS_REGISTRY.get_sample_value("archiver_walk_errors_total") == before + 1


def test_attempt_walk_finalizes_attempt(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path / "archive", ["block_headers"])
    scheduler = _scheduler(FakeLilyAPI(), tmp_path)
    scheduler.attempt_walk(manifest)
    assert scheduler.last_attempt is not None
    assert scheduler.last_attempt.state is WalkState.FINALIZED
    assert scheduler.last_attempt.result is not None


def test_failed_walk_leaves_attempt_failed(tmp_path: Path) -> None:
    manifest = _manifest(tmp_path / "archive", ["block_headers"])
    scheduler = _scheduler(FakeLilyAPI(job_error="out of memory"), tmp_path)
    with pytest.raises(WalkFailed):
        scheduler.attempt_walk(manifest)
    assert scheduler.last_attempt.state is WalkState.FAILED


def _malformed_job_list(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200, json={"jsonrpc": "2.0", "id": 1, "result": [{"Name": "x", "Type": "walk"}]}
    )


def test_malformed_job_list_is_retried() -> None:
    open_api = api_factory("http://lily.test/rpc/v0", transport=httpx.MockTransport(_malformed_job_list))
    config = WalkConfig(name="w", tasks=["consensus"], from_height=0, to_height=239, storage="CSV")
    errors_before = metrics.METRICS_REGISTRY.get_sample_value("archiver_lily_job_errors_total") or 0.0

    assert job_has_been_started(open_api, WalkAttempt(config=config))() is False
    assert job_has_ended(open_api, WalkAttempt(config=config, job_id=1))() is False
    assert metrics.METRICS_REGISTRY.get_sample_value("archiver_lily_job_errors_total") == errors_before + 2


def test_unreadable_storage_path_is_a_storage_error(tmp_path: Path) -> None:
    not_a_dir = tmp_path / "export"
    not_a_dir.write_text("")
    with pytest.raises(StorageError):
        unused_walk_name(not_a_dir, "2020-08-24", clock=_clock)


def test_walk_attempt_with_unreadable_storage_is_retried(tmp_path: Path) -> None:
    not_a_dir = tmp_path / "export"
    not_a_dir.write_text("")
    manifest = _manifest(tmp_path / "archive", ["block_headers"])
    api = FakeLilyAPI()
    completed: list[WalkInfo] = []

    condition = _scheduler(api, not_a_dir).walk_is_completed(manifest, completed)

    assert condition() is False
    assert completed == []
    assert api.submitted == []
