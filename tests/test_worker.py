"""Tests for the background worker."""

import re
import threading
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from app import worker as worker_module
from app.config import settings
from app.models.run import RUN_FAILED, RUN_RUNNING, RUN_SUCCEEDED, GenerationRun
from app.worker import (
    DailySchedule,
    Worker,
    active_runs,
    execute_run,
    fail_stale_runs,
    launch_run,
    new_run_id,
    resume_interrupted_runs,
)

SHANGHAI = ZoneInfo("Asia/Shanghai")


class RecordingLauncher:
    def __init__(self):
        self.calls = []

    def __call__(self, run_id, city=None):
        self.calls.append((run_id, city))


def age_run(session_factory, run_id, updated_at):
    db = session_factory()
    try:
        row = db.query(GenerationRun).filter_by(run_id=run_id).one()
        row.created_at = updated_at
        row.updated_at = updated_at
        db.commit()
    finally:
        db.close()


def test_new_run_ids_are_unique():
    ids = {new_run_id() for _ in range(200)}

    assert len(ids) == 200
    assert all(re.fullmatch(r"\d{13}-[0-9a-f]{6}", run_id) for run_id in ids)


def test_fail_stale_runs(ledger, session_factory):
    now = datetime(2026, 10, 19, 12, 0, 0)
    ledger.insert("stale", "杭州", "2026-10-19")
    ledger.insert("fresh", "杭州", "2026-10-19")
    ledger.insert("done", "杭州", "2026-10-19")
    ledger.mark_terminal("done", RUN_SUCCEEDED, image_key="cards/done.png")
    age_run(session_factory, "stale", now - timedelta(hours=1))
    age_run(session_factory, "fresh", now - timedelta(minutes=5))
    age_run(session_factory, "done", now - timedelta(hours=2))

    assert fail_stale_runs(ledger, 1800, now=now) == 1

    stale = ledger.get("stale")
    assert stale.status == RUN_FAILED
    assert "timed out" in stale.error_message
    assert stale.duration_ms == 3_600_000
    assert ledger.get("fresh").status == RUN_RUNNING
    assert ledger.get("done").status == RUN_SUCCEEDED


def test_fail_stale_runs_skips_active(ledger, session_factory, monkeypatch):
    now = datetime(2026, 10, 19, 12, 0, 0)
    ledger.insert("busy", "杭州", "2026-10-19")
    age_run(session_factory, "busy", now - timedelta(hours=1))
    monkeypatch.setattr(worker_module, "_active_runs", {"busy"})

    assert fail_stale_runs(ledger, 1800, now=now) == 0
    assert ledger.get("busy").status == RUN_RUNNING


def test_resume_interrupted_runs(ledger):
    ledger.insert("r1", "杭州", "2026-10-19")
    ledger.insert("r2", "北京", "2026-10-19")
    ledger.insert("r3", "上海", "2026-10-19")
    ledger.mark_terminal("r3", RUN_FAILED, error_message="boom")
    launcher = RecordingLauncher()

    assert resume_interrupted_runs(ledger, launcher) == 2
    assert sorted(launcher.calls) == [("r1", "杭州"), ("r2", "北京")]


class StubPipeline:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def execute(self, run_id, city=None):
        self.calls.append((run_id, city))
        assert run_id in active_runs()
        if self.error:
            raise self.error
        return worker_module.RunOutcome(run_id=run_id, status=RUN_SUCCEEDED, city=city)


def test_execute_run_tracks_active_runs():
    pipeline = StubPipeline()

    outcome = execute_run("r1", "杭州", pipeline_factory=lambda: pipeline)

    assert outcome.succeeded
    assert pipeline.calls == [("r1", "杭州")]
    assert "r1" not in active_runs()


def test_execute_run_skips_duplicate(monkeypatch):
    pipeline = StubPipeline()
    monkeypatch.setattr(worker_module, "_active_runs", {"r1"})

    assert execute_run("r1", pipeline_factory=lambda: pipeline) is None
    assert pipeline.calls == []


def test_execute_run_survives_crash():
    pipeline = StubPipeline(error=RuntimeError("boom"))

    assert execute_run("r1", pipeline_factory=lambda: pipeline) is None
    assert "r1" not in active_runs()


def test_daily_schedule_fires_once_per_day():
    schedule = DailySchedule.parse("08:00", "Asia/Shanghai")

    assert not schedule.due(datetime(2026, 10, 19, 7, 59, tzinfo=SHANGHAI))
    assert schedule.due(datetime(2026, 10, 19, 8, 0, tzinfo=SHANGHAI))

    schedule.mark_fired(datetime(2026, 10, 19, 8, 0, tzinfo=SHANGHAI))
    assert not schedule.due(datetime(2026, 10, 19, 20, 0, tzinfo=SHANGHAI))
    assert schedule.due(datetime(2026, 10, 20, 8, 1, tzinfo=SHANGHAI))


def test_daily_schedule_uses_its_timezone():
    schedule = DailySchedule.parse("08:00", "Asia/Shanghai")

    # 23:30 UTC is 07:30 the next morning in Shanghai
    assert not schedule.due(datetime(2026, 10, 18, 23, 30, tzinfo=ZoneInfo("UTC")))
    assert schedule.due(datetime(2026, 10, 19, 0, 30, tzinfo=ZoneInfo("UTC")))


def test_daily_schedule_skips_slot_passed_before_start():
    schedule = DailySchedule.parse("08:00", "Asia/Shanghai")

    schedule.skip_if_passed(datetime(2026, 10, 19, 9, 0, tzinfo=SHANGHAI))

    assert not schedule.due(datetime(2026, 10, 19, 9, 1, tzinfo=SHANGHAI))
    assert schedule.due(datetime(2026, 10, 20, 8, 0, tzinfo=SHANGHAI))


@pytest.mark.parametrize("value", ["24:00", "08:60", "eight"])
def test_daily_schedule_rejects_bad_values(value):
    with pytest.raises(ValueError):
        DailySchedule.parse(value, "Asia/Shanghai")


def test_tick_fires_schedule_once(ledger, monkeypatch):
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", True)
    monkeypatch.setattr(settings, "DAILY_SCHEDULE", "08:00")
    monkeypatch.setattr(settings, "TIMEZONE", "Asia/Shanghai")
    launcher = RecordingLauncher()
    worker = Worker(ledger=ledger, launcher=launcher)

    worker.tick(datetime(2026, 10, 19, 7, 0, tzinfo=SHANGHAI))
    assert launcher.calls == []

    worker.tick(datetime(2026, 10, 19, 8, 5, tzinfo=SHANGHAI))
    worker.tick(datetime(2026, 10, 19, 8, 10, tzinfo=SHANGHAI))

    assert len(launcher.calls) == 1
    assert launcher.calls[0][1] is None


def test_scheduler_can_be_disabled(ledger, monkeypatch):
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", False)
    launcher = RecordingLauncher()
    worker = Worker(ledger=ledger, launcher=launcher)

    worker.tick(datetime(2026, 10, 19, 8, 5, tzinfo=SHANGHAI))

    assert launcher.calls == []


def test_trigger_launches_with_city(ledger):
    launcher = RecordingLauncher()
    worker = Worker(ledger=ledger, launcher=launcher)

    run_id = worker.trigger("杭州")

    assert launcher.calls == [(run_id, "杭州")]


class BlockingPipeline:
    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()

    def execute(self, run_id, city=None):
        self.started.set()
        self.release.wait(5)
        return worker_module.RunOutcome(run_id=run_id, status=RUN_SUCCEEDED, city=city)


def test_launched_run_is_active_before_its_thread_runs(ledger, session_factory, monkeypatch):
    """The watchdog must not fail a run whose thread has not started executing yet."""
    now = datetime(2026, 10, 19, 12, 0, 0)
    ledger.insert("r-launch", "杭州", "2026-10-19")
    age_run(session_factory, "r-launch", now - timedelta(hours=1))
    pipeline = BlockingPipeline()
    monkeypatch.setattr(worker_module, "_active_runs", set())
    monkeypatch.setattr(threading.Thread, "start", lambda self: None)

    thread = launch_run("r-launch", "杭州", pipeline_factory=lambda: pipeline)

    assert thread is not None
    assert "r-launch" in active_runs()
    assert fail_stale_runs(ledger, 1800, now=now) == 0
    assert ledger.get("r-launch").status == RUN_RUNNING


def test_launched_run_is_released_when_done():
    pipeline = BlockingPipeline()

    thread = launch_run("r-done", pipeline_factory=lambda: pipeline)
    assert pipeline.started.wait(5)
    assert "r-done" in active_runs()
    assert launch_run("r-done", pipeline_factory=lambda: pipeline) is None

    pipeline.release.set()
    thread.join(5)

    assert "r-done" not in active_runs()
