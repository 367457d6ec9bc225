"""Tests for the run ledger."""

from datetime import datetime, timedelta

import pytest

from app.models.run import RUN_FAILED, RUN_RUNNING, RUN_SUCCEEDED, GenerationRun
from app.models.step import PipelineStep
from app.services.ledger import RunInProgressError


def set_times(session_factory, run_id, created_at, updated_at=None):
    db = session_factory()
    try:
        row = db.query(GenerationRun).filter_by(run_id=run_id).one()
        row.created_at = created_at
        row.updated_at = updated_at or created_at
        db.commit()
    finally:
        db.close()


@pytest.fixture
def seeded(ledger, session_factory):
    """Seven runs on two dates, one minute apart, mixed statuses."""
    base = datetime(2026, 10, 19, 8, 0, 0)
    for i in range(7):
        run_id = f"run-{i}"
        date = "2026-10-19" if i % 2 == 0 else "2026-10-18"
        ledger.insert(run_id, "杭州", date)
        if i % 3 == 0:
            ledger.mark_terminal(run_id, RUN_SUCCEEDED, image_key=f"cards/{run_id}.png", duration_ms=100)
        elif i % 3 == 1:
            ledger.mark_terminal(run_id, RUN_FAILED, error_message="boom", duration_ms=50)
        set_times(session_factory, run_id, base + timedelta(minutes=i))
    return ledger


def test_insert_creates_running_row(ledger):
    assert ledger.insert("r1", "杭州", "2026-10-19")

    run = ledger.get("r1")
    assert run.status == RUN_RUNNING
    assert run.city == "杭州"
    assert run.weather_date == "2026-10-19"
    assert run.created_at is not None
    assert run.image_key is None


def test_duplicate_insert_is_reported(ledger):
    assert ledger.insert("r1", "杭州", "2026-10-19")
    assert not ledger.insert("r1", "北京", "2026-10-20")

    assert ledger.get("r1").city == "杭州"


def test_update_writes_known_fields(ledger):
    ledger.insert("r1", "杭州", "2026-10-19")

    assert ledger.update("r1", temp_min=10, temp_max=18, weather_condition="多云") == 1

    run = ledger.get("r1")
    assert (run.temp_min, run.temp_max, run.weather_condition) == (10, 18, "多云")
    assert run.status == RUN_RUNNING


def test_update_rejects_unknown_fields(ledger):
    ledger.insert("r1", "杭州", "2026-10-19")

    with pytest.raises(ValueError):
        ledger.update("r1", status=RUN_SUCCEEDED)
    with pytest.raises(ValueError):
        ledger.update("r1", colour="blue")


def test_update_missing_run_changes_nothing(ledger):
    assert ledger.update("missing", temp_min=1) == 0


def test_terminal_transition_applies_once(ledger):
    ledger.insert("r1", "杭州", "2026-10-19")

    assert ledger.mark_terminal("r1", RUN_FAILED, error_message="boom")
    assert not ledger.mark_terminal("r1", RUN_SUCCEEDED, image_key="cards/r1.png")
    assert not ledger.mark_terminal("r1", RUN_FAILED, error_message="again")

    run = ledger.get("r1")
    assert run.status == RUN_FAILED
    assert run.error_message == "boom"
    assert run.image_key is None


def test_mark_terminal_rejects_running(ledger):
    ledger.insert("r1", "杭州", "2026-10-19")

    with pytest.raises(ValueError):
        ledger.mark_terminal("r1", RUN_RUNNING)


def test_pages_cover_every_row_newest_first(seeded):
    seen = []
    for page in (1, 2, 3):
        result = seeded.find_page(page=page, limit=3)
        assert result.total == 7
        seen.extend(result.rows)

    assert len(seen) == 7
    assert len({row.run_id for row in seen}) == 7
    created = [row.created_at for row in seen]
    assert created == sorted(created, reverse=True)
    assert seen[0].run_id == "run-6"


def test_page_past_the_end_is_empty(seeded):
    result = seeded.find_page(page=5, limit=3)

    assert result.rows == []
    assert result.total == 7


def test_filter_by_status(seeded):
    result = seeded.find_page(status=RUN_SUCCEEDED)

    assert result.total == 3
    assert {row.run_id for row in result.rows} == {"run-0", "run-3", "run-6"}


def test_filter_by_date(seeded):
    result = seeded.find_page(date="2026-10-18")

    assert result.total == 3
    assert all(row.weather_date == "2026-10-18" for row in result.rows)


def test_filter_with_image_and_date(seeded):
    result = seeded.find_page(date="2026-10-19", with_image=True)

    assert [row.run_id for row in result.rows] == ["run-6", "run-0"]


def test_list_running_respects_age(ledger, session_factory):
    ledger.insert("old", "杭州", "2026-10-19")
    ledger.insert("fresh", "杭州", "2026-10-19")
    ledger.insert("done", "杭州", "2026-10-19")
    ledger.mark_terminal("done", RUN_SUCCEEDED, image_key="cards/done.png")
    set_times(session_factory, "old", datetime(2026, 10, 19, 6, 0), datetime(2026, 10, 19, 6, 0))
    set_times(session_factory, "fresh", datetime(2026, 10, 19, 8, 0), datetime(2026, 10, 19, 8, 0))

    assert {row.run_id for row in ledger.list_running()} == {"old", "fresh"}
    stale = ledger.list_running(older_than=datetime(2026, 10, 19, 7, 0))
    assert [row.run_id for row in stale] == ["old"]


def test_delete_removes_run_and_steps(ledger, session_factory):
    ledger.insert("r1", "杭州", "2026-10-19")
    ledger.mark_terminal("r1", RUN_SUCCEEDED, image_key="cards/r1.png")
    db = session_factory()
    db.add(PipelineStep(run_id="r1", step_name="record-start", status="completed", attempts=1))
    db.commit()
    db.close()

    assert ledger.delete("r1")
    assert not ledger.delete("r1")
    assert ledger.get("r1") is None

    db = session_factory()
    try:
        assert db.query(PipelineStep).filter_by(run_id="r1").count() == 0
    finally:
        db.close()


def test_delete_refuses_running_run(ledger, session_factory):
    ledger.insert("r1", "杭州", "2026-10-19")
    db = session_factory()
    db.add(PipelineStep(run_id="r1", step_name="record-start", status="completed", attempts=1))
    db.commit()
    db.close()

    with pytest.raises(RunInProgressError):
        ledger.delete("r1")

    assert ledger.get("r1").status == RUN_RUNNING
    db = session_factory()
    try:
        assert db.query(PipelineStep).filter_by(run_id="r1").count() == 1
    finally:
        db.close()


def test_delete_missing_run(ledger):
    assert not ledger.delete("missing")
