"""Background worker: daily schedule, run launching, resumption and stale-run watchdog."""

import argparse
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Set
from zoneinfo import ZoneInfo

from app.config import settings
from app.database import utcnow
from app.models.run import RUN_FAILED
from app.pipeline.workflow import GenerationPipeline, RunOutcome
from app.services.ledger import RunLedger

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

_active_runs: Set[str] = set()
_active_lock = threading.Lock()


def new_run_id() -> str:
    """Millisecond timestamp plus a random suffix, unique across concurrent triggers."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def active_runs() -> Set[str]:
    with _active_lock:
        return set(_active_runs)


def _claim(run_id: str) -> bool:
    with _active_lock:
        if run_id in _active_runs:
            logger.warning(f"Run {run_id} is already executing in this process")
            return False
        _active_runs.add(run_id)
        return True


def _release(run_id: str) -> None:
    with _active_lock:
        _active_runs.discard(run_id)


def _execute_claimed(
    run_id: str,
    city: Optional[str],
    pipeline_factory: Callable[[], GenerationPipeline],
) -> Optional[RunOutcome]:
    try:
        outcome = pipeline_factory().execute(run_id, city)
        logger.info(f"Run {run_id} finished: {outcome.status}")
        return outcome
    except Exception as e:
        logger.error(f"Run {run_id} crashed: {e}", exc_info=True)
        return None
    finally:
        _release(run_id)


def execute_run(
    run_id: str,
    city: Optional[str] = None,
    pipeline_factory: Callable[[], GenerationPipeline] = GenerationPipeline,
) -> Optional[RunOutcome]:
    """Execute a run in the current thread, tracking it as active while it runs."""
    if not _claim(run_id):
        return None
    return _execute_claimed(run_id, city, pipeline_factory)


def launch_run(
    run_id: str,
    city: Optional[str] = None,
    pipeline_factory: Callable[[], GenerationPipeline] = GenerationPipeline,
) -> Optional[threading.Thread]:
    """
    Start a run on a daemon thread and return without waiting for it.

    The run counts as active from before the thread starts, so the stale-run
    watchdog never sees it unowned. Returns None if the run is already active.
    """
    if not _claim(run_id):
        return None

    thread = threading.Thread(
        target=_execute_claimed,
        args=(run_id, city, pipeline_factory),
        name=f"run-{run_id}",
        daemon=True,
    )
    try:
        thread.start()
    except RuntimeError:
        _release(run_id)
        raise
    logger.info(f"Launched run {run_id}" + (f" for {city}" if city else ""))
    return thread


def fail_stale_runs(ledger: RunLedger, timeout_seconds: int, now: Optional[datetime] = None) -> int:
    """Fail runs that stayed running without a write for longer than the timeout."""
    now = now or utcnow()
    cutoff = now - timedelta(seconds=timeout_seconds)
    active = active_runs()

    failed = 0
    for run in ledger.list_running(older_than=cutoff):
        if run.run_id in active:
            continue
        duration_ms = max(0, int((now - run.created_at).total_seconds() * 1000))
        if ledger.mark_terminal(
            run.run_id,
            RUN_FAILED,
            error_message=f"Run timed out after {timeout_seconds}s without progress",
            duration_ms=duration_ms,
        ):
            logger.warning(f"Marked stale run {run.run_id} as failed")
            failed += 1
    return failed


def resume_interrupted_runs(
    ledger: RunLedger,
    launcher: Callable[..., object] = launch_run,
) -> int:
    """Relaunch runs left running by a previous process; completed steps are replayed."""
    active = active_runs()
    resumed = 0
    for run in ledger.list_running():
        if run.run_id in active:
            continue
        logger.info(f"Resuming interrupted run {run.run_id} ({run.city})")
        launcher(run.run_id, run.city)
        resumed += 1
    return resumed


@dataclass
class DailySchedule:
    """Fires once per day at a wall-clock time in a timezone."""

    hour: int
    minute: int
    tz: ZoneInfo
    last_fired: Optional[date] = None

    @classmethod
    def parse(cls, value: str, tz_name: str) -> "DailySchedule":
        hour_text, _, minute_text = value.partition(":")
        hour, minute = int(hour_text), int(minute_text or 0)
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(f"Invalid daily schedule: {value}")
        return cls(hour=hour, minute=minute, tz=ZoneInfo(tz_name))

    def _scheduled_for(self, local: datetime) -> datetime:
        return local.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)

    def skip_if_passed(self, now: datetime) -> None:
        """Do not fire for today's slot if it already passed before the worker started."""
        local = now.astimezone(self.tz)
        if local >= self._scheduled_for(local):
            self.last_fired = local.date()

    def due(self, now: datetime) -> bool:
        local = now.astimezone(self.tz)
        return local >= self._scheduled_for(local) and self.last_fired != local.date()

    def mark_fired(self, now: datetime) -> None:
        self.last_fired = now.astimezone(self.tz).date()


class Worker:
    """Background worker for scheduled runs and run housekeeping."""

    def __init__(
        self,
        ledger: Optional[RunLedger] = None,
        launcher: Callable[..., object] = launch_run,
    ):
        """Initialize worker."""
        self.ledger = ledger or RunLedger()
        self.launcher = launcher
        self.poll_interval = settings.WORKER_POLL_INTERVAL
        self.stale_timeout = settings.STALE_RUN_TIMEOUT
        self.schedule = (
            DailySchedule.parse(settings.DAILY_SCHEDULE, settings.TIMEZONE)
            if settings.SCHEDULER_ENABLED
            else None
        )

    def trigger(self, city: Optional[str] = None) -> str:
        run_id = new_run_id()
        self.launcher(run_id, city)
        return run_id

    def tick(self, now: Optional[datetime] = None) -> None:
        """One loop iteration: fire the schedule if due, then fail stale runs."""
        now = now or datetime.now(ZoneInfo(settings.TIMEZONE))
        if self.schedule and self.schedule.due(now):
            self.schedule.mark_fired(now)
            run_id = self.trigger()
            logger.info(f"Scheduled run {run_id} started")

        failed = fail_stale_runs(self.ledger, self.stale_timeout)
        if failed:
            logger.warning(f"Failed {failed} stale runs")

    def run(self, stop_event=None):
        """Main worker loop.

        Args:
            stop_event: Optional threading.Event to signal worker to stop
        """
        logger.info("Worker started")
        stop_event = stop_event or threading.Event()

        if settings.RESUME_INTERRUPTED_RUNS:
            try:
                resumed = resume_interrupted_runs(self.ledger, self.launcher)
                if resumed:
                    logger.info(f"Resumed {resumed} interrupted runs")
            except Exception as e:
                logger.error(f"Could not resume interrupted runs: {e}", exc_info=True)

        if self.schedule:
            self.schedule.skip_if_passed(datetime.now(self.schedule.tz))
            logger.info(
                f"Daily run scheduled at {self.schedule.hour:02d}:{self.schedule.minute:02d} "
                f"{settings.TIMEZONE}"
            )

        if settings.RUN_ON_START:
            run_id = self.trigger()
            logger.info(f"Startup run {run_id} started")

        while not stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
            stop_event.wait(self.poll_interval)

        logger.info("Worker stop signal received")


def worker_loop(stop_event=None):
    """Run worker loop (for use as background thread).

    Args:
        stop_event: Optional threading.Event to signal worker to stop
    """
    worker = Worker()
    worker.run(stop_event=stop_event)


def main():
    """Entry point for the standalone worker."""
    parser = argparse.ArgumentParser(description="Weather card worker")
    parser.add_argument("--once", action="store_true", help="generate one card and exit")
    parser.add_argument("--city", help="city for --once (random when omitted)")
    args = parser.parse_args()

    from app.main import run_migrations

    run_migrations()

    if args.once:
        outcome = execute_run(new_run_id(), args.city)
        if outcome is None or not outcome.succeeded:
            raise SystemExit(1)
        logger.info(f"Image stored at {outcome.image_key}")
        return

    worker = Worker()
    worker.run()


if __name__ == "__main__":
    main()
