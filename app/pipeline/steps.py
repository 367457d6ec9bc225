"""Durable step execution with per-step retry policy and memoized output."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
    wait_incrementing,
    wait_none,
)

from app.database import SessionLocal
from app.models.step import STEP_COMPLETED, STEP_FAILED, STEP_RUNNING, PipelineStep

logger = logging.getLogger(__name__)

BACKOFF_CONSTANT = "constant"
BACKOFF_LINEAR = "linear"
BACKOFF_EXPONENTIAL = "exponential"


class StepRecordMissingError(RuntimeError):
    """Raised when the record of a step disappears while the step runs."""


@dataclass(frozen=True)
class RetryPolicy:
    """
    How a step is retried.

    Attributes:
        limit: Retries after the first attempt (0 = run once)
        delay: Base delay in seconds between attempts
        backoff: 'constant', 'linear' (delay * n) or 'exponential' (delay * 2^(n-1))
    """

    limit: int = 0
    delay: float = 0.0
    backoff: str = BACKOFF_CONSTANT

    def __post_init__(self):
        if self.limit < 0:
            raise ValueError("Retry limit must be >= 0")
        if self.delay < 0:
            raise ValueError("Retry delay must be >= 0")
        if self.backoff not in (BACKOFF_CONSTANT, BACKOFF_LINEAR, BACKOFF_EXPONENTIAL):
            raise ValueError(f"Unknown backoff: {self.backoff}")

    @property
    def max_attempts(self) -> int:
        return self.limit + 1

    def wait_strategy(self):
        if self.delay == 0:
            return wait_none()
        if self.backoff == BACKOFF_LINEAR:
            return wait_incrementing(start=self.delay, increment=self.delay)
        if self.backoff == BACKOFF_EXPONENTIAL:
            return wait_exponential(multiplier=self.delay)
        return wait_fixed(self.delay)


NO_RETRY = RetryPolicy()


@dataclass
class Step:
    """A named unit of work; `fn` must return a JSON-serializable value."""

    name: str
    fn: Callable[[], Any]
    retry: RetryPolicy = field(default=NO_RETRY)


class StepExecutor:
    """
    Runs steps for a run id, recording each in the pipeline_steps table.

    A step whose record is already completed is not executed again; its
    stored output is returned instead, so a restarted run resumes after the
    last completed step.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.sleep = sleep

    def _get_record(self, db: Session, run_id: str, name: str) -> Optional[PipelineStep]:
        return (
            db.query(PipelineStep)
            .filter(PipelineStep.run_id == run_id, PipelineStep.step_name == name)
            .first()
        )

    def completed_output(self, run_id: str, name: str) -> Tuple[bool, Any]:
        """Return (True, output) if the step already completed for this run."""
        db: Session = self.session_factory()
        try:
            record = self._get_record(db, run_id, name)
            if record and record.status == STEP_COMPLETED:
                return True, record.output
            return False, None
        finally:
            db.close()

    def _mark_running(self, run_id: str, name: str) -> None:
        db: Session = self.session_factory()
        try:
            record = self._get_record(db, run_id, name)
            if record is None:
                db.add(PipelineStep(run_id=run_id, step_name=name, status=STEP_RUNNING, attempts=0))
            else:
                record.status = STEP_RUNNING
                record.error = None
            db.commit()
        finally:
            db.close()

    def _require_record(self, db: Session, run_id: str, name: str) -> PipelineStep:
        record = self._get_record(db, run_id, name)
        if record is None:
            raise StepRecordMissingError(f"Record of step {name} for run {run_id} no longer exists")
        return record

    def _bump_attempts(self, run_id: str, name: str) -> None:
        db: Session = self.session_factory()
        try:
            record = self._require_record(db, run_id, name)
            record.attempts = (record.attempts or 0) + 1
            db.commit()
        finally:
            db.close()

    def _finish(self, run_id: str, name: str, status: str, output: Any = None, error: Optional[str] = None) -> None:
        db: Session = self.session_factory()
        try:
            record = self._require_record(db, run_id, name)
            record.status = status
            record.output = output
            record.error = error
            db.commit()
        finally:
            db.close()

    def replace_output(self, run_id: str, name: str, output: Any) -> bool:
        """
        Overwrite the stored output of a completed step.

        Only for runs that will not replay the step again (terminal runs).
        Returns False when there is no completed record to rewrite.
        """
        db: Session = self.session_factory()
        try:
            record = self._get_record(db, run_id, name)
            if record is None or record.status != STEP_COMPLETED:
                return False
            record.output = output
            db.commit()
            return True
        finally:
            db.close()

    def _attempt(self, run_id: str, step: Step) -> Any:
        self._bump_attempts(run_id, step.name)
        return step.fn()

    def run(self, run_id: str, step: Step) -> Any:
        """
        Execute a step with its retry policy.

        Returns:
            The step output (fresh or replayed)

        Raises:
            Exception: The last error once the retry policy is exhausted
        """
        done, output = self.completed_output(run_id, step.name)
        if done:
            logger.info(f"Step {step.name} of run {run_id} already completed, replaying output")
            return output

        self._mark_running(run_id, step.name)

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            wait = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"Step {step.name} of run {run_id} attempt "
                f"{retry_state.attempt_number}/{step.retry.max_attempts} failed: {error}; "
                f"retrying in {wait:.1f}s"
            )

        retrying = Retrying(
            stop=stop_after_attempt(step.retry.max_attempts),
            retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(StepRecordMissingError),
            wait=step.retry.wait_strategy(),
            sleep=self.sleep,
            before_sleep=log_retry,
            reraise=True,
        )

        try:
            output = retrying(self._attempt, run_id, step)
        except Exception as e:
            logger.error(f"Step {step.name} of run {run_id} failed: {e}")
            try:
                self._finish(run_id, step.name, STEP_FAILED, error=str(e))
            except (SQLAlchemyError, StepRecordMissingError) as db_error:
                logger.error(f"Could not record failure of step {step.name} for run {run_id}: {db_error}")
            raise

        self._finish(run_id, step.name, STEP_COMPLETED, output=output)
        logger.info(f"Step {step.name} of run {run_id} completed")
        return output
