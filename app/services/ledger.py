"""Run ledger: persisted history of pipeline executions."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.database import SessionLocal, utcnow
from app.models.run import RUN_RUNNING, TERMINAL_STATUSES, GenerationRun
from app.models.step import PipelineStep

logger = logging.getLogger(__name__)


class RunInProgressError(Exception):
    """Raised when a change is requested on a run its pipeline still owns."""

# Columns the pipeline may write after insert
UPDATABLE_FIELDS = {
    "resolved_city_name",
    "weather_date",
    "weather_condition",
    "weather_icon",
    "temp_min",
    "temp_max",
    "current_temp",
    "model",
    "image_key",
    "error_message",
    "duration_ms",
}


@dataclass
class RunPage:
    """One page of runs plus the total matching the filter."""

    rows: List[GenerationRun]
    total: int
    page: int
    limit: int


class RunLedger:
    """Insert, update and query GenerationRun rows, one short session per call."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def _check_fields(self, fields: dict) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown run fields: {sorted(unknown)}")

    def insert(self, run_id: str, city: str, weather_date: str) -> bool:
        """
        Insert a running row.

        Returns:
            True if the row was created, False if a row with this run_id
            already existed (re-execution of the same run).
        """
        db: Session = self.session_factory()
        try:
            if db.query(GenerationRun.id).filter(GenerationRun.run_id == run_id).first():
                logger.info(f"Run {run_id} already recorded, reusing existing row")
                return False

            now = utcnow()
            db.add(
                GenerationRun(
                    run_id=run_id,
                    city=city,
                    weather_date=weather_date,
                    status=RUN_RUNNING,
                    created_at=now,
                    updated_at=now,
                )
            )
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info(f"Run {run_id} inserted concurrently, reusing existing row")
                return False

            logger.info(f"Recorded start of run {run_id} ({city})")
            return True
        finally:
            db.close()

    def update(self, run_id: str, **fields: Any) -> int:
        """Overwrite known fields on a run row; returns the number of rows changed."""
        self._check_fields(fields)
        db: Session = self.session_factory()
        try:
            count = (
                db.query(GenerationRun)
                .filter(GenerationRun.run_id == run_id)
                .update({**fields, "updated_at": utcnow()}, synchronize_session=False)
            )
            db.commit()
            return count
        finally:
            db.close()

    def mark_terminal(self, run_id: str, status: str, **fields: Any) -> bool:
        """
        Move a running row to a terminal status.

        The write only applies while the row is still running, so a terminal
        status is never overwritten. Returns True if the transition happened.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status}")
        self._check_fields(fields)

        db: Session = self.session_factory()
        try:
            count = (
                db.query(GenerationRun)
                .filter(GenerationRun.run_id == run_id, GenerationRun.status == RUN_RUNNING)
                .update({**fields, "status": status, "updated_at": utcnow()}, synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()

        if not count:
            logger.warning(f"Run {run_id} is not running, {status} transition ignored")
        return bool(count)

    def get(self, run_id: str) -> Optional[GenerationRun]:
        db: Session = self.session_factory()
        try:
            return db.query(GenerationRun).filter(GenerationRun.run_id == run_id).first()
        finally:
            db.close()

    def find_page(
        self,
        status: Optional[str] = None,
        date: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        with_image: bool = False,
    ) -> RunPage:
        """
        List runs newest first.

        Args:
            status: Only runs with this status
            date: Only runs with this weather_date (YYYY-MM-DD)
            page: 1-based page number
            limit: Page size
            with_image: Only runs that stored an image

        Returns:
            RunPage with the rows of the page and the total matching count
        """
        page = max(1, page)
        limit = max(1, limit)

        db: Session = self.session_factory()
        try:
            query = db.query(GenerationRun)
            if status:
                query = query.filter(GenerationRun.status == status)
            if date:
                query = query.filter(GenerationRun.weather_date == date)
            if with_image:
                query = query.filter(GenerationRun.image_key.isnot(None))

            total = query.count()
            rows = (
                query.order_by(GenerationRun.created_at.desc(), GenerationRun.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            return RunPage(rows=rows, total=total, page=page, limit=limit)
        finally:
            db.close()

    def list_running(self, older_than: Optional[datetime] = None) -> List[GenerationRun]:
        """Runs still marked running, optionally only those not written since `older_than`."""
        db: Session = self.session_factory()
        try:
            query = db.query(GenerationRun).filter(GenerationRun.status == RUN_RUNNING)
            if older_than is not None:
                query = query.filter(GenerationRun.updated_at < older_than)
            return query.order_by(GenerationRun.created_at).all()
        finally:
            db.close()

    def delete(self, run_id: str) -> bool:
        """
        Delete a finished run row and its step records.

        Returns:
            True if the row was deleted, False if no such run exists

        Raises:
            RunInProgressError: If the run is still running
        """
        db: Session = self.session_factory()
        try:
            count = (
                db.query(GenerationRun)
                .filter(GenerationRun.run_id == run_id, GenerationRun.status != RUN_RUNNING)
                .delete(synchronize_session=False)
            )
            if not count:
                running = db.query(GenerationRun.id).filter(GenerationRun.run_id == run_id).first()
                db.rollback()
                if running:
                    raise RunInProgressError(f"Run {run_id} is still running")
                return False

            db.query(PipelineStep).filter(PipelineStep.run_id == run_id).delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()

        logger.info(f"Deleted run {run_id}")
        return True
