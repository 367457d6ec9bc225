"""Run history routes (admin)."""

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.auth import require_access_code
from app.dependencies import get_ledger
from app.schemas.run import LogsResponse, RunRecord
from app.services.ledger import RunInProgressError, RunLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/logs", tags=["logs"], dependencies=[Depends(require_access_code)])

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DEFAULT_LIMIT = 30
MAX_LIMIT = 100


def clamp_page(page: Optional[int]) -> int:
    return max(1, page or 1)


def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    return min(max(1, limit or default), maximum)


@router.get("", response_model=LogsResponse)
def list_logs(
    page: Optional[int] = None,
    limit: Optional[int] = None,
    status: Optional[str] = None,
    date: Optional[str] = None,
    ledger: RunLedger = Depends(get_ledger),
):
    """List generation runs, newest first."""
    if date and not DATE_PATTERN.match(date):
        raise HTTPException(status_code=400, detail="Invalid date format, expected YYYY-MM-DD")

    result = ledger.find_page(
        status=status or None,
        date=date or None,
        page=clamp_page(page),
        limit=clamp_limit(limit, DEFAULT_LIMIT, MAX_LIMIT),
    )
    return LogsResponse(
        logs=[RunRecord.model_validate(r) for r in result.rows],
        total=result.total,
        page=result.page,
        limit=result.limit,
    )


@router.delete("")
def delete_log(
    run_id: Optional[str] = None,
    ledger: RunLedger = Depends(get_ledger),
):
    """Delete a single run record."""
    if not run_id:
        raise HTTPException(status_code=400, detail="Missing run_id")

    try:
        deleted = ledger.delete(run_id)
    except RunInProgressError:
        raise HTTPException(status_code=409, detail="Run is still running")
    logger.info(f"Delete requested for run {run_id} (deleted={deleted})")

    return {"ok": True, "deleted": deleted}
