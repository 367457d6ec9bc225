"""Manual generation trigger."""

import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends

from app.auth import require_access_code
from app.dependencies import get_launcher
from app.schemas.run import TriggerResponse
from app.worker import new_run_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trigger", tags=["trigger"])


@router.post(
    "",
    response_model=TriggerResponse,
    status_code=202,
    dependencies=[Depends(require_access_code)],
)
def trigger_run(
    city: Optional[str] = None,
    launcher: Callable[..., object] = Depends(get_launcher),
):
    """Start a run in the background and return its id immediately."""
    city = (city or "").strip() or None
    run_id = new_run_id()
    launcher(run_id, city)

    logger.info(f"Manual trigger accepted: run {run_id}" + (f" for {city}" if city else ""))

    return TriggerResponse(run_id=run_id, city=city)
