"""Internal card export for trusted first-party consumers.

Cards carry absolute image URLs with tokens valid for INTERNAL_IMAGE_TOKEN_TTL
(7 days by default), usable by any HTTP client against /api/images.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from app.auth import require_internal_key
from app.config import settings
from app.dependencies import get_ledger
from app.models.run import RUN_SUCCEEDED
from app.routes.cards import to_card
from app.routes.logs import DATE_PATTERN, clamp_limit
from app.schemas.run import InternalCardsResponse
from app.services.ledger import RunLedger

router = APIRouter(
    prefix="/api/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal_key)],
)

DEFAULT_LIMIT = 100
MAX_LIMIT = 500


@router.get("/cards", response_model=InternalCardsResponse)
def export_cards(
    request: Request,
    date: Optional[str] = None,
    limit: Optional[int] = None,
    ledger: RunLedger = Depends(get_ledger),
):
    """Succeeded cards, optionally for one weather date."""
    if date and not DATE_PATTERN.match(date):
        raise HTTPException(status_code=400, detail="Invalid date format, expected YYYY-MM-DD")

    result = ledger.find_page(
        status=RUN_SUCCEEDED,
        date=date,
        with_image=True,
        page=1,
        limit=clamp_limit(limit, DEFAULT_LIMIT, MAX_LIMIT),
    )
    base_url = str(request.base_url).rstrip("/")
    cards = [to_card(r, settings.INTERNAL_IMAGE_TOKEN_TTL, base_url) for r in result.rows]

    return InternalCardsResponse(date=date, total=len(cards), cards=cards)
