"""Public card gallery routes."""

from typing import Optional

from fastapi import APIRouter, Depends

from app.config import settings
from app.dependencies import get_ledger
from app.models.run import RUN_SUCCEEDED, GenerationRun
from app.routes.logs import clamp_limit, clamp_page
from app.schemas.run import CardResponse, CardsResponse
from app.services.image_token import create_token
from app.services.ledger import RunLedger

router = APIRouter(prefix="/api/cards", tags=["cards"])

DEFAULT_LIMIT = 20
MAX_LIMIT = 50


def to_card(row: GenerationRun, token_ttl: int, base_url: str = "") -> CardResponse:
    """Card for a succeeded run; signs the image URL when IMAGE_SECRET is set."""
    card = CardResponse.model_validate(row)
    url = f"{base_url}/api/images/{row.image_key}"
    if settings.IMAGE_SECRET:
        token = create_token(row.image_key, settings.IMAGE_SECRET, token_ttl)
        card.image_token = token
        url = f"{url}?t={token}"
    card.image_url = url
    return card


@router.get("", response_model=CardsResponse)
def list_cards(
    page: Optional[int] = None,
    limit: Optional[int] = None,
    ledger: RunLedger = Depends(get_ledger),
):
    """List succeeded cards, newest first."""
    result = ledger.find_page(
        status=RUN_SUCCEEDED,
        with_image=True,
        page=clamp_page(page),
        limit=clamp_limit(limit, DEFAULT_LIMIT, MAX_LIMIT),
    )
    return CardsResponse(
        cards=[to_card(r, settings.IMAGE_TOKEN_TTL) for r in result.rows],
        total=result.total,
        page=result.page,
        limit=result.limit,
    )
