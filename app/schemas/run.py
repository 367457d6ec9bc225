"""Run-related Pydantic schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class RunRecord(BaseModel):
    """Full run row as exposed by the logs endpoint."""

    model_config = ConfigDict(from_attributes=True)

    run_id: str
    city: str
    resolved_city_name: Optional[str] = None
    weather_date: Optional[str] = None
    weather_condition: Optional[str] = None
    weather_icon: Optional[str] = None
    temp_min: Optional[int] = None
    temp_max: Optional[int] = None
    current_temp: Optional[int] = None
    model: Optional[str] = None
    image_key: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class LogsResponse(BaseModel):
    """Paginated run history."""

    logs: List[RunRecord]
    total: int
    page: int
    limit: int


class CardResponse(BaseModel):
    """A succeeded run with its image reference."""

    model_config = ConfigDict(from_attributes=True)

    run_id: str
    city: str
    resolved_city_name: Optional[str] = None
    weather_date: Optional[str] = None
    weather_condition: Optional[str] = None
    weather_icon: Optional[str] = None
    temp_min: Optional[int] = None
    temp_max: Optional[int] = None
    current_temp: Optional[int] = None
    image_key: str
    created_at: datetime
    image_token: Optional[str] = None
    image_url: Optional[str] = None


class CardsResponse(BaseModel):
    """Paginated gallery listing."""

    cards: List[CardResponse]
    total: int
    page: int
    limit: int


class InternalCardsResponse(BaseModel):
    """Cards for first-party consumers, optionally filtered by date."""

    date: Optional[str] = None
    total: int
    cards: List[CardResponse]


class TriggerResponse(BaseModel):
    """Response after accepting a manual trigger."""

    ok: bool = True
    run_id: str
    city: Optional[str] = None
