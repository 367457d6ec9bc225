"""Value objects exchanged between the pipeline and its collaborators."""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class WeatherResult(BaseModel):
    """Resolved city and its weather summary for one day."""

    city: str
    resolved_name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    date: str
    condition_text: str
    condition_icon: str
    temp_min: int
    temp_max: int
    current_temp: int


class GeneratedImage(BaseModel):
    """Raw image returned by the image model."""

    model_config = ConfigDict(protected_namespaces=())

    image_bytes: bytes
    mime_type: str = "image/png"
    model_id: str


class StoredBlob(BaseModel):
    """Object read from or written to the blob store."""

    key: str
    data: bytes
    mime_type: str
    size: int
    etag: str
