"""SQLAlchemy ORM models."""

from app.models.run import GenerationRun
from app.models.step import PipelineStep

__all__ = [
    "GenerationRun",
    "PipelineStep",
]
