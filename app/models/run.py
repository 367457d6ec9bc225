"""Generation run model."""

from sqlalchemy import Column, DateTime, Index, Integer, Text

from app.database import Base, utcnow

RUN_RUNNING = "running"
RUN_SUCCEEDED = "succeeded"
RUN_FAILED = "failed"
TERMINAL_STATUSES = (RUN_SUCCEEDED, RUN_FAILED)


class GenerationRun(Base):
    """One row per pipeline execution; the audit record of a weather card."""

    __tablename__ = "generation_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, nullable=False, unique=True)
    city = Column(Text, nullable=False)
    resolved_city_name = Column(Text)
    weather_date = Column(Text)  # YYYY-MM-DD
    weather_condition = Column(Text)
    weather_icon = Column(Text)
    temp_min = Column(Integer)
    temp_max = Column(Integer)
    current_temp = Column(Integer)
    model = Column(Text)
    image_key = Column(Text)
    status = Column(Text, nullable=False)  # 'running', 'succeeded', 'failed'
    error_message = Column(Text)
    duration_ms = Column(Integer)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_generation_runs_city", "city"),
        Index("idx_generation_runs_weather_date", "weather_date"),
        Index("idx_generation_runs_status", "status"),
        Index("idx_generation_runs_created_at", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
