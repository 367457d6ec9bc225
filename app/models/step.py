"""Pipeline step record model."""

from sqlalchemy import JSON, Column, DateTime, Integer, Text, UniqueConstraint

from app.database import Base, utcnow

STEP_RUNNING = "running"
STEP_COMPLETED = "completed"
STEP_FAILED = "failed"


class PipelineStep(Base):
    """Step record keyed by (run_id, step_name); memoizes completed step output."""

    __tablename__ = "pipeline_steps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, nullable=False)
    step_name = Column(Text, nullable=False)  # 'record-start', 'fetch-weather', ...
    status = Column(Text, nullable=False)  # 'running', 'completed', 'failed'
    attempts = Column(Integer, nullable=False, default=0)
    output = Column(JSON)
    error = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("run_id", "step_name", name="uq_pipeline_steps_run_step"),
    )
