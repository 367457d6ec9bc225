"""Initial schema: generation runs and pipeline step records

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "generation_runs" in existing_tables:
        return

    # Create generation_runs table
    op.create_table(
        "generation_runs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.Text, nullable=False, unique=True),
        sa.Column("city", sa.Text, nullable=False),
        sa.Column("resolved_city_name", sa.Text),
        sa.Column("weather_date", sa.Text),
        sa.Column("weather_condition", sa.Text),
        sa.Column("weather_icon", sa.Text),
        sa.Column("temp_min", sa.Integer),
        sa.Column("temp_max", sa.Integer),
        sa.Column("current_temp", sa.Integer),
        sa.Column("model", sa.Text),
        sa.Column("image_key", sa.Text),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("error_message", sa.Text),
        sa.Column("duration_ms", sa.Integer),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("idx_generation_runs_city", "generation_runs", ["city"])
    op.create_index("idx_generation_runs_weather_date", "generation_runs", ["weather_date"])
    op.create_index("idx_generation_runs_status", "generation_runs", ["status"])
    op.create_index("idx_generation_runs_created_at", "generation_runs", ["created_at"])

    # Create pipeline_steps table
    op.create_table(
        "pipeline_steps",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.Text, nullable=False),
        sa.Column("step_name", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("output", sa.JSON),
        sa.Column("error", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("run_id", "step_name", name="uq_pipeline_steps_run_step"),
    )


def downgrade() -> None:
    op.drop_table("pipeline_steps")
    op.drop_index("idx_generation_runs_created_at", table_name="generation_runs")
    op.drop_index("idx_generation_runs_status", table_name="generation_runs")
    op.drop_index("idx_generation_runs_weather_date", table_name="generation_runs")
    op.drop_index("idx_generation_runs_city", table_name="generation_runs")
    op.drop_table("generation_runs")
