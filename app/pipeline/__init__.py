"""Generation pipeline and its step engine."""

from app.pipeline.steps import RetryPolicy, Step, StepExecutor
from app.pipeline.workflow import GenerationPipeline, RunOutcome, storage_key

__all__ = [
    "GenerationPipeline",
    "RetryPolicy",
    "RunOutcome",
    "Step",
    "StepExecutor",
    "storage_key",
]
