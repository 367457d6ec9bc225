"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.database import Base
from app.pipeline.steps import RetryPolicy, StepExecutor
from app.pipeline.workflow import GenerationPipeline
from app.services.ledger import RunLedger
from tests.fakes import FakeImages, FakeWeather, MemoryBlobStore, generated_image, weather_result


@pytest.fixture(scope="function")
def session_factory():
    """Session factory over a fresh in-memory database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)

    engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return RunLedger(session_factory)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def executor(session_factory, sleeps):
    return StepExecutor(session_factory, sleep=sleeps.append)


@pytest.fixture
def make_pipeline(ledger, executor):
    """Build a pipeline with fakes; keyword arguments replace any collaborator."""

    def _make(**overrides):
        options = {
            "ledger": ledger,
            "weather": FakeWeather(result=weather_result()),
            "images": FakeImages([generated_image()]),
            "blobs": MemoryBlobStore(),
            "executor": executor,
            "image_retry": RetryPolicy(limit=1, delay=10.0, backoff="linear"),
            "upload_retry": RetryPolicy(limit=2, delay=2.0, backoff="exponential"),
            "city_picker": lambda: "成都",
            "today": lambda: "2026-10-19",
            "clock": lambda: 1_000.0,
        }
        options.update(overrides)
        return GenerationPipeline(**options)

    return _make
