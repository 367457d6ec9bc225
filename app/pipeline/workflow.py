"""Weather card generation pipeline."""

import base64
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.models.run import RUN_FAILED, RUN_SUCCEEDED, GenerationRun
from app.pipeline.steps import RetryPolicy, Step, StepExecutor
from app.schemas.pipeline import WeatherResult
from app.services.blob_store import BlobStore, LocalBlobStore
from app.services.cities import city_slug, pick_random_city
from app.services.image_client import ImageGenerator
from app.services.ledger import RunLedger
from app.services.prompt import build_prompt
from app.services.weather import WeatherLookup

logger = logging.getLogger(__name__)

STEP_RECORD_START = "record-start"
STEP_FETCH_WEATHER = "fetch-weather"
STEP_UPDATE_WEATHER = "update-weather"
STEP_GENERATE_IMAGE = "generate-image"
STEP_UPLOAD_BLOB = "upload-blob"
STEP_RECORD_SUCCESS = "record-success"
STEP_RECORD_FAILURE = "record-failure"

MAX_ERROR_LENGTH = 1000

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}


@dataclass
class RunOutcome:
    """Terminal result of one pipeline execution."""

    run_id: str
    status: str
    city: Optional[str] = None
    image_key: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RUN_SUCCEEDED

    @classmethod
    def from_row(cls, row: GenerationRun) -> "RunOutcome":
        return cls(
            run_id=row.run_id,
            status=row.status,
            city=row.city,
            image_key=row.image_key,
            error=row.error_message,
            duration_ms=row.duration_ms,
        )


def storage_key(run_id: str, city: str, weather_date: str, mime_type: str = "image/png", prefix: Optional[str] = None) -> str:
    """Blob key for a card image; identical inputs always give the identical key."""
    prefix = settings.BLOB_KEY_PREFIX if prefix is None else prefix
    ext = MIME_EXTENSIONS.get(mime_type.lower(), "png")
    name = f"{weather_date}-{city_slug(city)}-{run_id}.{ext}"
    return f"{prefix}/{name}" if prefix else name


def error_message(error: BaseException) -> str:
    message = str(error) or error.__class__.__name__
    return message[:MAX_ERROR_LENGTH]


def today_in(tz_name: str) -> str:
    return datetime.now(ZoneInfo(tz_name)).date().isoformat()


class GenerationPipeline:
    """
    Ordered, resumable weather card pipeline.

    Steps: record-start, fetch-weather, update-weather (only with weather
    data), generate-image, upload-blob, record-success; any failure of a
    required step routes to record-failure. Every step goes through the
    StepExecutor, so re-executing a run id replays completed steps instead of
    repeating them.
    """

    def __init__(
        self,
        ledger: Optional[RunLedger] = None,
        weather: Optional[WeatherLookup] = None,
        images: Optional[ImageGenerator] = None,
        blobs: Optional[BlobStore] = None,
        executor: Optional[StepExecutor] = None,
        image_retry: Optional[RetryPolicy] = None,
        upload_retry: Optional[RetryPolicy] = None,
        city_picker: Callable[[], str] = pick_random_city,
        today: Optional[Callable[[], str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger or RunLedger()
        self.weather = weather or WeatherLookup()
        self.images = images or ImageGenerator()
        self.blobs = blobs or LocalBlobStore()
        self.executor = executor or StepExecutor()
        self.image_retry = image_retry or RetryPolicy(
            limit=settings.IMAGE_RETRY_LIMIT,
            delay=settings.IMAGE_RETRY_DELAY,
            backoff=settings.IMAGE_RETRY_BACKOFF,
        )
        self.upload_retry = upload_retry or RetryPolicy(
            limit=settings.UPLOAD_RETRY_LIMIT,
            delay=settings.UPLOAD_RETRY_DELAY,
            backoff=settings.UPLOAD_RETRY_BACKOFF,
        )
        self.city_picker = city_picker
        self.today = today or (lambda: today_in(settings.TIMEZONE))
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    # Step bodies

    def _record_start(self, run_id: str, city: Optional[str]) -> Dict[str, Any]:
        chosen = city or self.city_picker()
        weather_date = self.today()
        if self.ledger.insert(run_id, chosen, weather_date):
            return {"city": chosen, "weather_date": weather_date, "started_at_ms": self._now_ms()}

        row = self.ledger.get(run_id)
        started = row.created_at.replace(tzinfo=timezone.utc).timestamp()
        return {
            "city": row.city,
            "weather_date": row.weather_date or weather_date,
            "started_at_ms": int(started * 1000),
        }

    def _fetch_weather(self, city: str) -> Optional[Dict[str, Any]]:
        try:
            return self.weather.fetch(city).model_dump()
        except Exception as e:
            logger.warning(f"Weather fetch failed for {city}, continuing without weather: {e}")
            return None

    def _update_weather(self, run_id: str, weather: Dict[str, Any]) -> None:
        self.ledger.update(
            run_id,
            resolved_city_name=weather["resolved_name"],
            weather_condition=weather["condition_text"],
            weather_icon=weather["condition_icon"],
            temp_min=weather["temp_min"],
            temp_max=weather["temp_max"],
            current_temp=weather["current_temp"],
        )

    def _generate_image(self, city: str, weather: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        weather_data = None
        if weather and settings.PROMPT_INCLUDE_WEATHER:
            weather_data = WeatherResult.model_validate(weather)
        image = self.images.generate(build_prompt(city, weather_data))
        return {
            "image_b64": base64.b64encode(image.image_bytes).decode("ascii"),
            "mime_type": image.mime_type,
            "model": image.model_id,
        }

    def _upload_blob(self, run_id: str, city: str, weather_date: str, image: Dict[str, Any]) -> str:
        key = storage_key(run_id, city, weather_date, image["mime_type"])
        self.blobs.put(key, base64.b64decode(image["image_b64"]), image["mime_type"])
        return key

    def _record_success(self, run_id: str, image_key: str, model: str, duration_ms: int) -> Dict[str, Any]:
        applied = self.ledger.mark_terminal(
            run_id,
            RUN_SUCCEEDED,
            image_key=image_key,
            model=model,
            duration_ms=duration_ms,
        )
        return {"applied": applied}

    def _record_failure(self, run_id: str, message: str, duration_ms: int) -> Dict[str, Any]:
        applied = self.ledger.mark_terminal(
            run_id,
            RUN_FAILED,
            error_message=message,
            duration_ms=duration_ms,
        )
        return {"applied": applied}

    def _release_image(self, run_id: str) -> None:
        """Drop the image bytes memoized by generate-image once the run is terminal."""
        try:
            done, image = self.executor.completed_output(run_id, STEP_GENERATE_IMAGE)
            if done and image and "image_b64" in image:
                kept = {k: v for k, v in image.items() if k != "image_b64"}
                self.executor.replace_output(run_id, STEP_GENERATE_IMAGE, kept)
        except SQLAlchemyError as e:
            logger.warning(f"Could not release image payload of run {run_id}: {e}")

    # Orchestration

    def execute(self, run_id: str, city: Optional[str] = None) -> RunOutcome:
        """
        Run the pipeline for a run id until it reaches a terminal status.

        Args:
            run_id: Identity assigned by the trigger
            city: Optional city override; a random city is drawn when absent

        Returns:
            RunOutcome with the image key on success or the error on failure
        """
        existing = self.ledger.get(run_id)
        if existing is not None and existing.is_terminal:
            logger.info(f"Run {run_id} already {existing.status}, nothing to do")
            self._release_image(run_id)
            return RunOutcome.from_row(existing)

        run = self.executor.run
        try:
            start = run(run_id, Step(STEP_RECORD_START, lambda: self._record_start(run_id, city)))
        except Exception as e:
            logger.error(f"Run {run_id} aborted, start could not be recorded: {e}", exc_info=True)
            return RunOutcome(run_id=run_id, status=RUN_FAILED, city=city, error=error_message(e))

        city = start["city"]
        weather_date = start["weather_date"]
        started_at_ms = start["started_at_ms"]
        logger.info(f"Run {run_id} started for {city} ({weather_date})")

        try:
            weather = run(run_id, Step(STEP_FETCH_WEATHER, lambda: self._fetch_weather(city)))
            if weather:
                run(run_id, Step(STEP_UPDATE_WEATHER, lambda: self._update_weather(run_id, weather)))

            image = run(
                run_id,
                Step(STEP_GENERATE_IMAGE, lambda: self._generate_image(city, weather), self.image_retry),
            )
            image_key = run(
                run_id,
                Step(STEP_UPLOAD_BLOB, lambda: self._upload_blob(run_id, city, weather_date, image), self.upload_retry),
            )

            duration_ms = max(0, self._now_ms() - started_at_ms)
            result = run(
                run_id,
                Step(STEP_RECORD_SUCCESS, lambda: self._record_success(run_id, image_key, image["model"], duration_ms)),
            )
        except Exception as e:
            duration_ms = max(0, self._now_ms() - started_at_ms)
            message = error_message(e)
            logger.error(f"Run {run_id} failed after {duration_ms}ms: {message}")
            try:
                run(run_id, Step(STEP_RECORD_FAILURE, lambda: self._record_failure(run_id, message, duration_ms)))
            except Exception as record_error:
                logger.error(f"Could not record failure of run {run_id}: {record_error}", exc_info=True)
            else:
                self._release_image(run_id)
            return RunOutcome(
                run_id=run_id,
                status=RUN_FAILED,
                city=city,
                error=message,
                duration_ms=duration_ms,
            )

        self._release_image(run_id)

        if not result["applied"]:
            row = self.ledger.get(run_id)
            if row is not None:
                return RunOutcome.from_row(row)

        logger.info(f"Run {run_id} succeeded in {duration_ms}ms, image {image_key}")
        return RunOutcome(
            run_id=run_id,
            status=RUN_SUCCEEDED,
            city=city,
            image_key=image_key,
            duration_ms=duration_ms,
        )
