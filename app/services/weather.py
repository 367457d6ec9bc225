"""Weather lookup using the Open-Meteo geocoding and forecast APIs."""

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from app.config import settings
from app.schemas.pipeline import WeatherResult

logger = logging.getLogger(__name__)


class WeatherLookupError(Exception):
    """Raised when a city cannot be resolved or its weather is unavailable."""


def describe_weather_code(code: int) -> Tuple[str, str]:
    """Map a WMO weather code to (condition text, icon)."""
    if code == 0:
        return "晴", "☀️"
    if 1 <= code <= 3:
        return "多云", "⛅"
    if code in (45, 48):
        return "雾", "🌫️"
    if 51 <= code <= 57:
        return "毛毛雨", "🌦️"
    if 61 <= code <= 67:
        return "降雨", "🌧️"
    if 71 <= code <= 77:
        return "降雪", "🌨️"
    if 80 <= code <= 82:
        return "阵雨", "🌦️"
    if 85 <= code <= 86:
        return "阵雪", "🌨️"
    if code == 95:
        return "雷暴", "⛈️"
    if 96 <= code <= 99:
        return "强雷暴", "⛈️"
    return "未知天气", "❓"


class WeatherLookup:
    """Resolves a free-text city name and fetches today's weather for it."""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        """Initialize the weather client."""
        self.geocoding_url = settings.GEOCODING_URL
        self.forecast_url = settings.FORECAST_URL
        self.language = settings.WEATHER_LANGUAGE
        self.preferred_country = settings.WEATHER_PREFERRED_COUNTRY
        self.timezone = settings.TIMEZONE
        self.timeout = settings.WEATHER_TIMEOUT
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self.transport)

    def _resolve_city(self, client: httpx.Client, city: str) -> Dict[str, Any]:
        query = city.removesuffix("市")
        response = client.get(
            self.geocoding_url,
            params={"name": query, "count": 10, "language": self.language, "format": "json"},
        )
        if response.status_code != 200:
            raise WeatherLookupError(f"Geocoding request failed: HTTP {response.status_code}")

        results = response.json().get("results") or []
        preferred = [r for r in results if r.get("country_code") == self.preferred_country]
        chosen = preferred[0] if preferred else (results[0] if results else None)
        if not chosen:
            raise WeatherLookupError(f"No coordinates found for city: {city}")
        return chosen

    def _fetch_forecast(self, client: httpx.Client, latitude: float, longitude: float) -> Dict[str, Any]:
        response = client.get(
            self.forecast_url,
            params={
                "latitude": latitude,
                "longitude": longitude,
                "current": "temperature_2m,weather_code",
                "daily": "weather_code,temperature_2m_max,temperature_2m_min",
                "forecast_days": 1,
                "timezone": self.timezone,
            },
        )
        if response.status_code != 200:
            raise WeatherLookupError(f"Weather request failed: HTTP {response.status_code}")
        return response.json()

    def fetch(self, city: str) -> WeatherResult:
        """
        Resolve a city and return its weather summary for today.

        Args:
            city: Free-text city name, e.g. "杭州" or "杭州市"

        Returns:
            WeatherResult with rounded temperatures

        Raises:
            WeatherLookupError: On HTTP errors, unknown city or incomplete data
            httpx.HTTPError: On transport errors
        """
        with self._client() as client:
            geo = self._resolve_city(client, city)
            forecast = self._fetch_forecast(client, geo["latitude"], geo["longitude"])

        current = forecast.get("current")
        daily = forecast.get("daily")
        if not current or not daily or not daily.get("time"):
            raise WeatherLookupError(f"Incomplete weather data for city: {city}")

        try:
            daily_codes = daily.get("weather_code") or []
            code = daily_codes[0] if daily_codes else current["weather_code"]
            text, icon = describe_weather_code(code)
            result = WeatherResult(
                city=city,
                resolved_name=geo["name"],
                latitude=geo["latitude"],
                longitude=geo["longitude"],
                date=daily["time"][0],
                condition_text=text,
                condition_icon=icon,
                temp_min=round(daily["temperature_2m_min"][0]),
                temp_max=round(daily["temperature_2m_max"][0]),
                current_temp=round(current["temperature_2m"]),
            )
        except (KeyError, IndexError, TypeError) as e:
            raise WeatherLookupError(f"Incomplete weather data for city: {city}") from e

        logger.info(
            f"Weather for {city} ({result.resolved_name}): {result.condition_text} "
            f"{result.temp_min}~{result.temp_max}°C"
        )
        return result
