"""Prompt templates for weather card images."""

from typing import Optional

from app.schemas.pipeline import WeatherResult

STYLE = """Image style:
Present a clear, 45° top-down view of a vertical (9:16) isometric miniature 3D cartoon scene, highlighting iconic landmarks centered in the composition to showcase precise and delicate modeling.
The scene features soft, refined textures with realistic PBR materials and gentle, lifelike lighting and shadow effects.
Weather elements are creatively integrated into the urban architecture, establishing a dynamic interaction between the city's landscape and atmospheric conditions, creating an immersive weather ambiance.
Use a clean, unified composition with minimalistic aesthetics and a soft, solid-colored background that highlights the main content.
The overall visual style is fresh and soothing.

Text overlay:
Display a prominent weather icon at the top-center, with the date (x-small text) and temperature range (medium text) beneath it.
The city name (large text) is positioned directly above the weather icon.
The weather information has no background and can subtly overlap with the buildings.
The text must be in the city's native language."""


def build_prompt(city: str, weather: Optional[WeatherResult] = None) -> str:
    """
    Build the image prompt for a city.

    Without weather data the model is asked to look up today's weather itself
    (requires the search tool); with weather data the values are embedded.
    """
    if weather is None:
        return (
            f'Search for today\'s real-time weather in "{city}", then generate a weather card image.\n\n'
            f"{STYLE}"
        )

    temp_range = f"{weather.temp_min}°C ~ {weather.temp_max}°C"
    return f"""{STYLE}

Weather data for rendering (already retrieved, do not re-query):
- City name: {city}
- Date: {weather.date}
- Weather condition: {weather.condition_text}
- Weather icon suggestion: {weather.condition_icon}
- Temperature range: {temp_range}

Make sure the final card clearly displays:
City name:【{city}】
Date:【{weather.date}】
Temperature range:【{temp_range}】
Weather text:【{weather.condition_text}】"""
