"""Gemini image generation client."""

import base64
import binascii
import hashlib
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.schemas.pipeline import GeneratedImage

logger = logging.getLogger(__name__)


class NoImageError(Exception):
    """Raised when a model response carries no image payload."""


class ImageGenerator:
    """Client for the Gemini generateContent API returning inline images."""

    def __init__(
        self,
        model: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the image client."""
        self.api_key = settings.GEMINI_API_KEY
        self.base_url = settings.GEMINI_BASE_URL.rstrip("/")
        self.model = model or settings.GEMINI_MODEL
        self.use_search = settings.GEMINI_USE_SEARCH
        self.timeout = settings.GEMINI_TIMEOUT
        self.transport = transport

    def _hash_text(self, text: str) -> str:
        """Hash text using SHA256."""
        return hashlib.sha256(text.encode()).hexdigest()

    def _build_headers(self) -> Dict[str, str]:
        """Build HTTP headers for Gemini."""
        return {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    def _build_payload(self, prompt: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
        }
        if self.use_search:
            payload["tools"] = [{"googleSearch": {}}]
        return payload

    @staticmethod
    def _find_inline_image(result: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        candidates: List[Dict[str, Any]] = result.get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        for part in parts:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return inline
        return None

    def generate(self, prompt: str) -> GeneratedImage:
        """
        Generate an image for a prompt.

        Args:
            prompt: Full text prompt

        Returns:
            GeneratedImage with decoded bytes, mime type and model id

        Raises:
            NoImageError: If the response contains no image data
            httpx.HTTPError: On API errors
        """
        logger.info(f"Image request to {self.model}, prompt hash: {self._hash_text(prompt)[:16]}")

        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.post(
                f"{self.base_url}/models/{self.model}:generateContent",
                headers=self._build_headers(),
                json=self._build_payload(prompt),
            )

            response.raise_for_status()
            result = response.json()

        inline = self._find_inline_image(result)
        if inline is None:
            raise NoImageError("No image in model response")

        try:
            image_bytes = base64.b64decode(inline["data"], validate=True)
        except (binascii.Error, ValueError) as e:
            raise NoImageError(f"No image in model response: undecodable payload ({e})") from e
        if not image_bytes:
            raise NoImageError("No image in model response")

        mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
        logger.info(f"Image response: {len(image_bytes)} bytes, {mime_type}")

        return GeneratedImage(image_bytes=image_bytes, mime_type=mime_type, model_id=self.model)
