"""Tests for the Gemini image client."""

import base64
import json

import httpx
import pytest

from app.services.image_client import ImageGenerator, NoImageError
from tests.fakes import PNG_BYTES


def make_client(body, status=200):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, json=body)

    client = ImageGenerator(model="gemini-test-image", transport=httpx.MockTransport(handler))
    client.requests = requests
    return client


def image_response(parts):
    return {"candidates": [{"content": {"parts": parts}}]}


def test_generate_decodes_inline_image():
    encoded = base64.b64encode(PNG_BYTES).decode("ascii")
    client = make_client(
        image_response([
            {"text": "Here is your card"},
            {"inlineData": {"mimeType": "image/jpeg", "data": encoded}},
        ])
    )

    image = client.generate("draw 杭州")

    assert image.image_bytes == PNG_BYTES
    assert image.mime_type == "image/jpeg"
    assert image.model_id == "gemini-test-image"


def test_request_shape():
    encoded = base64.b64encode(PNG_BYTES).decode("ascii")
    client = make_client(image_response([{"inline_data": {"data": encoded}}]))
    client.use_search = True

    image = client.generate("draw 杭州")

    request = client.requests[0]
    assert request.url.path.endswith("/models/gemini-test-image:generateContent")
    payload = json.loads(request.content)
    assert payload["contents"][0]["parts"][0]["text"] == "draw 杭州"
    assert payload["generationConfig"]["responseModalities"] == ["IMAGE", "TEXT"]
    assert payload["tools"] == [{"googleSearch": {}}]
    assert image.mime_type == "image/png"


def test_search_tool_can_be_disabled():
    encoded = base64.b64encode(PNG_BYTES).decode("ascii")
    client = make_client(image_response([{"inlineData": {"data": encoded}}]))
    client.use_search = False

    client.generate("draw")

    assert "tools" not in json.loads(client.requests[0].content)


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"candidates": []},
        image_response([{"text": "I cannot draw that"}]),
        image_response([{"inlineData": {"mimeType": "image/png", "data": ""}}]),
        image_response([{"inlineData": {"mimeType": "image/png", "data": "not base64!!"}}]),
    ],
)
def test_missing_image_raises(body):
    with pytest.raises(NoImageError, match="No image"):
        make_client(body).generate("draw")


def test_http_error_raises():
    with pytest.raises(httpx.HTTPStatusError):
        make_client({"error": {"message": "quota"}}, status=429).generate("draw")
