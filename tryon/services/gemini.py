"""Client for the Google Gemini image try-on API."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
from typing import Any, Mapping, Optional

import aiohttp

from logger import get_logger
from tryon.models import ImageState, TryOnResult
from tryon.services.generation_base import GenerationClient, GenerationError


LOGGER = get_logger("generation.gemini")

TRY_ON_PROMPT = (
    "Take the first image as the base photo of a person.\n"
    "Take the second image as the outfit reference.\n"
    "Generate a new photorealistic image of the person from the first image wearing the outfit "
    "from the second image.\n"
    "Keep the person's face, body shape, pose and skin tone unchanged.\n"
    "Fit the clothes naturally, with realistic folds, proportions and perspective.\n"
    "Keep the lighting and background consistent with the base photo."
)

DEFAULT_MODEL = "gemini-2.5-flash-image-preview"
DEFAULT_ENDPOINT_BASE = "https://generativelanguage.googleapis.com"

_BLOCKING_FINISH_REASONS = {
    "SAFETY",
    "IMAGE_SAFETY",
    "PROHIBITED_CONTENT",
    "BLOCKLIST",
    "SPII",
    "RECITATION",
}


class GeminiGenerationClient(GenerationClient):
    """Send both images to Gemini and parse the composite it returns."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        endpoint_base: str = DEFAULT_ENDPOINT_BASE,
        timeout_seconds: float = 120.0,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._model = model
        self._endpoint_base = endpoint_base.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=max(float(timeout_seconds), 1.0))

    @property
    def url(self) -> str:
        return f"{self._endpoint_base}/v1beta/models/{self._model}:generateContent"

    async def generate(self, person: ImageState, outfit: ImageState) -> TryOnResult:
        if not self._api_key:
            raise GenerationError(
                "The Gemini API key is not configured. Set API_KEY in the environment.",
                reason="no_api_key",
            )
        payload = build_request_payload(person, outfit)
        LOGGER.debug(
            "Sending try-on request",
            extra={"stage": "GEMINI_REQUEST"},
            payload={"model": self._model, "person": person.mime_type, "outfit": outfit.mime_type},
        )
        data = await self._post(payload)
        result = parse_generation_response(data)
        LOGGER.debug(
            "Try-on image received",
            extra={"stage": "GEMINI_OK"},
            payload={"mime": result.mime_type, "has_text": bool(result.text_response)},
        )
        return result

    async def _post(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        headers = {"x-goog-api-key": self._api_key}
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            try:
                async with session.post(self.url, json=payload, headers=headers) as response:
                    text = await response.text()
                    if response.status != 200:
                        raise GenerationError(
                            _http_error_message(response.status, text),
                            status=response.status,
                            reason=f"status={response.status}",
                        )
            except asyncio.TimeoutError as exc:
                raise GenerationError(
                    "The image service did not respond in time. Please try again.",
                    reason="timeout",
                ) from exc
            except aiohttp.ClientError as exc:
                raise GenerationError(
                    f"Could not reach the image service ({exc.__class__.__name__}).",
                    reason=exc.__class__.__name__,
                ) from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise GenerationError(
                "The image service returned a response that could not be read.",
                status=200,
                reason="json_decode",
            ) from exc
        if not isinstance(data, Mapping):
            raise GenerationError(
                "The image service returned an unexpected response.",
                status=200,
                reason="not_object",
            )
        return data


def build_request_payload(person: ImageState, outfit: ImageState) -> dict[str, Any]:
    """Return the ``generateContent`` body for one try-on request."""

    return {
        "contents": [
            {
                "role": "user",
                "parts": [
                    _inline_part(person),
                    _inline_part(outfit),
                    {"text": TRY_ON_PROMPT},
                ],
            }
        ],
        "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
    }


def _inline_part(image: ImageState) -> dict[str, Any]:
    return {
        "inline_data": {
            "mime_type": image.mime_type,
            "data": image.base64_data,
        }
    }


def parse_generation_response(data: Mapping[str, Any]) -> TryOnResult:
    """Extract the first image and any text from a ``generateContent`` response."""

    prompt_feedback = data.get("promptFeedback")
    block_reason = (
        prompt_feedback.get("blockReason") if isinstance(prompt_feedback, Mapping) else None
    )
    if block_reason:
        raise GenerationError(
            f"The request was blocked by the image service ({block_reason}). Try different images.",
            status=200,
            reason="blocked",
        )

    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise GenerationError(
            "The image service returned no result. Try different images.",
            status=200,
            reason="no_candidates",
        )

    candidate = candidates[0] if isinstance(candidates[0], Mapping) else {}
    content = candidate.get("content")
    parts = content.get("parts") if isinstance(content, Mapping) else None
    if not isinstance(parts, list):
        parts = []

    image_data: Optional[str] = None
    mime_type = "image/png"
    texts: list[str] = []
    for part in parts:
        if not isinstance(part, Mapping):
            continue
        inline = part.get("inline_data") or part.get("inlineData")
        if isinstance(inline, Mapping) and image_data is None:
            raw = inline.get("data")
            if isinstance(raw, str) and raw.strip():
                image_data = raw.strip()
                mime_type = inline.get("mime_type") or inline.get("mimeType") or mime_type
            continue
        text = part.get("text")
        if isinstance(text, str) and text.strip():
            texts.append(text.strip())

    text_response = "\n".join(texts) or None
    if image_data is None:
        finish_reason = str(candidate.get("finishReason") or "")
        raise GenerationError(
            _missing_image_message(finish_reason, text_response),
            status=200,
            reason=f"finish={finish_reason}" if finish_reason else "no_image",
        )

    try:
        base64.b64decode(image_data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise GenerationError(
            "The image service returned corrupted image data.",
            status=200,
            reason="invalid_image_data",
        ) from exc

    return TryOnResult(image_data=image_data, mime_type=mime_type, text_response=text_response)


def _missing_image_message(finish_reason: str, text_response: Optional[str]) -> str:
    if finish_reason.upper() in _BLOCKING_FINISH_REASONS:
        return (
            f"The image service refused to generate this image ({finish_reason}). "
            "Try different images."
        )
    if text_response:
        return f"The model did not return an image. It responded: {text_response}"
    if finish_reason:
        return f"The model did not return an image (finish reason: {finish_reason})."
    return "The model did not return an image. Try different images."


def _http_error_message(status: int, body: str) -> str:
    service_message: Optional[str] = None
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, Mapping):
        error = payload.get("error")
        if isinstance(error, Mapping) and isinstance(error.get("message"), str):
            service_message = error["message"].strip() or None
    if service_message:
        return service_message
    return f"The image service returned HTTP {status}."


__all__ = [
    "DEFAULT_ENDPOINT_BASE",
    "DEFAULT_MODEL",
    "GeminiGenerationClient",
    "TRY_ON_PROMPT",
    "build_request_payload",
    "parse_generation_response",
]
