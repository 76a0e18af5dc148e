"""Mock generation backend producing placeholder images."""

from __future__ import annotations

import asyncio
import base64
import io
from datetime import UTC, datetime

from PIL import Image, ImageDraw

from tryon.models import ImageState, TryOnResult
from tryon.services.generation_base import GenerationClient
from tryon.services.image_io import image_dimensions

# Upper bound for the placeholder's longest side.
MAX_SIDE = 2048


class MockGenerationClient(GenerationClient):
    """Generate placeholder try-on results without calling any service."""

    def __init__(self, delay_seconds: float = 0.0) -> None:
        self._delay = max(delay_seconds, 0.0)

    async def generate(self, person: ImageState, outfit: ImageState) -> TryOnResult:
        if self._delay:
            await asyncio.sleep(self._delay)
        size = _placeholder_size(image_dimensions(person) or (1024, 1024))
        encoded = await asyncio.to_thread(self._render, size)
        return TryOnResult(
            image_data=encoded,
            mime_type="image/png",
            text_response="Demo mode: no image service was called.",
        )

    @staticmethod
    def _render(size: tuple[int, int]) -> str:
        image = Image.new("RGB", size, color="white")
        draw = ImageDraw.Draw(image)
        timestamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        draw.text((10, 10), f"DEMO {timestamp}", fill="black")
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return base64.b64encode(buffer.getvalue()).decode("ascii")


def _placeholder_size(size: tuple[int, int]) -> tuple[int, int]:
    width, height = size
    scale = min(1.0, MAX_SIDE / max(width, height, 1))
    return max(1, int(width * scale)), max(1, int(height * scale))
