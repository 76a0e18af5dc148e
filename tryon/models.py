"""Domain models for the try-on request lifecycle."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from enum import Enum
from typing import Optional

ACCEPTED_MIME_TYPES: frozenset[str] = frozenset(
    {
        "image/png",
        "image/jpeg",
        "image/webp",
        "image/gif",
        "image/heic",
        "image/heif",
    }
)

MISSING_IMAGES_MESSAGE = "Please upload both a person and an outfit image."
UNKNOWN_ERROR_MESSAGE = (
    "An unknown error occurred. Please check the logs and ensure your API key is configured."
)


@dataclass(frozen=True, slots=True)
class ImageState:
    """An uploaded image held in memory as base64 plus its MIME type."""

    base64_data: str
    mime_type: str

    def __post_init__(self) -> None:
        if not self.base64_data:
            raise ValueError("Image data must not be empty")
        if self.mime_type not in ACCEPTED_MIME_TYPES:
            raise ValueError(f"Unsupported image type: {self.mime_type}")

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "ImageState":
        return cls(base64_data=base64.b64encode(data).decode("ascii"), mime_type=mime_type)

    def to_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.base64_data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Image data is not valid base64") from exc

    @property
    def size(self) -> int:
        """Approximate decoded size in bytes."""

        padding = self.base64_data.count("=", -2)
        return len(self.base64_data) * 3 // 4 - padding


@dataclass(frozen=True, slots=True)
class TryOnResult:
    """Composite image returned by the generation service."""

    image_data: str
    mime_type: str
    text_response: Optional[str] = None

    def image_bytes(self) -> bytes:
        return base64.b64decode(self.image_data)


class RequestStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class RequestState:
    """Tagged state of the current generation request.

    The payload fields are tied to the status: only ``SUCCESS`` carries a
    result and only ``FAILURE`` carries an error message.
    """

    status: RequestStatus
    result: Optional[TryOnResult] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.status is RequestStatus.SUCCESS:
            if self.result is None or self.error is not None:
                raise ValueError("SUCCESS state requires a result and no error")
        elif self.status is RequestStatus.FAILURE:
            if not self.error or self.result is not None:
                raise ValueError("FAILURE state requires a message and no result")
        elif self.result is not None or self.error is not None:
            raise ValueError(f"{self.status.name} state carries no payload")

    @classmethod
    def idle(cls) -> "RequestState":
        return cls(RequestStatus.IDLE)

    @classmethod
    def loading(cls) -> "RequestState":
        return cls(RequestStatus.LOADING)

    @classmethod
    def success(cls, result: TryOnResult) -> "RequestState":
        return cls(RequestStatus.SUCCESS, result=result)

    @classmethod
    def failure(cls, message: str) -> "RequestState":
        return cls(RequestStatus.FAILURE, error=message)

    @property
    def is_loading(self) -> bool:
        return self.status is RequestStatus.LOADING


__all__ = [
    "ACCEPTED_MIME_TYPES",
    "MISSING_IMAGES_MESSAGE",
    "UNKNOWN_ERROR_MESSAGE",
    "ImageState",
    "RequestState",
    "RequestStatus",
    "TryOnResult",
]
