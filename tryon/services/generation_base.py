"""Generation client interface."""

from __future__ import annotations

import abc
from typing import Optional

from tryon.models import ImageState, TryOnResult


class GenerationError(RuntimeError):
    """Any failure reported by a generation backend.

    ``status`` and ``reason`` are kept for diagnostics; callers surface only
    the message.
    """

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        reason: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.reason = reason


class GenerationClient(abc.ABC):
    """Interface for generating try-on composites."""

    @abc.abstractmethod
    async def generate(self, person: ImageState, outfit: ImageState) -> TryOnResult:
        """Return the composite of the person wearing the outfit."""

    async def close(self) -> None:
        """Release network resources held by the client."""
