"""Request lifecycle controller for one try-on session."""

from __future__ import annotations

import asyncio
from typing import Optional

from logger import get_logger
from tryon.models import (
    MISSING_IMAGES_MESSAGE,
    UNKNOWN_ERROR_MESSAGE,
    ImageState,
    RequestState,
    TryOnResult,
)
from tryon.services.generation_base import GenerationClient, GenerationError

LOGGER = get_logger("tryon.controller")


class RequestInProgressError(RuntimeError):
    """Raised when an action requires that no request is loading."""


def failure_message(exc: BaseException) -> str:
    """Return the user-facing message for a failed generation."""

    if isinstance(exc, GenerationError):
        text = exc.message
    else:
        text = str(exc)
    text = (text or "").strip()
    return text or UNKNOWN_ERROR_MESSAGE


class TryOnController:
    """Own the two selected images and the state of the current request.

    All mutations go through this object; the display layer only reads
    :attr:`state`, the images and :attr:`version`.
    """

    def __init__(self, client: GenerationClient, *, session_id: Optional[str] = None) -> None:
        self._client = client
        self._session_id = session_id
        self._person: Optional[ImageState] = None
        self._outfit: Optional[ImageState] = None
        self._state = RequestState.idle()
        self._task: Optional[asyncio.Task[RequestState]] = None
        self._version = 0

    @property
    def person_image(self) -> Optional[ImageState]:
        return self._person

    @property
    def outfit_image(self) -> Optional[ImageState]:
        return self._outfit

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def version(self) -> int:
        return self._version

    @property
    def can_submit(self) -> bool:
        return self._person is not None and self._outfit is not None and not self._state.is_loading

    @property
    def task(self) -> Optional[asyncio.Task[RequestState]]:
        return self._task

    def select_person(self, image: ImageState) -> None:
        self._person = image
        self._touch()

    def select_outfit(self, image: ImageState) -> None:
        self._outfit = image
        self._touch()

    def clear_person(self) -> None:
        self._person = None
        self._touch()

    def clear_outfit(self) -> None:
        self._outfit = None
        self._touch()

    def reset(self) -> None:
        """Drop both images and return to idle."""

        if self._state.is_loading:
            raise RequestInProgressError("Cannot reset while a request is loading")
        self._person = None
        self._outfit = None
        self._transition(RequestState.idle())

    def start(self) -> Optional[asyncio.Task[RequestState]]:
        """Validate inputs, enter ``LOADING`` and schedule the generation.

        Returns the scheduled task, or ``None`` when validation failed and the
        state moved straight to ``FAILURE``. Must be called from a running
        event loop.
        """

        if self._state.is_loading:
            raise RequestInProgressError("A try-on request is already in progress")

        person, outfit = self._person, self._outfit
        if person is None or outfit is None:
            self._transition(RequestState.failure(MISSING_IMAGES_MESSAGE))
            LOGGER.milestone(
                "Try-on rejected: missing image",
                stage="VALIDATION_FAILED",
                session_id=self._session_id,
                person=person is not None,
                outfit=outfit is not None,
            )
            return None

        self._transition(RequestState.loading())
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(person, outfit), name=f"tryon-{self._session_id or id(self)}")
        task.add_done_callback(self._on_task_done)
        self._task = task
        LOGGER.milestone(
            "Try-on started",
            stage="GENERATION_STARTED",
            session_id=self._session_id,
        )
        return task

    async def submit(self) -> RequestState:
        """Run one try-on request over the held images and return the final state."""

        task = self.start()
        if task is None:
            return self._state
        return await task

    def cancel(self) -> bool:
        """Cancel the in-flight request, if any."""

        task = self._task
        if task is None or task.done():
            return False
        return task.cancel()

    def dispose(self) -> None:
        """Cancel pending work and drop all held images."""

        self.cancel()
        self._person = None
        self._outfit = None

    async def _run(self, person: ImageState, outfit: ImageState) -> RequestState:
        try:
            result: TryOnResult = await self._client.generate(person, outfit)
        except asyncio.CancelledError:
            self._transition(RequestState.idle())
            raise
        except Exception as exc:
            message = failure_message(exc)
            LOGGER.failure(
                "Try-on generation failed: %s",
                exc,
                message,
                stage="GENERATION_FAILED",
                session_id=self._session_id,
            )
            self._transition(RequestState.failure(message))
        else:
            self._transition(RequestState.success(result))
            LOGGER.milestone(
                "Try-on finished",
                stage="GENERATION_SUCCESS",
                session_id=self._session_id,
                mime=result.mime_type,
            )
        finally:
            if self._state.is_loading:
                self._transition(RequestState.idle())
        return self._state

    def _on_task_done(self, task: asyncio.Task[RequestState]) -> None:
        # A task cancelled before its first step never enters _run.
        if self._task is task:
            self._task = None
        if task.cancelled() and self._state.is_loading:
            self._transition(RequestState.idle())

    def _transition(self, state: RequestState) -> None:
        self._state = state
        self._touch()

    def _touch(self) -> None:
        self._version += 1


__all__ = ["RequestInProgressError", "TryOnController", "failure_message"]
