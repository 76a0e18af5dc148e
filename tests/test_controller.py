import asyncio
from typing import Optional

import pytest

from tryon.controller import RequestInProgressError, TryOnController, failure_message
from tryon.models import (
    MISSING_IMAGES_MESSAGE,
    UNKNOWN_ERROR_MESSAGE,
    ImageState,
    RequestStatus,
    TryOnResult,
)
from tryon.services.generation_base import GenerationClient, GenerationError


PERSON = ImageState(base64_data="UEVSU09O", mime_type="image/jpeg")
OUTFIT = ImageState(base64_data="T1VURklU", mime_type="image/png")
RESULT = TryOnResult(image_data="ABC123", mime_type="image/png")


class FakeClient(GenerationClient):
    def __init__(
        self,
        *,
        result: Optional[TryOnResult] = RESULT,
        error: Optional[BaseException] = None,
        gated: bool = False,
    ) -> None:
        self.result = result
        self.error = error
        self.gate = asyncio.Event() if gated else None
        self.calls: list[tuple[ImageState, ImageState]] = []

    async def generate(self, person: ImageState, outfit: ImageState) -> TryOnResult:
        self.calls.append((person, outfit))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


def _ready_controller(client: GenerationClient) -> TryOnController:
    controller = TryOnController(client)
    controller.select_person(PERSON)
    controller.select_outfit(OUTFIT)
    return controller


@pytest.mark.parametrize(
    "person, outfit",
    [(None, None), (PERSON, None), (None, OUTFIT)],
)
def test_submit_without_both_images_fails_locally(person, outfit) -> None:
    async def scenario() -> None:
        client = FakeClient()
        controller = TryOnController(client)
        if person is not None:
            controller.select_person(person)
        if outfit is not None:
            controller.select_outfit(outfit)

        state = await controller.submit()

        assert state.status is RequestStatus.FAILURE
        assert state.error == MISSING_IMAGES_MESSAGE
        assert client.calls == []
        assert controller.can_submit is False

    asyncio.run(scenario())


def test_start_enters_loading_before_the_result_arrives() -> None:
    async def scenario() -> None:
        client = FakeClient(gated=True)
        controller = _ready_controller(client)

        task = controller.start()

        assert task is not None
        assert controller.state.status is RequestStatus.LOADING
        assert controller.can_submit is False
        await asyncio.sleep(0)
        assert controller.state.is_loading
        assert client.calls == [(PERSON, OUTFIT)]

        client.gate.set()
        final = await task
        assert final.status is RequestStatus.SUCCESS
        assert controller.task is None

    asyncio.run(scenario())


def test_success_stores_exact_result_and_clears_loading() -> None:
    async def scenario() -> None:
        controller = _ready_controller(FakeClient())

        state = await controller.submit()

        assert state.status is RequestStatus.SUCCESS
        assert state.result == TryOnResult(image_data="ABC123", mime_type="image/png")
        assert state.error is None
        assert state.is_loading is False
        assert controller.can_submit is True

    asyncio.run(scenario())


def test_failure_uses_error_message() -> None:
    async def scenario() -> None:
        controller = _ready_controller(FakeClient(error=GenerationError("quota exceeded")))

        state = await controller.submit()

        assert state.status is RequestStatus.FAILURE
        assert state.error == "quota exceeded"
        assert state.result is None
        assert state.is_loading is False

    asyncio.run(scenario())


@pytest.mark.parametrize("error", [RuntimeError(), GenerationError(""), ValueError("   ")])
def test_failure_without_description_falls_back_to_generic_message(error) -> None:
    async def scenario() -> None:
        controller = _ready_controller(FakeClient(error=error))

        state = await controller.submit()

        assert state.status is RequestStatus.FAILURE
        assert state.error == UNKNOWN_ERROR_MESSAGE
        assert state.is_loading is False

    asyncio.run(scenario())


def test_resubmission_clears_previous_error_before_loading() -> None:
    async def scenario() -> None:
        client = FakeClient(error=GenerationError("network down"))
        controller = _ready_controller(client)
        first = await controller.submit()
        assert first.error == "network down"

        client.error = None
        client.gate = asyncio.Event()
        task = controller.start()

        assert controller.state.status is RequestStatus.LOADING
        assert controller.state.error is None
        assert controller.state.result is None

        client.gate.set()
        second = await task
        assert second.status is RequestStatus.SUCCESS
        assert second.error is None

    asyncio.run(scenario())


def test_resubmission_clears_previous_result_before_loading() -> None:
    async def scenario() -> None:
        client = FakeClient()
        controller = _ready_controller(client)
        await controller.submit()

        client.gate = asyncio.Event()
        task = controller.start()
        assert controller.state.result is None
        client.gate.set()
        await task

    asyncio.run(scenario())


def test_second_start_while_loading_is_rejected() -> None:
    async def scenario() -> None:
        client = FakeClient(gated=True)
        controller = _ready_controller(client)
        task = controller.start()

        with pytest.raises(RequestInProgressError):
            controller.start()
        with pytest.raises(RequestInProgressError):
            controller.reset()

        client.gate.set()
        await task
        assert len(client.calls) == 1

    asyncio.run(scenario())


def test_cancel_in_flight_request_returns_to_idle() -> None:
    async def scenario() -> None:
        client = FakeClient(gated=True)
        controller = _ready_controller(client)
        task = controller.start()
        await asyncio.sleep(0)

        assert controller.cancel() is True
        with pytest.raises(asyncio.CancelledError):
            await task

        assert controller.state.status is RequestStatus.IDLE
        assert controller.can_submit is True
        assert controller.cancel() is False

    asyncio.run(scenario())


def test_cancel_before_first_step_returns_to_idle() -> None:
    async def scenario() -> None:
        client = FakeClient(gated=True)
        controller = _ready_controller(client)
        task = controller.start()

        controller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)

        assert client.calls == []
        assert controller.state.status is RequestStatus.IDLE

    asyncio.run(scenario())


def test_selection_replaces_images_and_bumps_version() -> None:
    controller = TryOnController(FakeClient())
    start_version = controller.version

    controller.select_person(PERSON)
    replacement = ImageState(base64_data="TkVX", mime_type="image/webp")
    controller.select_person(replacement)
    controller.select_outfit(OUTFIT)

    assert controller.person_image is replacement
    assert controller.can_submit is True
    assert controller.version == start_version + 3

    controller.clear_outfit()
    assert controller.outfit_image is None
    assert controller.can_submit is False


def test_reset_drops_images_and_state() -> None:
    async def scenario() -> None:
        controller = _ready_controller(FakeClient(error=GenerationError("boom")))
        await controller.submit()

        controller.reset()

        assert controller.person_image is None
        assert controller.outfit_image is None
        assert controller.state.status is RequestStatus.IDLE

    asyncio.run(scenario())


def test_failure_message_prefers_generation_error_message() -> None:
    error = GenerationError("API key not valid", status=400, reason="status=400")

    assert failure_message(error) == "API key not valid"
    assert failure_message(Exception("plain")) == "plain"
    assert failure_message(Exception()) == UNKNOWN_ERROR_MESSAGE
