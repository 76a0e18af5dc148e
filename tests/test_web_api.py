"""HTTP-level tests of the web surface."""

import asyncio
import base64
import io
import warnings
from typing import Awaitable, Callable, Optional

from aiohttp import FormData, web
from aiohttp.test_utils import TestClient, TestServer
from PIL import Image

from tryon.config import WebConfig
from tryon.models import MISSING_IMAGES_MESSAGE, ImageState, TryOnResult
from tryon.services.generation_base import GenerationClient, GenerationError
from tryon.sessions import SessionRegistry
from tryon.web import create_app
from tryon.web.middleware import SESSION_COOKIE, SESSION_ID_KEY

RESULT_BYTES = b"composite-image-bytes"
RESULT = TryOnResult(
    image_data=base64.b64encode(RESULT_BYTES).decode("ascii"),
    mime_type="image/png",
    text_response="Looking sharp.",
)
WEB_CONFIG = WebConfig(host="127.0.0.1", port=0, max_upload_bytes=1024 * 1024, session_ttl_seconds=600)


class FakeClient(GenerationClient):
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.gate = asyncio.Event()
        self.calls = 0
        self.closed = False

    async def generate(self, person: ImageState, outfit: ImageState) -> TryOnResult:
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return RESULT

    async def close(self) -> None:
        self.closed = True


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color="blue").save(buffer, format="PNG")
    return buffer.getvalue()


def _form(data: bytes, filename: str = "photo.png", content_type: str = "image/png") -> FormData:
    form = FormData()
    form.add_field("file", data, filename=filename, content_type=content_type)
    return form


def _run(
    scenario: Callable[[TestClient, FakeClient], Awaitable[None]],
    client_factory: Callable[[], FakeClient] = FakeClient,
) -> FakeClient:
    fake = client_factory()

    async def runner() -> None:
        registry = SessionRegistry(fake, ttl_seconds=600)
        app = create_app(registry, WEB_CONFIG)
        async with TestClient(TestServer(app)) as client:
            await scenario(client, fake)

    asyncio.run(runner())
    return fake


async def _wait_for_status(client: TestClient, status: str) -> dict:
    for _ in range(100):
        response = await client.get("/api/state")
        payload = await response.json()
        if payload["status"] == status:
            return payload
        await asyncio.sleep(0.01)
    raise AssertionError(f"state never became {status}")


async def _upload_both(client: TestClient) -> dict:
    response = await client.post("/api/images/person", data=_form(_png_bytes()))
    assert response.status == 200
    response = await client.post("/api/images/outfit", data=_form(_png_bytes()))
    assert response.status == 200
    return await response.json()


def test_index_and_health_are_served() -> None:
    async def scenario(client: TestClient, fake: FakeClient) -> None:
        response = await client.get("/")
        assert response.status == 200
        assert "Virtually Try On" in await response.text()

        response = await client.get("/health")
        assert (await response.json())["status"] == "ok"

    _run(scenario)


def test_initial_state_is_idle_and_sets_session_cookie() -> None:
    async def scenario(client: TestClient, fake: FakeClient) -> None:
        response = await client.get("/api/state")
        payload = await response.json()

        assert payload["status"] == "idle"
        assert payload["error"] is None
        assert payload["result"] is None
        assert payload["person"] is None
        assert payload["canSubmit"] is False
        assert SESSION_COOKIE in response.cookies

    _run(scenario)


def test_try_on_without_images_returns_validation_failure() -> None:
    async def scenario(client: TestClient, fake: FakeClient) -> None:
        response = await client.post("/api/try-on")
        payload = await response.json()

        assert response.status == 200
        assert payload["status"] == "failure"
        assert payload["error"] == MISSING_IMAGES_MESSAGE

    fake = _run(scenario)
    assert fake.calls == 0


def test_full_try_on_flow() -> None:
    async def scenario(client: TestClient, fake: FakeClient) -> None:
        state = await _upload_both(client)
        assert state["canSubmit"] is True
        assert state["person"]["mimeType"] == "image/png"

        response = await client.post("/api/try-on")
        payload = await response.json()
        assert response.status == 202
        assert payload["status"] == "loading"
        assert payload["canSubmit"] is False

        response = await client.post("/api/try-on")
        assert response.status == 409

        fake.gate.set()
        final = await _wait_for_status(client, "success")
        assert final["error"] is None
        assert final["result"]["textResponse"] == "Looking sharp."

        image = await client.get(final["result"]["imageUrl"])
        assert image.status == 200
        assert image.content_type == "image/png"
        assert await image.read() == RESULT_BYTES

    fake = _run(scenario)
    assert fake.calls == 1
    assert fake.closed is True


def test_generation_error_is_reported_as_failure() -> None:
    async def scenario(client: TestClient, fake: FakeClient) -> None:
        await _upload_both(client)
        await client.post("/api/try-on")
        fake.gate.set()

        final = await _wait_for_status(client, "failure")
        assert final["error"] == "quota exceeded"
        assert final["result"] is None

        response = await client.get("/api/result/image")
        assert response.status == 404

    _run(scenario, lambda: FakeClient(error=GenerationError("quota exceeded")))


def test_invalid_upload_is_rejected_without_touching_state() -> None:
    async def scenario(client: TestClient, fake: FakeClient) -> None:
        response = await client.post(
            "/api/images/person",
            data=_form(b"definitely not an image", filename="notes.txt", content_type="text/plain"),
        )
        payload = await response.json()

        assert response.status == 400
        assert "not a supported image" in payload["error"]
        assert payload["state"]["person"] is None
        assert payload["state"]["status"] == "idle"

        response = await client.post("/api/images/person", data=FormData({"other": "x"}))
        assert response.status == 400

    _run(scenario)


def test_unknown_slot_is_not_routed() -> None:
    async def scenario(client: TestClient, fake: FakeClient) -> None:
        response = await client.post("/api/images/hat", data=_form(_png_bytes()))
        assert response.status == 404

    _run(scenario)


def test_clear_and_reset() -> None:
    async def scenario(client: TestClient, fake: FakeClient) -> None:
        await _upload_both(client)

        response = await client.delete("/api/images/outfit")
        payload = await response.json()
        assert payload["outfit"] is None
        assert payload["person"] is not None
        assert payload["canSubmit"] is False

        response = await client.post("/api/reset")
        payload = await response.json()
        assert payload["person"] is None
        assert payload["status"] == "idle"

    _run(scenario)


def test_sessions_are_isolated_by_cookie() -> None:
    async def scenario(client: TestClient, fake: FakeClient) -> None:
        await _upload_both(client)

        client.session.cookie_jar.clear()
        response = await client.get("/api/state")
        payload = await response.json()

        assert payload["person"] is None
        assert payload["outfit"] is None

    _run(scenario)


def test_oversized_uploads_are_rejected_with_413() -> None:
    limit = WEB_CONFIG.max_upload_bytes
    slightly_over = _png_bytes().ljust(limit + 10, b"\0")
    far_over = _png_bytes().ljust(limit * 2, b"\0")

    async def scenario(client: TestClient, fake: FakeClient) -> None:
        for data in (slightly_over, far_over):
            response = await client.post("/api/images/person", data=_form(data))
            payload = await response.json()

            assert response.status == 413
            assert payload["error"] == "The selected file is too large (limit 1 MB)."
            assert payload["state"]["person"] is None

    _run(scenario)


def test_shutdown_waits_for_cancelled_requests() -> None:
    async def runner() -> None:
        fake = FakeClient()
        registry = SessionRegistry(fake, ttl_seconds=600)
        app = create_app(registry, WEB_CONFIG)
        async with TestClient(TestServer(app)) as client:
            await _upload_both(client)
            response = await client.post("/api/try-on")
            assert response.status == 202
            (session_key,) = [cookie.value for cookie in client.session.cookie_jar if cookie.key == SESSION_COOKIE]
            task = registry.peek(session_key).task

        assert task is not None
        assert task.done()
        assert task.cancelled()
        assert len(registry) == 0
        assert fake.closed is True

    asyncio.run(runner())


def test_request_storage_uses_typed_keys() -> None:
    seen: list[str] = []

    async def runner() -> None:
        registry = SessionRegistry(FakeClient(), ttl_seconds=600)
        app = create_app(registry, WEB_CONFIG)

        async def echo_session(request: web.Request) -> web.Response:
            seen.append(request[SESSION_ID_KEY])
            return web.Response(text="ok")

        app.router.add_get("/echo", echo_session)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            async with TestClient(TestServer(app)) as client:
                await client.get("/echo")
                await client.get("/api/state")
        assert not [w for w in caught if issubclass(w.category, web.NotAppKeyWarning)]

    asyncio.run(runner())
    assert len(seen) == 1
    assert len(seen[0]) == 32
