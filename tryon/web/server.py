"""Web surface: single page plus a small JSON API over the controller."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from aiohttp import web

from logger import get_logger, info_domain
from tryon.config import WebConfig
from tryon.controller import RequestInProgressError, TryOnController
from tryon.models import ImageState
from tryon.services.image_io import (
    ImageTooLargeError,
    InvalidImageError,
    image_state_from_bytes,
    too_large_message,
)
from tryon.sessions import SessionRegistry
from tryon.web.middleware import SESSION_ID_KEY, logging_middleware, session_middleware

STATIC_DIR = Path(__file__).resolve().parent / "static"
SLOTS = ("person", "outfit")

REGISTRY_KEY = web.AppKey("registry", SessionRegistry)
WEB_CONFIG_KEY = web.AppKey("web_config", WebConfig)

# Room for multipart boundaries and headers on top of the image itself.
_MULTIPART_OVERHEAD = 64 * 1024

LOGGER = get_logger("web.server")


def _image_payload(image: ImageState | None) -> dict[str, Any] | None:
    if image is None:
        return None
    return {"mimeType": image.mime_type, "bytes": image.size}


def serialize_state(controller: TryOnController) -> dict[str, Any]:
    """JSON view of a controller consumed by the page script."""

    state = controller.state
    result_payload = None
    if state.result is not None:
        result_payload = {
            "mimeType": state.result.mime_type,
            "textResponse": state.result.text_response,
            "imageUrl": f"/api/result/image?v={controller.version}",
        }
    return {
        "status": state.status.value,
        "error": state.error,
        "result": result_payload,
        "person": _image_payload(controller.person_image),
        "outfit": _image_payload(controller.outfit_image),
        "canSubmit": controller.can_submit,
        "version": controller.version,
    }


def _error(status: int, message: str, controller: TryOnController | None = None) -> web.Response:
    body: dict[str, Any] = {"error": message}
    if controller is not None:
        body["state"] = serialize_state(controller)
    return web.json_response(body, status=status)


def _controller(request: web.Request) -> TryOnController:
    return request.app[REGISTRY_KEY].get(request[SESSION_ID_KEY])


async def handle_index(request: web.Request) -> web.StreamResponse:
    return web.FileResponse(STATIC_DIR / "index.html")


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "sessions": len(request.app[REGISTRY_KEY])})


async def handle_state(request: web.Request) -> web.Response:
    return web.json_response(serialize_state(_controller(request)))


async def handle_upload(request: web.Request) -> web.Response:
    slot = request.match_info["slot"]
    controller = _controller(request)
    max_bytes = request.app[WEB_CONFIG_KEY].max_upload_bytes

    try:
        form = await request.post()
    except web.HTTPRequestEntityTooLarge:
        return _error(413, too_large_message(max_bytes), controller)

    field = form.get("file")
    if not isinstance(field, web.FileField):
        return _error(400, "No file was uploaded.", controller)

    data = field.file.read()
    try:
        image = image_state_from_bytes(data, field.content_type, max_bytes=max_bytes)
    except InvalidImageError as exc:
        LOGGER.warning(
            "Upload rejected: %s",
            exc,
            stage="UPLOAD_REJECTED",
            payload={"slot": slot, "bytes": len(data)},
        )
        status = 413 if isinstance(exc, ImageTooLargeError) else 400
        return _error(status, str(exc), controller)

    if slot == "person":
        controller.select_person(image)
    else:
        controller.select_outfit(image)
    info_domain(
        "web.server",
        "Image selected",
        stage="IMAGE_SELECTED",
        slot=slot,
        mime=image.mime_type,
        bytes=image.size,
    )
    return web.json_response(serialize_state(controller))


async def handle_clear(request: web.Request) -> web.Response:
    slot = request.match_info["slot"]
    controller = _controller(request)
    if slot == "person":
        controller.clear_person()
    else:
        controller.clear_outfit()
    return web.json_response(serialize_state(controller))


async def handle_try_on(request: web.Request) -> web.Response:
    controller = _controller(request)
    try:
        task = controller.start()
    except RequestInProgressError as exc:
        return _error(409, str(exc), controller)
    return web.json_response(serialize_state(controller), status=202 if task is not None else 200)


async def handle_reset(request: web.Request) -> web.Response:
    controller = _controller(request)
    try:
        controller.reset()
    except RequestInProgressError as exc:
        return _error(409, str(exc), controller)
    return web.json_response(serialize_state(controller))


async def handle_result_image(request: web.Request) -> web.Response:
    result = _controller(request).state.result
    if result is None:
        return _error(404, "No result is available.")
    return web.Response(
        body=result.image_bytes(),
        content_type=result.mime_type,
        headers={"Cache-Control": "no-store"},
    )


async def _on_cleanup(app: web.Application) -> None:
    registry = app[REGISTRY_KEY]
    await registry.close()
    await registry.client.close()


def create_app(registry: SessionRegistry, web_config: WebConfig) -> web.Application:
    app = web.Application(
        middlewares=[logging_middleware, session_middleware],
        client_max_size=web_config.max_upload_bytes + _MULTIPART_OVERHEAD,
    )
    app[REGISTRY_KEY] = registry
    app[WEB_CONFIG_KEY] = web_config

    slot_pattern = "{slot:" + "|".join(SLOTS) + "}"
    app.router.add_get("/", handle_index)
    app.router.add_get("/health", handle_health)
    app.router.add_get("/api/state", handle_state)
    app.router.add_post(f"/api/images/{slot_pattern}", handle_upload)
    app.router.add_delete(f"/api/images/{slot_pattern}", handle_clear)
    app.router.add_post("/api/try-on", handle_try_on)
    app.router.add_post("/api/reset", handle_reset)
    app.router.add_get("/api/result/image", handle_result_image)
    app.on_cleanup.append(_on_cleanup)
    return app


__all__ = ["REGISTRY_KEY", "WEB_CONFIG_KEY", "create_app", "serialize_state"]
