"""Chat surface: the same try-on flow driven from Telegram."""

from __future__ import annotations

import io
from contextlib import suppress
from typing import Any, Optional

from aiogram import F, Router
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import BufferedInputFile, CallbackQuery, Message

from logger import bind_context, get_logger, info_domain, reset_context
from tryon import texts as msg
from tryon.controller import RequestInProgressError, TryOnController
from tryon.keyboards import RESET_CALLBACK, TRY_ON_CALLBACK, try_on_keyboard
from tryon.services.image_io import InvalidImageError, image_state_from_bytes
from tryon.sessions import SessionRegistry

_CAPTION_LIMIT = 1024


class TryOnStates(StatesGroup):
    AWAITING_PERSON = State()
    AWAITING_OUTFIT = State()
    READY = State()


def session_key(chat_id: int) -> str:
    return f"chat:{chat_id}"


def _extract_file(message: Message) -> tuple[Optional[Any], Optional[str]]:
    """Return the downloadable object and declared MIME type of an incoming image."""

    if message.photo:
        return message.photo[-1], "image/jpeg"
    document = message.document
    if document is not None and (document.mime_type or "").startswith("image/"):
        return document, document.mime_type
    return None, None


def _caption(text: Optional[str]) -> str:
    caption = text or msg.RESULT_CAPTION
    if len(caption) > _CAPTION_LIMIT:
        caption = caption[: _CAPTION_LIMIT - 1] + "…"
    return caption


def setup_router(registry: SessionRegistry, *, max_upload_bytes: int) -> Router:
    router = Router()
    logger = get_logger("bot.handlers")

    async def _restart(message: Message, state: FSMContext, text: str) -> None:
        controller = registry.get(session_key(message.chat.id))
        if controller.state.is_loading:
            await message.answer(msg.ALREADY_GENERATING)
            return
        controller.reset()
        await state.set_state(TryOnStates.AWAITING_PERSON)
        await message.answer(text)

    @router.message(CommandStart())
    async def handle_start(message: Message, state: FSMContext) -> None:
        await _restart(message, state, msg.START_TEXT)

    @router.message(Command("reset"))
    async def handle_reset(message: Message, state: FSMContext) -> None:
        await _restart(message, state, msg.RESET_TEXT)

    @router.callback_query(F.data == RESET_CALLBACK)
    async def handle_reset_button(callback: CallbackQuery, state: FSMContext) -> None:
        await callback.answer()
        if callback.message is not None:
            await _restart(callback.message, state, msg.RESET_TEXT)

    @router.message(F.photo | F.document)
    async def accept_image(message: Message, state: FSMContext) -> None:
        file, declared_mime = _extract_file(message)
        if file is None:
            await message.answer(msg.NOT_AN_IMAGE)
            return

        buffer = io.BytesIO()
        await message.bot.download(file, destination=buffer)
        try:
            image = image_state_from_bytes(
                buffer.getvalue(), declared_mime, max_bytes=max_upload_bytes
            )
        except InvalidImageError as exc:
            logger.warning("Chat upload rejected: %s", exc, stage="UPLOAD_REJECTED")
            await message.answer(f"{msg.ERROR_PREFIX}{exc}")
            return

        controller = registry.get(session_key(message.chat.id))
        current = await state.get_state()
        if current == TryOnStates.AWAITING_OUTFIT.state:
            controller.select_outfit(image)
            await state.set_state(TryOnStates.READY)
            await message.answer(msg.OUTFIT_RECEIVED, reply_markup=try_on_keyboard())
        elif current == TryOnStates.READY.state:
            controller.select_outfit(image)
            await message.answer(msg.OUTFIT_REPLACED, reply_markup=try_on_keyboard())
        else:
            controller.select_person(image)
            await state.set_state(TryOnStates.AWAITING_OUTFIT)
            await message.answer(msg.PERSON_RECEIVED)
        info_domain(
            "bot.handlers",
            "Image selected",
            stage="IMAGE_SELECTED",
            session_id=session_key(message.chat.id),
            state=current,
            mime=image.mime_type,
        )

    @router.message()
    async def reject_other(message: Message) -> None:
        await message.answer(msg.NOT_AN_IMAGE)

    @router.callback_query(F.data == TRY_ON_CALLBACK)
    async def run_try_on(callback: CallbackQuery) -> None:
        message = callback.message
        if message is None:
            await callback.answer()
            return
        key = session_key(message.chat.id)
        controller: TryOnController = registry.get(key)
        try:
            task = controller.start()
        except RequestInProgressError:
            await callback.answer(msg.ALREADY_GENERATING)
            return
        await callback.answer()

        if task is None:
            await message.answer(f"{msg.ERROR_PREFIX}{controller.state.error}")
            return

        token = bind_context(session_id=key)
        try:
            progress = await message.answer(msg.GENERATING)
            final = await task
            with suppress(TelegramBadRequest):
                await progress.delete()

            if final.result is not None:
                photo = BufferedInputFile(final.result.image_bytes(), filename="try-on.png")
                await message.answer_photo(
                    photo,
                    caption=_caption(final.result.text_response),
                    reply_markup=try_on_keyboard(),
                )
            else:
                await message.answer(
                    f"{msg.ERROR_PREFIX}{final.error}", reply_markup=try_on_keyboard()
                )
        finally:
            reset_context(token)

    return router


__all__ = ["TryOnStates", "session_key", "setup_router"]
