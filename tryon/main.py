"""Application entry point."""

from __future__ import annotations

import asyncio
import signal
from contextlib import suppress
from logging import LoggerAdapter

from aiohttp import web

from logger import get_logger, info_domain, setup_logging
from tryon.config import Config, load_config
from tryon.services.gemini import GeminiGenerationClient
from tryon.services.generation_base import GenerationClient
from tryon.services.generation_mock import MockGenerationClient
from tryon.sessions import SessionRegistry
from tryon.web import create_app


def create_generation_client(config: Config) -> GenerationClient:
    """Return the generation backend selected by configuration."""

    if config.backend == "mock":
        return MockGenerationClient(delay_seconds=1.0)
    return GeminiGenerationClient(
        config.gemini.api_key,
        model=config.gemini.model,
        endpoint_base=config.gemini.endpoint_base,
        timeout_seconds=config.gemini.timeout_seconds,
    )


def _install_signal_handlers(stop_event: asyncio.Event, logger: LoggerAdapter) -> tuple[signal.Signals, ...]:
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        logger.debug("Received %s signal. Shutting down...", sig.name)
        stop_event.set()

    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_signal, sig)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - platform specific
            continue
        installed.append(sig)
    return tuple(installed)


async def _start_bot(config: Config, registry: SessionRegistry, stop_event: asyncio.Event) -> asyncio.Task:
    from aiogram import Bot, Dispatcher

    from tryon.bot import setup_router

    bot = Bot(token=config.bot_token or "")
    dp = Dispatcher()
    dp.include_router(setup_router(registry, max_upload_bytes=config.web.max_upload_bytes))

    async def _poll() -> None:
        try:
            await dp.start_polling(bot, handle_signals=False)
        finally:
            await bot.session.close()

    task = asyncio.create_task(_poll(), name="aiogram-polling")
    task.add_done_callback(lambda _: stop_event.set())
    return task


async def main() -> None:
    config = load_config()
    setup_logging()
    logger = get_logger("tryon.start")

    info_domain(
        "tryon.start",
        "Config loaded",
        stage="CONFIG_OK",
        backend=config.backend,
        model=config.gemini.model,
        api_key=bool(config.gemini.api_key),
        bot=config.bot_enabled,
    )
    if config.backend == "gemini" and not config.gemini.api_key:
        logger.warning("API_KEY is not set; try-on requests will fail until it is configured")

    registry = SessionRegistry(
        create_generation_client(config),
        ttl_seconds=config.web.session_ttl_seconds,
    )
    app = create_app(registry, config.web)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.web.host, config.web.port)
    await site.start()
    info_domain(
        "tryon.start",
        "Web server started",
        stage="WEB_STARTED",
        host=config.web.host,
        port=config.web.port,
    )

    stop_event = asyncio.Event()
    installed = _install_signal_handlers(stop_event, logger)
    bot_task = await _start_bot(config, registry, stop_event) if config.bot_enabled else None

    try:
        await stop_event.wait()
    finally:
        if bot_task is not None:
            if not bot_task.done():
                bot_task.cancel()
                with suppress(asyncio.CancelledError):
                    await bot_task
            elif not bot_task.cancelled() and bot_task.exception() is not None:
                logger.error("Bot polling stopped: %s", bot_task.exception())
        await runner.cleanup()
        loop = asyncio.get_running_loop()
        for sig in installed:
            with suppress(ValueError, RuntimeError):
                loop.remove_signal_handler(sig)
        info_domain("tryon.start", "Stopped", stage="STOPPED")


if __name__ == "__main__":
    asyncio.run(main())
