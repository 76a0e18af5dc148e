"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from tryon.services.gemini import DEFAULT_ENDPOINT_BASE, DEFAULT_MODEL

GENERATION_BACKENDS = ("gemini", "mock")
API_KEY_VARIABLES = ("API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY")


@dataclass(frozen=True, slots=True)
class GeminiConfig:
    """Connection settings for the Gemini image model."""

    api_key: str
    model: str
    endpoint_base: str
    timeout_seconds: int


@dataclass(frozen=True, slots=True)
class WebConfig:
    """Bind address and limits of the web surface."""

    host: str
    port: int
    max_upload_bytes: int
    session_ttl_seconds: int


@dataclass(slots=True)
class Config:
    """Top-level application configuration."""

    backend: str
    gemini: GeminiConfig
    web: WebConfig
    bot_token: Optional[str]

    @property
    def bot_enabled(self) -> bool:
        return bool(self.bot_token)


def _optional_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    if not stripped:
        return default
    return stripped


def _parse_int_env(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = _optional_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer value") from None
    if minimum is not None and value < minimum:
        raise RuntimeError(f"{name} must be greater than or equal to {minimum}")
    return value


def _first_env(names: tuple[str, ...]) -> str:
    for name in names:
        value = _optional_env(name)
        if value:
            return value
    return ""


def load_config(env_file: str | None = None) -> Config:
    """Load configuration from the provided .env file (or default location).

    A missing API key is not an error here: it is reported when a try-on is
    submitted.
    """

    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    backend = (_optional_env("GENERATION_BACKEND", "gemini") or "gemini").lower()
    if backend not in GENERATION_BACKENDS:
        raise RuntimeError(
            f"GENERATION_BACKEND must be one of: {', '.join(GENERATION_BACKENDS)}"
        )

    endpoint_base = _optional_env("GEMINI_ENDPOINT_BASE", DEFAULT_ENDPOINT_BASE) or DEFAULT_ENDPOINT_BASE
    parsed = urlparse(endpoint_base)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise RuntimeError("GEMINI_ENDPOINT_BASE must be a valid HTTP(S) URL")

    gemini = GeminiConfig(
        api_key=_first_env(API_KEY_VARIABLES),
        model=_optional_env("GEMINI_MODEL", DEFAULT_MODEL) or DEFAULT_MODEL,
        endpoint_base=endpoint_base.rstrip("/"),
        timeout_seconds=_parse_int_env("GEMINI_TIMEOUT_SEC", 120, minimum=1),
    )
    web = WebConfig(
        host=_optional_env("WEB_HOST", "0.0.0.0") or "0.0.0.0",
        port=_parse_int_env("WEB_PORT", 8080, minimum=1),
        max_upload_bytes=_parse_int_env("MAX_UPLOAD_MB", 10, minimum=1) * 1024 * 1024,
        session_ttl_seconds=_parse_int_env("SESSION_TTL_MIN", 30, minimum=1) * 60,
    )

    return Config(
        backend=backend,
        gemini=gemini,
        web=web,
        bot_token=_optional_env("BOT_TOKEN"),
    )


__all__ = ["Config", "GeminiConfig", "WebConfig", "load_config"]
