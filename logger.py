from __future__ import annotations

import json
import logging
import os
from contextvars import ContextVar, Token
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping

from rich.console import Console
from rich.logging import RichHandler

# Fields rendered ahead of the payload, in this order.
_CONTEXT_FIELDS = (("request_id", "rid"), ("session_id", "sid"), ("stage", "stage"))

_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("log_context", default={})


class TryOnLogger(logging.LoggerAdapter):
    """Adapter attaching request/session context, a stage and a payload."""

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        extra: Dict[str, Any] = {**_CONTEXT.get(), **(kwargs.get("extra") or {})}
        extra.setdefault("module_name", self.extra["module_name"])

        session_id = kwargs.pop("session_id", None)
        if session_id is not None:
            extra["session_id"] = session_id
        stage = kwargs.pop("stage", None)
        if stage:
            extra["stage"] = stage
        payload = kwargs.pop("payload", None)
        if payload:
            extra["payload"] = {**extra.get("payload", {}), **payload}

        kwargs["extra"] = extra
        return msg, kwargs

    def milestone(
        self,
        msg: str,
        *args: Any,
        stage: str | None = None,
        session_id: str | None = None,
        **payload: Any,
    ) -> None:
        """INFO record shown on the console even in low-noise mode."""

        self.info(msg, *args, stage=stage, session_id=session_id, payload=payload, extra={"domain": True})

    def failure(
        self,
        msg: str,
        exc: BaseException,
        *args: Any,
        stage: str,
        session_id: str | None = None,
        **payload: Any,
    ) -> None:
        """ERROR record with traceback plus the error's diagnostic fields.

        Generation errors carry ``reason`` and ``status``; other exceptions
        are tagged with their class name.
        """

        details: Dict[str, Any] = {"reason": getattr(exc, "reason", "") or type(exc).__name__}
        status = getattr(exc, "status", None)
        if status is not None:
            details["status"] = status
        details.update(payload)
        self.error(msg, *args, exc_info=exc, stage=stage, session_id=session_id, payload=details)


def _render_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


class _CompactFormatter(logging.Formatter):
    """``[time] [LEVEL] [module] message (rid=.., sid=.., stage=.., k=v)``"""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        parts = [
            f"{label}={getattr(record, field)}"
            for field, label in _CONTEXT_FIELDS
            if getattr(record, field, None)
        ]
        payload = getattr(record, "payload", None)
        if isinstance(payload, Mapping):
            parts.extend(f"{key}={_render_value(value)}" for key, value in payload.items())
        elif payload:
            parts.append(_render_value(payload))
        if parts:
            message = f"{message} ({', '.join(parts)})"

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            message = f"{message}\n{record.exc_text}"

        module_name = getattr(record, "module_name", record.name)
        return f"[{self.formatTime(record, self.datefmt)}] [{record.levelname}] [{module_name}] {message}"


def _milestones_only(record: logging.LogRecord) -> bool:
    return record.levelno != logging.INFO or bool(getattr(record, "domain", False))


def _console_handler(noise: str) -> logging.Handler:
    handler = RichHandler(
        console=Console(),
        rich_tracebacks=True,
        show_time=False,
        show_level=False,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(_CompactFormatter(datefmt="%H:%M:%S"))
    if noise != "debug":
        handler.addFilter(_milestones_only)
    return handler


def _file_handler(log_dir: Path) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / "tryon.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setFormatter(_CompactFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def setup_logging() -> logging.Logger:
    """Configure the root logger once from LOG_LEVEL, LOG_NOISE and LOG_DIR."""

    root = logging.getLogger()
    if getattr(root, "_tryon_configured", False):
        return root

    for handler in list(root.handlers):
        root.removeHandler(handler)

    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").strip().upper())
    root.setLevel(level if isinstance(level, int) else logging.INFO)

    noise = os.getenv("LOG_NOISE", "low").strip().lower() or "low"
    log_dir = os.getenv("LOG_DIR", "").strip()
    root.addHandler(_console_handler(noise))
    root.addHandler(_file_handler(Path(log_dir) if log_dir else Path.cwd() / "logs"))

    # Polling, access logs and probe requests would drown the milestones.
    for name in ("aiogram", "aiohttp.access", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)

    root._tryon_configured = True  # type: ignore[attr-defined]
    return root


def get_logger(name: str) -> TryOnLogger:
    return TryOnLogger(logging.getLogger(name), {"module_name": name})


def info_domain(
    module: str,
    message: str,
    *,
    stage: str | None = None,
    session_id: str | None = None,
    **payload: Any,
) -> None:
    """Log a milestone for ``module`` without holding a logger."""

    get_logger(module).milestone(message, stage=stage, session_id=session_id, **payload)


def bind_context(**values: str) -> Token:
    """Add ``request_id``/``session_id`` to every record logged in this context."""

    return _CONTEXT.set({**_CONTEXT.get(), **values})


def reset_context(token: Token) -> None:
    _CONTEXT.reset(token)


__all__ = [
    "TryOnLogger",
    "bind_context",
    "get_logger",
    "info_domain",
    "reset_context",
    "setup_logging",
]
