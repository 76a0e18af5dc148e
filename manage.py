#!/usr/bin/env python3
"""Utility CLI for managing the virtual try-on service."""

from __future__ import annotations

import argparse
import asyncio
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import httpx
from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent
ENV_FILE = PROJECT_ROOT / ".env"

TOKEN_RE = re.compile(r"^\d+:[A-Za-z0-9_-]{10,}$")


@dataclass(slots=True)
class CheckResult:
    """Single diagnostic result entry."""

    title: str
    message: str
    status: str  # ok | warn | fail

    @property
    def icon(self) -> str:
        return {"ok": "✅", "warn": "⚠️", "fail": "❌"}.get(self.status, "❓")

    def colorize(self, text: str) -> str:
        colors = {"ok": "\033[32m", "warn": "\033[33m", "fail": "\033[31m"}
        prefix = colors.get(self.status, "")
        suffix = "\033[0m" if prefix else ""
        return f"{prefix}{text}{suffix}"

    def formatted(self) -> str:
        return self.colorize(f"{self.icon} {self.title}: {self.message}")


def _load_env() -> None:
    """Load .env values without overriding existing environment variables."""

    load_dotenv(ENV_FILE, override=False)


def _command_run() -> int:
    from tryon.main import main as app_main  # Local import to avoid heavy deps for other cmds

    asyncio.run(app_main())
    return 0


def check_gemini(client: httpx.Client, endpoint_base: str, model: str, api_key: str) -> CheckResult:
    """Ask the Gemini API whether the configured model is visible for the key."""

    if not api_key:
        return CheckResult(title="Gemini API", status="fail", message="API key is not set")
    url = f"{endpoint_base.rstrip('/')}/v1beta/models/{model}"
    try:
        response = client.get(url, headers={"x-goog-api-key": api_key})
    except httpx.HTTPError as exc:
        return CheckResult(title="Gemini API", status="warn", message=f"Could not connect: {exc}")

    if response.status_code == 200:
        return CheckResult(title="Gemini API", status="ok", message=f"Model {model} is available")
    if response.status_code in {400, 401, 403}:
        return CheckResult(
            title="Gemini API",
            status="fail",
            message=f"Key rejected (HTTP {response.status_code})",
        )
    if response.status_code == 404:
        return CheckResult(title="Gemini API", status="fail", message=f"Model {model} not found")
    return CheckResult(
        title="Gemini API",
        status="warn",
        message=f"Response {response.status_code}: {response.text[:120]}",
    )


def check_telegram(client: httpx.Client, bot_token: str) -> CheckResult:
    if not TOKEN_RE.match(bot_token):
        return CheckResult(title="Telegram API", status="fail", message="Token looks malformed")
    try:
        response = client.get(f"https://api.telegram.org/bot{bot_token}/getMe")
    except httpx.HTTPError as exc:
        return CheckResult(title="Telegram API", status="warn", message=f"Could not check: {exc}")
    if response.status_code == 401:
        return CheckResult(title="Telegram API", status="fail", message="Token rejected (HTTP 401)")
    if response.status_code != 200:
        return CheckResult(
            title="Telegram API",
            status="warn",
            message=f"Response {response.status_code}: {response.text[:120]}",
        )
    try:
        payload = response.json()
    except ValueError as exc:  # pragma: no cover - unexpected response
        return CheckResult(title="Telegram API", status="warn", message=f"Unexpected response: {exc}")
    if not isinstance(payload, dict):
        return CheckResult(title="Telegram API", status="warn", message="Unexpected response: not a JSON object")
    if payload.get("ok"):
        return CheckResult(title="Telegram API", status="ok", message="getMe succeeded")
    return CheckResult(title="Telegram API", status="warn", message=f"Response 200 but ok={payload.get('ok')}")


def run_checks(client: httpx.Client) -> List[CheckResult]:
    from tryon.config import load_config

    results: List[CheckResult] = []
    try:
        config = load_config()
    except RuntimeError as exc:
        return [CheckResult(title="Configuration", status="fail", message=str(exc))]
    results.append(
        CheckResult(
            title="Configuration",
            status="ok",
            message=f"backend={config.backend}, port={config.web.port}",
        )
    )

    if config.backend == "mock":
        results.append(
            CheckResult(title="Gemini API", status="warn", message="Mock backend selected, no calls are made")
        )
    else:
        results.append(
            check_gemini(
                client,
                config.gemini.endpoint_base,
                config.gemini.model,
                config.gemini.api_key,
            )
        )

    if config.bot_token:
        results.append(check_telegram(client, config.bot_token))
    else:
        results.append(CheckResult(title="Telegram API", status="ok", message="Chat surface disabled"))
    return results


def _command_check() -> int:
    _load_env()

    with httpx.Client(timeout=10.0) as client:
        results = run_checks(client)

    print("\n=== Self-check report ===")
    for item in results:
        print(item.formatted())

    has_fail = any(item.status == "fail" for item in results)
    has_warn = any(item.status == "warn" for item in results)

    if has_fail:
        summary = CheckResult(title="Summary", status="fail", message="critical problems found")
    elif has_warn:
        summary = CheckResult(title="Summary", status="warn", message="warnings present, no critical problems")
    else:
        summary = CheckResult(title="Summary", status="ok", message="ready to run")
    print(summary.formatted())

    return 1 if has_fail else 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Virtual try-on management CLI")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Start the web server (and chat bot if configured)")
    run_parser.set_defaults(func=lambda _args: _command_run())

    check_parser = subparsers.add_parser("check", help="Run an environment self-check")
    check_parser.set_defaults(func=lambda _args: _command_check())

    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
