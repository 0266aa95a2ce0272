from __future__ import annotations

import asyncio
import json
import sys
from functools import lru_cache
from typing import Any, Dict, List, Optional

import typer
from loguru import logger

from .client import HeadlessClient
from .config import get_config
from .errors import HeadlessError

LEVELS = ("fatal", "error", "warning", "info", "debug")

app = typer.Typer(help="headless.ly client CLI (send events, inspect flags)")


@lru_cache()
def get_client() -> HeadlessClient:
    """Process-wide default client, configured from HL_* environment variables."""
    return HeadlessClient(get_config())


def parse_props(pairs: List[str]) -> Dict[str, Any]:
    """``["plan=pro", "seats=3"]`` -> ``{"plan": "pro", "seats": 3}``.

    Values are decoded as JSON when possible, otherwise kept as strings.
    """
    props: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got {pair!r}")
        try:
            props[key] = json.loads(raw)
        except ValueError:
            props[key] = raw
    return props


def _run(action) -> Any:
    async def main():
        async with get_client() as hl:
            return await action(hl)

    try:
        return asyncio.run(main())
    except HeadlessError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)


@app.command("track")
def track(
    event: str = typer.Argument(..., help="Event name"),
    prop: Optional[List[str]] = typer.Option(None, "--prop", "-p", help="Property as key=value"),
):
    """Track one event and flush it."""
    props = parse_props(prop or [])

    async def action(hl: HeadlessClient):
        hl.track(event, props or None)
        return hl.get_distinct_id()

    distinct_id = _run(action)
    logger.success(f"Tracked {event!r} as {distinct_id}")


@app.command("identify")
def identify(user_id: str = typer.Argument(..., help="User id to associate")):
    """Identify the current device as USER_ID."""

    async def action(hl: HeadlessClient):
        hl.identify(user_id)

    _run(action)
    logger.success(f"Identified as {user_id}")


@app.command("capture-message")
def capture_message(
    message: str = typer.Argument(...),
    level: str = typer.Option("info", "--level", help="fatal|error|warning|info|debug"),
):
    """Report a message to error tracking and print its event id."""
    if level not in LEVELS:
        raise typer.BadParameter(f"level must be one of {', '.join(LEVELS)}")

    async def action(hl: HeadlessClient):
        return hl.capture_message(message, level)  # type: ignore[arg-type]

    typer.echo(json.dumps({"event_id": _run(action)}))


@app.command("flags")
def flags():
    """Print every feature flag for the current identity."""

    async def action(hl: HeadlessClient):
        return hl.get_all_flags()

    typer.echo(json.dumps(_run(action), indent=2, default=str))


if __name__ == "__main__":
    app()
