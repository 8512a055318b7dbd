"""feedlink CLI.

Usage:
    feedlink tail 42                        # Print messages as they arrive
    feedlink tail 42 -F region=eu -n 10     # Filtered feed, stop after 10
    feedlink send 42 '{"s": "hello"}'       # Send one message
    feedlink history 42 --limit 20          # Fetch past messages
    feedlink config                         # Show configuration

Connection settings come from FEEDLINK_* environment variables and can be
overridden with --url, --mode and --api-key.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime
from typing import Any

import click

from .config import MODE_HTTP, MODE_WEBSOCKET, FeedClientConfig
from .context import FeedContext
from .dispatcher import FeedListener

# Output format options
FORMAT_TEXT = "text"
FORMAT_JSON = "json"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {value.__class__.__name__} is not JSON serializable")


def format_message(message: Any) -> str:
    """Render one message as a single JSON line."""
    return json.dumps(message, default=_json_default)


def parse_filters(values: tuple[str, ...]) -> dict[str, str] | None:
    """Parse repeated KEY=VALUE options into a filter mapping."""
    if not values:
        return None
    filters = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got {value!r}", param_hint="--filter")
        filters[key] = val
    return filters


@click.group()
@click.option("--url", help="Feed service base URL (default: FEEDLINK_URL)")
@click.option(
    "--mode",
    type=click.Choice([MODE_WEBSOCKET, MODE_HTTP]),
    help="Connection mode (default: FEEDLINK_MODE)",
)
@click.option("--api-key", help="API key (default: FEEDLINK_API_KEY)")
@click.option("--no-validation", is_flag=True, help="Skip client-side message contract checks")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    url: str | None,
    mode: str | None,
    api_key: str | None,
    no_validation: bool,
    verbose: bool,
) -> None:
    """feedlink - client for real-time feeds."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    config = FeedClientConfig.from_env()
    if url:
        config.base_url = url
    if mode:
        config.mode = mode
    if api_key:
        config.api_key = api_key
    if no_validation:
        config.field_validation = False
    ctx.obj = config


# =============================================================================
# Feed Commands
# =============================================================================


@main.command("tail")
@click.argument("proc_id")
@click.option("--filter", "-F", "filters", multiple=True, help="Runtime filter KEY=VALUE")
@click.option("--count", "-n", type=int, default=None, help="Stop after this many messages")
@click.pass_obj
def tail(config: FeedClientConfig, proc_id: str, filters: tuple[str, ...], count: int | None) -> None:
    """Print messages pushed on a feed, one JSON object per line.

    Examples:

        feedlink tail 42

        feedlink tail 42 --filter region=eu --count 5
    """
    feed_filters = parse_filters(filters)

    async def run() -> None:
        done = asyncio.Event()
        received = 0

        def on_msg_received(message: Any) -> None:
            nonlocal received
            click.echo(format_message(message))
            received += 1
            if count is not None and received >= count:
                done.set()

        def on_error(error: str) -> None:
            click.echo(f"Error: {error}", err=True)
            done.set()

        listener = FeedListener(
            on_msg_received=on_msg_received,
            on_close=lambda feed: done.set(),
            on_error=on_error,
        )

        async with FeedContext(config) as feed_ctx:
            feed = feed_ctx.create_feed(proc_id, feed_filters, listener=listener)
            await feed_ctx.open_feed(feed)
            if not feed.is_open():
                sys.exit(1)
            click.echo(f"Listening on feed {feed.get_feed_key()} (Ctrl+C to stop)", err=True)
            await done.wait()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("\nStopped", err=True)


@main.command("send")
@click.argument("proc_id")
@click.argument("message")
@click.option("--filter", "-F", "filters", multiple=True, help="Runtime filter KEY=VALUE")
@click.option("--write-key", help="Write key for protected feeds")
@click.pass_obj
def send(
    config: FeedClientConfig,
    proc_id: str,
    message: str,
    filters: tuple[str, ...],
    write_key: str | None,
) -> None:
    """Send one JSON message on a feed.

    Examples:

        feedlink send 42 '{"s": "x", "n": 100}'
    """
    feed_filters = parse_filters(filters)

    async def run() -> bool:
        outcome: dict[str, Any] = {}
        listener = FeedListener(
            on_msg_sent=lambda msg: outcome.setdefault("sent", msg),
            on_error=lambda error: outcome.setdefault("error", error),
        )

        async with FeedContext(config) as feed_ctx:
            feed = feed_ctx.create_feed(proc_id, feed_filters, write_key, listener)
            await feed_ctx.open_feed(feed)
            if feed.is_open():
                await feed.send(message)

        if "error" in outcome:
            click.echo(f"Error: {outcome['error']}", err=True)
            return False
        if "sent" not in outcome:
            return False
        click.echo(format_message(outcome["sent"]))
        return True

    if not asyncio.run(run()):
        sys.exit(1)


@main.command("history")
@click.argument("proc_id")
@click.option("--filter", "-F", "filters", multiple=True, help="Runtime filter KEY=VALUE")
@click.option("--limit", "-n", type=int, default=None, help="Maximum messages to fetch")
@click.pass_obj
def history(
    config: FeedClientConfig, proc_id: str, filters: tuple[str, ...], limit: int | None
) -> None:
    """Print past messages sent on a feed.

    Examples:

        feedlink history 42 --limit 20
    """
    feed_filters = parse_filters(filters)

    async def run() -> list[Any] | None:
        result: dict[str, Any] = {}

        def on_history(feed: Any, messages: list[Any]) -> None:
            result["messages"] = messages

        listener = FeedListener(
            on_history=on_history,
            on_error=lambda error: click.echo(f"Error: {error}", err=True),
        )

        async with FeedContext(config) as feed_ctx:
            feed = feed_ctx.create_feed(proc_id, feed_filters, listener=listener)
            await feed_ctx.open_feed(feed)
            if feed.is_open():
                await feed.history(limit or config.history_limit)

        return result.get("messages")

    messages = asyncio.run(run())
    if messages is None:
        sys.exit(1)
    for message in messages:
        click.echo(format_message(message))


# =============================================================================
# Config Command
# =============================================================================


@main.command("config")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def show_config(config: FeedClientConfig, output_json: bool) -> None:
    """Show current configuration.

    Examples:

        feedlink config
        feedlink config --json
    """
    values = asdict(config)
    values["api_key"] = "set" if config.api_key else None

    if output_json:
        click.echo(json.dumps(values, indent=2))
        return

    click.echo("feedlink Configuration")
    click.echo("-" * 40)
    click.echo(f"Service URL:        {config.base_url}")
    click.echo(f"Mode:               {config.mode}")
    click.echo(f"API key:            {values['api_key'] or 'none'}")
    click.echo(f"Timeout:            {config.timeout}s")
    click.echo(f"Validation:         {'on' if config.field_validation else 'off'}")
    click.echo(f"History limit:      {config.history_limit}")


if __name__ == "__main__":
    main()
