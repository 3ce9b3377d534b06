"""Click CLI entry point for chainwatch.

All commands are thin orchestration wrappers — business logic lives in
config, db, feeds, classifier, alert, stats, output, and stream modules.

Exit codes:
  0 — success
  1 — generic error
  2 — notification sink error
  3 — network error (stream reconnects exhausted, RPC failure)
  4 — data error
  5 — config error
  6 — database error
  130 — interrupted
"""

from __future__ import annotations

import asyncio
import json
import shutil
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

import click

from chainwatch import __version__
from chainwatch.config import (
    WATCHERS,
    ChainwatchConfig,
    get_default_config_path,
    load_config,
    require_for,
    save_config,
    set_config_value,
)
from chainwatch.db import Database
from chainwatch.exceptions import ChainwatchError, ConfigError
from chainwatch.logsetup import setup_logging
from chainwatch.models import EVENT_KINDS
from chainwatch.output import format_output, mask_secret

_SECRET_FIELDS = ("token", "secret")


# ── Error handler ─────────────────────────────────────────────────────────────


def _output_error(err: ChainwatchError | Exception) -> None:
    """Write error JSON to stderr."""
    if isinstance(err, ChainwatchError):
        payload = err.to_dict()
        exit_code = err.exit_code
    else:
        payload = {"error": "unknown_error", "message": str(err), "details": {}}
        exit_code = 1
    sys.stderr.write(json.dumps(payload) + "\n")
    sys.stderr.flush()
    sys.exit(exit_code)


def _config(ctx: click.Context) -> ChainwatchConfig:
    """Return the loaded config, or exit if it failed to load."""
    error = ctx.obj.get("config_error")
    if error is not None:
        _output_error(error)
    return ctx.obj["config"]


def _db_from_config(config: ChainwatchConfig) -> Database:
    """Create a Database instance from config."""
    db_path = config.database.path
    if db_path and db_path != ":memory:":
        db_path = str(Path(db_path).expanduser())
    return Database(db_path)


def _masked(config: ChainwatchConfig) -> dict[str, Any]:
    data = asdict(config)
    for section in data.values():
        for key, value in section.items():
            if any(word in key for word in _SECRET_FIELDS) and isinstance(value, str):
                section[key] = mask_secret(value) if value else ""
    return data


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    envvar="CHAINWATCH_CONFIG_PATH",
    default=None,
    help="Config file path (default: ~/.chainwatch/config.toml)",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level for stderr (overrides config)",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "jsonl", "table"]),
    default="json",
    show_default=True,
    help="Output format for list commands",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str | None, output_format: str) -> None:
    """chainwatch — real-time Solana and Hyperliquid event watcher."""
    ctx.ensure_object(dict)
    ctx.obj["config_error"] = None
    try:
        config = load_config(config_path)
    except ConfigError as e:
        # Keep defaults so `config init` still works; other commands report the error
        config = ChainwatchConfig()
        ctx.obj["config_error"] = e

    setup_logging(log_level or config.logging.level, serialize=config.logging.serialize)
    ctx.obj["config"] = config
    ctx.obj["config_path"] = config_path
    ctx.obj["format"] = output_format


# ── Watch command ─────────────────────────────────────────────────────────────


@cli.command("watch")
@click.argument("watchers", nargs=-1, required=True, type=click.Choice(list(WATCHERS)))
@click.option(
    "--batch/--no-batch",
    default=None,
    help="Batch notifications (default: telegram.batch_alerts)",
)
@click.option("--no-db", is_flag=True, help="Do not persist events")
@click.pass_context
def watch_command(ctx: click.Context, watchers: tuple[str, ...], batch: bool | None, no_db: bool) -> None:
    """Stream events from WATCHERS (mints, transfers, migrations, whales) as JSONL."""
    from chainwatch.stream import run_watch

    config = _config(ctx)
    selected = list(dict.fromkeys(watchers))

    try:
        require_for(config, selected)
    except ChainwatchError as e:
        _output_error(e)

    async def _run() -> None:
        if no_db or not config.database.enabled:
            await run_watch(selected, config, db=None, batch=batch)
            return
        async with _db_from_config(config) as db:
            await run_watch(selected, config, db=db, batch=batch)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        sys.exit(130)
    except ChainwatchError as e:
        _output_error(e)


# ── Events ────────────────────────────────────────────────────────────────────


@cli.group("events")
def events_group() -> None:
    """Query persisted events."""


@events_group.command("list")
@click.option("--kind", type=click.Choice(list(EVENT_KINDS)), default=None)
@click.option("--limit", default=20, type=click.IntRange(1, 10_000), show_default=True)
@click.option("--hours", default=None, type=click.IntRange(1, 24 * 365), help="Only the last N hours")
@click.pass_context
def events_list(ctx: click.Context, kind: str | None, limit: int, hours: int | None) -> None:
    """List recently emitted events, newest first."""
    config = _config(ctx)
    fmt = ctx.obj.get("format", "json")

    async def _run() -> None:
        async with _db_from_config(config) as db:
            events = await db.list_events(kind=kind, limit=limit, since_hours=hours)
            total = await db.count_events(kind=kind)
            click.echo(format_output({"events": events, "count": len(events), "total": total}, fmt))

    try:
        asyncio.run(_run())
    except ChainwatchError as e:
        _output_error(e)


# ── Whales ────────────────────────────────────────────────────────────────────


@cli.group("whales")
def whales_group() -> None:
    """Query persisted whale profiles."""


@whales_group.command("top")
@click.option("--limit", default=10, type=click.IntRange(1, 1000), show_default=True)
@click.pass_context
def whales_top(ctx: click.Context, limit: int) -> None:
    """Largest Hyperliquid traders by tracked volume."""
    config = _config(ctx)
    fmt = ctx.obj.get("format", "json")

    async def _run() -> None:
        async with _db_from_config(config) as db:
            whales = await db.top_whales(limit=limit)
            click.echo(format_output({"whales": whales}, fmt))

    try:
        asyncio.run(_run())
    except ChainwatchError as e:
        _output_error(e)


# ── Config ────────────────────────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Manage chainwatch configuration."""


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing config")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    """Write a default config to ~/.chainwatch/config.toml."""
    provided = ctx.obj.get("config_path")
    config_path = Path(provided).expanduser() if provided else get_default_config_path()

    if config_path.exists() and not force:
        click.echo(
            json.dumps(
                {
                    "status": "already_exists",
                    "config_path": str(config_path),
                    "hint": "Use --force to reinitialize",
                }
            )
        )
        return

    status = "initialized"
    backup = None
    if config_path.exists() and force:
        backup = str(config_path) + ".bak"
        shutil.copy2(config_path, backup)
        status = "reinitialized"

    save_config(ChainwatchConfig(), str(config_path))

    result: dict[str, Any] = {"status": status, "config_path": str(config_path)}
    if backup:
        result["backup"] = backup
    click.echo(json.dumps(result))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a config value by dotted key path (e.g. thresholds.whale_usd)."""
    config = _config(ctx)
    try:
        typed_value = set_config_value(config, key, value)
    except ChainwatchError as e:
        _output_error(e)
        return

    save_config(config, ctx.obj.get("config_path"))

    field_name = key.rsplit(".", 1)[-1]
    display_value = (
        mask_secret(str(typed_value))
        if any(word in field_name for word in _SECRET_FIELDS)
        else typed_value
    )
    click.echo(json.dumps({"status": "updated", "key": key, "value": display_value}))


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration (credentials masked)."""
    config = _config(ctx)
    provided = ctx.obj.get("config_path")
    result = {
        "config_path": str(Path(provided).expanduser() if provided else get_default_config_path()),
        **_masked(config),
    }
    click.echo(format_output(result, "json"))


if __name__ == "__main__":
    cli()
