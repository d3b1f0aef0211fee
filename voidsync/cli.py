from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from voidsync import pipeline, services
from voidsync.config import get_settings
from voidsync.db import init_db, session_scope

app = typer.Typer(help="NEAR ecosystem sync and gap scoring")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s %(name)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


def _wants_json(ctx: typer.Context) -> bool:
    return bool((ctx.obj or {}).get("json_output"))


def _format_scalar(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:,.2f}"
    if value is None:
        return "-"
    return str(value)


def _print(title: str, payload: dict[str, Any], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
        return
    table = Table(title=title, show_header=False)
    table.add_column("key", style="cyan")
    table.add_column("value")
    for key, value in payload.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={_format_scalar(v)}" for k, v in value.items() if not isinstance(v, (dict, list)))
        table.add_row(key, _format_scalar(value))
    console.print(table)


@app.callback()
def app_callback(
    ctx: typer.Context,
    db_url: str | None = typer.Option(None, "--db-url", help="SQLAlchemy URL (default: VOIDSYNC_DATABASE_URL)."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)
    init_db(db_url)


@app.command("sync")
def sync_command(
    ctx: typer.Context,
    source: str = typer.Option("cli", help="Source recorded on the sync log."),
    disable: str = typer.Option("", help="Comma-separated stages to skip for this run."),
) -> None:
    """Run one full pipeline pass."""
    settings = get_settings()
    if disable:
        extra = {s.strip() for s in disable.split(",") if s.strip()}
        settings = settings.model_copy(update={"disabled_stages": settings.disabled_stages | extra})
    try:
        outcome = asyncio.run(pipeline.run_sync(source, settings=settings))
    except Exception as exc:
        console.print(f"[red]Sync failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    if outcome.get("skipped"):
        _print("sync skipped", outcome, ctx)
        raise typer.Exit(code=2)
    if _wants_json(ctx):
        _print("sync", outcome, ctx)
        return
    table = Table(title="sync")
    for column in ("stage", "status", "enriched", "failed", "skipped", "total"):
        table.add_column(column)
    for stage, result in outcome["results"].items():
        table.add_row(
            stage,
            str(result.get("status", "ok")),
            *(_format_scalar(result.get(k)) for k in ("enriched", "failed", "skipped", "total")),
        )
    console.print(table)


@app.command("stats")
def stats_command(ctx: typer.Context) -> None:
    with session_scope() as session:
        _print("stats", services.compute_stats(session), ctx)


@app.command("opportunities")
def opportunities_command(
    ctx: typer.Context,
    category: str | None = typer.Option(None, help="Category slug."),
    limit: int = typer.Option(10, min=1, max=200),
) -> None:
    """Best opportunities by gap score."""
    with session_scope() as session:
        items = services.top_opportunities(session, category, limit)
    if _wants_json(ctx):
        typer.echo(json.dumps(items, indent=2, ensure_ascii=False))
        return
    table = Table(title="opportunities")
    for column in ("gap", "category", "title", "competition", "difficulty"):
        table.add_column(column)
    for item in items:
        table.add_row(
            str(item["gap_score"]), item["category"] or "-", item["title"],
            item["competition_level"], item["difficulty"],
        )
    console.print(table)


@app.command("gap")
def gap_command(ctx: typer.Context, slug: str = typer.Argument(..., help="Category slug.")) -> None:
    """Live gap score breakdown for one category."""
    with session_scope() as session:
        gap = services.category_gap(session, slug)
    if gap is None:
        raise typer.BadParameter(f"No category with slug '{slug}'")
    if _wants_json(ctx):
        typer.echo(json.dumps(gap, indent=2, ensure_ascii=False))
        return
    table = Table(title=f"{slug}: {gap['final_score']:.1f}")
    for column in ("signal", "value", "weight", "description"):
        table.add_column(column)
    for signal in gap["signals"]:
        table.add_row(signal["label"], f"{signal['value']:.1f}", f"{signal['weight']:.2f}", signal["description"])
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
