"""mnemo CLI — inspect decks, preview and grade cards, and read review stats."""

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer

from mnemo.application.config import AppConfig, resolve_config
from mnemo.consts import VERSION
from mnemo.domain.errors import MnemoError

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="mnemo: FSRS flashcard scheduling from the command line.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage mnemo configuration.")
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


def _config(ctx: typer.Context) -> AppConfig:
    overrides: dict[str, Any] = dict((ctx.obj or {}).get("overrides", {}))
    config = resolve_config(overrides)
    level = logging.DEBUG if config.verbose > 1 else logging.INFO
    logging.getLogger("mnemo").setLevel(level)
    return config


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _fail(error: MnemoError) -> NoReturn:
    typer.secho(f"Error: {error}", fg="red", err=True)
    raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    db: Annotated[
        Path | None, typer.Option("--db", help="SQLite database path. Defaults to config.")
    ] = None,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
):
    """Global settings for mnemo."""
    ctx.ensure_object(dict)
    overrides: dict[str, Any] = {}
    if db is not None:
        overrides["database_path"] = db
        overrides["backend"] = "sqlite"
    if verbose:
        overrides["verbose"] = 1 + verbose
    ctx.obj["overrides"] = overrides


# ---------------------------------------------------------------------------
# Deck commands
# ---------------------------------------------------------------------------


@app.command()
def due(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    user: Annotated[str | None, typer.Option(help="User whose quota applies.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output counts as JSON.")] = False,
):
    """Show how many cards a session started now would contain."""
    from mnemo.application.factory import get_review_service

    config = _config(ctx)

    async def run():
        service = get_review_service(config)
        return await service.deck_overview(deck, user, _now())

    try:
        overview = asyncio.run(run())
    except MnemoError as e:
        _fail(e)

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "new": overview.new_available,
                    "learning": overview.learning_due,
                    "review": overview.review_due,
                    "new_studied_today": overview.new_studied_today,
                    "reviews_done_today": overview.reviews_done_today,
                },
                indent=2,
            )
        )
        return

    typer.echo(f"New: {overview.new_available}")
    typer.echo(f"Learning: {overview.learning_due}")
    typer.echo(f"Review: {overview.review_due}")
    typer.echo(
        f"Studied today: {overview.new_studied_today} new, {overview.reviews_done_today} reviews"
    )


@app.command()
def preview(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    card: Annotated[str, typer.Argument(help="Card id.")],
):
    """Show the next state and interval for each rating."""
    from mnemo.application.factory import get_review_service

    config = _config(ctx)

    async def run():
        service = get_review_service(config)
        return await service.preview_card(deck, card, _now())

    try:
        outcomes = asyncio.run(run())
    except MnemoError as e:
        _fail(e)

    for rating, outcome in outcomes.items():
        days = outcome.card.scheduled_days
        interval = f"{days * 1440:.0f}m" if days < 1 else f"{days:.0f}d"
        typer.echo(f"{rating.label:>5}: {outcome.card.state.label:<10} {interval}")


@app.command()
def grade(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    card: Annotated[str, typer.Argument(help="Card id.")],
    rating: Annotated[str, typer.Argument(help="again, hard, good or easy.")],
    user: Annotated[str | None, typer.Option(help="Grading user.")] = None,
    duration_ms: Annotated[int, typer.Option(help="Time spent on the card.")] = 0,
):
    """Grade one card and persist the result."""
    from mnemo.application.factory import get_review_service

    config = _config(ctx)

    async def run():
        service = get_review_service(config)
        return await service.grade_card(deck, card, rating, user, _now(), duration_ms=duration_ms)

    try:
        outcome = asyncio.run(run())
    except MnemoError as e:
        _fail(e)

    typer.secho(
        f"{card}: {outcome.log.previous_state.label} -> {outcome.card.state.label}, "
        f"due {outcome.card.due.isoformat(timespec='minutes')}",
        fg="green",
    )


@app.command()
def forget(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    card: Annotated[str, typer.Argument(help="Card id.")],
    user: Annotated[str | None, typer.Option(help="Acting user.")] = None,
    reset_counts: Annotated[
        bool, typer.Option("--reset-counts", help="Also zero reps and lapses.")
    ] = False,
):
    """Send a card back to New."""
    from mnemo.application.factory import get_review_service

    config = _config(ctx)

    async def run():
        service = get_review_service(config)
        return await service.forget_card(deck, card, user, _now(), reset_counts=reset_counts)

    try:
        asyncio.run(run())
    except MnemoError as e:
        _fail(e)
    typer.secho(f"{card} reset to new.", fg="green")


@app.command()
def stats(
    ctx: typer.Context,
    user: Annotated[str, typer.Argument(help="User id.")],
    year: Annotated[int | None, typer.Option(help="Calendar year. Defaults to this year.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Reviews per day over a calendar year."""
    from mnemo.application.factory import get_stats_aggregator

    config = _config(ctx)
    target_year = year or config.day_boundary().study_day(_now()).year

    async def run():
        aggregator = get_stats_aggregator(config)
        return await aggregator.yearly_activity(user, target_year)

    try:
        summary = asyncio.run(run())
    except MnemoError as e:
        _fail(e)

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "year": target_year,
                    "total_reviews": summary.total_reviews,
                    "active_days": summary.active_days,
                    "average_per_active_day": summary.average_per_active_day,
                    "per_day": {d.isoformat(): n for d, n in summary.per_day.items()},
                },
                indent=2,
            )
        )
        return

    typer.echo(f"Reviews in {target_year}: {summary.total_reviews}")
    typer.echo(f"Active days: {summary.active_days}")
    typer.echo(f"Average per active day: {summary.average_per_active_day:.1f}")


@app.command()
def version():
    """Print the installed mnemo version."""
    typer.echo(f"mnemo {VERSION}")


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = _config(ctx)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))
