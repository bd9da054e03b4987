#!/usr/bin/env python3
"""
CLI tool for running design contest tasks and administration.
"""

import asyncio
import csv
import os
import sys
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

import click
import toml
from rich.console import Console
from rich.table import Table

from core.errors import Error

from .config import ContestConfig
from .constants import (
    DEFAULT_AUTO_PERIOD_MINUTES,
    REGISTRATION_COMPLETE,
    REGISTRATION_EMAIL_COLUMN,
    REGISTRATION_NAME_COLUMN,
    REGISTRATION_STATUS_COLUMN,
)
from .service import ContestService, auto_timings

console = Console()

T = TypeVar("T")


def _parse_timestamp(ctx, param, value: Optional[str]) -> Optional[datetime]:
    """Click callback for ISO 8601 timestamps; naive values are taken as UTC."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise click.BadParameter(f"not an ISO 8601 timestamp: {value}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def read_registrations(path: str) -> List[Tuple[str, str]]:
    """(email, name) for every completed row of a registration export.

    The first row is a header. Rows too short to hold the status column are
    reported and skipped.
    """
    registrations = []
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.reader(f)
        next(reader, None)
        for line_no, row in enumerate(reader, start=2):
            if len(row) <= REGISTRATION_STATUS_COLUMN:
                console.print(
                    f"[yellow]Warning:[/yellow] line {line_no} has "
                    f"{len(row)} columns, skipping"
                )
                continue
            if row[REGISTRATION_STATUS_COLUMN].strip() != REGISTRATION_COMPLETE:
                continue
            registrations.append(
                (row[REGISTRATION_EMAIL_COLUMN], row[REGISTRATION_NAME_COLUMN])
            )
    return registrations


def _run(ctx, task: Callable[[ContestService], Awaitable[T]]) -> T:
    """Start the service, run ``task`` and always shut down."""
    service: ContestService = ctx.obj

    async def _main():
        await service.startup()
        try:
            return await task(service)
        finally:
            await service.shutdown()

    try:
        return asyncio.run(_main())
    except Error as e:
        console.print(f"[red]ERROR:[/red] {e}")
        sys.exit(1)


def _find_database_url(config: Optional[str]) -> Optional[str]:
    config_paths = []

    # If config path is specified, use it first
    if config:
        config_paths.append(config)

    # Add default locations
    config_paths.extend(
        [
            "contest.toml",
            "config/contest.toml",
            os.path.expanduser("~/.design-contest/contest.toml"),
        ]
    )

    for config_path in config_paths:
        if not os.path.exists(config_path):
            continue
        try:
            with open(config_path, "r") as f:
                database_url = toml.load(f).get("database_url")
        except (OSError, toml.TomlDecodeError) as e:
            if config:  # Only show error if user explicitly specified this file
                console.print(
                    f"[yellow]Warning:[/yellow] Failed to load config from {config_path}: {e}"
                )
            continue
        if database_url:
            console.print(f"[dim]Using config from: {config_path}[/dim]")
            return database_url
    return None


@click.group()
@click.option(
    "--database-url",
    envvar="DATABASE_URL",
    help="Database URL (can also be set via DATABASE_URL env var)",
)
@click.option(
    "--config",
    type=click.Path(exists=True),
    help="Path to contest.toml config file",
)
@click.option(
    "--create-tables",
    is_flag=True,
    help="Create missing tables before running the command",
)
@click.pass_context
def cli(ctx, database_url, config, create_tables):
    """Design Contest CLI - Run contest tasks and manage participants."""
    contest_config = ContestConfig(argv=["--config", config] if config else [])

    # Get database URL from config if not provided
    if not database_url:
        database_url = _find_database_url(config) or contest_config.get(
            "database_url"
        )

    if not database_url:
        console.print(
            "[red]ERROR:[/red] No database URL configured. "
            "Set --database-url or DATABASE_URL environment variable."
        )
        sys.exit(1)

    contest_config.settings["database_url"] = database_url
    if create_tables:
        contest_config.settings["auto_create_tables"] = True
    # Tasks run once and exit
    contest_config.settings["run_scheduler"] = False

    ctx.obj = ContestService(contest_config)


@cli.command(name="assign-submissions")
@click.pass_context
def assign_submissions(ctx):
    """Replace all vote assignments with a fresh rotation."""
    result = _run(ctx, lambda service: service.run_assignment())
    console.print(
        f"[green]✓[/green] Assigned {result.total} review(s) to "
        f"{result.n_reviewers} reviewer(s), {result.per_reviewer} each "
        f"({result.n_submissions} submission(s))"
    )


@cli.command(name="gen-leaderboard")
@click.pass_context
def gen_leaderboard(ctx):
    """Rebuild the leaderboard from the current votes."""
    result = _run(ctx, lambda service: service.run_scoring())
    console.print(f"[green]✓[/green] Generated {len(result.scored)} score(s)")
    if result.skipped_submission_ids:
        console.print(
            f"[yellow]{len(result.skipped_submission_ids)} submission(s) "
            "had no votes and were skipped[/yellow]"
        )


@cli.command(name="update-timings")
@click.option("--ss", callback=_parse_timestamp, help="Submission start (ISO 8601)")
@click.option("--se", callback=_parse_timestamp, help="Submission end (ISO 8601)")
@click.option("--vs", callback=_parse_timestamp, help="Voting start (ISO 8601)")
@click.option("--ve", callback=_parse_timestamp, help="Voting end (ISO 8601)")
@click.option(
    "--auto",
    is_flag=True,
    help="Space the four timestamps one period apart, starting one period from now",
)
@click.option(
    "--period",
    "-p",
    type=int,
    default=DEFAULT_AUTO_PERIOD_MINUTES,
    show_default=True,
    help="Window length in minutes for --auto",
)
@click.option(
    "--reset-phases",
    is_flag=True,
    help="Clear the assigned and created_scores flags",
)
@click.pass_context
def update_timings(ctx, ss, se, vs, ve, auto, period, reset_phases):
    """Set the competition windows."""
    if auto:
        if period <= 0:
            raise click.BadParameter("must be positive", param_hint="--period")
        timings = auto_timings(period)
    else:
        timings = {
            name: value
            for name, value in (
                ("submission_start", ss),
                ("submission_end", se),
                ("voting_start", vs),
                ("voting_end", ve),
            )
            if value is not None
        }

    config = _run(
        ctx, lambda service: service.update_timings(timings, reset_phases=reset_phases)
    )

    table = Table(title="Competition Timings")
    table.add_column("Window", style="cyan")
    table.add_column("Start", style="green")
    table.add_column("End", style="red")
    table.add_row(
        "Submissions", str(config.submission_start), str(config.submission_end)
    )
    table.add_row("Voting", str(config.voting_start), str(config.voting_end))
    console.print(table)
    console.print("[green]✓[/green] Updated competition timings.")


@cli.command(name="show-leaderboard")
@click.option(
    "--show",
    type=click.Choice(["true", "false"], case_sensitive=False),
    default="true",
    show_default=True,
    help="Whether the leaderboard is publicly visible",
)
@click.pass_context
def show_leaderboard(ctx, show):
    """Publish or hide the leaderboard."""
    visible = show.lower() == "true"
    _run(ctx, lambda service: service.set_show_leaderboard(visible))
    console.print(
        f"[green]✓[/green] Leaderboard is now {'visible' if visible else 'hidden'}."
    )


@cli.command(name="assign-and-gen")
@click.pass_context
def assign_and_gen(ctx):
    """Run one competition clock tick (meant for a scheduler)."""
    result = _run(ctx, lambda service: service.tick())
    if not result.config_found:
        console.print("[yellow]No competition configuration; nothing to do.[/yellow]")
        return

    console.print(f"Phase: [bold]{result.phase.value}[/bold]")
    console.print(f"  Assignment ran: {'yes' if result.assigned else 'no'}")
    console.print(f"  Scoring ran:    {'yes' if result.scored else 'no'}")
    if result.failed_phases:
        console.print(
            f"[red]Failed phases:[/red] {', '.join(result.failed_phases)} "
            "(see logs)"
        )
        sys.exit(1)


@cli.command(name="leaderboard")
@click.option("--limit", type=int, default=20, show_default=True)
@click.pass_context
def leaderboard(ctx, limit):
    """Print the current leaderboard."""
    scores = _run(ctx, lambda service: service.leaderboard())
    if not scores:
        console.print("No scores found.")
        return

    table = Table(title="Leaderboard")
    table.add_column("#", style="dim")
    table.add_column("Submission", style="cyan")
    table.add_column("Final", style="bold green")
    table.add_column("Fit", style="white")
    table.add_column("Clarity", style="white")
    table.add_column("Style", style="white")
    table.add_column("Originality", style="white")
    table.add_column("Overall", style="white")

    for rank, score in enumerate(scores[:limit], start=1):
        table.add_row(
            str(rank),
            str(score.submission_id),
            str(score.final_score),
            str(score.problem_fit_score),
            str(score.visual_clarity_score),
            str(score.style_interpretation_score),
            str(score.originality_score),
            str(score.overall_quality_score),
        )

    console.print(table)
    console.print(f"\nTotal: {len(scores)} score(s)")


@cli.command(name="add-users")
@click.option(
    "--users",
    "users_file",
    type=click.Path(exists=True, dir_okay=False),
    help="Registration export (CSV)",
)
@click.option("--email", help="Email of a single user to add")
@click.option("--name", help="Name of a single user to add")
@click.pass_context
def add_users(ctx, users_file, email, name):
    """Register participants."""
    if bool(email) != bool(name):
        raise click.UsageError("--email and --name must be given together")
    if not users_file and not email:
        raise click.UsageError("provide --users FILE or --email/--name")

    registrations = read_registrations(users_file) if users_file else []
    if email:
        registrations.append((email, name))

    added, skipped = _run(ctx, lambda service: service.add_users(registrations))
    for user in added:
        console.print(f"[green]✓[/green] Added user: {user.name} <{user.email}>")
    for skipped_email in skipped:
        console.print(f"[yellow]The user already exists:[/yellow] {skipped_email}")
    console.print(f"\nAdded {len(added)} user(s), skipped {len(skipped)}")


@cli.command(name="add-admin")
@click.argument("email")
@click.pass_context
def add_admin(ctx, email):
    """Grant admin capability to an existing user."""
    _run(ctx, lambda service: service.add_admin(email))
    console.print(f"[green]✓[/green] {email} is an admin")


@cli.command(name="issue-token")
@click.argument("email")
@click.option("--ttl", type=int, default=None, help="Token lifetime in seconds")
@click.pass_context
def issue_token(ctx, email, ttl):
    """Print a bearer token for an existing user."""
    token = _run(ctx, lambda service: service.issue_token(email, ttl))
    click.echo(token)


if __name__ == "__main__":
    cli()
