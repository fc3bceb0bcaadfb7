"""
Typer CLI for studyloop.

Commands:
    studyloop init-db                       - Initialize database tables
    studyloop import-items FILE             - Import item definitions from JSON
    studyloop due USER TOPIC                - Count due items
    studyloop weakest USER                  - Show weakest topics
    studyloop study USER TOPIC              - Interactive study session

Usage:
    studyloop --help
    studyloop import-items data/two_pointers.json
    studyloop study alice two-pointers --size 8
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table

from config import get_settings
from studyloop.content.loader import import_items
from studyloop.content.topics import normalize_topic
from studyloop.core.errors import StudyLoopError
from studyloop.core.logging import configure_logging
from studyloop.db.database import init_db, session_scope
from studyloop.db.repository import SqlRepository
from studyloop.delivery.classifier import ResponseTelemetry
from studyloop.delivery.progress import due_count, weakest_topics
from studyloop.delivery.recorder import SessionRecorder, SubmitResult
from studyloop.delivery.scheduler import Grade
from studyloop.integrations.judge_client import HttpPlanJudge
from studyloop.items import ItemKind
from studyloop.items.base import Item

app = typer.Typer(
    help="studyloop CLI: spaced-repetition study sessions",
    no_args_is_help=True,
)

console = Console()

_GRADE_CHOICES = {"easy": Grade.EASY, "good": Grade.GOOD, "hard": Grade.HARD}


def _repository(db) -> SqlRepository:
    return SqlRepository(db, default_timezone=get_settings().default_timezone)


# ========================================
# Setup Commands
# ========================================


@app.command("init-db")
def init_db_command() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    init_db()
    rprint("[green]✓[/green] Database initialized!")


@app.command("import-items")
def import_items_command(
    path: Path = typer.Argument(..., help="JSON file with item definitions"),
    strict: bool = typer.Option(False, "--strict", help="Fail on the first invalid item"),
) -> None:
    """Import (upsert) item definitions into the item table."""
    try:
        with session_scope() as db:
            count = import_items(_repository(db), path, strict=strict)
    except (FileNotFoundError, ValueError) as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)
    rprint(f"[green]✓[/green] Imported {count} items from {path}")


# ========================================
# Progress Commands
# ========================================


@app.command("due")
def due_command(
    user_id: str = typer.Argument(..., help="Learner id"),
    topic: str = typer.Argument(..., help="Topic name or slug"),
) -> None:
    """Show how many items are due on a topic."""
    with session_scope() as db:
        count = due_count(_repository(db), user_id, topic, datetime.now(timezone.utc))
    rprint(f"[cyan]{normalize_topic(topic)}[/cyan]: {count} due")


@app.command("weakest")
def weakest_command(
    user_id: str = typer.Argument(..., help="Learner id"),
    limit: int = typer.Option(5, "--limit", "-l", help="Topics to show"),
) -> None:
    """Show the learner's weakest topics."""
    with session_scope() as db:
        ranked = weakest_topics(_repository(db), user_id, limit=limit)

    if not ranked:
        rprint("[yellow]No graded items yet.[/yellow]")
        return

    table = Table(title=f"Weakest topics for {user_id}")
    table.add_column("Topic", style="cyan")
    table.add_column("Mastery", justify="right")
    table.add_column("Items", justify="right")
    for mastery in ranked:
        table.add_row(mastery.topic, f"{mastery.mastery:.0f}%", str(mastery.items))
    console.print(table)


# ========================================
# Interactive Study
# ========================================


def _ask_response(item: Item) -> dict[str, Any]:
    """Prompt for a kind-specific response."""
    body = item.body
    console.print(Panel(body.prompt.stem, title=f"{item.topic} · {item.kind.value}", expand=False))

    if item.kind is ItemKind.MCQ:
        for index, option in enumerate(body.prompt.options, start=1):
            console.print(f"  [bold]{index}.[/bold] {option}")
        choice = IntPrompt.ask("Your choice", default=0)
        return {"choice": choice - 1} if choice else {}

    if item.kind is ItemKind.ORDER:
        for index, step in enumerate(body.prompt.steps, start=1):
            console.print(f"  [bold]{index}.[/bold] {step}")
        raw = Prompt.ask("Order (e.g. 2 1 3)", default="")
        try:
            return {"order": [int(part) - 1 for part in raw.split()]} if raw else {}
        except ValueError:
            return {"order": raw}

    if item.kind is ItemKind.FITB:
        if body.prompt.options:
            console.print(f"  [dim]Options: {', '.join(body.prompt.options)}[/dim]")
        blanks = [Prompt.ask(f"Blank {n}", default="") for n in range(1, body.prompt.blanks + 1)]
        return {"blanks": blanks} if any(blanks) else {}

    if item.kind is ItemKind.PLAN:
        console.print("[dim]Write your plan, one step per line. Empty line to finish.[/dim]")
        lines = []
        while line := Prompt.ask(">", default=""):
            lines.append(line)
        return {"text": "\n".join(lines)} if lines else {}

    Prompt.ask("[dim]Press Enter to continue[/dim]", default="")
    return {}


def _render_result(item: Item, result: SubmitResult) -> None:
    verdict = result.verdict
    if verdict.correct is None:
        return
    if verdict.correct:
        rprint("[green]✓ Correct[/green]")
    else:
        rprint("[red]✗ Not quite[/red]")
        if "missing" in verdict.feedback and verdict.feedback["missing"]:
            rprint(f"  [dim]Missing: {'; '.join(verdict.feedback['missing'])}[/dim]")
        if verdict.feedback.get("first_mismatch") is not None:
            rprint(f"  [dim]First wrong position: {verdict.feedback['first_mismatch'] + 1}[/dim]")

    if result.classification.timed_out:
        rprint("  [yellow]No activity for too long: marked as hard[/yellow]")
    if result.schedule is not None:
        rprint(f"  [dim]Next review in {result.schedule.interval_days} day(s)[/dim]")


def _study_batch(recorder: SessionRecorder, session_id: str, user_id: str, items: list[Item]) -> None:
    for position, item in enumerate(items, start=1):
        console.rule(f"[bold]{position}/{len(items)}")
        started = time.monotonic()
        payload = _ask_response(item)
        response_ms = int((time.monotonic() - started) * 1000)

        self_reported = Grade.GOOD
        if item.is_graded:
            choice = Prompt.ask("How did that feel?", choices=list(_GRADE_CHOICES), default="good")
            self_reported = _GRADE_CHOICES[choice]

        result = recorder.submit(
            user_id,
            item.id,
            payload,
            ResponseTelemetry(response_ms=response_ms, interacted=bool(payload) or not item.is_graded),
            self_reported=self_reported,
            session_id=session_id,
        )
        _render_result(item, result)


@app.command("study")
def study_command(
    user_id: str = typer.Argument(..., help="Learner id"),
    topic: str = typer.Argument(..., help="Topic name or slug"),
    size: int | None = typer.Option(None, "--size", "-n", help="Items per batch"),
) -> None:
    """Run an interactive study session in the terminal."""
    settings = get_settings()
    judge = HttpPlanJudge.from_settings(settings)

    try:
        with session_scope() as db:
            recorder = SessionRecorder.from_settings(_repository(db), settings, judge=judge)
            session, items = recorder.start_session(user_id, topic, size or settings.session_size)
            if not items:
                rprint(f"[yellow]Nothing to study for {session.topic}.[/yellow]")

            while items:
                _study_batch(recorder, session.id, user_id, items)
                if not Confirm.ask("Add more items?", default=False):
                    break
                session, items = recorder.add_more(session.id)
                if not items:
                    rprint("[yellow]No more items on this topic.[/yellow]")

            summary = recorder.end_session(session.id)
    except StudyLoopError as e:
        logger.error(f"Study session failed: {e}")
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)
    finally:
        if judge is not None:
            judge.close()

    table = Table(title="Session summary", show_header=False)
    table.add_row("Items answered", str(summary.completed_count))
    table.add_row("Accuracy", f"{(summary.accuracy or 0.0):.0%}")
    table.add_row("Mean response", f"{(summary.mean_latency_ms or 0.0) / 1000:.1f}s")
    console.print(table)


def run() -> None:
    """Console-script entry point."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_file)
    app()


if __name__ == "__main__":
    run()
