"""
Triple Helix: command-line learning loop.

Commands:
- helix play      - Play stitches across the three tubes
- helix status    - Show tube positions for an owner
- helix drain     - Retry pending progress writes now
- helix migrate   - Move anonymous progress onto a signed-in user
- helix reset     - Delete all stitch progress for an owner
- helix init-db   - Create the progress store tables
"""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from config import Settings, get_settings
from helix.content.buffer import ContentBuffer
from helix.content.client import ContentClient
from helix.content.schemas import Question, StitchContent
from helix.core.errors import HelixError, MigrationError
from helix.core.identity import generate_anonymous_id, sign_owner
from helix.core.state import DistractorLevel, UserProgressState
from helix.log_setup import configure_logging
from helix.persistence.database import async_session_scope, init_db
from helix.persistence.gateway import PersistenceGateway
from helix.persistence.migration import AnonymousMigrator
from helix.persistence.repository import ProgressRepository
from helix.persistence.storage import SqliteStorage
from helix.persistence.strategies import default_strategies
from helix.session import LearningSession

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="helix",
    help="Triple Helix: spaced-repetition stitch player",
    no_args_is_help=True,
)
console = Console()

OWNER_KEY = "helix_owner"

LEVEL_STYLES = {
    DistractorLevel.L1: "green",
    DistractorLevel.L2: "yellow",
    DistractorLevel.L3: "red",
}


@dataclass
class Runtime:
    """Components shared by the commands."""

    settings: Settings
    storage: SqliteStorage
    http_client: httpx.AsyncClient
    gateway: PersistenceGateway
    repository: ProgressRepository

    async def close(self) -> None:
        await self.gateway.stop()
        await self.http_client.aclose()
        self.storage.close()


def _open_storage(settings: Settings) -> SqliteStorage:
    return SqliteStorage(Path(settings.local_storage_path))


def _build_runtime(settings: Settings) -> Runtime:
    storage = _open_storage(settings)
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.content_timeout_ms / 1000.0))
    gateway = PersistenceGateway(
        default_strategies(async_session_scope, http_client, sign_owner, settings),
        local_storage=storage,
    )
    return Runtime(
        settings=settings,
        storage=storage,
        http_client=http_client,
        gateway=gateway,
        repository=ProgressRepository(async_session_scope),
    )


def _resolve_owner(storage: SqliteStorage, user: Optional[str]) -> str:
    """Explicit user, else the remembered owner, else a new anonymous id."""
    if user:
        return user
    owner = storage.get_item(OWNER_KEY)
    if owner is None:
        owner = generate_anonymous_id()
        storage.set_item(OWNER_KEY, owner)
        logger.info("Created anonymous owner {}", owner)
    return owner


# =============================================================================
# Display Helpers
# =============================================================================


def display_stitch(content: StitchContent, tube_number: int, level: DistractorLevel) -> None:
    color = LEVEL_STYLES[level]
    header = f"Tube {tube_number}  |  {content.title or content.id}  |  [{color}]{level.value}[/{color}]"
    body = content.content or ""
    if content.is_emergency:
        body += "\n\n[dim]Offline practice content[/dim]"
    console.print(Panel(body or content.id, title=header, title_align="left", border_style="cyan"))


def display_tubes(state: UserProgressState, limit: int = 5) -> None:
    table = Table(title=f"Progress for {state.user_id}")
    table.add_column("Tube")
    table.add_column("Thread")
    table.add_column("Pos", justify="right")
    table.add_column("Stitch")
    table.add_column("Skip", justify="right")
    table.add_column("Level")

    for number, tube in sorted(state.tubes.items()):
        marker = "[bold cyan]>[/bold cyan] " if number == state.active_tube_number else "  "
        for index, (position, entry) in enumerate(tube.sorted_entries()[:limit]):
            color = LEVEL_STYLES[entry.distractor_level]
            table.add_row(
                f"{marker}{number}" if index == 0 else "",
                (tube.thread_id or "?") if index == 0 else "",
                str(position),
                entry.stitch_id,
                str(entry.skip_number),
                f"[{color}]{entry.distractor_level.value}[/{color}]",
            )

    console.print(table)
    console.print(f"[dim]Cycles: {state.cycle_count}  |  Points: {state.total_points}[/dim]")


async def _ask_question(question: Question, level: DistractorLevel) -> bool:
    options = [question.correct_answer]
    distractor = question.distractor_for(level)
    if distractor is not None and distractor != question.correct_answer:
        options.append(distractor)
    random.shuffle(options)

    console.print(f"\n[bold]{question.text}[/bold]")
    for index, option in enumerate(options, start=1):
        console.print(f"  {index}. {option}")

    choices = [str(index) for index in range(1, len(options) + 1)]
    answer = await asyncio.to_thread(Prompt.ask, "Your answer", choices=choices)
    is_correct = options[int(answer) - 1] == question.correct_answer
    console.print("[green]Correct![/green]" if is_correct else f"[red]Answer: {question.correct_answer}[/red]")
    return is_correct


# =============================================================================
# Commands
# =============================================================================


async def _play(user: Optional[str], rounds: int) -> None:
    runtime = _build_runtime(get_settings())
    content_client = ContentClient()
    try:
        owner = _resolve_owner(runtime.storage, user)
        session = LearningSession(
            owner,
            gateway=runtime.gateway,
            buffer=ContentBuffer(content_client),
            repository=runtime.repository,
        )
        runtime.gateway.start()
        state = await session.start()
        console.print(f"[bold cyan]Playing as {owner}[/bold cyan]")
        buffering = asyncio.create_task(session.buffer.fill_complete_buffer(state))

        try:
            for _ in range(rounds):
                current = session.current_stitch()
                content = await session.current_content()
                display_stitch(content, current.tube_number, current.distractor_level)

                correct = 0
                for question in content.questions:
                    if await _ask_question(question, current.distractor_level):
                        correct += 1
                session.complete(correct, len(content.questions))
        except KeyboardInterrupt:
            console.print("\n[yellow]Session interrupted.[/yellow]")

        await buffering
        summary = await session.finish()
        console.print(Panel(
            f"Stitches: {summary.stitches_completed}\n"
            f"Correct: {summary.correct_answers}/{summary.total_questions}\n"
            f"Points: {summary.total_points}\n"
            f"Pending writes: {runtime.gateway.pending_count}",
            title="Session Complete",
            border_style="green",
        ))
    finally:
        await content_client.close()
        await runtime.close()


@app.command()
def play(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Owner id (default: remembered anonymous id)"),
    rounds: int = typer.Option(6, "--rounds", "-n", min=1, help="Stitches to play"),
) -> None:
    """Play stitches, rotating through the three tubes."""
    try:
        asyncio.run(_play(user, rounds))
    except HelixError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command()
def status(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Owner id"),
    limit: int = typer.Option(5, "--limit", "-l", help="Stitches shown per tube"),
) -> None:
    """Show tube positions from the local state snapshot."""
    settings = get_settings()
    storage = _open_storage(settings)
    try:
        owner = _resolve_owner(storage, user)
        gateway = PersistenceGateway([], local_storage=storage)
        state = gateway.load_snapshot(owner)
        if state is None:
            console.print(f"[yellow]No local progress for {owner}.[/yellow] Run [bold]helix play[/bold] to start.")
            raise typer.Exit(0)
        display_tubes(state, limit)
        gateway.recover_from_storage()
        if gateway.pending_count:
            console.print(f"[yellow]{gateway.pending_count} progress writes pending[/yellow]")
    finally:
        storage.close()


async def _drain() -> tuple[int, int]:
    runtime = _build_runtime(get_settings())
    try:
        written = await runtime.gateway.drain_queue()
        return written, runtime.gateway.pending_count
    finally:
        await runtime.close()


@app.command()
def drain() -> None:
    """Retry pending progress writes now."""
    written, pending = asyncio.run(_drain())
    console.print(f"[green]Wrote {written} updates[/green]")
    if pending:
        console.print(f"[yellow]{pending} still pending[/yellow]")


@app.command()
def migrate(
    anonymous_id: str = typer.Argument(..., help="Anonymous owner id"),
    user_id: str = typer.Argument(..., help="Authenticated user id"),
) -> None:
    """Move anonymous progress onto a signed-in user."""

    async def _run():
        await init_db()
        return await AnonymousMigrator(async_session_scope).migrate(anonymous_id, user_id)

    try:
        result = asyncio.run(_run())
    except (ValueError, MigrationError) as e:
        console.print(f"[red]Migration failed: {e}[/red]")
        raise typer.Exit(1)

    storage = _open_storage(get_settings())
    try:
        if storage.get_item(OWNER_KEY) == anonymous_id:
            storage.set_item(OWNER_KEY, user_id)
    finally:
        storage.close()

    console.print(
        f"[green]Migrated {result.progress_migrated} stitches and {result.sessions_migrated} sessions.[/green]\n"
        f"Totals for {user_id}: {result.total_points} points over {result.total_sessions} sessions"
    )


@app.command()
def reset(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Owner id"),
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete all stitch progress for an owner."""
    settings = get_settings()
    storage = _open_storage(settings)
    try:
        owner = _resolve_owner(storage, user)
        if not confirm and not Confirm.ask(f"Reset ALL progress for {owner}? This cannot be undone!", default=False):
            raise typer.Exit(0)

        async def _run() -> int:
            await init_db()
            return await ProgressRepository(async_session_scope).reset_progress(owner)

        deleted = asyncio.run(_run())
        cleared = PersistenceGateway([], local_storage=storage).clear_user(owner)
    finally:
        storage.close()

    console.print(f"[green]Reset {deleted} stored stitches and {cleared} pending writes for {owner}.[/green]")


@app.command("init-db")
def init_db_command() -> None:
    """Create the progress store tables."""
    asyncio.run(init_db())
    console.print("[green]Database tables initialized[/green]")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    configure_logging(level="WARNING")
    app()


if __name__ == "__main__":
    main()
