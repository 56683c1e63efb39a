"""Command-line interface for the webhook service.

Commands:
- serve: Run the API and delivery workers
- webhooks list: Show registered webhooks
- dead-letters list: Show dead-lettered deliveries
- dead-letters replay: Re-enqueue a dead-lettered delivery

Inspection commands open the configured database directly; no server
needs to be running.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from collections.abc import Awaitable, Callable
from typing import Annotated, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from issuehooks import __version__
from issuehooks.config import settings
from issuehooks.container import ServiceContainer
from issuehooks.logging_config import configure_logging
from issuehooks.webhook import DeadLetterNotFoundError

T = TypeVar("T")

app = typer.Typer(
    name="issuehooks",
    help="Issue tracker webhook delivery service",
    no_args_is_help=True,
    add_completion=False,
)
webhooks_app = typer.Typer(name="webhooks", help="Inspect registered webhooks", no_args_is_help=True)
dead_letters_app = typer.Typer(
    name="dead-letters", help="Inspect and replay dead-lettered deliveries", no_args_is_help=True
)

# Register command groups
app.add_typer(webhooks_app, name="webhooks")
app.add_typer(dead_letters_app, name="dead-letters")

console = Console()

_state: dict[str, str] = {"database_url": settings.DATABASE_URL}


def _run(operation: Callable[[ServiceContainer], Awaitable[T]]) -> T:
    """Run ``operation`` against an opened container without workers."""

    async def runner() -> T:
        container = ServiceContainer(_state["database_url"])
        await container.start(run_workers=False)
        try:
            return await operation(container)
        finally:
            await container.stop()

    return asyncio.run(runner())


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"issuehooks version: {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    database_url: Annotated[
        str | None,
        typer.Option("--database-url", help="Override DATABASE_URL"),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", help="Log pipeline activity to stderr")
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    Issue tracker webhook service.

    Use 'issuehooks COMMAND --help' for help with specific commands.
    """
    # Keep stdout for command output
    configure_logging("DEBUG" if verbose else "WARNING", stream=sys.stderr)
    if database_url:
        _state["database_url"] = database_url


@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Bind address")] = settings.HOST,
    port: Annotated[int, typer.Option(help="Bind port")] = settings.PORT,
    reload: Annotated[bool, typer.Option(help="Reload on code changes")] = False,
) -> None:
    """Run the HTTP API with the delivery worker pool."""
    import uvicorn

    # The app factory reads its settings from the environment
    os.environ["DATABASE_URL"] = _state["database_url"]

    uvicorn.run(
        "issuehooks.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
        access_log=True,
    )


@webhooks_app.command("list")
def list_webhooks(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output in JSON format")] = False,
) -> None:
    """List registered webhooks in registration order."""
    webhooks = _run(lambda c: c.registry.list())

    if json_output:
        print(json.dumps([w.model_dump(mode="json", exclude={"secret"}) for w in webhooks], indent=2))
        return

    if not webhooks:
        console.print("[yellow]No webhooks registered[/yellow]")
        return

    table = Table(title=f"Webhooks ({len(webhooks)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("URL")
    table.add_column("Events")
    table.add_column("Active")
    table.add_column("Signed")
    for webhook in webhooks:
        table.add_row(
            webhook.id,
            webhook.url,
            ", ".join(e.value for e in webhook.events),
            "[green]yes[/green]" if webhook.active else "[red]no[/red]",
            "yes" if webhook.secret else "no",
        )
    console.print(table)


@dead_letters_app.command("list")
def list_dead_letters(
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum entries")] = 100,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output in JSON format")] = False,
) -> None:
    """List dead-lettered deliveries, newest first."""
    entries = _run(lambda c: c.dead_letters.list(limit=limit))

    if json_output:
        print(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        console.print("[green]No dead-lettered deliveries[/green]")
        return

    table = Table(title=f"Dead letters ({len(entries)})")
    table.add_column("Task ID", style="cyan", no_wrap=True)
    table.add_column("Webhook ID")
    table.add_column("Event")
    table.add_column("Attempts", justify="right")
    table.add_column("Dead-lettered at")
    table.add_column("Reason", style="red")
    for entry in entries:
        table.add_row(
            entry.task.id,
            entry.task.webhook_id,
            entry.task.event_type,
            str(entry.task.attempt_count),
            entry.dead_lettered_at.isoformat(timespec="seconds"),
            entry.failure_reason,
        )
    console.print(table)


@dead_letters_app.command("replay")
def replay_dead_letter(
    task_id: Annotated[str, typer.Argument(help="ID of the dead-lettered task")],
) -> None:
    """Enqueue a fresh copy of a dead-lettered delivery."""
    try:
        task = _run(lambda c: c.dead_letters.replay(task_id))
    except DeadLetterNotFoundError as e:
        console.print(f"[red]Not found:[/red] {e}")
        raise typer.Exit(1)

    console.print("[green]✓[/green] Delivery re-enqueued")
    console.print(f"[bold]Task ID:[/bold] {task.id}")
    console.print(f"[bold]Replay of:[/bold] {task.replay_of}")


def cli_main() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    cli_main()
