"""Typer-based CLI for lexicon cleanup."""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import CleanupConfig
from .engine import CleanupEngine
from .errors import InvalidStateError, NotFoundError, StoreConnectionError
from .events import read_events_tail
from .importer import import_records
from .ledger import ProcessingLedger
from .paths import StatePaths
from .review import format_proposal_display, preview

app = typer.Typer(
    name="lexicon-cleanup",
    help="AI-proposed formatting edits for lexicon entries, applied only after human review",
    add_completion=False,
)

console = Console()

STATE_DIR_HELP = "State directory (default: LEXICON_CLEANUP_STATE_DIR env, repo config, or ./lexicon_state)"


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging"),
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_config(state_dir: Optional[str], engine: Optional[str] = None) -> CleanupConfig:
    """Resolve configuration, turning invalid settings into exit code 1."""
    try:
        config = CleanupConfig.from_env(cli_state_dir=state_dir)
    except ValueError as e:
        # pydantic's ValidationError is a ValueError too
        console.print(f"[red]Error: Invalid configuration: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    if engine:
        config.engine = engine
    return config


def _open_engine(config: CleanupConfig, *, with_client: bool) -> CleanupEngine:
    """Initialize an engine, turning setup failures into exit code 1."""
    engine = CleanupEngine(config)
    try:
        engine.initialize(with_client=with_client)
    except StoreConnectionError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    except ValueError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    return engine


@app.command()
def run(
    batch_size: Optional[int] = typer.Option(
        None,
        "--batch-size",
        "-b",
        min=1,
        help="Maximum records to process in one pass (default: from config)",
    ),
    all_batches: bool = typer.Option(
        False,
        "--all",
        help="Keep running passes until no unprocessed records remain",
    ),
    engine_name: Optional[str] = typer.Option(
        None,
        "--engine",
        "-e",
        help="Generation engine: auto, fake, or openai",
    ),
    state_dir: Optional[str] = typer.Option(None, "--state-dir", "-s", help=STATE_DIR_HELP),
):
    """Run a cleanup pass: generate proposals for unprocessed records.

    Records whose generation fails are reported and retried on the next run.
    """
    if engine_name is not None and engine_name not in ("auto", "fake", "openai"):
        console.print(f"[red]Error: Unknown engine '{escape(engine_name)}'[/red]")
        raise typer.Exit(code=1)

    config = _load_config(state_dir, engine_name)
    engine = _open_engine(config, with_client=True)
    try:
        console.print(
            f"[bold]Processing records for field:[/bold] {config.field} "
            f"[dim](engine: {engine.client.engine_name})[/dim]"
        )
        if all_batches:
            report = engine.run_until_exhausted(batch_size)
        else:
            report = engine.run_cleanup_pass(batch_size)
    finally:
        engine.cleanup()

    if report.selected == 0:
        console.print("[dim]No new records to process[/dim]")
        return

    console.print()
    console.print("[bold green]Cleanup pass complete![/bold green]")
    console.print(f"  Batches:            {report.batches}")
    console.print(f"  Records selected:   {report.selected}")
    console.print(f"  Proposals created:  [green]{report.proposed}[/green]")
    console.print(f"  Failed:             [red]{report.failed}[/red]" if report.failed else "  Failed:             0")

    for record_id, message in report.failures.items():
        console.print(f"  [red]x[/red] {escape(record_id)}: {escape(message)}")

    if report.proposed:
        console.print()
        console.print("[dim]Review pending proposals with: lexicon-cleanup review[/dim]")


@app.command()
def review(
    field: Optional[str] = typer.Option(
        None,
        "--field",
        "-f",
        help="Only show proposals that change this field (text or title)",
    ),
    full: bool = typer.Option(False, "--full", help="Show complete current and proposed values"),
    state_dir: Optional[str] = typer.Option(None, "--state-dir", "-s", help=STATE_DIR_HELP),
):
    """List pending proposals. Read-only."""
    if field is not None and field not in ("text", "title"):
        console.print(f"[red]Error: Unsupported field '{escape(field)}'[/red]")
        raise typer.Exit(code=1)

    config = _load_config(state_dir)
    engine = _open_engine(config, with_client=False)
    try:
        proposals = engine.review_proposals(field)
    finally:
        engine.cleanup()

    if not proposals:
        console.print("[dim]No pending proposals found[/dim]")
        return

    console.print(f"[bold]Found {len(proposals)} pending proposal(s)[/bold]")

    if full:
        for proposal in proposals:
            console.print(format_proposal_display(proposal, full=True), markup=False, highlight=False)
        return

    table = Table(title="Pending Proposals")
    table.add_column("Proposal ID", style="cyan", no_wrap=True)
    table.add_column("Record", style="yellow")
    table.add_column("Field", style="magenta")
    table.add_column("Conf.", justify="right")
    table.add_column("Proposed", style="dim")

    for proposal in proposals:
        table.add_row(
            proposal.proposal_id,
            proposal.record_id,
            proposal.field,
            f"{proposal.confidence * 100:.0f}%",
            preview(proposal.proposed_value, 60),
        )

    console.print(table)


@app.command()
def approve(
    proposal_id: str = typer.Argument(..., help="ID of the pending proposal to apply"),
    state_dir: Optional[str] = typer.Option(None, "--state-dir", "-s", help=STATE_DIR_HELP),
):
    """Approve a proposal and apply its text to the lexicon record."""
    config = _load_config(state_dir)
    engine = _open_engine(config, with_client=False)
    try:
        proposal = engine.approve_proposal(proposal_id)
    except NotFoundError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        console.print("[dim]List pending proposals with: lexicon-cleanup review[/dim]")
        raise typer.Exit(code=1)
    except InvalidStateError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    finally:
        engine.cleanup()

    console.print(f"[green]Approved and applied proposal {proposal.proposal_id}[/green]")
    console.print(f"[dim]Record {proposal.record_id} field '{proposal.field}' updated[/dim]")


@app.command()
def reject(
    proposal_id: str = typer.Argument(..., help="ID of the pending proposal to reject"),
    reason: Optional[str] = typer.Option(None, "--reason", "-r", help="Why the proposal was rejected"),
    state_dir: Optional[str] = typer.Option(None, "--state-dir", "-s", help=STATE_DIR_HELP),
):
    """Reject a proposal. The lexicon record is left untouched."""
    config = _load_config(state_dir)
    engine = _open_engine(config, with_client=False)
    try:
        proposal = engine.reject_proposal(proposal_id, reason)
    except (NotFoundError, InvalidStateError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    finally:
        engine.cleanup()

    console.print(f"[yellow]Rejected proposal {proposal.proposal_id}[/yellow]")


@app.command("approve-all")
def approve_all(
    field: Optional[str] = typer.Option(None, "--field", "-f", help="Only approve proposals for this field"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Confirm bulk approval"),
    state_dir: Optional[str] = typer.Option(None, "--state-dir", "-s", help=STATE_DIR_HELP),
):
    """Approve every pending proposal."""
    if not yes:
        console.print("[yellow]This applies ALL pending proposals to their records.[/yellow]")
        console.print("[yellow]Re-run with --yes to confirm.[/yellow]")
        raise typer.Exit(code=1)

    config = _load_config(state_dir)
    engine = _open_engine(config, with_client=False)
    try:
        approved, errors = engine.approve_all(field)
    finally:
        engine.cleanup()

    console.print("[bold green]Bulk approval complete![/bold green]")
    console.print(f"  Approved: {len(approved)}")
    console.print(f"  Errors:   {len(errors)}")
    for proposal_id, message in errors.items():
        console.print(f"  [red]x[/red] {escape(proposal_id)}: {escape(message)}")


@app.command()
def stats(
    state_dir: Optional[str] = typer.Option(None, "--state-dir", "-s", help=STATE_DIR_HELP),
):
    """Show record, ledger and proposal counts."""
    config = _load_config(state_dir)
    engine = _open_engine(config, with_client=False)
    try:
        records = engine.store.count_records()
        counts = engine.store.count_by_status()
        ledger_stats = engine.ledger.stats()
    finally:
        engine.cleanup()

    table = Table(title="Lexicon Cleanup Status")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Records", str(records))
    table.add_row("Processed", str(ledger_stats["total_processed"]))
    for status, n in counts.items():
        table.add_row(f"Proposals ({status})", str(n))
    last_run = ledger_stats["last_run"]
    table.add_row("Last run (UTC)", last_run.strftime("%Y-%m-%d %H:%M:%S") if last_run else "-")
    console.print(table)


ledger_app = typer.Typer(help="Processing ledger commands")
app.add_typer(ledger_app, name="ledger")


@ledger_app.command("status")
def ledger_status(
    state_dir: Optional[str] = typer.Option(None, "--state-dir", "-s", help=STATE_DIR_HELP),
):
    """Show how many records have been processed."""
    config = _load_config(state_dir)
    ledger = ProcessingLedger.load(StatePaths.from_config(config).ledger_file)
    ledger_stats = ledger.stats()
    last_run = ledger_stats["last_run"]
    console.print(f"Processed records: {ledger_stats['total_processed']}")
    console.print(f"Last run:          {last_run.isoformat() if last_run else '-'}")


@ledger_app.command("reset")
def ledger_reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm clearing the ledger"),
    state_dir: Optional[str] = typer.Option(None, "--state-dir", "-s", help=STATE_DIR_HELP),
):
    """Forget processed records so the next run regenerates every record."""
    if not confirm:
        console.print("[yellow]This clears the processing ledger; every record will be regenerated.[/yellow]")
        console.print("[yellow]Use: lexicon-cleanup ledger reset --confirm[/yellow]")
        raise typer.Exit(code=1)

    config = _load_config(state_dir)
    engine = _open_engine(config, with_client=False)
    try:
        dropped = engine.reset_ledger()
    finally:
        engine.cleanup()

    console.print(f"[green]Cleared {dropped} processed record(s) from the ledger[/green]")


records_app = typer.Typer(help="Canonical record commands")
app.add_typer(records_app, name="records")


@records_app.command("import")
def records_import(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON or CSV export to import"),
    state_dir: Optional[str] = typer.Option(None, "--state-dir", "-s", help=STATE_DIR_HELP),
):
    """Import lexicon records from a JSON list or a CSV with id,title,text columns."""
    config = _load_config(state_dir)
    engine = _open_engine(config, with_client=False)
    try:
        imported, skipped = import_records(engine.store, file)
        engine.events.append_event(
            "RECORDS_IMPORTED",
            {"file": str(file), "imported": imported, "skipped": skipped},
        )
    except (OSError, ValueError) as e:
        console.print(f"[red]Error reading {escape(str(file))}: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    finally:
        engine.cleanup()

    console.print(f"[green]+[/green] Imported {imported} record(s)")
    if skipped:
        console.print(f"[yellow]Skipped {skipped} invalid row(s)[/yellow]")


events_app = typer.Typer(help="Audit event commands")
app.add_typer(events_app, name="events")


@events_app.command("tail")
def events_tail(
    n: int = typer.Option(20, "--n", help="Number of recent events to display"),
    state_dir: Optional[str] = typer.Option(None, "--state-dir", "-s", help=STATE_DIR_HELP),
):
    """Display the last N audit events."""
    config = _load_config(state_dir)
    events = read_events_tail(StatePaths.from_config(config).events_file, n=n)

    if not events:
        console.print("[dim]No events recorded[/dim]")
        return

    table = Table(title=f"Last {len(events)} Event(s)")
    table.add_column("Timestamp (UTC)", style="cyan", no_wrap=True)
    table.add_column("Event Type", style="magenta")
    table.add_column("Record", style="yellow")
    table.add_column("Payload", style="dim")

    for event in events:
        payload_str = str(event.payload)
        if len(payload_str) > 60:
            payload_str = payload_str[:57] + "..."
        table.add_row(
            event.ts.strftime("%Y-%m-%d %H:%M:%S"),
            event.event_type,
            event.record_id or "-",
            payload_str,
        )

    console.print(table)


@app.command()
def version():
    """Show lexicon-cleanup version."""
    from . import __version__
    console.print(f"lexicon-cleanup v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
