#!/usr/bin/env python3
"""
Customer duplicate-detection worker - entry point.

Usage:
    python -m dedup_worker.main run
    python -m dedup_worker.main init-db
    python -m dedup_worker.main analyze event.json
    python -m dedup_worker.main publish event.json
    python -m dedup_worker.main status
"""

import signal
import sys
from pathlib import Path

import click
from loguru import logger
from rich.console import Console
from rich.table import Table
from sqlalchemy import func, select

from dedup_worker.config import settings
from dedup_worker.database import DuplicateSuspicion, SessionLocal, create_all_tables, drop_all_tables
from dedup_worker.deduplication import DuplicateAnalyzer, SimilarityEvaluator, SuspicionStore
from dedup_worker.exceptions import ConnectionFatalError, MalformedMessageError
from dedup_worker.messaging import ConnectionManager, DuplicateEventPublisher, EventConsumer
from dedup_worker.search import CandidateRetriever, build_client


console = Console()


def build_analyzer(connections: ConnectionManager) -> DuplicateAnalyzer:
    """Wire the pipeline components from settings."""
    return DuplicateAnalyzer(
        retriever=CandidateRetriever(build_client(), index=settings.elasticsearch.index),
        evaluator=SimilarityEvaluator(),
        store=SuspicionStore(),
        publisher=DuplicateEventPublisher(connections),
    )


def _read_event(path: Path):
    try:
        return EventConsumer.decode(path.read_bytes())
    except MalformedMessageError as e:
        raise click.BadParameter(str(e), param_hint="FILE") from e


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def cli(debug):
    """Customer duplicate-detection worker"""
    if debug:
        from dedup_worker.utils.logging import setup_logging
        setup_logging(level="DEBUG")


@cli.command()
def run():
    """Consume customer events until SIGTERM/SIGINT."""
    with ConnectionManager() as connections:
        consumer = EventConsumer(connections)
        analyzer = build_analyzer(connections)

        def _shutdown(signum, frame):
            logger.info(f"Received signal {signum}; finishing current event and stopping")
            consumer.stop()

        signal.signal(signal.SIGTERM, _shutdown)
        signal.signal(signal.SIGINT, _shutdown)

        try:
            consumer.start_consuming(analyzer)
        except ConnectionFatalError as e:
            logger.critical(f"Broker connection lost for good: {e}")
            sys.exit(1)


@cli.command("init-db")
@click.option("--drop", is_flag=True, help="Drop existing tables first (USE WITH CAUTION!)")
def init_db(drop: bool):
    """Create the suspicion table."""
    if drop:
        click.confirm("Drop all tables? Stored suspicions will be lost.", abort=True)
        drop_all_tables()
        console.print("[yellow]Dropped existing tables[/yellow]")

    create_all_tables()
    console.print(f"[green]Created table {DuplicateSuspicion.__tablename__}[/green]")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def analyze(file: Path):
    """Run the pipeline once for an event stored in FILE."""
    event = _read_event(file)

    with ConnectionManager() as connections:
        try:
            result = build_analyzer(connections).handle(event)
        except ConnectionFatalError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)

    if result.skipped:
        console.print(f"[yellow]Event {event.event_id} has no valid customer id[/yellow]")
        return

    console.print(f"\n[bold blue]Customer {result.customer_id}[/bold blue]")
    console.print(f"Hits: {result.hits}  Published: {len(result.published)}  Failed: {result.failed_hits}\n")

    table = Table()
    table.add_column("Suspect")
    table.add_column("Score")
    table.add_column("Fields")

    for suspicion in result.suspicions:
        table.add_row(
            str(suspicion.suspect_id),
            f"{suspicion.score:.2f}",
            ", ".join(c.field for c in suspicion.similarity_details.comparisons),
        )

    console.print(table)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def publish(file: Path):
    """Send the event stored in FILE to the inbound queue."""
    event = _read_event(file)

    with ConnectionManager() as connections:
        DuplicateEventPublisher(connections).send(event, queue=settings.rabbitmq.inbound_queue)

    console.print(f"[green]Sent {event.event_id} to {settings.rabbitmq.inbound_queue}[/green]")


@cli.command()
@click.option("--limit", type=int, default=10, help="Number of recent suspicions to show")
def status(limit: int):
    """Show stored suspicion statistics."""
    console.print("\n[bold blue]Duplicate Suspicions[/bold blue]\n")

    session = SessionLocal()

    try:
        total = session.execute(select(func.count(DuplicateSuspicion.id))).scalar_one()
        console.print(f"Stored suspicions: {total}\n")

        recent = session.execute(
            select(DuplicateSuspicion).order_by(DuplicateSuspicion.detected_at.desc()).limit(limit)
        ).scalars().all()

        if not recent:
            console.print("[yellow]No suspicions stored yet.[/yellow]")
            return

        table = Table()
        table.add_column("Detected")
        table.add_column("Original")
        table.add_column("Suspect")
        table.add_column("Score")

        for row in recent:
            table.add_row(
                row.detected_at.strftime("%Y-%m-%d %H:%M"),
                str(row.original_id),
                str(row.suspect_id),
                f"{row.score:.2f}",
            )

        console.print(table)

    finally:
        session.close()


if __name__ == "__main__":
    cli()
