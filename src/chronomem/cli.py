"""chronomem CLI - inspect and exercise agent memory from the command line.

Commands cover memory search, record lookup, knowledge-graph lookups,
conversation extraction, memory summarization, retention cutoffs and
queued purges. All connection details come from ``CHRONOMEM_*`` environment variables.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from chronomem.core.config import Settings
from chronomem.core.exceptions import ChronomemError
from chronomem.core.types import SubscriptionPlan, TemporalGrain
from chronomem.llm.client import OllamaClient
from chronomem.llm.credentials import CredentialResolver
from chronomem.memory.extraction import KnowledgeExtractionService
from chronomem.memory.graph_search import GraphSearchService
from chronomem.memory.retention import retention_cutoff, retention_periods
from chronomem.memory.search import MemorySearchService
from chronomem.memory.summarize import MemorySummarizationService
from chronomem.queue.client import WriteQueueClient
from chronomem.queue.cost_verification import CostVerificationQueue
from chronomem.queue.sqs import create_sqs_client
from chronomem.storage.object_store import ObjectStore
from chronomem.storage.sqlite import SQLiteStorage
from chronomem.storage.vector import VectorReadClient

# Initialize Typer app and Rich console
app = typer.Typer(
    name="chronomem",
    help="chronomem - temporal memory and knowledge graph for AI agents",
    add_completion=False,
)
console = Console()

GRAIN_UNITS = {
    TemporalGrain.WORKING: "hours",
    TemporalGrain.DAILY: "days",
    TemporalGrain.WEEKLY: "weeks",
    TemporalGrain.MONTHLY: "months",
    TemporalGrain.QUARTERLY: "quarters",
    TemporalGrain.YEARLY: "years",
}


async def _credential_resolver(settings: Settings) -> CredentialResolver:
    storage = SQLiteStorage(settings.db_path)
    await storage.initialize()
    return CredentialResolver(storage, platform_api_key=settings.platform_api_key)


def _llm_client(settings: Settings) -> OllamaClient:
    return OllamaClient(base_url=settings.ollama_url, default_timeout=settings.request_timeout)


@app.command()
def search(
    agent_id: str = typer.Argument(..., help="Agent whose memory is searched"),
    workspace_id: str = typer.Option(..., "--workspace", "-w", help="Workspace of the agent"),
    grain: TemporalGrain = typer.Option(TemporalGrain.DAILY, "--grain", "-g", help="Temporal grain"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Text to rank results by"),
    min_days: int = typer.Option(0, "--min-days", help="Newest edge of the window, in days ago"),
    max_days: int = typer.Option(365, "--max-days", help="Oldest edge of the window, in days ago"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum results to return"),
):
    """Search an agent's memory by time window and optional query text."""
    asyncio.run(_search(agent_id, workspace_id, grain, query, min_days, max_days, limit))


async def _search(
    agent_id: str,
    workspace_id: str,
    grain: TemporalGrain,
    query: str | None,
    min_days: int,
    max_days: int,
    limit: int,
):
    """Async implementation of search command."""
    settings = Settings.from_env()
    service = MemorySearchService(
        VectorReadClient(settings.vector_root),
        _llm_client(settings),
        credentials=await _credential_resolver(settings),
        embedding_model=settings.embedding_model,
    )

    with console.status("[bold green]Searching memory..."):
        try:
            results = await service.search_memory(
                agent_id,
                workspace_id,
                grain,
                minimum_days_ago=min_days,
                maximum_days_ago=max_days,
                max_results=limit,
                query_text=query,
            )
        except ChronomemError as e:
            console.print(f"[red]Search failed: {e}[/red]")
            raise typer.Exit(1)

    if not results:
        console.print("[yellow]No results found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Date", style="green")
    table.add_column("Content")
    table.add_column("Similarity", style="magenta")
    table.add_column("ID", style="dim")
    for result in results:
        table.add_row(
            result.date,
            result.content[:80] + "..." if len(result.content) > 80 else result.content,
            f"{result.similarity:.3f}" if result.similarity is not None else "-",
            result.id,
        )
    console.print(table)


@app.command()
def record(
    agent_id: str = typer.Argument(..., help="Agent owning the record"),
    record_id: str = typer.Argument(..., help="Record ID"),
    grain: TemporalGrain = typer.Option(TemporalGrain.DAILY, "--grain", "-g", help="Temporal grain"),
):
    """Show a single memory record."""
    asyncio.run(_record(agent_id, record_id, grain))


async def _record(agent_id: str, record_id: str, grain: TemporalGrain):
    """Async implementation of record command."""
    settings = Settings.from_env()
    service = MemorySearchService(VectorReadClient(settings.vector_root), _llm_client(settings))
    result = await service.get_memory_record(agent_id, grain, record_id)
    if result is None:
        console.print(f"[yellow]Record {record_id} not found.[/yellow]")
        raise typer.Exit(1)

    metadata = "\n".join(f"[dim]{k}:[/dim] {v}" for k, v in result.metadata.items() if v)
    console.print(Panel(
        f"{result.content}\n\n[dim]Timestamp:[/dim] {result.timestamp}\n{metadata}",
        title=f"{result.id} ({result.date})",
        border_style="cyan",
    ))


@app.command()
def graph(
    workspace_id: str = typer.Argument(..., help="Workspace of the agent"),
    agent_id: str = typer.Argument(..., help="Agent whose graph is searched"),
    entities: list[str] = typer.Argument(..., help="Entity names to look up"),
):
    """Look up knowledge-graph facts mentioning any of the given entities."""
    asyncio.run(_graph(workspace_id, agent_id, entities))


async def _graph(workspace_id: str, agent_id: str, entities: list[str]):
    """Async implementation of graph command."""
    settings = Settings.from_env()
    service = GraphSearchService(settings, ObjectStore(settings.s3))

    with console.status("[bold green]Loading knowledge graph..."):
        try:
            snippets = await service.search_graph_by_entities(workspace_id, agent_id, entities)
        except ChronomemError as e:
            console.print(f"[red]Graph search failed: {e}[/red]")
            raise typer.Exit(1)

    if not snippets:
        console.print("[yellow]No facts found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Subject", style="green")
    table.add_column("Predicate", style="yellow")
    table.add_column("Object", style="blue")
    for snippet in snippets:
        table.add_row(snippet.subject, snippet.predicate, snippet.object)
    console.print(table)


@app.command()
def extract(
    workspace_id: str = typer.Argument(..., help="Workspace of the agent"),
    agent_id: str = typer.Argument(..., help="Agent the conversation belongs to"),
    conversation_id: str = typer.Option(..., "--conversation", "-c", help="Conversation ID"),
    source: Optional[Path] = typer.Option(
        None, "--file", "-f", help="Conversation text file (default: stdin)"
    ),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Completion model"),
    apply: bool = typer.Option(True, "--apply/--dry-run", help="Apply operations to the graph"),
):
    """Extract knowledge from a conversation and apply it to the graph."""
    text = source.read_text() if source is not None else sys.stdin.read()
    asyncio.run(_extract(workspace_id, agent_id, conversation_id, text, model, apply))


async def _extract(
    workspace_id: str,
    agent_id: str,
    conversation_id: str,
    text: str,
    model: str | None,
    apply: bool,
):
    """Async implementation of extract command."""
    settings = Settings.from_env()
    cost_verification = None
    if settings.cost_verification_queue_url:
        cost_verification = CostVerificationQueue.from_client(
            create_sqs_client(settings.s3), settings.cost_verification_queue_url
        )
    service = KnowledgeExtractionService(
        _llm_client(settings),
        settings,
        object_store=ObjectStore(settings.s3),
        credentials=await _credential_resolver(settings),
        cost_verification=cost_verification,
        default_model=settings.extraction_model,
    )

    with console.status("[bold green]Extracting knowledge..."):
        try:
            result = await service.extract_conversation_memory(
                workspace_id, agent_id, conversation_id, text, model_name=model
            )
        except ChronomemError as e:
            console.print(f"[red]Extraction failed: {e}[/red]")
            raise typer.Exit(1)

    if result is None:
        console.print("[yellow]Conversation is empty, nothing to extract.[/yellow]")
        return

    if result.summary:
        console.print(Panel(result.summary, title="Summary", border_style="cyan"))

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Operation", style="magenta")
    table.add_column("Subject", style="green")
    table.add_column("Predicate", style="yellow")
    table.add_column("Object", style="blue")
    table.add_column("Confidence")
    for operation in result.memory_operations:
        table.add_row(
            operation.operation.value,
            operation.subject,
            operation.predicate,
            operation.object,
            f"{operation.confidence:.2f}",
        )
    console.print(table)

    if not apply or not result.memory_operations:
        return

    with console.status("[bold green]Applying to knowledge graph..."):
        try:
            applied = await service.apply_memory_operations_to_graph(
                workspace_id, agent_id, conversation_id, result.memory_operations
            )
        except ChronomemError as e:
            console.print(f"[red]Failed to apply operations: {e}[/red]")
            raise typer.Exit(1)

    console.print(
        f"[green]Graph updated:[/green] {applied.inserted} inserted, "
        f"{applied.updated} updated, {applied.deleted} deleted, {applied.skipped} skipped"
    )


@app.command()
def summarize(
    grain: TemporalGrain = typer.Argument(..., help="Summary grain to produce (daily to yearly)"),
    workspace_id: Optional[str] = typer.Option(None, "--workspace", "-w", help="Workspace billed for the call"),
    agent_id: Optional[str] = typer.Option(None, "--agent", "-a", help="Agent the summary belongs to"),
    source: Optional[Path] = typer.Option(
        None, "--file", "-f", help="Entries to summarize, one per line (default: stdin)"
    ),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Completion model"),
):
    """Summarize memory entries into a higher grain."""
    text = source.read_text() if source is not None else sys.stdin.read()
    asyncio.run(_summarize(grain, workspace_id, agent_id, text.splitlines(), model))


async def _summarize(
    grain: TemporalGrain,
    workspace_id: str | None,
    agent_id: str | None,
    entries: list[str],
    model: str | None,
):
    """Async implementation of summarize command."""
    settings = Settings.from_env()
    service = MemorySummarizationService(
        _llm_client(settings),
        credentials=await _credential_resolver(settings),
        default_model=settings.extraction_model,
    )

    with console.status("[bold green]Summarizing memory..."):
        try:
            summary = await service.summarize(
                entries, grain, workspace_id=workspace_id, agent_id=agent_id, model_name=model
            )
        except ChronomemError as e:
            console.print(f"[red]Summarization failed: {e}[/red]")
            raise typer.Exit(1)

    if not summary:
        console.print("[yellow]Nothing to summarize.[/yellow]")
        return

    console.print(Panel(summary, title=f"{grain.value.capitalize()} summary", border_style="cyan"))


@app.command()
def retention(
    plan: SubscriptionPlan = typer.Option(SubscriptionPlan.FREE, "--plan", "-p", help="Subscription plan"),
):
    """Show retention periods and current cutoffs for a plan."""
    table = Table(show_header=True, header_style="bold cyan", title=f"Retention ({plan.value})")
    table.add_column("Grain", style="green")
    table.add_column("Period")
    table.add_column("Cutoff (UTC)", style="yellow")
    for grain, amount in retention_periods(plan).items():
        cutoff = retention_cutoff(grain, plan)
        table.add_row(grain.value, f"{amount} {GRAIN_UNITS[grain]}", cutoff.isoformat(timespec="seconds"))
    console.print(table)


@app.command()
def purge(
    agent_id: str = typer.Argument(..., help="Agent whose memory is purged"),
    grain: TemporalGrain = typer.Option(..., "--grain", "-g", help="Temporal grain to purge"),
    workspace_id: Optional[str] = typer.Option(None, "--workspace", "-w", help="Workspace of the agent"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
):
    """Queue deletion of every fact in an agent's grain (DANGEROUS!)."""
    asyncio.run(_purge(agent_id, grain, workspace_id, force))


async def _purge(agent_id: str, grain: TemporalGrain, workspace_id: str | None, force: bool):
    """Async implementation of purge command."""
    if not force:
        confirmed = Confirm.ask(
            f"Delete all {grain.value} memory of agent {agent_id}?",
            default=False,
        )
        if not confirmed:
            console.print("[yellow]Purge cancelled.[/yellow]")
            return

    settings = Settings.from_env()
    client = WriteQueueClient.from_client(create_sqs_client(settings.s3), settings.write_queue_url)
    try:
        receipt = await client.purge(agent_id, grain, workspace_id=workspace_id)
    except ChronomemError as e:
        console.print(f"[red]Failed to queue purge: {e}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[green]Purge queued[/green] (group {receipt.group_id}, message {receipt.message_id})"
    )


@app.callback()
def callback(
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Logging level"),
):
    """
    chronomem - temporal memory and knowledge graph for AI agents

    - Time-windowed and semantic search over vector memory
    - Knowledge graph of subject-predicate-object facts
    - LLM-driven extraction of facts from conversations
    """
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
