"""Command-line interface for the research pipeline."""

import json
import sys
from typing import Optional

import structlog
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from research_pipeline import __version__
from research_pipeline.config.context import ResearchDomain
from research_pipeline.config.settings import get_settings
from research_pipeline.errors import PipelineError, PreconditionFailed, StorageError, UnknownStage
from research_pipeline.logging_setup import configure_logging
from research_pipeline.models.entities import Feedback
from research_pipeline.models.enums import ArtifactStatus, EntityType, FeedbackAction, StageName
from research_pipeline.models.run import PipelineOptions, RunSummary

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="research-pipeline",
    help="Research pipeline - discover, triage and turn literature into validated project plans",
    add_completion=False,
)
domains_app = typer.Typer(help="Manage the research domains scanned by discovery")
app.add_typer(domains_app, name="domains")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
) -> None:
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, json=json_logs or settings.log_json)


def _orchestrator():
    from research_pipeline.pipeline.factory import build_orchestrator

    try:
        return build_orchestrator()
    except StorageError as e:
        console.print(f"[red]Storage unavailable:[/red] {e}")
        raise typer.Exit(code=1)


@app.command()
def run(
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Custom search query (default: scan all domains)"),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Look back this many days"),
    top_k: Optional[int] = typer.Option(None, "--top-k", help="Items to fan out to generation"),
    review_floor: float = typer.Option(
        0.0, "--review-floor", help="Hold artifacts below this confidence for human review"
    ),
    resume: bool = typer.Option(True, "--resume/--no-resume", help="Also process pending work from earlier runs"),
    report: bool = typer.Option(True, "--report/--no-report", help="Write a markdown report"),
) -> None:
    """Run the full pipeline."""
    console.print(
        Panel.fit(
            "[bold blue]Research Pipeline[/bold blue]\n"
            f"{'Query: ' + query if query else 'Scanning all research domains'}",
            border_style="blue",
        )
    )

    orchestrator = _orchestrator()
    options = PipelineOptions(
        query=query,
        days_back=days,
        generation_top_k=top_k,
        review_confidence_floor=review_floor,
        resume_pending=resume,
    )

    try:
        with console.status("[yellow]Running pipeline... (this may take several minutes)[/yellow]"):
            summary = orchestrator.run_full_pipeline(options)
    except KeyboardInterrupt:
        orchestrator.cancel()
        console.print("[yellow]Cancelled[/yellow]")
        raise typer.Exit(code=130)

    _display_summary(summary)

    if report:
        from research_pipeline.pipeline.report import save_report

        path = save_report(summary, orchestrator.store, orchestrator.settings.reports_dir)
        console.print(f"\n[green]Report saved to:[/green] {path}")

    if summary.aborted:
        sys.exit(1)


@app.command()
def stage(
    name: str = typer.Argument(..., help=f"One of: {', '.join(s.value for s in StageName)}"),
    ids: Optional[list[str]] = typer.Argument(None, help="Input ids (queries for discovery); pending work if omitted"),
) -> None:
    """Run a single stage."""
    orchestrator = _orchestrator()
    try:
        summary = orchestrator.run_stage(name, ids or [])
    except UnknownStage as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=2)
    except (PreconditionFailed, StorageError) as e:
        console.print(f"[red]{e.kind}:[/red] {e}")
        raise typer.Exit(code=1)

    _display_summary(summary)


@app.command()
def stats() -> None:
    """Show store statistics."""
    orchestrator = _orchestrator()
    data = orchestrator.store.stats()

    table = Table(title="Item Store", show_header=False)
    table.add_column("Metric", style="dim")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}: {v}" for k, v in sorted(value.items())) or "-"
        table.add_row(key.replace("_", " ").title(), str(value))
    console.print(table)


@app.command()
def activity(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of records"),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Filter by stage/agent name"),
) -> None:
    """Show the most recent activity log records."""
    orchestrator = _orchestrator()
    records = orchestrator.store.recent_activity(limit=limit, agent_name=agent)

    table = Table(title="Recent Activity")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Time", style="dim")
    table.add_column("Agent", style="cyan")
    table.add_column("Action")
    table.add_column("Summary")
    for record in records:
        table.add_row(
            str(record.id),
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.agent_name,
            record.action,
            record.summary,
        )
    console.print(table)


@app.command()
def artifacts(
    status: Optional[ArtifactStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-n"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
) -> None:
    """List artifacts."""
    orchestrator = _orchestrator()
    rows = orchestrator.store.list_artifacts(status=status, limit=limit)

    if as_json:
        console.print_json(json.dumps([a.model_dump(mode="json") for a in rows]))
        return

    table = Table(title="Artifacts")
    table.add_column("ID", style="dim")
    table.add_column("Status", style="cyan")
    table.add_column("Confidence", justify="right")
    table.add_column("Title")
    for artifact in rows:
        table.add_row(artifact.id[:8], artifact.status.value, f"{artifact.confidence:.2f}", artifact.title)
    console.print(table)


@app.command()
def feedback(
    entity_type: Optional[EntityType] = typer.Option(None, "--type", "-t", help="item, artifact, validation, plan or critique"),
    entity_id: Optional[str] = typer.Option(None, "--id", "-i", help="Entity id"),
    rating: Optional[int] = typer.Option(None, "--rating", "-r", help="1-5, or -1 for thumbs down"),
    useful: Optional[bool] = typer.Option(None, "--useful/--not-useful", help="Quick thumbs up/down"),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Free-text notes"),
    tags: Optional[list[str]] = typer.Option(None, "--tag", help="Tag (repeatable)"),
    action_taken: Optional[FeedbackAction] = typer.Option(None, "--action", help="What you did with it"),
    show: bool = typer.Option(False, "--list", "-l", help="List recent feedback instead"),
) -> None:
    """Rate and annotate a stored entity, or list recent feedback."""
    orchestrator = _orchestrator()

    if show:
        records = orchestrator.store.list_feedback(entity_type=entity_type, limit=20)
        table = Table(title="Recent Feedback")
        table.add_column("Type", style="cyan")
        table.add_column("ID", style="dim")
        table.add_column("Rating", justify="right")
        table.add_column("Useful")
        table.add_column("Notes")
        for record in records:
            table.add_row(
                record.entity_type.value,
                record.entity_id[:8],
                "-" if record.rating is None else str(record.rating),
                "-" if record.useful is None else ("yes" if record.useful else "no"),
                record.notes or "",
            )
        console.print(table)
        return

    if entity_type is None or not entity_id:
        console.print("[red]--type and --id are required[/red] (or use --list)")
        raise typer.Exit(code=2)

    try:
        record = Feedback(
            entity_type=entity_type,
            entity_id=entity_id,
            rating=rating,
            useful=useful,
            notes=notes,
            tags=tags or [],
            action_taken=action_taken,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid feedback:[/red] {e}")
        raise typer.Exit(code=2)

    try:
        saved = orchestrator.store.add_feedback(record)
    except (PreconditionFailed, StorageError) as e:
        console.print(f"[red]{e.kind}:[/red] {e}")
        raise typer.Exit(code=1)
    orchestrator.store.log_activity(
        agent_name="human",
        action="feedback",
        entity_type=saved.entity_type.value,
        entity_id=saved.entity_id,
        summary=f"Rating {saved.rating}" if saved.rating is not None else "Feedback recorded",
    )
    console.print(f"[green]Feedback saved for {saved.entity_type.value} {saved.entity_id[:8]}[/green]")


@domains_app.command("list")
def domains_list(
    active_only: bool = typer.Option(False, "--active", help="Only active domains"),
) -> None:
    """List research domains."""
    orchestrator = _orchestrator()
    rows = orchestrator.store.list_domains(active_only=active_only)

    table = Table(title="Research Domains")
    table.add_column("Name", style="cyan")
    table.add_column("Active")
    table.add_column("Keywords")
    for domain in rows:
        table.add_row(domain.name, "yes" if domain.active else "no", ", ".join(domain.keywords))
    console.print(table)


@domains_app.command("add")
def domains_add(
    name: str = typer.Argument(..., help="Domain name"),
    keywords: list[str] = typer.Option(..., "--keyword", "-k", help="Search keyword (repeatable)"),
) -> None:
    """Add a domain, or replace the keywords of an existing one."""
    orchestrator = _orchestrator()
    try:
        domain = orchestrator.store.upsert_domain(ResearchDomain(name=name, keywords=keywords))
    except ValidationError as e:
        console.print(f"[red]Invalid domain:[/red] {e}")
        raise typer.Exit(code=2)
    console.print(f"[green]Saved domain {domain.name}[/green]")


def _set_domain_active(name: str, active: bool) -> None:
    orchestrator = _orchestrator()
    try:
        orchestrator.store.update_domain(name, {"active": active})
    except PreconditionFailed as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]{name} {'enabled' if active else 'disabled'}[/green]")


@domains_app.command("enable")
def domains_enable(name: str = typer.Argument(...)) -> None:
    """Include a domain in scans."""
    _set_domain_active(name, True)


@domains_app.command("disable")
def domains_disable(name: str = typer.Argument(...)) -> None:
    """Skip a domain in scans."""
    _set_domain_active(name, False)


@domains_app.command("remove")
def domains_remove(name: str = typer.Argument(...)) -> None:
    """Delete a domain."""
    orchestrator = _orchestrator()
    if not orchestrator.store.delete_domain(name):
        console.print(f"[red]Domain not found: {name}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Removed {name}[/green]")


@app.command()
def chat(
    stage_name: StageName = typer.Option(StageName.SCORING, "--stage", "-s", help="Persona to chat with"),
) -> None:
    """Interactive chat with a stage persona. Type 'exit' to quit, 'reset' to clear history."""
    from research_pipeline.config.stage_config import load_stage_configurations
    from research_pipeline.llm.client import OllamaGenerativeClient
    from research_pipeline.llm.conversation import Conversation

    settings = get_settings()
    config = load_stage_configurations(settings)[stage_name]
    conversation = Conversation(OllamaGenerativeClient(), config.system_context)

    console.print(Panel.fit(f"[bold blue]Chatting with the {stage_name.value} stage[/bold blue]", border_style="blue"))
    while True:
        message = console.input("[bold green]you>[/bold green] ").strip()
        if not message:
            continue
        if message.lower() in ("exit", "quit"):
            break
        if message.lower() == "reset":
            conversation.reset()
            console.print("[dim]History cleared[/dim]")
            continue
        try:
            reply = conversation.ask(message)
        except PipelineError as e:
            console.print(f"[red]{e.kind}:[/red] {e}")
            continue
        console.print(f"[bold blue]{stage_name.value}>[/bold blue] {reply}")


@app.command()
def info() -> None:
    """Display system information and configuration."""
    from research_pipeline.llm.client import get_llm_settings

    settings = get_settings()
    llm = get_llm_settings()

    console.print(Panel.fit("[bold blue]Research Pipeline[/bold blue]", border_style="blue"))

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Version", __version__)
    table.add_row("Database", settings.database_url)
    table.add_row("Reports", settings.reports_dir)
    table.add_row("LLM Model", llm.model_name)
    table.add_row("Fallback Model", llm.fallback_model_name)
    table.add_row("Ollama URL", llm.ollama_base_url)
    table.add_row("Providers", ", ".join(settings.discovery_providers))
    table.add_row("Buckets", f"high >= {settings.high_bucket_threshold}, medium >= {settings.medium_bucket_threshold}")
    table.add_row("Top K", str(settings.generation_top_k))
    table.add_row("Concurrency", str(settings.max_concurrent_llm_calls))

    console.print(table)


def _display_summary(summary: RunSummary) -> None:
    """Display a summary of the run."""
    console.print(f"\n[bold]Run Summary[/bold] [dim]{summary.run_id} ({summary.mode})[/dim]")
    console.print("-" * 40)

    counts = summary.scored_counts
    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value")
    table.add_row("Items", str(summary.item_count))
    table.add_row("Scored", f"{counts.high} high / {counts.medium} medium / {counts.low} low")
    table.add_row("Artifacts", str(summary.artifact_count))
    table.add_row("Validated", f"{summary.validated_count} ({summary.pursued_count} pursue)")
    table.add_row("Plans", str(summary.plan_count))
    table.add_row("Critiques", f"{summary.critique_count} ({len(summary.approved_plans)} approved)")
    if summary.held_for_review:
        table.add_row("Held for review", str(len(summary.held_for_review)))
    table.add_row("Duration", f"{summary.duration_seconds:.1f}s")
    console.print(table)

    if summary.failures:
        console.print(f"\n[yellow]Failures ({len(summary.failures)}):[/yellow]")
        for failure in summary.failures[:10]:
            console.print(f"  [{failure.stage}] {failure.entity_id or '-'}: {failure.kind}: {failure.reason}")
    if summary.connector_errors:
        console.print(f"\n[yellow]Connector errors ({len(summary.connector_errors)}):[/yellow]")
        for error in summary.connector_errors[:10]:
            console.print(f"  [{error.stage}] {error.provider}: {error.reason}")
    if summary.aborted:
        console.print(f"\n[red]Aborted:[/red] {summary.abort_reason}")
    elif summary.cancelled:
        console.print("\n[yellow]Cancelled before all work finished[/yellow]")


if __name__ == "__main__":
    app()
