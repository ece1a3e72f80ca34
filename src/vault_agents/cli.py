"""Command line interface for vault-agents."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, Optional

import typer

from .config import Settings
from .database import create_session_factory, utcnow
from .models import DistillCurateInput, DistillInput, SourceKind, TopicReportInput, WebScoutInput
from .observability.run_trace import RunTraceStore
from .repositories import ArtifactRepository, DocumentRepository, SourceWatchRepository, TopicRepository
from .workflows.flows import FlowOrchestrator

app = typer.Typer(help="Run research and curation agents against a document vault")


def _echo_json(payload: Any) -> None:
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(mode="json")
    elif isinstance(payload, list):
        payload = [item.model_dump(mode="json") if hasattr(item, "model_dump") else item for item in payload]
    typer.echo(json.dumps(payload, indent=2, default=str))


def _session_factory():  # type: ignore[no-untyped-def]
    settings = Settings()
    return create_session_factory(settings.database.url, echo=settings.database.echo)


def _today() -> str:
    return utcnow().date().isoformat()


@app.command()
def curate(document_id: int = typer.Argument(..., help="Document to tag and categorize")) -> None:
    """Run the curator pipeline on one document."""

    with FlowOrchestrator.from_settings() as orchestrator:
        run_id = orchestrator.curate_flow(document_id)
        _echo_json(orchestrator.trace.get_run_trace(run_id))


@app.command()
def distill(
    doc_id: Optional[List[int]] = typer.Option(None, "--doc-id", help="Document ids to distill"),
    tag: Optional[str] = typer.Option(None, "--tag"),
    limit: int = typer.Option(5, "--limit"),
) -> None:
    """Extract concepts and flashcards into the review inbox."""

    with FlowOrchestrator.from_settings() as orchestrator:
        _echo_json(orchestrator.distill_flow(DistillInput(document_ids=doc_id or None, tag=tag, limit=limit)))


@app.command()
def webscout(
    goal: str = typer.Argument(...),
    focus_tag: Optional[List[str]] = typer.Option(None, "--focus-tag"),
    min_quality: int = typer.Option(3, "--min-quality"),
    min_relevance: float = typer.Option(0.6, "--min-relevance"),
    max_iterations: int = typer.Option(5, "--max-iterations"),
    max_queries: int = typer.Option(10, "--max-queries"),
    restrict_to_watchlist: bool = typer.Option(False, "--restrict-to-watchlist"),
    import_to_library: bool = typer.Option(False, "--import"),
) -> None:
    """Search the web for resources matching a goal and propose them for review."""

    request = WebScoutInput(
        goal=goal,
        mode="focused" if focus_tag else "explore",
        focus_tags=focus_tag or [],
        min_quality_results=min_quality,
        min_relevance_score=min_relevance,
        max_iterations=max_iterations,
        max_queries=max_queries,
        restrict_to_watchlist_domains=restrict_to_watchlist,
        import_to_library=import_to_library,
    )
    with FlowOrchestrator.from_settings() as orchestrator:
        _echo_json(orchestrator.web_scout_flow(request))


@app.command()
def research(day: Optional[str] = typer.Option(None, "--day")) -> None:
    """Derive a goal from the vault's top tags, scout the web and save a report."""

    with FlowOrchestrator.from_settings() as orchestrator:
        _echo_json(orchestrator.research_flow(day))


@app.command("topic-report")
def topic_report(
    topic_id: Optional[List[int]] = typer.Option(None, "--topic-id"),
    include_inactive: bool = typer.Option(False, "--include-inactive"),
    save: bool = typer.Option(True, "--save/--no-save"),
    categorize: bool = typer.Option(False, "--categorize/--no-categorize"),
) -> None:
    """Run curate, webScout and distill for saved topics and build a Markdown report."""

    request = TopicReportInput(
        topic_ids=topic_id or None,
        include_inactive=include_inactive,
        save_report=save,
        enable_categorization=categorize,
    )
    with FlowOrchestrator.from_settings() as orchestrator:
        result = orchestrator.topic_report_flow(request)
        typer.echo(result.output.markdown)
        typer.echo(f"run: {result.run_id} status: {result.output.status.value}")


@app.command("distill-curate")
def distill_curate(
    doc_id: Optional[List[int]] = typer.Option(None, "--doc-id"),
    tag: Optional[str] = typer.Option(None, "--tag"),
    limit: int = typer.Option(5, "--limit"),
    categorize: bool = typer.Option(False, "--categorize/--no-categorize"),
) -> None:
    """Distill a document set once, then curate each document."""

    with FlowOrchestrator.from_settings() as orchestrator:
        request = DistillCurateInput(document_ids=doc_id or None, tag=tag, limit=limit, enable_categorization=categorize)
        _echo_json(orchestrator.distill_curate_flow(request))


@app.command()
def trace(run_id: str = typer.Argument(...)) -> None:
    """Print the step trace of a run."""

    run_trace = RunTraceStore(_session_factory()).get_run_trace(run_id)
    if run_trace is None:
        typer.echo(f"Run {run_id} not found", err=True)
        raise typer.Exit(code=1)
    _echo_json(run_trace)


@app.command()
def inbox(day: Optional[str] = typer.Option(None, "--day")) -> None:
    """List proposed artifacts awaiting review."""

    repo = ArtifactRepository(_session_factory())
    day = day or _today()
    counts = repo.count_artifacts_by_status(day)
    typer.echo(" ".join(f"{status}={count}" for status, count in counts.items()))
    for artifact in repo.list_inbox_artifacts(day):
        typer.echo(f"[{artifact.id}] {artifact.agent}/{artifact.kind}: {artifact.title}")


@app.command()
def approve(artifact_id: int = typer.Argument(...)) -> None:
    """Approve a proposed artifact, superseding the previously approved one."""

    if not ArtifactRepository(_session_factory()).approve_artifact(artifact_id):
        typer.echo(f"Artifact {artifact_id} is missing or not proposed", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Approved artifact {artifact_id}")


@app.command()
def reject(artifact_id: int = typer.Argument(...)) -> None:
    """Reject a proposed artifact."""

    if not ArtifactRepository(_session_factory()).reject_artifact(artifact_id):
        typer.echo(f"Artifact {artifact_id} is missing or not proposed", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Rejected artifact {artifact_id}")


@app.command()
def ingest(
    path: Path = typer.Argument(..., exists=True, readable=True, dir_okay=False),
    title: Optional[str] = typer.Option(None, "--title"),
) -> None:
    """Add a text or Markdown file to the vault."""

    result = DocumentRepository(_session_factory()).insert(title or path.stem, "file", path.read_text(encoding="utf-8"))
    state = "created" if result.created else "duplicate"
    typer.echo(f"Document {result.id} {state}")


@app.command("watch-add")
def watch_add(
    url: str = typer.Argument(...),
    label: Optional[str] = typer.Option(None, "--label"),
    kind: SourceKind = typer.Option(SourceKind.SOURCE, "--kind"),
    interval: int = typer.Option(24, "--interval", help="Check interval in hours (1-168)"),
) -> None:
    """Add a source to the watchlist."""

    source = SourceWatchRepository(_session_factory()).create(url, label=label, kind=kind, check_interval_hours=interval)
    typer.echo(f"[{source.id}] {source.label} {source.url} every {source.check_interval_hours}h")


@app.command("watch-list")
def watch_list(active_only: bool = typer.Option(False, "--active-only")) -> None:
    """List watched sources."""

    for source in SourceWatchRepository(_session_factory()).list_sources(active_only=active_only):
        checked = source.last_checked_at.isoformat() if source.last_checked_at else "never"
        typer.echo(f"[{source.id}] {source.label} {source.url} (last checked {checked})")


@app.command("topic-add")
def topic_add(
    name: str = typer.Argument(...),
    goal: str = typer.Argument(...),
    focus_tag: Optional[List[str]] = typer.Option(None, "--focus-tag"),
) -> None:
    """Save a research topic for the topic report workflow."""

    topic = TopicRepository(_session_factory()).create(name, goal, focus_tags=focus_tag or [])
    typer.echo(f"Topic {topic.id} saved: {topic.name}")


__all__ = ["app"]
