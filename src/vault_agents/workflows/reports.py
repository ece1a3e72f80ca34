"""Deterministic Markdown builders for topic and research reports."""

from __future__ import annotations

import re
from typing import Dict, List

from pydantic import BaseModel

from ..models import RunStatus, TopicRunResult, WebProposal
from ..utils.logging import get_logger

TOP_PROPOSALS_PER_TOPIC = 5

_logger = get_logger("reports")


class ReportSynthesis(BaseModel):
    markdown: str


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", (name or "").lower()).strip("_")[:40].strip("_")
    return slug or "topic"


def aggregate_totals(topics: List[TopicRunResult]) -> Dict[str, int]:
    fields = (
        "docs_matched",
        "docs_curated",
        "docs_curate_failed",
        "proposals_created",
        "concepts_proposed",
        "flashcards_proposed",
    )
    totals = {field: sum(getattr(topic, field) for topic in topics) for field in fields}
    totals["topics"] = len(topics)
    totals["topics_with_errors"] = sum(1 for topic in topics if topic.errors)
    totals["errors"] = sum(len(topic.errors) for topic in topics)
    return totals


def build_topic_report(day: str, topics: List[TopicRunResult], status: RunStatus) -> str:
    totals = aggregate_totals(topics)
    lines = [f"# Topic Workflow Report - {day}", ""]

    lines += ["## Executive Summary", ""]
    lines.append(
        f"Processed {totals['topics']} topic(s): curated {totals['docs_curated']} of "
        f"{totals['docs_matched']} matched document(s), created {totals['proposals_created']} web "
        f"proposal(s) and {totals['concepts_proposed']} concept(s). Run status: **{status.value}**."
    )
    lines.append("")

    lines += ["## Aggregate Counts", "", "| Metric | Count |", "| --- | ---: |"]
    for key, value in totals.items():
        lines.append(f"| {key.replace('_', ' ')} | {value} |")
    lines.append("")

    lines += ["## Pipeline Alerts", ""]
    alerts = [(topic.name, error) for topic in topics for error in topic.errors]
    if not alerts:
        lines.append("No pipeline errors.")
    for name, error in alerts:
        where = f" (document {error.document_id})" if error.document_id is not None else ""
        lines.append(f"- **{name}** / {error.stage}{where}: {error.message}")
    lines.append("")

    lines += ["## Topic Breakdown", ""]
    for topic in topics:
        lines.append(f"### {topic.name}")
        lines.append("")
        lines.append(f"Goal: {topic.goal}")
        lines.append("")
        lines.append(f"- Focus tags: {', '.join(topic.focus_tags) or 'none'}")
        lines.append(f"- Curate runs: {', '.join(topic.run_ids.curate) or 'none'}")
        lines.append(f"- WebScout run: {topic.run_ids.web_scout or 'failed/not-run'}")
        lines.append(f"- Distill run: {topic.run_ids.distill or 'failed/not-run'}")
        lines.append(
            f"- Documents curated: {topic.docs_curated}/{topic.docs_matched}"
            f" ({topic.docs_curate_failed} failed)"
        )
        lines.append(f"- Web proposals: {topic.proposals_created}")
        lines.append(f"- Concepts: {topic.concepts_proposed}, flashcards: {topic.flashcards_proposed}")
        if topic.top_proposals:
            lines += ["", "Top proposals:", ""]
            for proposal in topic.top_proposals[:TOP_PROPOSALS_PER_TOPIC]:
                lines.append(_proposal_line(proposal))
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _proposal_line(proposal: WebProposal) -> str:
    return f"- [{proposal.title or proposal.url}]({proposal.url}) ({proposal.relevance_score:.2f}, {proposal.content_type.value})"


def fallback_research_report(goal: str, proposals: List[WebProposal]) -> str:
    lines = [f"# Research: {goal}", "", "## New resources", ""]
    lines += [_proposal_line(proposal) + (f": {proposal.summary}" if proposal.summary else "") for proposal in proposals]
    return "\n".join(lines) + "\n"


def synthesize_research_report(gateway, goal: str, proposals: List[WebProposal]) -> str:  # type: ignore[no-untyped-def]
    """Ask the model for a short Markdown briefing; falls back to a plain bullet list."""

    listing = "\n".join(
        f"- {proposal.title} <{proposal.url}> [{', '.join(proposal.topics)}]: {proposal.summary}" for proposal in proposals
    )
    prompt = (
        f"Research goal: {goal}\n\nNew resources:\n{listing}\n\n"
        "Write a concise Markdown briefing: a title, a short overview and one bullet per resource with a link."
    )
    try:
        synthesis = gateway.structured(prompt, ReportSynthesis, system_prompt="You write research briefings.")
    except Exception:  # noqa: BLE001
        _logger.warning("Report synthesis failed; using bullet list", exc_info=True)
        return fallback_research_report(goal, proposals)
    return synthesis.markdown.strip() or fallback_research_report(goal, proposals)


__all__ = [
    "aggregate_totals",
    "build_topic_report",
    "fallback_research_report",
    "slugify",
    "synthesize_research_report",
]
