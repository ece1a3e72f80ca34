from vault_agents.models import RunStatus, TopicRunIds, TopicRunResult, TopicStageError, WebProposal
from vault_agents.workflows.reports import aggregate_totals, build_topic_report, fallback_research_report, slugify


def test_slugify():
    assert slugify("Rust & WebAssembly!") == "rust_webassembly"
    assert slugify("!!!") == "topic"
    assert len(slugify("a" * 80)) == 40


def _topics():
    proposals = [
        WebProposal(url=f"https://site{i}.dev", title=f"Result {i}", relevance_score=0.9 - i / 100) for i in range(7)
    ]
    ok = TopicRunResult(topic_id=1, name="Rust", goal="Learn rust", docs_matched=2, docs_curated=2,
                        proposals_created=7, top_proposals=proposals)
    failed = TopicRunResult(
        topic_id=2,
        name="Go",
        goal="Learn go",
        docs_matched=1,
        docs_curate_failed=1,
        errors=[TopicStageError(stage="curate", message="boom", document_id=9)],
    )
    return [ok, failed]


def test_topic_report_sections_and_totals():
    topics = _topics()
    totals = aggregate_totals(topics)
    assert totals["docs_matched"] == 3
    assert totals["topics_with_errors"] == 1

    markdown = build_topic_report("2026-10-18", topics, RunStatus.PARTIAL)
    assert markdown.startswith("# Topic Workflow Report - 2026-10-18")
    for heading in ("## Executive Summary", "## Aggregate Counts", "## Pipeline Alerts", "## Topic Breakdown"):
        assert heading in markdown
    assert "**Go** / curate (document 9): boom" in markdown
    assert "Result 4" in markdown and "Result 5" not in markdown


def test_fallback_research_report_lists_every_proposal():
    proposals = [WebProposal(url="https://a.dev", title="A", relevance_score=0.8, summary="About A")]
    assert "[A](https://a.dev)" in fallback_research_report("goal", proposals)


def test_topic_report_lists_child_runs():
    topic = TopicRunResult(
        topic_id=1,
        name="Rust",
        goal="Learn rust",
        focus_tags=["rust"],
        run_ids=TopicRunIds(curate=["c1", "c2"], distill="d1"),
    )

    markdown = build_topic_report("2026-10-18", [topic], RunStatus.OK)

    assert "- Focus tags: rust" in markdown
    assert "- Curate runs: c1, c2" in markdown
    assert "- WebScout run: failed/not-run" in markdown
    assert "- Distill run: d1" in markdown
