from concurrent.futures import ThreadPoolExecutor

import pytest
from conftest import FakeGateway, FakeSearch, call

from vault_agents.errors import DocumentNotFoundError, NoResearchTagsError, NoTopicsError
from vault_agents.models import (
    ArtifactStatus,
    DistillCurateInput,
    DistillInput,
    RunKind,
    RunStatus,
    StepStatus,
    StepType,
    TopicReportInput,
    WebScoutInput,
)
from vault_agents.services.model_gateway import ModelReply
from vault_agents.workflows.flows import FlowOrchestrator

GOOD = "https://arxiv.org/abs/2401.00001"
STRUCTURED = {
    "TagExtraction": {"tags": ["systems design"]},
    "CategoryChoice": {"category": "learning"},
    "ConceptExtraction": {
        "concepts": [
            {"label": "Sharding", "type": "definition", "summary": "Split data."},
            {"label": "Replication", "type": "principle", "summary": "Copy data."},
        ]
    },
    "FlashcardSet": {"cards": []},
}


@pytest.fixture
def make_orchestrator(session_factory, settings):
    created = []

    def factory(gateway, search=None, **kwargs):
        orchestrator = FlowOrchestrator(session_factory, gateway, search or FakeSearch(), settings, **kwargs)
        created.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in created:
        orchestrator.shutdown()


def _statuses(trace):
    return [(step.name, step.status) for step in trace.steps]


def test_curate_flow_wraps_agent_steps(make_orchestrator, documents):
    doc = documents.insert("Doc", "manual", "Body").id
    orchestrator = make_orchestrator(FakeGateway(structured=STRUCTURED))

    run_id = orchestrator.curate_flow(doc)

    trace = orchestrator.trace.get_run_trace(run_id)
    assert trace.run.status is RunStatus.OK
    assert trace.run.ended_at is not None
    assert (trace.steps[0].name, trace.steps[0].type, trace.steps[0].status) == ("curate", StepType.FLOW, StepStatus.RUNNING)
    assert (trace.steps[-1].name, trace.steps[-1].status) == ("curate", StepStatus.OK)
    assert ("persist_tags", StepStatus.OK) in _statuses(trace)


def test_curate_flow_with_no_tags_is_ok_and_persists_nothing(make_orchestrator, documents):
    doc = documents.insert("Doc", "manual", "Body").id
    orchestrator = make_orchestrator(FakeGateway(structured={"TagExtraction": {"tags": []}}))

    run_id = orchestrator.curate_flow(doc)

    assert orchestrator.trace.get_run_trace(run_id).run.status is RunStatus.OK
    assert documents.get_tags(doc) == []


def test_curate_flow_failure_marks_run_error_and_reraises(make_orchestrator, session_factory):
    orchestrator = make_orchestrator(FakeGateway())

    with pytest.raises(DocumentNotFoundError):
        orchestrator.curate_flow(404)

    runs = orchestrator.trace.list_runs()
    trace = orchestrator.trace.get_run_trace(runs[0].id)
    assert trace.run.status is RunStatus.ERROR
    assert (trace.steps[-1].name, trace.steps[-1].status) == ("curate", StepStatus.ERROR)


def test_distill_and_web_scout_flows_return_run_and_output(make_orchestrator, documents, artifacts):
    doc = documents.insert("Doc", "manual", "Body").id
    gateway = FakeGateway(
        structured=STRUCTURED,
        replies=[ModelReply(tool_calls=[call("evaluate_result", url=GOOD, title="Vector databases indexing")])],
    )
    orchestrator = make_orchestrator(gateway)

    distilled = orchestrator.distill_flow(DistillInput(document_ids=[doc]))
    scouted = orchestrator.web_scout_flow(WebScoutInput(goal="vector databases indexing", min_quality_results=1))

    assert distilled.output.concepts_proposed == 2
    assert scouted.output.proposals_created == 1
    proposal = artifacts.list_by_agent_and_kind("webScout", "web-proposal")[0]
    assert proposal.run_id == scouted.run_id
    for run_id in (distilled.run_id, scouted.run_id):
        assert orchestrator.trace.get_run_trace(run_id).run.status is RunStatus.OK


def _topic_gateway():
    def invoke(messages):
        if "Goal: alpha research" in messages[0].content:
            raise RuntimeError("search provider unavailable")
        return ModelReply(tool_calls=[call("evaluate_result", url=GOOD, title="Vector databases indexing survey")])

    return FakeGateway(structured=STRUCTURED, invoke=invoke)


def test_topic_report_partial_when_one_topic_stage_fails(make_orchestrator, documents, topics, reports):
    doc_a = documents.insert("Alpha doc", "manual", "alpha body").id
    doc_b = documents.insert("Beta doc", "manual", "beta body").id
    documents.set_tags(doc_a, ["alpha"])
    documents.set_tags(doc_b, ["beta"])
    topic_a = topics.create("Alpha", "alpha research", focus_tags=["alpha"])
    topic_b = topics.create("Beta", "vector databases indexing", focus_tags=["beta"])
    orchestrator = make_orchestrator(_topic_gateway())

    result = orchestrator.topic_report_flow(TopicReportInput(min_quality_results=1, day="2026-10-18"))

    output = result.output
    assert output.status is RunStatus.PARTIAL
    by_id = {topic.topic_id: topic for topic in output.topics}
    assert [e.stage for e in by_id[topic_a.id].errors] == ["webScout"]
    beta = by_id[topic_b.id]
    assert beta.errors == []
    assert beta.docs_curated == 1 and beta.proposals_created == 1 and beta.concepts_proposed == 2

    trace = orchestrator.trace.get_run_trace(result.run_id)
    assert trace.run.status is RunStatus.PARTIAL
    steps = _statuses(trace)
    assert ("topic_alpha_complete", StepStatus.ERROR) in steps
    assert ("topic_beta_complete", StepStatus.OK) in steps
    assert ("topic_report_save_report", StepStatus.OK) in steps
    saved = reports.get_report(output.report_id)
    assert saved.status is ArtifactStatus.APPROVED
    assert saved.content["markdown"].startswith("# Topic Workflow Report - 2026-10-18")


def test_topic_report_without_topics_is_a_hard_failure(make_orchestrator, topics):
    inactive = topics.create("Old", "old goal")
    topics.update(inactive.id, is_active=False)
    orchestrator = make_orchestrator(FakeGateway())

    with pytest.raises(NoTopicsError):
        orchestrator.topic_report_flow(TopicReportInput(topic_ids=[inactive.id]))

    trace = orchestrator.trace.get_run_trace(orchestrator.trace.list_runs()[0].id)
    assert trace.run.status is RunStatus.ERROR
    assert ("topic_report_error", StepStatus.ERROR) in _statuses(trace)


def test_topic_report_can_skip_saving(make_orchestrator, topics, reports):
    topics.create("Beta", "vector databases indexing")
    orchestrator = make_orchestrator(_topic_gateway())

    result = orchestrator.topic_report_flow(TopicReportInput(save_report=False, min_quality_results=1))

    assert result.output.status is RunStatus.OK
    assert result.output.report_id is None
    assert reports.list_reports() == []
    assert ("topic_report_save_report", StepStatus.SKIPPED) in _statuses(orchestrator.trace.get_run_trace(result.run_id))


def test_research_flow_without_tags_raises_and_finishes_error(make_orchestrator):
    orchestrator = make_orchestrator(FakeGateway())

    with pytest.raises(NoResearchTagsError):
        orchestrator.research_flow()

    run = orchestrator.trace.list_runs()[0]
    assert run.status is RunStatus.ERROR
    assert ("research_error", StepStatus.ERROR) in _statuses(orchestrator.trace.get_run_trace(run.id))


def test_research_flow_without_proposals_is_partial(make_orchestrator, documents):
    documents.set_tags(documents.insert("Doc", "manual", "Body").id, ["distributed systems"])
    orchestrator = make_orchestrator(FakeGateway(replies=[ModelReply(content="Nothing new.")]))

    result = orchestrator.research_flow()

    trace = orchestrator.trace.get_run_trace(result.run_id)
    assert trace.run.status is RunStatus.PARTIAL
    assert ("research_synthesize", StepStatus.SKIPPED) in _statuses(trace)


def test_research_flow_saves_report(make_orchestrator, documents, reports):
    documents.set_tags(documents.insert("Doc", "manual", "Body").id, ["vector databases"])
    gateway = FakeGateway(
        replies=[ModelReply(tool_calls=[call("evaluate_result", url=GOOD, title="Vector databases survey")])]
    )
    orchestrator = make_orchestrator(gateway)

    result = orchestrator.research_flow(day="2026-10-18")

    assert orchestrator.trace.get_run_trace(result.run_id).run.status is RunStatus.OK
    report = reports.get_report(result.output["report_id"])
    assert GOOD in report.content["markdown"]


def test_distill_curate_collects_per_document_errors(make_orchestrator, documents):
    good = documents.insert("Good", "manual", "good body").id
    broken = documents.insert("Broken", "manual", "broken body").id

    def tags(prompt):
        if "Title: Broken" in prompt:
            raise RuntimeError("tagging failed")
        return {"tags": ["systems design"]}

    orchestrator = make_orchestrator(FakeGateway(structured={**STRUCTURED, "TagExtraction": tags}))

    result = orchestrator.distill_curate_flow(DistillCurateInput(document_ids=[good, broken]))

    assert result.curated == [good]
    assert [e.document_id for e in result.errors] == [broken]
    assert result.distill.docs_processed == 2
    assert len(result.curate_run_ids) == 1
    assert orchestrator.trace.get_run_trace(result.distill_run_id).run.kind is RunKind.DISTILL
    assert orchestrator.trace.get_run_trace(result.run_id).run.status is RunStatus.OK


def test_topic_report_runs_each_stage_as_a_child_run(make_orchestrator, documents, topics, reports):
    doc = documents.insert("Beta doc", "manual", "beta body").id
    documents.set_tags(doc, ["beta"])
    topics.create("Beta", "vector databases indexing", focus_tags=["beta"])
    orchestrator = make_orchestrator(_topic_gateway())

    result = orchestrator.topic_report_flow(TopicReportInput(min_quality_results=1))

    run_ids = result.output.topics[0].run_ids
    children = [*run_ids.curate, run_ids.web_scout, run_ids.distill]
    kinds = [orchestrator.trace.get_run_trace(run_id).run.kind for run_id in children]
    assert kinds == [RunKind.CURATE, RunKind.WEB_SCOUT, RunKind.DISTILL]
    assert f"- Curate runs: {run_ids.curate[0]}" in result.output.markdown
    saved = reports.get_report(result.output.report_id)
    assert saved.source_refs["run_ids"][0]["distill"] == run_ids.distill
    curate_steps = _statuses(orchestrator.trace.get_run_trace(run_ids.curate[0]))
    assert ("categorize", StepStatus.SKIPPED) in curate_steps


def test_topic_without_focus_tags_still_distills_recent_documents(make_orchestrator, documents, topics):
    documents.insert("Loose doc", "manual", "loose body")
    topics.create("NoTags", "vector databases indexing")
    gateway = FakeGateway(structured=STRUCTURED)
    orchestrator = make_orchestrator(gateway)

    result = orchestrator.topic_report_flow(TopicReportInput(save_report=False))

    topic = result.output.topics[0]
    assert topic.docs_matched == 0
    assert topic.concepts_proposed == 2
    assert "ConceptExtraction" in gateway.structured_calls
    assert orchestrator.trace.get_run_trace(topic.run_ids.distill).run.status is RunStatus.OK


def test_distill_curate_limit_skips_missing_explicit_ids(make_orchestrator, documents):
    doc = documents.insert("First", "manual", "first body").id
    orchestrator = make_orchestrator(FakeGateway(structured=STRUCTURED))

    result = orchestrator.distill_curate_flow(
        DistillCurateInput(document_ids=[404, doc], limit=1, enable_categorization=True)
    )

    assert result.document_ids == [doc]
    assert result.distill.docs_processed == 1
    assert result.curated == [doc]
    curate_steps = _statuses(orchestrator.trace.get_run_trace(result.curate_run_ids[0]))
    assert ("categorize", StepStatus.OK) in curate_steps
    assert documents.get(doc).category == "learning"


def test_start_variants_run_in_background(make_orchestrator, documents):
    doc = documents.insert("Doc", "manual", "Body").id
    orchestrator = make_orchestrator(FakeGateway(structured=STRUCTURED), executor=ThreadPoolExecutor(max_workers=1))

    ok_run = orchestrator.start_curate_flow(doc)
    failed_run = orchestrator.start_curate_flow(404)
    orchestrator.shutdown(wait=True)

    assert orchestrator.trace.get_run_trace(ok_run).run.status is RunStatus.OK
    assert orchestrator.trace.get_run_trace(failed_run).run.status is RunStatus.ERROR
