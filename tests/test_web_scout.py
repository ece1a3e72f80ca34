import json

from conftest import FakeGateway, FakeSearch, call

from vault_agents.agents.web_scout import WebScoutAgent
from vault_agents.models import ArtifactStatus, TerminationReason, WebScoutInput
from vault_agents.services.model_gateway import ModelReply
from vault_agents.services.web_search import SearchResult

GOAL = "vector databases indexing"
GOOD = "https://arxiv.org/abs/2401.00001"
GOOD_2 = "https://github.com/example/vector-index"


def _agent(gateway, documents, artifacts, source_watch, search=None, fetcher=None):
    kwargs = {"fetcher": fetcher} if fetcher else {}
    return WebScoutAgent(gateway, search or FakeSearch(), documents, artifacts, source_watch, **kwargs)


def _evaluate(url, title="Vector databases indexing survey"):
    return call("evaluate_result", url=url, title=title, snippet="HNSW and IVF")


def test_stops_satisfied_and_collapses_duplicate_urls(documents, artifacts, source_watch):
    gateway = FakeGateway(
        replies=[
            ModelReply(tool_calls=[call("search_web", query="vector databases")]),
            ModelReply(tool_calls=[_evaluate(GOOD), _evaluate(GOOD), _evaluate(GOOD_2)]),
        ]
    )
    request = WebScoutInput(goal=GOAL, min_quality_results=2, day="2026-10-18")

    output = _agent(gateway, documents, artifacts, source_watch).run(request)

    assert output.termination_reason is TerminationReason.SATISFIED
    assert output.iterations == 2
    assert output.queries_executed == 1
    assert output.results_evaluated == 3
    assert [p.url for p in output.proposals] == [GOOD, GOOD_2]
    assert output.proposals_created == len(output.proposals) == 2
    stored = artifacts.list_inbox_artifacts("2026-10-18")
    assert len(stored) == 2
    assert all(a.agent == "webScout" and a.kind == "web-proposal" for a in stored)
    assert stored[0].source_refs["goal"] == GOAL
    assert all(a.status is ArtifactStatus.PROPOSED for a in stored)


def test_query_budget_is_enforced_within_a_round(documents, artifacts, source_watch):
    search = FakeSearch([SearchResult(url="https://example.com", title="x")])
    gateway = FakeGateway(
        replies=[ModelReply(tool_calls=[call("search_web", query=f"q{i}") for i in range(3)])] * 5
    )
    request = WebScoutInput(goal=GOAL, max_queries=2, max_iterations=10, min_quality_results=5)

    output = _agent(gateway, documents, artifacts, source_watch, search).run(request)

    assert output.termination_reason is TerminationReason.MAX_QUERIES
    assert output.queries_executed == 2
    assert len(search.calls) == 2
    assert output.iterations == 1


def test_iteration_budget(documents, artifacts, source_watch):
    gateway = FakeGateway(replies=[ModelReply(tool_calls=[call("check_vault_duplicate", urls=[GOOD])])] * 10)
    request = WebScoutInput(goal=GOAL, max_iterations=3, max_queries=10)

    output = _agent(gateway, documents, artifacts, source_watch).run(request)

    assert output.termination_reason is TerminationReason.MAX_ITERATIONS
    assert output.iterations == 3
    assert len(gateway.invocations) == 3


def test_satisfied_takes_priority_over_exhausted_budgets(documents, artifacts, source_watch):
    gateway = FakeGateway(replies=[ModelReply(tool_calls=[call("search_web", query="q"), _evaluate(GOOD)])])
    request = WebScoutInput(goal=GOAL, min_quality_results=1, max_queries=1, max_iterations=1)

    output = _agent(gateway, documents, artifacts, source_watch).run(request)

    assert output.termination_reason is TerminationReason.SATISFIED


def test_unknown_tool_and_tool_failure_are_fed_back_to_the_model(documents, artifacts, source_watch):
    class ExplodingSearch(FakeSearch):
        def search(self, *args, **kwargs):
            raise ConnectionError("search down")

    gateway = FakeGateway(
        replies=[
            ModelReply(tool_calls=[call("teleport", where="mars"), call("search_web", query="q")]),
            ModelReply(content="I could not find anything."),
        ]
    )
    output = _agent(gateway, documents, artifacts, source_watch, ExplodingSearch()).run(WebScoutInput(goal=GOAL))

    tool_messages = [m for m in gateway.invocations[1] if m.role == "tool"]
    assert len(tool_messages) == 2
    assert "Unknown tool" in json.loads(tool_messages[0].content)["error"]
    assert "search down" in json.loads(tool_messages[1].content)["error"]
    assert output.termination_reason is TerminationReason.SATISFIED
    assert output.proposals_created == 0
    assert output.iterations == 1


def test_watchlist_domains_override_requested_domains(documents, artifacts, source_watch):
    source = source_watch.create("https://blog.example.org/posts", label="Example blog")
    search = FakeSearch()
    gateway = FakeGateway(replies=[ModelReply(tool_calls=[call("search_web", query="q", include_domains=["other.com"])])])
    request = WebScoutInput(goal=GOAL, restrict_to_watchlist_domains=True, max_iterations=1)

    _agent(gateway, documents, artifacts, source_watch, search).run(request)

    assert search.calls[0]["include_domains"] == ["blog.example.org"]
    assert source_watch.get(source.id).last_checked_at is not None
    assert "Example blog" in gateway.invocations[0][0].content


def test_proposal_persistence_failure_is_skipped(documents, artifacts, source_watch, monkeypatch):
    original = artifacts.insert_artifact

    def flaky(agent, kind, day, title, content, source_refs=None, run_id=None):
        if content["url"] == GOOD:
            raise RuntimeError("disk full")
        return original(agent, kind, day, title, content, source_refs, run_id)

    monkeypatch.setattr(artifacts, "insert_artifact", flaky)
    gateway = FakeGateway(replies=[ModelReply(tool_calls=[_evaluate(GOOD), _evaluate(GOOD_2)])])

    output = _agent(gateway, documents, artifacts, source_watch).run(WebScoutInput(goal=GOAL, min_quality_results=2))

    assert [p.url for p in output.proposals] == [GOOD_2]
    assert output.proposals_created == 1


def test_import_to_library_skips_existing_and_failed_urls(documents, artifacts, source_watch):
    documents.insert("Already here", "manual", "existing body", url=GOOD)
    third = "https://dev.to/vector-indexing"

    def fetcher(url):
        if url == third:
            raise ValueError("no text")
        return "Fetched", "Long article body about vector indexes."

    gateway = FakeGateway(
        replies=[ModelReply(tool_calls=[_evaluate(GOOD), _evaluate(GOOD_2), _evaluate(third)])],
        structured={},
    )
    request = WebScoutInput(goal=GOAL, min_quality_results=3, import_to_library=True)

    output = _agent(gateway, documents, artifacts, source_watch, fetcher=fetcher).run(request)

    assert output.documents_imported == 1
    assert output.documents_skipped == 2
    assert documents.exists(GOOD_2)
