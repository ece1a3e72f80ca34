"""WebScout: a bounded ReAct loop that proposes new web resources for a research goal.

The loop alternates a model turn (``agent``) with execution of the tools the
model requested (``tools``). It stops when enough unique quality results have
been collected, when the query budget is spent, or when the iteration budget
is spent, checked in that order after every tool round. Tool failures are fed
back to the model as error tool responses and never end the loop.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..database import utcnow
from ..models import (
    AGENT_WEB_SCOUT,
    KIND_WEB_PROPOSAL,
    RelatedDoc,
    StepStatus,
    StepType,
    TerminationReason,
    WebProposal,
    WebScoutInput,
    WebScoutOutput,
)
from ..repositories.artifacts import ArtifactRepository
from ..repositories.documents import DocumentRepository
from ..repositories.source_watch import SourceWatchRepository
from ..services.model_gateway import ChatMessage, ToolCall, human_message, system_message, tool_message
from ..services.url_extract import fetch_url_text
from .base import BaseAgent, StepSink
from .graph import END, StepGraph
from .tags import finalize_tags
from . import web_scout_tools as tools

VAULT_CONTEXT_LIMIT = 5
WATCH_SOURCE_LIMIT = 8

Fetcher = Callable[[str], Tuple[str, str]]


class WatchHint(BaseModel):
    url: str
    domain: str
    label: str


class WebScoutState(BaseModel):
    input: WebScoutInput
    day: str
    run_id: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)
    pending_calls: List[ToolCall] = Field(default_factory=list)
    iteration: int = 0
    queries_executed: int = 0
    results_evaluated: int = 0
    quality_results: List[WebProposal] = Field(default_factory=list)
    vault_docs: List[RelatedDoc] = Field(default_factory=list)
    watch_sources: List[WatchHint] = Field(default_factory=list)
    watch_domains: List[str] = Field(default_factory=list)
    termination_reason: Optional[TerminationReason] = None
    proposals: List[WebProposal] = Field(default_factory=list)
    artifact_ids: List[int] = Field(default_factory=list)
    documents_imported: int = 0
    documents_skipped: int = 0


def unique_by_url(results: List[WebProposal]) -> List[WebProposal]:
    seen = set()
    unique = []
    for result in results:
        if result.url in seen:
            continue
        seen.add(result.url)
        unique.append(result)
    return unique


def stop_reason(state: WebScoutState) -> Optional[TerminationReason]:
    request = state.input
    if len(unique_by_url(state.quality_results)) >= request.min_quality_results:
        return TerminationReason.SATISFIED
    if state.queries_executed >= request.max_queries:
        return TerminationReason.MAX_QUERIES
    if state.iteration >= request.max_iterations:
        return TerminationReason.MAX_ITERATIONS
    return None


class WebScoutAgent(BaseAgent):
    def __init__(
        self,
        gateway,  # type: ignore[no-untyped-def]
        search_provider,  # type: ignore[no-untyped-def]
        documents: DocumentRepository,
        artifacts: ArtifactRepository,
        source_watch: SourceWatchRepository,
        *,
        fetcher: Fetcher = fetch_url_text,
        snippet_chars: int = tools.SNIPPET_CHARS,
    ) -> None:
        super().__init__("webScout", gateway)
        self._search = search_provider
        self._documents = documents
        self._artifacts = artifacts
        self._source_watch = source_watch
        self._fetcher = fetcher
        self._snippet_chars = snippet_chars

    def run(
        self,
        request: WebScoutInput,
        on_step: Optional[StepSink] = None,
        *,
        run_id: Optional[str] = None,
    ) -> WebScoutOutput:
        on_step = self.sink(on_step)
        request = request.model_copy(
            update={
                "max_iterations": max(1, request.max_iterations),
                "max_queries": max(1, request.max_queries),
                "min_quality_results": max(1, request.min_quality_results),
            }
        )
        day = request.day or utcnow().date().isoformat()
        self.emit(on_step, "webscout_start", StepStatus.RUNNING, input=request.model_dump(mode="json"))
        final = self._build_graph(on_step).run(WebScoutState(input=request, day=day, run_id=run_id))
        output = WebScoutOutput(
            termination_reason=final.termination_reason or TerminationReason.SATISFIED,
            iterations=final.iteration,
            queries_executed=final.queries_executed,
            results_evaluated=final.results_evaluated,
            proposals_created=len(final.artifact_ids),
            documents_imported=final.documents_imported,
            documents_skipped=final.documents_skipped,
            proposals=final.proposals,
            artifact_ids=final.artifact_ids,
        )
        self.emit(on_step, "webscout_complete", StepStatus.OK, output=output.model_dump(mode="json", exclude={"proposals"}))
        return output

    def _build_graph(self, on_step: StepSink) -> StepGraph[WebScoutState]:
        def after_agent(state: WebScoutState) -> str:
            return "tools" if state.pending_calls else "finalize"

        def after_tools(state: WebScoutState) -> str:
            return "finalize" if state.termination_reason else "agent"

        graph: StepGraph[WebScoutState] = StepGraph("webScout")
        graph.add_step("setup", lambda state: self._setup(state, on_step), "agent")
        graph.add_step("agent", lambda state: self._agent(state, on_step), after_agent)
        graph.add_step("tools", lambda state: self._tools(state, on_step), after_tools)
        graph.add_step("finalize", lambda state: self._finalize(state, on_step), END)
        return graph

    # -- nodes -------------------------------------------------------------

    def _setup(self, state: WebScoutState, on_step: StepSink) -> Dict[str, Any]:
        request = state.input
        self.emit(on_step, "webscout_setup", StepStatus.RUNNING)
        if request.mode == "focused" and request.focus_tags:
            docs = self._documents.list_by_tags(request.focus_tags, limit=VAULT_CONTEXT_LIMIT)
        else:
            docs = self._documents.list_recent(limit=VAULT_CONTEXT_LIMIT)
        vault_docs = [RelatedDoc(id=doc.id, title=doc.title) for doc in docs]

        watch_sources: List[WatchHint] = []
        if request.use_watchlist:
            for source in self._source_watch.checkout_due_sources(WATCH_SOURCE_LIMIT):
                watch_sources.append(WatchHint(url=source.url, domain=source.domain, label=source.label))
        watch_domains = list(dict.fromkeys(hint.domain for hint in watch_sources))

        messages = [
            system_message(self._system_prompt(request, vault_docs, watch_sources)),
            human_message(f"Find high-quality resources for this goal: {request.goal}"),
        ]
        self.emit(
            on_step,
            "webscout_setup",
            StepStatus.OK,
            output={"vault_docs": len(vault_docs), "watch_domains": watch_domains},
        )
        return {
            "messages": messages,
            "vault_docs": vault_docs,
            "watch_sources": watch_sources,
            "watch_domains": watch_domains,
        }

    def _agent(self, state: WebScoutState, on_step: StepSink) -> Dict[str, Any]:
        self.emit(on_step, "webscout_agent", StepStatus.RUNNING, type=StepType.LLM, input={"iteration": state.iteration})
        reply = self._gateway.invoke(state.messages, tools=tools.TOOL_SPECS)
        self.emit(
            on_step,
            "webscout_agent",
            StepStatus.OK,
            type=StepType.LLM,
            output={"tool_calls": [call.name for call in reply.tool_calls], "content": reply.content[:500]},
            token_estimate=reply.token_estimate,
        )
        assistant = ChatMessage(role="assistant", content=reply.content, tool_calls=reply.tool_calls)
        return {"messages": [*state.messages, assistant], "pending_calls": reply.tool_calls}

    def _tools(self, state: WebScoutState, on_step: StepSink) -> Dict[str, Any]:
        counters = {
            "queries_executed": state.queries_executed,
            "results_evaluated": state.results_evaluated,
        }
        quality = list(state.quality_results)
        messages = list(state.messages)
        for call in state.pending_calls:
            self.emit(on_step, f"tool_{call.name}", StepStatus.RUNNING, type=StepType.TOOL, input=call.args)
            try:
                result = self._execute_tool(call, state, counters, quality)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning("Tool %s failed: %s", call.name, exc)
                self.emit(on_step, f"tool_{call.name}", StepStatus.ERROR, type=StepType.TOOL, error=str(exc))
                messages.append(tool_message(call, json.dumps({"error": str(exc)})))
                continue
            self.emit(on_step, f"tool_{call.name}", StepStatus.OK, type=StepType.TOOL, output=result)
            messages.append(tool_message(call, json.dumps(result)))

        patch: Dict[str, Any] = {
            **counters,
            "quality_results": quality,
            "messages": messages,
            "pending_calls": [],
            "iteration": state.iteration + 1,
        }
        patch["termination_reason"] = stop_reason(state.model_copy(update=patch))
        return patch

    def _finalize(self, state: WebScoutState, on_step: StepSink) -> Dict[str, Any]:
        request = state.input
        reason = state.termination_reason or stop_reason(state) or TerminationReason.SATISFIED
        self.emit(on_step, "webscout_finalize", StepStatus.RUNNING, input={"termination_reason": reason.value})
        proposals: List[WebProposal] = []
        artifact_ids: List[int] = []
        for proposal in unique_by_url(state.quality_results):
            try:
                artifact_id = self._artifacts.insert_artifact(
                    AGENT_WEB_SCOUT,
                    KIND_WEB_PROPOSAL,
                    state.day,
                    proposal.title or proposal.url,
                    proposal.model_dump(mode="json"),
                    {"goal": request.goal, "watch_source_domains": state.watch_domains},
                    run_id=state.run_id,
                )
            except Exception:  # noqa: BLE001
                self._logger.warning("Could not persist proposal %s", proposal.url, exc_info=True)
                continue
            proposals.append(proposal)
            artifact_ids.append(artifact_id)

        imported = skipped = 0
        if request.import_to_library:
            imported, skipped = self._import_proposals(proposals)

        self.emit(
            on_step,
            "webscout_finalize",
            StepStatus.OK,
            output={"proposals_created": len(artifact_ids), "documents_imported": imported, "documents_skipped": skipped},
        )
        return {
            "termination_reason": reason,
            "proposals": proposals,
            "artifact_ids": artifact_ids,
            "documents_imported": imported,
            "documents_skipped": skipped,
        }

    # -- helpers -----------------------------------------------------------

    def _execute_tool(
        self,
        call: ToolCall,
        state: WebScoutState,
        counters: Dict[str, int],
        quality: List[WebProposal],
    ) -> Any:
        request = state.input
        args = call.args
        if call.name == "search_web":
            if counters["queries_executed"] >= request.max_queries:
                raise RuntimeError("query budget exhausted")
            include = args.get("include_domains") or None
            if request.restrict_to_watchlist_domains and state.watch_domains:
                include = list(state.watch_domains)
            counters["queries_executed"] += 1
            results = tools.search_web(
                self._search,
                str(args.get("query", "")),
                max_results=int(args.get("max_results") or tools.DEFAULT_MAX_RESULTS),
                include_domains=include,
                exclude_domains=args.get("exclude_domains") or None,
                snippet_chars=self._snippet_chars,
            )
            return [result.model_dump() for result in results]
        if call.name == "check_vault_duplicate":
            return tools.check_vault_duplicate(self._documents, [str(url) for url in args.get("urls") or []])
        if call.name == "evaluate_result":
            url = str(args["url"])
            title = str(args.get("title", ""))
            snippet = str(args.get("snippet", ""))
            evaluation = tools.evaluate_result(self._gateway, url, title, snippet, str(args.get("goal") or request.goal))
            counters["results_evaluated"] += 1
            if evaluation.relevance_score >= request.min_relevance_score:
                quality.append(
                    WebProposal(
                        url=url,
                        title=title,
                        summary=snippet,
                        relevance_score=evaluation.relevance_score,
                        content_type=evaluation.content_type,
                        topics=evaluation.topics,
                        reasoning=evaluation.reasoning,
                    )
                )
            return evaluation.model_dump(mode="json")
        if call.name == "refine_query":
            query = tools.refine_query(
                self._gateway,
                str(args.get("goal") or request.goal),
                str(args.get("original_query", "")),
                str(args.get("feedback", "")),
            )
            return {"query": query}
        raise ValueError(f"Unknown tool: {call.name}")

    def _import_proposals(self, proposals: List[WebProposal]) -> Tuple[int, int]:
        imported = skipped = 0
        for proposal in proposals:
            try:
                if self._documents.exists(proposal.url):
                    skipped += 1
                    continue
                title, text = self._fetcher(proposal.url)
                result = self._documents.insert(proposal.title or title, "webScout", text, url=proposal.url)
                if not result.created:
                    skipped += 1
                    continue
                tags = finalize_tags(proposal.topics)
                if tags:
                    self._documents.set_tags(result.id, tags)
                imported += 1
            except Exception:  # noqa: BLE001
                self._logger.warning("Skipping import of %s", proposal.url, exc_info=True)
                skipped += 1
        return imported, skipped

    @staticmethod
    def _system_prompt(request: WebScoutInput, vault_docs: List[RelatedDoc], watch_sources: List[WatchHint]) -> str:
        lines = [
            "You are WebScout, a research assistant that finds new, high-quality web resources.",
            f"Goal: {request.goal}",
            "",
            "Work in rounds: search_web, check_vault_duplicate on the URLs you found, then evaluate_result "
            "for promising new ones. Use refine_query when results are poor. Stop calling tools once you "
            f"have at least {request.min_quality_results} relevant results.",
            f"Budget: at most {request.max_queries} searches and {request.max_iterations} rounds.",
        ]
        if vault_docs:
            lines += ["", "The vault already contains these documents; do not propose duplicates of them:"]
            lines += [f"- {doc.title}" for doc in vault_docs]
        if watch_sources:
            lines += ["", "Prioritise these watched sources:"]
            lines += [f"- {hint.label} ({hint.url})" for hint in watch_sources]
        return "\n".join(lines)


__all__ = ["WebScoutAgent", "WebScoutState", "stop_reason", "unique_by_url"]
