"""Flow orchestration: run tracing around agents and multi-stage workflows."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Union

from ..agents.base import StepSink
from ..agents.curator import CuratorAgent
from ..agents.distiller import DistillerAgent
from ..agents.web_scout import WebScoutAgent
from ..config import Settings
from ..database import create_session_factory, utcnow
from ..errors import NoResearchTagsError, NoTopicsError
from ..models import (
    DistillCurateInput,
    DistillCurateResult,
    DistillInput,
    DistillOutput,
    DocumentError,
    FlowResult,
    ReportPayload,
    RunKind,
    RunStatus,
    RunStepEvent,
    StepStatus,
    StepType,
    TopicRecord,
    TopicReportInput,
    TopicReportOutput,
    TopicRunResult,
    TopicStageError,
    WebScoutInput,
    WebScoutOutput,
)
from ..observability.run_trace import RunTraceStore
from ..repositories import (
    ArtifactRepository,
    DistillerRepository,
    DocumentRepository,
    ReportRepository,
    SourceWatchRepository,
    TopicRepository,
)
from ..services.model_gateway import OpenAIModelGateway
from ..services.url_extract import fetch_url_text
from ..services.web_search import build_search_provider
from ..utils.logging import configure_logging, get_logger
from .reports import TOP_PROPOSALS_PER_TOPIC, aggregate_totals, build_topic_report, slugify, synthesize_research_report

RESEARCH_TAG_COUNT = 5
DISTILL_CURATE_DEFAULT_LIMIT = 5


def _clamp(value: Union[int, float, None], low: Union[int, float], high: Union[int, float], default: Union[int, float]):  # type: ignore[no-untyped-def]
    if value is None:
        value = default
    return max(low, min(high, value))


def flow_step(name: str, status: StepStatus, **fields: Any) -> RunStepEvent:
    return RunStepEvent(type=StepType.FLOW, name=name, status=status, **fields)


class FlowOrchestrator:
    """Coordinates agents with run tracing, artifact persistence and partial-failure aggregation.

    Every flow is a sequential unit of work. The ``start_*`` variants create
    the run synchronously, hand the flow body to a thread pool and return the
    run id; callers observe progress only by polling the run trace. Background
    runs cannot be cancelled.
    """

    def __init__(
        self,
        session_factory,  # type: ignore[no-untyped-def]
        gateway,  # type: ignore[no-untyped-def]
        search_provider,  # type: ignore[no-untyped-def]
        settings: Settings | None = None,
        *,
        fetcher: Callable[[str], Any] = fetch_url_text,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.settings = settings or Settings()
        self._logger = get_logger("FlowOrchestrator")
        self.trace = RunTraceStore(session_factory)
        self.artifacts = ArtifactRepository(session_factory)
        self.reports = ReportRepository(session_factory)
        self.documents = DocumentRepository(session_factory)
        self.source_watch = SourceWatchRepository(session_factory)
        self.topics = TopicRepository(session_factory)
        self.curator = CuratorAgent(gateway, self.documents, self.settings.curator.enable_categorization)
        self.distiller = DistillerAgent(gateway, self.documents, DistillerRepository(session_factory), self.artifacts)
        self.web_scout = WebScoutAgent(
            gateway,
            search_provider,
            self.documents,
            self.artifacts,
            self.source_watch,
            fetcher=fetcher,
            snippet_chars=self.settings.research.snippet_chars,
        )
        self._gateway = gateway
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.settings.worker.max_workers, thread_name_prefix="vault-flow"
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "FlowOrchestrator":
        """Build an orchestrator with real clients constructed once from settings."""

        settings = settings or Settings()
        configure_logging()
        session_factory = create_session_factory(settings.database.url, echo=settings.database.echo)
        gateway = OpenAIModelGateway(settings.openai)
        search_provider = build_search_provider(settings.research, session_factory)
        return cls(session_factory, gateway, search_provider, settings)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "FlowOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    # -- single-agent flows ------------------------------------------------

    def curate_flow(self, document_id: int, enable_categorization: Optional[bool] = None) -> str:
        run_id = self.trace.create_run(RunKind.CURATE)
        self._curate(run_id, document_id, enable_categorization)
        return run_id

    def distill_flow(self, request: DistillInput, day: Optional[str] = None) -> FlowResult:
        run_id = self.trace.create_run(RunKind.DISTILL)
        return FlowResult(run_id=run_id, output=self._distill(run_id, request, day))

    def web_scout_flow(self, request: WebScoutInput) -> FlowResult:
        run_id = self.trace.create_run(RunKind.WEB_SCOUT)
        return FlowResult(run_id=run_id, output=self._web_scout(run_id, request))

    def _curate(self, run_id: str, document_id: int, enable_categorization: Optional[bool] = None) -> Any:
        return self._traced_flow(
            run_id,
            "curate",
            {"document_id": document_id},
            lambda forward: self.curator.run(document_id, forward, enable_categorization=enable_categorization),
        )

    def _distill(self, run_id: str, request: DistillInput, day: Optional[str]) -> DistillOutput:
        return self._traced_flow(
            run_id,
            "distill",
            request.model_dump(mode="json"),
            lambda forward: self.distiller.run(request, forward, run_id=run_id, day=day),
        )

    def _web_scout(self, run_id: str, request: WebScoutInput) -> WebScoutOutput:
        return self._traced_flow(
            run_id,
            "webScout",
            request.model_dump(mode="json"),
            lambda forward: self.web_scout.run(request, forward, run_id=run_id),
        )

    def _traced_flow(self, run_id: str, name: str, payload: Dict[str, Any], body: Callable[[StepSink], Any]) -> Any:
        self._logger.info("Starting %s flow (run %s)", name, run_id)
        self.trace.append_step(run_id, flow_step(name, StepStatus.RUNNING, input=payload))
        try:
            output = body(self._forward(run_id))
        except Exception as exc:
            self._logger.exception("%s flow failed (run %s)", name, run_id)
            self.trace.append_step(run_id, flow_step(name, StepStatus.ERROR, error=str(exc)))
            self.trace.finish_run(run_id, RunStatus.ERROR)
            raise
        self.trace.append_step(run_id, flow_step(name, StepStatus.OK, output=output))
        self.trace.finish_run(run_id, RunStatus.OK)
        self._logger.info("Finished %s flow (run %s)", name, run_id)
        return output

    def _forward(self, run_id: str) -> StepSink:
        def forward(step: RunStepEvent) -> None:
            self.trace.append_step(run_id, step)

        return forward

    # -- research flow -----------------------------------------------------

    def research_flow(self, day: Optional[str] = None) -> FlowResult:
        run_id = self.trace.create_run(RunKind.RESEARCH)
        return FlowResult(run_id=run_id, output=self._research(run_id, day))

    def _research(self, run_id: str, day: Optional[str]) -> Dict[str, Any]:
        day = day or utcnow().date().isoformat()
        append = self.trace.append_step
        try:
            append(run_id, flow_step("research_derive_goal", StepStatus.RUNNING))
            tags = [entry.tag for entry in self.documents.get_top_tags(RESEARCH_TAG_COUNT)]
            if not tags:
                raise NoResearchTagsError("No tags in the vault to derive a research goal from")
            goal = "Find new, high-quality resources about: " + ", ".join(tags)
            append(run_id, flow_step("research_derive_goal", StepStatus.OK, output={"goal": goal, "tags": tags}))

            request = WebScoutInput(
                goal=goal, focus_tags=tags, min_quality_results=3, max_iterations=5, max_queries=10, day=day
            )
            append(run_id, flow_step("research_webscout", StepStatus.RUNNING, input=request.model_dump(mode="json")))
            scout = self.web_scout.run(request, self._forward(run_id), run_id=run_id)
            append(
                run_id,
                flow_step("research_webscout", StepStatus.OK, output=scout.model_dump(mode="json", exclude={"proposals"})),
            )

            if not scout.proposals:
                append(run_id, flow_step("research_synthesize", StepStatus.SKIPPED, output={"reason": "no proposals"}))
                self.trace.finish_run(run_id, RunStatus.PARTIAL)
                return {"goal": goal, "proposals_created": 0, "report_id": None}

            append(run_id, flow_step("research_synthesize", StepStatus.RUNNING))
            markdown = synthesize_research_report(self._gateway, goal, scout.proposals)
            append(run_id, flow_step("research_synthesize", StepStatus.OK, output={"chars": len(markdown)}))

            append(run_id, flow_step("research_save_report", StepStatus.RUNNING))
            report_id = self.reports.insert_report(
                day,
                f"Research Report - {day}",
                ReportPayload(markdown=markdown, goal=goal).model_dump(mode="json"),
                {"run_id": run_id, "artifact_ids": scout.artifact_ids},
                run_id=run_id,
            )
            append(run_id, flow_step("research_save_report", StepStatus.OK, output={"report_id": report_id}))
        except Exception as exc:
            self._logger.exception("Research flow failed (run %s)", run_id)
            append(run_id, flow_step("research_error", StepStatus.ERROR, error=str(exc)))
            self.trace.finish_run(run_id, RunStatus.ERROR)
            raise
        self.trace.finish_run(run_id, RunStatus.OK)
        return {"goal": goal, "proposals_created": scout.proposals_created, "report_id": report_id}

    # -- topic report flow -------------------------------------------------

    def topic_report_flow(self, request: TopicReportInput) -> FlowResult:
        run_id = self.trace.create_run(RunKind.RESEARCH)
        return FlowResult(run_id=run_id, output=self._topic_report(run_id, request))

    def _topic_report(self, run_id: str, request: TopicReportInput) -> TopicReportOutput:
        day = request.day or utcnow().date().isoformat()
        append = self.trace.append_step
        append(run_id, flow_step("topic_report", StepStatus.RUNNING, input=request.model_dump(mode="json")))
        try:
            append(run_id, flow_step("topic_report_load_topics", StepStatus.RUNNING))
            if request.topic_ids:
                topics = self.topics.get_by_ids(request.topic_ids, include_inactive=request.include_inactive)
            else:
                topics = self.topics.list_topics(active_only=True)
            if not topics:
                raise NoTopicsError("No saved topics matched the request")
            append(
                run_id,
                flow_step("topic_report_load_topics", StepStatus.OK, output={"topic_ids": [t.id for t in topics]}),
            )

            results = [self._run_topic(run_id, topic, request, day) for topic in topics]
            status = RunStatus.PARTIAL if any(result.errors for result in results) else RunStatus.OK
            markdown = build_topic_report(day, results, status)
            output = TopicReportOutput(
                day=day, status=status, topics=results, totals=aggregate_totals(results), markdown=markdown
            )

            if request.save_report:
                append(run_id, flow_step("topic_report_save_report", StepStatus.RUNNING))
                output.report_id = self.reports.insert_report(
                    day,
                    f"Topic Workflow Report - {day}",
                    ReportPayload(markdown=markdown, summary=f"{len(results)} topic(s), status {status.value}").model_dump(
                        mode="json"
                    ),
                    {
                        "run_id": run_id,
                        "topic_ids": [topic.id for topic in topics],
                        "run_ids": [{"topic_id": r.topic_id, **r.run_ids.model_dump()} for r in results],
                    },
                    run_id=run_id,
                )
                append(
                    run_id, flow_step("topic_report_save_report", StepStatus.OK, output={"report_id": output.report_id})
                )
            else:
                append(
                    run_id,
                    flow_step("topic_report_save_report", StepStatus.SKIPPED, output={"reason": "report saving disabled"}),
                )
        except Exception as exc:
            self._logger.exception("Topic report flow failed (run %s)", run_id)
            append(run_id, flow_step("topic_report_error", StepStatus.ERROR, error=str(exc)))
            self.trace.finish_run(run_id, RunStatus.ERROR)
            raise

        append(
            run_id,
            flow_step("topic_report", StepStatus.OK, output={"status": status.value, "totals": output.totals}),
        )
        self.trace.finish_run(run_id, status)
        return output

    def _run_topic(self, run_id: str, topic: TopicRecord, request: TopicReportInput, day: str) -> TopicRunResult:
        """Run curate, webScout and distill for one topic, each as a child run of its own.

        A failing stage is recorded on the result and the remaining stages still run.
        """

        slug = slugify(topic.name)
        result = TopicRunResult(topic_id=topic.id, name=topic.name, goal=topic.goal, focus_tags=topic.focus_tags)
        self.trace.append_step(
            run_id, flow_step(f"topic_{slug}_start", StepStatus.RUNNING, input={"topic_id": topic.id, "goal": topic.goal})
        )
        max_docs = int(_clamp(request.max_docs_per_topic, 1, 20, topic.max_docs_per_run))

        try:
            if topic.focus_tags:
                result.document_ids = [doc.id for doc in self.documents.list_by_tags(topic.focus_tags, limit=max_docs)]
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("Topic %s setup failed: %s", topic.name, exc)
            result.errors.append(TopicStageError(stage="topic_setup", message=str(exc)))
        result.docs_matched = len(result.document_ids)

        for document_id in result.document_ids:
            try:
                child = self.curate_flow(document_id, enable_categorization=request.enable_categorization)
                result.run_ids.curate.append(child)
                result.docs_curated += 1
            except Exception as exc:  # noqa: BLE001
                self._logger.warning("Curate failed for document %s in topic %s: %s", document_id, topic.name, exc)
                result.docs_curate_failed += 1
                result.errors.append(TopicStageError(stage="curate", message=str(exc), document_id=document_id))

        try:
            scout_request = WebScoutInput(
                goal=topic.goal,
                mode="focused",
                focus_tags=topic.focus_tags,
                min_quality_results=int(_clamp(request.min_quality_results, 1, 20, topic.min_quality_results)),
                min_relevance_score=float(_clamp(request.min_relevance_score, 0.0, 1.0, topic.min_relevance_score)),
                max_iterations=int(_clamp(request.max_iterations, 1, 20, topic.max_iterations)),
                max_queries=int(_clamp(request.max_queries, 1, 50, topic.max_queries)),
                day=day,
            )
            scouted = self.web_scout_flow(scout_request)
            result.run_ids.web_scout = scouted.run_id
            result.proposals_created = scouted.output.proposals_created
            ranked = sorted(scouted.output.proposals, key=lambda proposal: proposal.relevance_score, reverse=True)
            result.top_proposals = ranked[:TOP_PROPOSALS_PER_TOPIC]
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("WebScout failed for topic %s: %s", topic.name, exc)
            result.errors.append(TopicStageError(stage="webScout", message=str(exc)))

        # no matched documents: distill falls back to the first focus tag, then to recent documents
        try:
            distilled = self.distill_flow(
                DistillInput(
                    document_ids=result.document_ids or None,
                    tag=topic.focus_tags[0] if topic.focus_tags else None,
                    limit=max_docs,
                ),
                day=day,
            )
            result.run_ids.distill = distilled.run_id
            result.concepts_proposed = distilled.output.concepts_proposed
            result.flashcards_proposed = distilled.output.flashcards_proposed
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("Distill failed for topic %s: %s", topic.name, exc)
            result.errors.append(TopicStageError(stage="distill", message=str(exc)))

        self.trace.append_step(
            run_id,
            flow_step(
                f"topic_{slug}_complete",
                StepStatus.ERROR if result.errors else StepStatus.OK,
                output=result.model_dump(mode="json", exclude={"top_proposals"}),
            ),
        )
        return result

    # -- distill + curate --------------------------------------------------

    def distill_curate_flow(self, request: DistillCurateInput, day: Optional[str] = None) -> DistillCurateResult:
        run_id = self.trace.create_run(RunKind.DISTILL)
        return self._distill_curate(run_id, request, day)

    def _distill_curate(self, run_id: str, request: DistillCurateInput, day: Optional[str]) -> DistillCurateResult:
        limit = int(_clamp(request.limit, 1, 20, DISTILL_CURATE_DEFAULT_LIMIT))
        result = DistillCurateResult(run_id=run_id)

        def body(forward: StepSink) -> DistillCurateResult:
            if request.document_ids:
                targets = self.documents.get_by_ids(request.document_ids)[:limit]
            elif request.tag:
                targets = self.documents.list_by_tag(request.tag, limit=limit)
            else:
                targets = self.documents.list_recent(limit=limit)
            result.document_ids = [doc.id for doc in targets]

            # explicit ids go to distill as given; the limit only narrows the curate targets
            distilled = self.distill_flow(
                DistillInput(
                    document_ids=request.document_ids or result.document_ids or None, tag=request.tag, limit=limit
                ),
                day=day,
            )
            result.distill_run_id = distilled.run_id
            result.distill = distilled.output
            forward(flow_step("distill_curate_distill", StepStatus.OK, output={"run_id": distilled.run_id}))

            for document_id in result.document_ids:
                try:
                    child = self.curate_flow(document_id, enable_categorization=request.enable_categorization)
                    result.curate_run_ids.append(child)
                    result.curated.append(document_id)
                except Exception as exc:  # noqa: BLE001
                    self._logger.warning("Curate failed for document %s: %s", document_id, exc)
                    result.errors.append(DocumentError(document_id=document_id, message=str(exc)))
            forward(
                flow_step(
                    "distill_curate_curate",
                    StepStatus.ERROR if result.errors else StepStatus.OK,
                    output={"run_ids": result.curate_run_ids, "failed": [e.document_id for e in result.errors]},
                )
            )
            return result

        return self._traced_flow(run_id, "distill_curate", request.model_dump(mode="json"), body)

    # -- fire-and-forget variants ------------------------------------------

    def start_curate_flow(self, document_id: int, enable_categorization: Optional[bool] = None) -> str:
        run_id = self.trace.create_run(RunKind.CURATE)
        self._submit(run_id, self._curate, run_id, document_id, enable_categorization)
        return run_id

    def start_distill_flow(self, request: DistillInput, day: Optional[str] = None) -> str:
        run_id = self.trace.create_run(RunKind.DISTILL)
        self._submit(run_id, self._distill, run_id, request, day)
        return run_id

    def start_web_scout_flow(self, request: WebScoutInput) -> str:
        run_id = self.trace.create_run(RunKind.WEB_SCOUT)
        self._submit(run_id, self._web_scout, run_id, request)
        return run_id

    def start_research_flow(self, day: Optional[str] = None) -> str:
        run_id = self.trace.create_run(RunKind.RESEARCH)
        self._submit(run_id, self._research, run_id, day)
        return run_id

    def start_topic_report_flow(self, request: TopicReportInput) -> str:
        run_id = self.trace.create_run(RunKind.RESEARCH)
        self._submit(run_id, self._topic_report, run_id, request)
        return run_id

    def _submit(self, run_id: str, fn: Callable[..., Any], *args: Any) -> Future:
        future = self._executor.submit(fn, *args)

        def report(done: Future) -> None:
            exc = done.exception()
            if exc is not None:
                # the run is already terminal; the trace is the caller's only signal
                self._logger.error("Background run %s failed: %s", run_id, exc)

        future.add_done_callback(report)
        return future


__all__ = ["FlowOrchestrator", "flow_step"]
