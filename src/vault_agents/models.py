"""Shared data models for runs, artifacts, agents and flows."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field

from .database import utcnow


class RunKind(str, Enum):
    DISTILL = "distill"
    CURATE = "curate"
    WEB_SCOUT = "webScout"
    RESEARCH = "research"


class RunStatus(str, Enum):
    """Lifecycle states tracked for a run; everything except RUNNING is terminal."""

    RUNNING = "running"
    OK = "ok"
    ERROR = "error"
    PARTIAL = "partial"


class StepType(str, Enum):
    FLOW = "flow"
    AGENT = "agent"
    TOOL = "tool"
    LLM = "llm"


class StepStatus(str, Enum):
    RUNNING = "running"
    OK = "ok"
    ERROR = "error"
    SKIPPED = "skipped"


class ArtifactStatus(str, Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"


class SourceKind(str, Enum):
    WEBSITE = "website"
    BLOG = "blog"
    NEWSLETTER = "newsletter"
    SOURCE = "source"


class ContentType(str, Enum):
    ARTICLE = "article"
    DOCUMENTATION = "documentation"
    PAPER = "paper"
    TUTORIAL = "tutorial"
    VIDEO = "video"
    OTHER = "other"


class TerminationReason(str, Enum):
    SATISFIED = "satisfied"
    MAX_ITERATIONS = "max_iterations"
    MAX_QUERIES = "max_queries"


class ConceptType(str, Enum):
    DEFINITION = "definition"
    PRINCIPLE = "principle"
    FRAMEWORK = "framework"
    PROCEDURE = "procedure"
    FACT = "fact"


class FlashcardFormat(str, Enum):
    QA = "qa"
    CLOZE = "cloze"


AGENT_WEB_SCOUT = "webScout"
AGENT_DISTILLER = "distiller"
AGENT_RESEARCH = "research"
KIND_WEB_PROPOSAL = "web-proposal"
KIND_CONCEPT = "concept"
KIND_FLASHCARD = "flashcard"
KIND_RESEARCH_REPORT = "research-report"


# ---------------------------------------------------------------------------
# Run trace


class RunStepEvent(BaseModel):
    """A step emitted by a flow or agent, before the store assigns it a sequence number."""

    type: StepType
    name: str
    status: StepStatus
    input: Optional[Any] = None
    output: Optional[Any] = None
    error: Optional[str] = None
    token_estimate: Optional[int] = None
    timestamp: dt.datetime = Field(default_factory=utcnow)


class RunRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    kind: RunKind
    status: RunStatus
    started_at: dt.datetime
    ended_at: Optional[dt.datetime] = None


class RunStepRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    run_id: str
    seq: int
    timestamp: dt.datetime
    type: StepType
    name: str
    status: StepStatus
    input: Optional[Any] = None
    output: Optional[Any] = None
    error: Optional[str] = None
    token_estimate: Optional[int] = None


class RunTrace(BaseModel):
    run: RunRecord
    steps: List[RunStepRecord] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Artifacts and their payloads


class ArtifactRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    run_id: Optional[str] = None
    agent: str
    kind: str
    day: str
    title: str
    content: Dict[str, Any] = Field(default_factory=dict)
    source_refs: Dict[str, Any] = Field(default_factory=dict)
    status: ArtifactStatus
    created_at: dt.datetime
    reviewed_at: Optional[dt.datetime] = None
    read_at: Optional[dt.datetime] = None


class WebProposal(BaseModel):
    """Content of a (webScout, web-proposal) artifact."""

    url: str
    title: str
    summary: str = ""
    relevance_score: float
    content_type: ContentType = ContentType.OTHER
    topics: List[str] = Field(default_factory=list)
    reasoning: str = ""


class ConceptPayload(BaseModel):
    """Content of a (distiller, concept) artifact."""

    label: str = Field(max_length=100)
    type: ConceptType
    summary: str = Field(max_length=500)
    evidence: List[str] = Field(default_factory=list, max_length=3)


class FlashcardPayload(BaseModel):
    """Content of a (distiller, flashcard) artifact."""

    format: FlashcardFormat
    front: str = Field(max_length=1000)
    back: str = Field(max_length=2000)
    concept_label: Optional[str] = None


class ReportPayload(BaseModel):
    """Content of a (research, research-report) artifact."""

    markdown: str
    goal: Optional[str] = None
    summary: Optional[str] = None


ArtifactPayload = Union[WebProposal, ConceptPayload, FlashcardPayload, ReportPayload]

ARTIFACT_PAYLOADS: Dict[Tuple[str, str], Type[BaseModel]] = {
    (AGENT_WEB_SCOUT, KIND_WEB_PROPOSAL): WebProposal,
    (AGENT_DISTILLER, KIND_CONCEPT): ConceptPayload,
    (AGENT_DISTILLER, KIND_FLASHCARD): FlashcardPayload,
    (AGENT_RESEARCH, KIND_RESEARCH_REPORT): ReportPayload,
}


def parse_artifact_content(agent: str, kind: str, content: Dict[str, Any]) -> Union[ArtifactPayload, Dict[str, Any]]:
    """Return the typed payload for a known (agent, kind) pair, else the raw mapping."""

    model = ARTIFACT_PAYLOADS.get((agent, kind))
    if model is None:
        return content
    return model.model_validate(content)  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Vault records


class SourceWatchRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    domain: str
    label: str
    kind: SourceKind
    is_active: bool
    check_interval_hours: int
    last_checked_at: Optional[dt.datetime] = None
    created_at: dt.datetime
    updated_at: dt.datetime


class DocumentRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    source: str
    url: Optional[str] = None
    content: str
    category: Optional[str] = None
    created_at: dt.datetime


class InsertResult(BaseModel):
    id: int
    created: bool


class TagCount(BaseModel):
    tag: str
    count: int


class RelatedDoc(BaseModel):
    id: int
    title: str


class TopicRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    goal: str
    focus_tags: List[str] = Field(default_factory=list)
    max_docs_per_run: int = 5
    min_quality_results: int = 3
    min_relevance_score: float = 0.8
    max_iterations: int = 5
    max_queries: int = 10
    is_active: bool = True


# ---------------------------------------------------------------------------
# Agent inputs and outputs


class CuratorOutput(BaseModel):
    tags: List[str] = Field(default_factory=list)
    category: str = "uncategorized"
    related_docs: List[RelatedDoc] = Field(default_factory=list)


class DistillInput(BaseModel):
    document_ids: Optional[List[int]] = None
    tag: Optional[str] = None
    limit: int = 5


class DistillOutput(BaseModel):
    docs_processed: int = 0
    concepts_proposed: int = 0
    flashcards_proposed: int = 0
    artifact_ids: List[int] = Field(default_factory=list)


class WebScoutInput(BaseModel):
    goal: str
    mode: str = "focused"
    focus_tags: List[str] = Field(default_factory=list)
    min_quality_results: int = 3
    min_relevance_score: float = 0.6
    max_iterations: int = 5
    max_queries: int = 10
    use_watchlist: bool = True
    restrict_to_watchlist_domains: bool = False
    import_to_library: bool = False
    day: Optional[str] = None


class WebScoutOutput(BaseModel):
    termination_reason: TerminationReason
    iterations: int = 0
    queries_executed: int = 0
    results_evaluated: int = 0
    proposals_created: int = 0
    documents_imported: int = 0
    documents_skipped: int = 0
    proposals: List[WebProposal] = Field(default_factory=list)
    artifact_ids: List[int] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Flow results


class FlowResult(BaseModel):
    run_id: str
    output: Any = None


class TopicReportInput(BaseModel):
    topic_ids: Optional[List[int]] = None
    include_inactive: bool = False
    day: Optional[str] = None
    save_report: bool = True
    max_docs_per_topic: Optional[int] = None
    min_quality_results: Optional[int] = None
    min_relevance_score: Optional[float] = None
    max_iterations: Optional[int] = None
    max_queries: Optional[int] = None
    enable_categorization: bool = False


class TopicStageError(BaseModel):
    stage: str
    message: str
    document_id: Optional[int] = None


class TopicRunIds(BaseModel):
    curate: List[str] = Field(default_factory=list)
    web_scout: Optional[str] = None
    distill: Optional[str] = None


class TopicRunResult(BaseModel):
    topic_id: int
    name: str
    goal: str
    focus_tags: List[str] = Field(default_factory=list)
    document_ids: List[int] = Field(default_factory=list)
    run_ids: TopicRunIds = Field(default_factory=TopicRunIds)
    docs_matched: int = 0
    docs_curated: int = 0
    docs_curate_failed: int = 0
    proposals_created: int = 0
    concepts_proposed: int = 0
    flashcards_proposed: int = 0
    top_proposals: List[WebProposal] = Field(default_factory=list)
    errors: List[TopicStageError] = Field(default_factory=list)


class TopicReportOutput(BaseModel):
    day: str
    status: RunStatus
    topics: List[TopicRunResult] = Field(default_factory=list)
    totals: Dict[str, int] = Field(default_factory=dict)
    markdown: str = ""
    report_id: Optional[int] = None


class DistillCurateInput(BaseModel):
    document_ids: Optional[List[int]] = None
    tag: Optional[str] = None
    limit: int = 5
    enable_categorization: bool = False


class DocumentError(BaseModel):
    document_id: int
    message: str


class DistillCurateResult(BaseModel):
    run_id: str
    document_ids: List[int] = Field(default_factory=list)
    distill: DistillOutput = Field(default_factory=DistillOutput)
    distill_run_id: Optional[str] = None
    curate_run_ids: List[str] = Field(default_factory=list)
    curated: List[int] = Field(default_factory=list)
    errors: List[DocumentError] = Field(default_factory=list)


__all__ = [
    "AGENT_DISTILLER",
    "AGENT_RESEARCH",
    "AGENT_WEB_SCOUT",
    "ARTIFACT_PAYLOADS",
    "ArtifactPayload",
    "ArtifactRecord",
    "ArtifactStatus",
    "ConceptPayload",
    "ConceptType",
    "ContentType",
    "CuratorOutput",
    "DistillCurateInput",
    "DistillCurateResult",
    "DistillInput",
    "DistillOutput",
    "DocumentError",
    "DocumentRecord",
    "FlashcardFormat",
    "FlashcardPayload",
    "FlowResult",
    "InsertResult",
    "KIND_CONCEPT",
    "KIND_FLASHCARD",
    "KIND_RESEARCH_REPORT",
    "KIND_WEB_PROPOSAL",
    "RelatedDoc",
    "ReportPayload",
    "RunKind",
    "RunRecord",
    "RunStatus",
    "RunStepEvent",
    "RunStepRecord",
    "RunTrace",
    "SourceKind",
    "SourceWatchRecord",
    "StepStatus",
    "StepType",
    "TagCount",
    "TerminationReason",
    "TopicRecord",
    "TopicReportInput",
    "TopicReportOutput",
    "TopicRunIds",
    "TopicRunResult",
    "TopicStageError",
    "WebProposal",
    "WebScoutInput",
    "WebScoutOutput",
    "parse_artifact_content",
]
