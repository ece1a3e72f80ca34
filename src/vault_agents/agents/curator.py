"""Curator pipeline: tag a document, optionally categorize it and find related documents."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..errors import DocumentNotFoundError, VaultAgentsError
from ..models import CuratorOutput, DocumentRecord, RelatedDoc, StepStatus
from ..repositories.documents import DocumentRepository
from .base import BaseAgent, SkipStep, StepSink
from .graph import END, StepGraph
from .tags import UNCATEGORIZED, categorize, extract_tag_candidates, finalize_tags

RELATED_LIMIT = 10


class CuratorState(BaseModel):
    document_id: int
    enable_categorization: bool = True
    document: Optional[DocumentRecord] = None
    raw_tags: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    category: str = UNCATEGORIZED
    related_docs: List[RelatedDoc] = Field(default_factory=list)
    error: Optional[str] = None
    not_found: bool = False


class CuratorAgent(BaseAgent):
    """Runs load_document -> extract_tags -> categorize -> find_related_docs -> persist_tags."""

    def __init__(self, gateway, documents: DocumentRepository, enable_categorization: bool = True) -> None:  # type: ignore[no-untyped-def]
        super().__init__("curator", gateway)
        self._documents = documents
        self._enable_categorization = enable_categorization

    def run(
        self,
        document_id: int,
        on_step: Optional[StepSink] = None,
        enable_categorization: Optional[bool] = None,
    ) -> CuratorOutput:
        """Curate one document. ``enable_categorization`` overrides the agent default for this call."""

        on_step = self.sink(on_step)
        if enable_categorization is None:
            enable_categorization = self._enable_categorization
        self.emit(
            on_step,
            "curator_start",
            StepStatus.RUNNING,
            input={"document_id": document_id, "enable_categorization": enable_categorization},
        )
        state = CuratorState(document_id=document_id, enable_categorization=enable_categorization)
        final = self._build_graph(on_step).run(state)
        if final.error:
            self.emit(on_step, "curator_complete", StepStatus.ERROR, error=final.error)
            if final.not_found:
                raise DocumentNotFoundError(str(document_id))
            raise VaultAgentsError(final.error)
        output = CuratorOutput(tags=final.tags, category=final.category, related_docs=final.related_docs)
        self.emit(on_step, "curator_complete", StepStatus.OK, output=output.model_dump(mode="json"))
        return output

    def _build_graph(self, on_step: StepSink) -> StepGraph[CuratorState]:
        def stop_on_error(next_step: str):  # type: ignore[no-untyped-def]
            return lambda state: END if state.error else next_step

        graph: StepGraph[CuratorState] = StepGraph("curator")
        graph.add_step(
            "load_document",
            self.traced("load_document", self._load_document, on_step, lambda p: {"found": p.get("document") is not None}),
            stop_on_error("extract_tags"),
        )
        graph.add_step(
            "extract_tags",
            self.traced("extract_tags", self._extract_tags, on_step, lambda p: {"raw": p["raw_tags"], "tags": p["tags"]}),
            stop_on_error("categorize"),
        )
        graph.add_step(
            "categorize",
            self.traced("categorize", self._categorize, on_step, lambda p: {"category": p["category"]}),
            "find_related_docs",
        )
        graph.add_step(
            "find_related_docs",
            self.traced("find_related_docs", self._find_related, on_step, lambda p: {"count": len(p["related_docs"])}),
            stop_on_error("persist_tags"),
        )
        graph.add_step("persist_tags", self.traced("persist_tags", self._persist_tags, on_step), END)
        return graph

    def _load_document(self, state: CuratorState) -> Dict[str, Any]:
        document = self._documents.get(state.document_id)
        if document is None:
            return {"error": f"Document {state.document_id} not found", "not_found": True}
        return {"document": document}

    def _extract_tags(self, state: CuratorState) -> Dict[str, Any]:
        assert state.document is not None
        raw = extract_tag_candidates(self._gateway, state.document.title, state.document.content)
        return {"raw_tags": raw, "tags": finalize_tags(raw)}

    def _categorize(self, state: CuratorState) -> Dict[str, Any]:
        if not state.enable_categorization:
            raise SkipStep("categorization disabled", {"category": UNCATEGORIZED})
        if not state.tags:
            raise SkipStep("no tags", {"category": UNCATEGORIZED})
        assert state.document is not None
        return {"category": categorize(self._gateway, state.document.title, state.tags)}

    def _find_related(self, state: CuratorState) -> Dict[str, Any]:
        return {"related_docs": self._documents.find_related(state.document_id, state.tags, limit=RELATED_LIMIT)}

    def _persist_tags(self, state: CuratorState) -> Dict[str, Any]:
        if not state.tags:
            raise SkipStep("no tags to persist")
        self._documents.set_tags(state.document_id, state.tags)
        if state.category != UNCATEGORIZED:
            self._documents.set_category(state.document_id, state.category)
        return {}


__all__ = ["CuratorAgent", "CuratorState"]
