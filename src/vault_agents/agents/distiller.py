"""Distiller pipeline: extract concepts from documents and turn them into flashcards."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..database import utcnow
from ..errors import VaultAgentsError
from ..models import (
    AGENT_DISTILLER,
    KIND_CONCEPT,
    KIND_FLASHCARD,
    ConceptPayload,
    ConceptType,
    DistillInput,
    DistillOutput,
    DocumentRecord,
    FlashcardFormat,
    FlashcardPayload,
    StepStatus,
)
from ..repositories.artifacts import ArtifactRepository
from ..repositories.distiller import DistillerRepository
from ..repositories.documents import DocumentRepository
from .base import BaseAgent, SkipStep, StepSink
from .graph import END, StepGraph

MAX_CONTENT_CHARS = 4000
MIN_CONCEPTS = 2
MAX_CONCEPTS = 5
MAX_FLASHCARDS_PER_CONCEPT = 3


class ConceptDraft(BaseModel):
    label: str
    type: str = ConceptType.FACT.value
    summary: str
    evidence: List[str] = Field(default_factory=list)


class ConceptExtraction(BaseModel):
    concepts: List[ConceptDraft] = Field(default_factory=list)


class FlashcardDraft(BaseModel):
    format: str = FlashcardFormat.QA.value
    front: str
    back: str


class FlashcardSet(BaseModel):
    cards: List[FlashcardDraft] = Field(default_factory=list)


class ExtractedConcept(BaseModel):
    document_id: int
    concept_id: int
    payload: ConceptPayload


class CreatedFlashcard(BaseModel):
    document_id: int
    concept_id: int
    flashcard_id: int
    payload: FlashcardPayload


class DistillerState(BaseModel):
    input: DistillInput
    day: str
    run_id: Optional[str] = None
    documents: List[DocumentRecord] = Field(default_factory=list)
    concepts: List[ExtractedConcept] = Field(default_factory=list)
    flashcards: List[CreatedFlashcard] = Field(default_factory=list)
    artifact_ids: List[int] = Field(default_factory=list)
    concepts_proposed: int = 0
    flashcards_proposed: int = 0
    error: Optional[str] = None


def to_concept(draft: ConceptDraft) -> ConceptPayload:
    try:
        concept_type = ConceptType(draft.type.strip().lower())
    except ValueError:
        concept_type = ConceptType.FACT
    return ConceptPayload(
        label=draft.label.strip()[:100],
        type=concept_type,
        summary=draft.summary.strip()[:500],
        evidence=[quote.strip() for quote in draft.evidence if quote.strip()][:3],
    )


def to_flashcard(draft: FlashcardDraft, concept_label: str) -> FlashcardPayload:
    card_format = FlashcardFormat.CLOZE if draft.format.strip().lower() == "cloze" else FlashcardFormat.QA
    return FlashcardPayload(
        format=card_format,
        front=draft.front.strip()[:1000],
        back=draft.back.strip()[:2000],
        concept_label=concept_label,
    )


class DistillerAgent(BaseAgent):
    def __init__(
        self,
        gateway,  # type: ignore[no-untyped-def]
        documents: DocumentRepository,
        distiller_repo: DistillerRepository,
        artifacts: ArtifactRepository,
    ) -> None:
        super().__init__("distiller", gateway)
        self._documents = documents
        self._repo = distiller_repo
        self._artifacts = artifacts

    def run(
        self,
        request: DistillInput,
        on_step: Optional[StepSink] = None,
        *,
        run_id: Optional[str] = None,
        day: Optional[str] = None,
    ) -> DistillOutput:
        on_step = self.sink(on_step)
        day = day or utcnow().date().isoformat()
        self.emit(on_step, "distiller_start", StepStatus.RUNNING, input=request.model_dump(mode="json"))
        state = DistillerState(input=request, day=day, run_id=run_id)
        final = self._build_graph(on_step).run(state)
        if final.error:
            self.emit(on_step, "distiller_complete", StepStatus.ERROR, error=final.error)
            raise VaultAgentsError(final.error)
        output = DistillOutput(
            docs_processed=len(final.documents),
            concepts_proposed=final.concepts_proposed,
            flashcards_proposed=final.flashcards_proposed,
            artifact_ids=final.artifact_ids,
        )
        self.emit(on_step, "distiller_complete", StepStatus.OK, output=output.model_dump(mode="json"))
        return output

    def _build_graph(self, on_step: StepSink) -> StepGraph[DistillerState]:
        def proceed(next_step: str):  # type: ignore[no-untyped-def]
            return lambda state: END if state.error or not state.documents else next_step

        graph: StepGraph[DistillerState] = StepGraph("distiller")
        graph.add_step(
            "load_documents",
            self.traced("load_documents", self._load_documents, on_step, lambda p: {"count": len(p["documents"])}),
            proceed("extract_concepts"),
        )
        graph.add_step(
            "extract_concepts",
            self.traced("extract_concepts", self._extract_concepts, on_step, lambda p: {"count": len(p["concepts"])}),
            proceed("create_flashcards"),
        )
        graph.add_step(
            "create_flashcards",
            self.traced("create_flashcards", self._create_flashcards, on_step, lambda p: {"count": len(p["flashcards"])}),
            proceed("propose_artifacts"),
        )
        graph.add_step(
            "propose_artifacts",
            self.traced(
                "propose_artifacts",
                self._propose_artifacts,
                on_step,
                lambda p: {"concepts": p["concepts_proposed"], "flashcards": p["flashcards_proposed"]},
            ),
            END,
        )
        return graph

    def _load_documents(self, state: DistillerState) -> Dict[str, Any]:
        request = state.input
        limit = max(1, request.limit)
        if request.document_ids:
            documents = self._documents.get_by_ids(request.document_ids)[:limit]
        elif request.tag:
            documents = self._documents.list_by_tag(request.tag, limit=limit)
        else:
            documents = self._documents.list_recent(limit=limit)
        return {"documents": documents}

    def _extract_concepts(self, state: DistillerState) -> Dict[str, Any]:
        extracted: List[ExtractedConcept] = []
        for document in state.documents:
            prompt = (
                f"Extract between {MIN_CONCEPTS} and {MAX_CONCEPTS} key concepts from this document. "
                "For each give a short label, a type (definition, principle, framework, procedure, fact), "
                "a summary under 500 characters and up to 3 verbatim evidence quotes.\n\n"
                f"Title: {document.title}\n\n{document.content[:MAX_CONTENT_CHARS]}"
            )
            try:
                result = self._gateway.structured(prompt, ConceptExtraction, system_prompt="You distill study notes.")
            except Exception:  # noqa: BLE001
                self._logger.warning("Concept extraction failed for document %s", document.id, exc_info=True)
                continue
            for draft in result.concepts[:MAX_CONCEPTS]:
                try:
                    concept = to_concept(draft)
                    concept_id = self._repo.save_concept(document.id, concept)
                except Exception:  # noqa: BLE001
                    self._logger.warning("Skipping concept %r from document %s", draft.label, document.id, exc_info=True)
                    continue
                extracted.append(ExtractedConcept(document_id=document.id, concept_id=concept_id, payload=concept))
        return {"concepts": extracted}

    def _create_flashcards(self, state: DistillerState) -> Dict[str, Any]:
        if not state.concepts:
            raise SkipStep("no concepts extracted")
        cards: List[CreatedFlashcard] = []
        for concept in state.concepts:
            prompt = (
                f"Write 1 to {MAX_FLASHCARDS_PER_CONCEPT} flashcards for the concept below. "
                "Use format 'qa' for question/answer or 'cloze' for fill-in-the-blank.\n\n"
                f"Concept: {concept.payload.label}\nSummary: {concept.payload.summary}"
            )
            try:
                result = self._gateway.structured(prompt, FlashcardSet, system_prompt="You write spaced-repetition flashcards.")
            except Exception:  # noqa: BLE001
                self._logger.warning("Flashcard generation failed for concept %s", concept.concept_id, exc_info=True)
                continue
            for draft in result.cards[:MAX_FLASHCARDS_PER_CONCEPT]:
                try:
                    card = to_flashcard(draft, concept.payload.label)
                    card_id = self._repo.save_flashcard(concept.concept_id, concept.document_id, card)
                except Exception:  # noqa: BLE001
                    self._logger.warning("Skipping flashcard for concept %s", concept.concept_id, exc_info=True)
                    continue
                cards.append(
                    CreatedFlashcard(
                        document_id=concept.document_id,
                        concept_id=concept.concept_id,
                        flashcard_id=card_id,
                        payload=card,
                    )
                )
        return {"flashcards": cards}

    def _propose_artifacts(self, state: DistillerState) -> Dict[str, Any]:
        artifact_ids: List[int] = []
        concepts_proposed = 0
        flashcards_proposed = 0
        for concept in state.concepts:
            try:
                artifact_ids.append(
                    self._artifacts.insert_artifact(
                        AGENT_DISTILLER,
                        KIND_CONCEPT,
                        state.day,
                        concept.payload.label,
                        concept.payload.model_dump(mode="json"),
                        {"document_id": concept.document_id, "concept_id": concept.concept_id},
                        run_id=state.run_id,
                    )
                )
                concepts_proposed += 1
            except Exception:  # noqa: BLE001
                self._logger.warning("Could not propose concept %s", concept.concept_id, exc_info=True)
        for card in state.flashcards:
            try:
                artifact_ids.append(
                    self._artifacts.insert_artifact(
                        AGENT_DISTILLER,
                        KIND_FLASHCARD,
                        state.day,
                        f"Flashcard: {card.payload.front[:50]}...",
                        card.payload.model_dump(mode="json"),
                        {
                            "document_id": card.document_id,
                            "concept_id": card.concept_id,
                            "flashcard_id": card.flashcard_id,
                        },
                        run_id=state.run_id,
                    )
                )
                flashcards_proposed += 1
            except Exception:  # noqa: BLE001
                self._logger.warning("Could not propose flashcard %s", card.flashcard_id, exc_info=True)
        return {
            "artifact_ids": artifact_ids,
            "concepts_proposed": concepts_proposed,
            "flashcards_proposed": flashcards_proposed,
        }


__all__ = ["DistillerAgent", "DistillerState", "ConceptExtraction", "FlashcardSet"]
