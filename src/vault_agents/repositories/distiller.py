"""Storage for concepts and flashcards extracted by the distiller."""

from __future__ import annotations

from typing import List

from sqlalchemy import select

from ..database import Concept, Flashcard, session_scope, utcnow
from ..models import ConceptPayload, FlashcardPayload


class DistillerRepository:
    def __init__(self, session_factory) -> None:  # type: ignore[no-untyped-def]
        self._session_factory = session_factory

    def save_concept(self, document_id: int, concept: ConceptPayload) -> int:
        with session_scope(self._session_factory) as session:
            row = Concept(
                document_id=document_id,
                label=concept.label,
                type=concept.type.value,
                summary=concept.summary,
                evidence=list(concept.evidence),
                created_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return row.id

    def save_flashcard(self, concept_id: int, document_id: int, card: FlashcardPayload) -> int:
        with session_scope(self._session_factory) as session:
            row = Flashcard(
                concept_id=concept_id,
                document_id=document_id,
                format=card.format.value,
                front=card.front,
                back=card.back,
                created_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return row.id

    def list_concepts(self, document_id: int) -> List[ConceptPayload]:
        stmt = select(Concept).where(Concept.document_id == document_id).order_by(Concept.id)
        with session_scope(self._session_factory) as session:
            return [
                ConceptPayload(label=row.label, type=row.type, summary=row.summary, evidence=row.evidence or [])
                for row in session.scalars(stmt).all()
            ]

    def count_flashcards(self, document_id: int) -> int:
        stmt = select(Flashcard.id).where(Flashcard.document_id == document_id)
        with session_scope(self._session_factory) as session:
            return len(session.scalars(stmt).all())


__all__ = ["DistillerRepository"]
