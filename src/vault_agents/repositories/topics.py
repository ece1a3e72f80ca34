"""Saved research topics driving the topic report workflow."""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

from sqlalchemy import select

from ..database import SavedTopic, session_scope
from ..models import TopicRecord

_UPDATABLE = (
    "name",
    "goal",
    "focus_tags",
    "max_docs_per_run",
    "min_quality_results",
    "min_relevance_score",
    "max_iterations",
    "max_queries",
    "is_active",
)


class TopicRepository:
    def __init__(self, session_factory) -> None:  # type: ignore[no-untyped-def]
        self._session_factory = session_factory

    def create(self, name: str, goal: str, focus_tags: Optional[List[str]] = None, **options: Any) -> TopicRecord:
        with session_scope(self._session_factory) as session:
            topic = SavedTopic(name=name.strip(), goal=goal.strip(), focus_tags=list(focus_tags or []))
            for key, value in options.items():
                if key in _UPDATABLE and value is not None:
                    setattr(topic, key, value)
            session.add(topic)
            session.flush()
            return TopicRecord.model_validate(topic)

    def list_topics(self, active_only: bool = True) -> List[TopicRecord]:
        stmt = select(SavedTopic).order_by(SavedTopic.id)
        if active_only:
            stmt = stmt.where(SavedTopic.is_active.is_(True))
        with session_scope(self._session_factory) as session:
            return [TopicRecord.model_validate(topic) for topic in session.scalars(stmt).all()]

    def get_by_ids(self, topic_ids: Sequence[int], include_inactive: bool = False) -> List[TopicRecord]:
        if not topic_ids:
            return []
        stmt = select(SavedTopic).where(SavedTopic.id.in_(list(topic_ids))).order_by(SavedTopic.id)
        if not include_inactive:
            stmt = stmt.where(SavedTopic.is_active.is_(True))
        with session_scope(self._session_factory) as session:
            return [TopicRecord.model_validate(topic) for topic in session.scalars(stmt).all()]

    def update(self, topic_id: int, **fields: Any) -> Optional[TopicRecord]:
        with session_scope(self._session_factory) as session:
            topic = session.get(SavedTopic, topic_id)
            if topic is None:
                return None
            for key, value in fields.items():
                if key in _UPDATABLE and value is not None:
                    setattr(topic, key, value)
            session.flush()
            return TopicRecord.model_validate(topic)

    def delete(self, topic_id: int) -> bool:
        with session_scope(self._session_factory) as session:
            topic = session.get(SavedTopic, topic_id)
            if topic is None:
                return False
            session.delete(topic)
            return True


__all__ = ["TopicRepository"]
