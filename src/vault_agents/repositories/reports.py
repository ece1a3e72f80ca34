"""Research reports stored as approved (research, research-report) artifacts."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select, update

from ..database import Artifact, session_scope, utcnow
from ..models import AGENT_RESEARCH, KIND_RESEARCH_REPORT, ArtifactRecord, ArtifactStatus
from .artifacts import approve_in_group


class ReportRepository:
    """Reports skip the inbox: a new report is approved on insert and supersedes the day's previous one."""

    def __init__(self, session_factory) -> None:  # type: ignore[no-untyped-def]
        self._session_factory = session_factory

    def insert_report(
        self,
        day: str,
        title: str,
        content: Dict[str, Any],
        source_refs: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> int:
        with session_scope(self._session_factory) as session:
            now = utcnow()
            report = Artifact(
                run_id=run_id,
                agent=AGENT_RESEARCH,
                kind=KIND_RESEARCH_REPORT,
                day=day,
                title=title,
                content=content,
                source_refs=source_refs or {},
                status=ArtifactStatus.PROPOSED.value,
                created_at=now,
            )
            session.add(report)
            session.flush()
            approve_in_group(session, report, now)
            return report.id

    def list_reports(self, limit: int = 20) -> List[ArtifactRecord]:
        stmt = (
            select(Artifact)
            .where(Artifact.agent == AGENT_RESEARCH, Artifact.kind == KIND_RESEARCH_REPORT)
            .order_by(Artifact.created_at.desc(), Artifact.id.desc())
            .limit(limit)
        )
        with session_scope(self._session_factory) as session:
            return [ArtifactRecord.model_validate(row) for row in session.scalars(stmt).all()]

    def get_report(self, report_id: int) -> Optional[ArtifactRecord]:
        with session_scope(self._session_factory) as session:
            report = session.get(Artifact, report_id)
            if report is None or report.kind != KIND_RESEARCH_REPORT:
                return None
            return ArtifactRecord.model_validate(report)

    def mark_report_read(self, report_id: int) -> bool:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(Artifact)
                .where(Artifact.id == report_id, Artifact.kind == KIND_RESEARCH_REPORT)
                .values(read_at=utcnow())
            )
            return result.rowcount == 1


__all__ = ["ReportRepository"]
