"""Artifact review queue: proposed, approved, rejected and superseded outputs."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..database import Artifact, session_scope, utcnow
from ..models import ArtifactRecord, ArtifactStatus
from ..utils.logging import get_logger


class ArtifactRepository:
    """Stores agent outputs and enforces one approved artifact per (agent, kind, day).

    Approval runs in a single transaction: the sibling group is locked with
    ``SELECT ... FOR UPDATE`` (sqlite ignores the clause and serialises the
    write transaction instead), the target is moved out of ``proposed`` with a
    conditional ``UPDATE`` and every other approved sibling is superseded.
    """

    def __init__(self, session_factory) -> None:  # type: ignore[no-untyped-def]
        self._session_factory = session_factory
        self._logger = get_logger("artifacts")

    def insert_artifact(
        self,
        agent: str,
        kind: str,
        day: str,
        title: str,
        content: Dict[str, Any],
        source_refs: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> int:
        with session_scope(self._session_factory) as session:
            artifact = Artifact(
                run_id=run_id,
                agent=agent,
                kind=kind,
                day=day,
                title=title,
                content=content,
                source_refs=source_refs or {},
                status=ArtifactStatus.PROPOSED.value,
                created_at=utcnow(),
            )
            session.add(artifact)
            session.flush()
            return artifact.id

    def approve_artifact(self, artifact_id: int) -> bool:
        with session_scope(self._session_factory) as session:
            target = session.get(Artifact, artifact_id)
            if target is None or target.status != ArtifactStatus.PROPOSED.value:
                return False
            now = utcnow()
            approved = approve_in_group(session, target, now)
        if approved:
            self._logger.info("Approved artifact %s (%s/%s %s)", artifact_id, target.agent, target.kind, target.day)
        return approved

    def reject_artifact(self, artifact_id: int) -> bool:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(Artifact)
                .where(Artifact.id == artifact_id, Artifact.status == ArtifactStatus.PROPOSED.value)
                .values(status=ArtifactStatus.REJECTED.value, reviewed_at=utcnow())
            )
            return result.rowcount == 1

    def get_artifact(self, artifact_id: int) -> Optional[ArtifactRecord]:
        with session_scope(self._session_factory) as session:
            artifact = session.get(Artifact, artifact_id)
            return ArtifactRecord.model_validate(artifact) if artifact else None

    def list_inbox_artifacts(self, day: str) -> List[ArtifactRecord]:
        return self._list(day=day, status=ArtifactStatus.PROPOSED)

    def list_active_artifacts(self, day: str) -> List[ArtifactRecord]:
        return self._list(day=day, status=ArtifactStatus.APPROVED)

    def list_artifacts_by_day(self, day: str) -> List[ArtifactRecord]:
        return self._list(day=day)

    def list_by_agent_and_kind(
        self,
        agent: str,
        kind: str,
        day: Optional[str] = None,
        status: Optional[ArtifactStatus] = None,
    ) -> List[ArtifactRecord]:
        return self._list(day=day, status=status, agent=agent, kind=kind)

    def count_artifacts_by_status(self, day: str) -> Dict[str, int]:
        counts = {status.value: 0 for status in ArtifactStatus}
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(Artifact.status, func.count(Artifact.id)).where(Artifact.day == day).group_by(Artifact.status)
            ).all()
        for status, count in rows:
            counts[status] = count
        return counts

    def _list(
        self,
        *,
        day: Optional[str] = None,
        status: Optional[ArtifactStatus] = None,
        agent: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> List[ArtifactRecord]:
        stmt = select(Artifact).order_by(Artifact.created_at, Artifact.id)
        if day is not None:
            stmt = stmt.where(Artifact.day == day)
        if status is not None:
            stmt = stmt.where(Artifact.status == ArtifactStatus(status).value)
        if agent is not None:
            stmt = stmt.where(Artifact.agent == agent)
        if kind is not None:
            stmt = stmt.where(Artifact.kind == kind)
        with session_scope(self._session_factory) as session:
            return [ArtifactRecord.model_validate(row) for row in session.scalars(stmt).all()]


def approve_in_group(session: Session, target: Artifact, now) -> bool:  # type: ignore[no-untyped-def]
    """Approve ``target`` and supersede its approved siblings inside the caller's transaction.

    Returns ``False`` when another writer moved the target out of ``proposed``
    first; the caller's transaction then carries no changes.
    """

    group = (
        (Artifact.agent == target.agent),
        (Artifact.kind == target.kind),
        (Artifact.day == target.day),
    )
    session.execute(select(Artifact.id).where(*group).with_for_update()).all()
    result = session.execute(
        update(Artifact)
        .where(Artifact.id == target.id, Artifact.status == ArtifactStatus.PROPOSED.value)
        .values(status=ArtifactStatus.APPROVED.value, reviewed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    session.execute(
        update(Artifact)
        .where(*group, Artifact.id != target.id, Artifact.status == ArtifactStatus.APPROVED.value)
        .values(status=ArtifactStatus.SUPERSEDED.value, reviewed_at=now)
        .execution_options(synchronize_session=False)
    )
    return True


__all__ = ["ArtifactRepository", "approve_in_group"]
