"""Append-only run trace persisted in the relational store."""

from __future__ import annotations

import uuid
from typing import List, Optional, Union

from sqlalchemy import func, select

from ..database import Run, RunStep, session_scope, utcnow
from ..errors import RunNotFoundError
from ..models import RunKind, RunRecord, RunStatus, RunStepEvent, RunStepRecord, RunTrace
from ..utils.logging import get_logger


class RunTraceStore:
    """Creates runs, appends their steps in call order and closes them.

    Step sequence numbers are assigned inside the append transaction as
    ``MAX(seq) + 1`` for the run, so the trace order is insertion order and is
    never re-sorted by timestamp. ``finish_run`` is idempotent: once a run has
    left ``running`` further calls leave status and ``ended_at`` untouched and
    return ``False``.
    """

    def __init__(self, session_factory) -> None:  # type: ignore[no-untyped-def]
        self._session_factory = session_factory
        self._logger = get_logger("run_trace")

    def create_run(self, kind: Union[RunKind, str]) -> str:
        run_id = uuid.uuid4().hex
        with session_scope(self._session_factory) as session:
            session.add(Run(id=run_id, kind=RunKind(kind).value, status=RunStatus.RUNNING.value, started_at=utcnow()))
        self._logger.debug("Created %s run %s", RunKind(kind).value, run_id)
        return run_id

    def append_step(self, run_id: str, step: RunStepEvent) -> int:
        """Append ``step`` to the run and return its sequence number."""

        with session_scope(self._session_factory) as session:
            if session.get(Run, run_id) is None:
                raise RunNotFoundError(run_id)
            current = session.scalar(select(func.max(RunStep.seq)).where(RunStep.run_id == run_id))
            seq = (current or 0) + 1
            session.add(
                RunStep(
                    run_id=run_id,
                    seq=seq,
                    timestamp=step.timestamp,
                    type=step.type.value,
                    name=step.name,
                    status=step.status.value,
                    input=_jsonable(step.input),
                    output=_jsonable(step.output),
                    error=step.error,
                    token_estimate=step.token_estimate,
                )
            )
            return seq

    def finish_run(self, run_id: str, status: Union[RunStatus, str]) -> bool:
        status = RunStatus(status)
        with session_scope(self._session_factory) as session:
            run = session.get(Run, run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            if run.status != RunStatus.RUNNING.value:
                self._logger.debug("Run %s already finished as %s; ignoring %s", run_id, run.status, status.value)
                return False
            run.status = status.value
            run.ended_at = utcnow()
        return True

    def get_run_trace(self, run_id: str) -> Optional[RunTrace]:
        with session_scope(self._session_factory) as session:
            run = session.get(Run, run_id)
            if run is None:
                return None
            steps = session.scalars(select(RunStep).where(RunStep.run_id == run_id).order_by(RunStep.seq)).all()
            return RunTrace(
                run=RunRecord.model_validate(run),
                steps=[RunStepRecord.model_validate(step) for step in steps],
            )

    def list_runs(self, limit: int = 20, kind: Optional[Union[RunKind, str]] = None) -> List[RunRecord]:
        stmt = select(Run).order_by(Run.started_at.desc()).limit(limit)
        if kind is not None:
            stmt = stmt.where(Run.kind == RunKind(kind).value)
        with session_scope(self._session_factory) as session:
            return [RunRecord.model_validate(run) for run in session.scalars(stmt).all()]


def _jsonable(value):  # type: ignore[no-untyped-def]
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


__all__ = ["RunTraceStore"]
