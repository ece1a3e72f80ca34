"""Base agent class implementing step emission shared by all pipelines."""

from __future__ import annotations

from abc import ABC
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel

from ..models import RunStepEvent, StepStatus, StepType
from ..utils.logging import get_logger

StepSink = Callable[[RunStepEvent], None]


class SkipStep(Exception):
    """Raised by a node to report itself as skipped, optionally with a state patch."""

    def __init__(self, reason: str, patch: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.patch = dict(patch or {})


def _discard(_: RunStepEvent) -> None:
    return None


class BaseAgent(ABC):
    """Base class for agents; steps are reported through an ``on_step`` callback."""

    def __init__(self, name: str, gateway) -> None:  # type: ignore[no-untyped-def]
        self.name = name
        self._gateway = gateway
        self._logger = get_logger(f"agents.{name}")

    @staticmethod
    def sink(on_step: Optional[StepSink]) -> StepSink:
        return on_step or _discard

    def emit(
        self,
        on_step: StepSink,
        name: str,
        status: StepStatus,
        *,
        type: StepType = StepType.AGENT,
        input: Any = None,
        output: Any = None,
        error: Optional[str] = None,
        token_estimate: Optional[int] = None,
    ) -> None:
        on_step(
            RunStepEvent(
                type=type,
                name=name,
                status=status,
                input=input,
                output=output,
                error=error,
                token_estimate=token_estimate,
            )
        )

    def traced(
        self,
        name: str,
        fn: Callable[[Any], Optional[Mapping[str, Any]]],
        on_step: StepSink,
        summarize: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ) -> Callable[[Any], Dict[str, Any]]:
        """Wrap a graph node so it emits ``running`` then ``ok``/``skipped``/``error``.

        A node failure becomes ``{"error": message}`` in the state instead of
        propagating, leaving routing to decide what happens next.
        """

        def node(state: BaseModel) -> Dict[str, Any]:
            self.emit(on_step, name, StepStatus.RUNNING)
            try:
                patch = dict(fn(state) or {})
            except SkipStep as skip:
                self.emit(on_step, name, StepStatus.SKIPPED, output={"reason": skip.reason})
                return skip.patch
            except Exception as exc:  # noqa: BLE001
                self._logger.exception("Step %s failed", name)
                self.emit(on_step, name, StepStatus.ERROR, error=str(exc))
                return {"error": str(exc)}
            if patch.get("error"):
                self.emit(on_step, name, StepStatus.ERROR, error=str(patch["error"]))
            else:
                self.emit(on_step, name, StepStatus.OK, output=summarize(patch) if summarize else None)
            return patch

        return node


__all__ = ["BaseAgent", "SkipStep", "StepSink"]
