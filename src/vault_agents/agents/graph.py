"""Explicit step-graph interpreter used by the curator, distiller and web scout pipelines.

A graph is a set of named steps. Each step is a function taking the current
state and returning a patch (a mapping of fields to replace). After a step the
graph asks that step's router for the next step name, or :data:`END`.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Generic, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel

END = "__end__"

S = TypeVar("S", bound=BaseModel)
StepFn = Callable[[S], Optional[Mapping[str, Any]]]
Router = Callable[[S], str]


class GraphError(RuntimeError):
    pass


class StepGraph(Generic[S]):
    def __init__(self, name: str, max_transitions: int = 200) -> None:
        self.name = name
        self._steps: Dict[str, StepFn] = {}
        self._routes: Dict[str, Union[str, Router]] = {}
        self._entry: Optional[str] = None
        self._max_transitions = max_transitions

    def add_step(self, name: str, fn: StepFn, then: Union[str, Router] = END) -> "StepGraph[S]":
        if name == END or name in self._steps:
            raise GraphError(f"Invalid or duplicate step name {name!r} in graph {self.name}")
        self._steps[name] = fn
        self._routes[name] = then
        if self._entry is None:
            self._entry = name
        return self

    def set_entry(self, name: str) -> "StepGraph[S]":
        self._entry = name
        return self

    def run(self, state: S) -> S:
        """Interpret the graph from its entry step until a router returns :data:`END`."""

        current = self._entry
        transitions = 0
        while current is not None and current != END:
            if current not in self._steps:
                raise GraphError(f"Graph {self.name} has no step named {current!r}")
            transitions += 1
            if transitions > self._max_transitions:
                raise GraphError(f"Graph {self.name} exceeded {self._max_transitions} transitions")
            patch = self._steps[current](state)
            if patch:
                state = state.model_copy(update=dict(patch))
            route = self._routes[current]
            current = route(state) if callable(route) else route
        return state


__all__ = ["END", "GraphError", "StepGraph"]
