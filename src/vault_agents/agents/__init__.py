"""Agents and pipelines driven by the step-graph interpreter."""

from .curator import CuratorAgent
from .distiller import DistillerAgent
from .graph import END, StepGraph
from .web_scout import WebScoutAgent

__all__ = ["CuratorAgent", "DistillerAgent", "END", "StepGraph", "WebScoutAgent"]
