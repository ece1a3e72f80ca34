"""vault-agents: run-traced research and curation agents over a personal document vault."""

from .config import Settings
from .workflows.flows import FlowOrchestrator

__all__ = ["Settings", "FlowOrchestrator"]
