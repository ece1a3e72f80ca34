from .flows import FlowOrchestrator

__all__ = ["FlowOrchestrator"]
