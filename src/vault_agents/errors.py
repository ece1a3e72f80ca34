"""Exception hierarchy shared across stores, agents and flows."""

from __future__ import annotations


class VaultAgentsError(Exception):
    """Base class for all errors raised by vault-agents."""


class RunNotFoundError(VaultAgentsError, LookupError):
    """Raised when a step is appended to, or a run finished for, an unknown run id."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run {run_id} not found")
        self.run_id = run_id


class DocumentNotFoundError(VaultAgentsError, LookupError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class NoTopicsError(VaultAgentsError):
    """Raised when a topic report request resolves to zero topics."""


class NoResearchTagsError(VaultAgentsError):
    """Raised when the vault has no tags to derive a research goal from."""


class InvalidSourceUrlError(VaultAgentsError, ValueError):
    pass


class ModelGatewayError(VaultAgentsError):
    """Raised when the model returns output that does not match the requested schema."""


__all__ = [
    "VaultAgentsError",
    "RunNotFoundError",
    "DocumentNotFoundError",
    "NoTopicsError",
    "NoResearchTagsError",
    "InvalidSourceUrlError",
    "ModelGatewayError",
]
