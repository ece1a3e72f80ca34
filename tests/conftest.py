from __future__ import annotations

import itertools
from typing import Any, Callable, Dict, List, Optional

import pytest

from vault_agents.config import Settings
from vault_agents.database import create_session_factory
from vault_agents.errors import ModelGatewayError
from vault_agents.repositories import (
    ArtifactRepository,
    DocumentRepository,
    ReportRepository,
    SourceWatchRepository,
    TopicRepository,
)
from vault_agents.services.model_gateway import ModelReply, ToolCall
from vault_agents.services.web_search import SearchResult

_call_ids = itertools.count(1)


def call(name: str, **args: Any) -> ToolCall:
    return ToolCall(id=f"call_{next(_call_ids)}", name=name, args=args)


class FakeGateway:
    """Scripted stand-in for the model gateway.

    ``replies`` are returned by ``invoke`` in order (a callable reply receives
    the messages); ``structured`` maps schema class names to a payload, a
    callable taking the prompt, or an exception to raise.
    """

    def __init__(
        self,
        replies: Optional[List[Any]] = None,
        structured: Optional[Dict[str, Any]] = None,
        invoke: Optional[Callable[[List[Any]], ModelReply]] = None,
    ) -> None:
        self.replies = list(replies or [])
        self.handlers = dict(structured or {})
        self.invoke_handler = invoke
        self.invocations: List[List[Any]] = []
        self.structured_calls: List[str] = []

    def invoke(self, messages, tools=None):  # type: ignore[no-untyped-def]
        self.invocations.append(list(messages))
        if self.invoke_handler is not None:
            return self.invoke_handler(list(messages))
        if not self.replies:
            return ModelReply(content="Done.")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply(messages) if callable(reply) else reply

    def structured(self, prompt, schema, *, system_prompt=None):  # type: ignore[no-untyped-def]
        self.structured_calls.append(schema.__name__)
        handler = self.handlers.get(schema.__name__)
        if handler is None:
            raise ModelGatewayError(f"no scripted output for {schema.__name__}")
        if isinstance(handler, Exception):
            raise handler
        value = handler(prompt) if callable(handler) else handler
        return schema.model_validate(value)


class FakeSearch:
    def __init__(self, results: Optional[List[SearchResult]] = None) -> None:
        self.results = list(results or [])
        self.calls: List[Dict[str, Any]] = []

    def search(self, query, max_results=8, include_domains=None, exclude_domains=None):  # type: ignore[no-untyped-def]
        self.calls.append(
            {
                "query": query,
                "max_results": max_results,
                "include_domains": include_domains,
                "exclude_domains": exclude_domains,
            }
        )
        return list(self.results[:max_results])


@pytest.fixture
def session_factory(tmp_path):
    return create_session_factory(f"sqlite:///{tmp_path / 'vault.db'}")


@pytest.fixture
def settings(tmp_path):
    return Settings(database={"url": f"sqlite:///{tmp_path / 'vault.db'}"})


@pytest.fixture
def documents(session_factory):
    return DocumentRepository(session_factory)


@pytest.fixture
def artifacts(session_factory):
    return ArtifactRepository(session_factory)


@pytest.fixture
def reports(session_factory):
    return ReportRepository(session_factory)


@pytest.fixture
def source_watch(session_factory):
    return SourceWatchRepository(session_factory)


@pytest.fixture
def topics(session_factory):
    return TopicRepository(session_factory)
