from types import SimpleNamespace

import pytest
from pydantic import BaseModel

from vault_agents.config import OpenAIConfig
from vault_agents.errors import ModelGatewayError
from vault_agents.services.model_gateway import OpenAIModelGateway, ToolSpec, human_message


class _DummyCompletions:
    def __init__(self, message):
        self.message = message
        self.last_kwargs = None

    def create(self, **kwargs):
        self.last_kwargs = kwargs
        return SimpleNamespace(choices=[SimpleNamespace(message=self.message)], usage=SimpleNamespace(total_tokens=42))


def _gateway(message):
    completions = _DummyCompletions(message)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIModelGateway(OpenAIConfig(model="gpt-test"), client=client), completions


class Answer(BaseModel):
    value: int


def test_invoke_binds_tools_and_parses_tool_calls():
    raw_call = SimpleNamespace(id="c1", function=SimpleNamespace(name="search_web", arguments='{"query": "rust"}'))
    gateway, completions = _gateway(SimpleNamespace(content=None, tool_calls=[raw_call]))
    tool = ToolSpec(name="search_web", description="Search", parameters={"type": "object", "properties": {}})

    reply = gateway.invoke([human_message("hi")], tools=[tool])

    assert reply.tool_calls[0].name == "search_web"
    assert reply.tool_calls[0].args == {"query": "rust"}
    assert reply.token_estimate == 42
    assert completions.last_kwargs["model"] == "gpt-test"
    assert completions.last_kwargs["tools"][0]["function"]["name"] == "search_web"


def test_structured_validates_json_output():
    gateway, completions = _gateway(SimpleNamespace(content='{"value": 3}', tool_calls=None))
    assert gateway.structured("give me three", Answer).value == 3
    assert completions.last_kwargs["response_format"] == {"type": "json_object"}

    bad, _ = _gateway(SimpleNamespace(content='{"value": "many"}', tool_calls=None))
    with pytest.raises(ModelGatewayError):
        bad.structured("give me three", Answer)
