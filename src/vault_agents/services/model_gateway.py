"""Model gateway wrapping the OpenAI chat completions API.

Agents talk to the language model through two calls: ``invoke`` for a chat
turn with an optional bound tool set, and ``structured`` for extracting an
object that validates against a pydantic schema. Both are retried on transient
transport errors.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from openai import APIConnectionError, APITimeoutError, InternalServerError, OpenAI, RateLimitError
from pydantic import BaseModel, Field, ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import OpenAIConfig
from ..errors import ModelGatewayError
from ..utils.logging import get_logger

T = TypeVar("T", bound=BaseModel)

_TRANSIENT = (APIConnectionError, APITimeoutError, InternalServerError, RateLimitError)


class ToolCall(BaseModel):
    id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolSpec(BaseModel):
    """Function tool exposed to the model; ``parameters`` is a JSON schema object."""

    name: str
    description: str
    parameters: Dict[str, Any]


class ChatMessage(BaseModel):
    role: str
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None


class ModelReply(BaseModel):
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    token_estimate: int = 0


def estimate_tokens(text: str) -> int:
    return max(1, len(text or "") // 4)


def system_message(content: str) -> ChatMessage:
    return ChatMessage(role="system", content=content)


def human_message(content: str) -> ChatMessage:
    return ChatMessage(role="user", content=content)


def tool_message(call: ToolCall, content: str) -> ChatMessage:
    return ChatMessage(role="tool", content=content, tool_call_id=call.id, name=call.name)


class OpenAIModelGateway:
    """Wrapper around the OpenAI client that standardises request parameters."""

    def __init__(self, config: OpenAIConfig, client: Optional[OpenAI] = None) -> None:
        self.config = config
        if client is None:
            kwargs: Dict[str, Any] = {}
            if config.base_url:
                kwargs["base_url"] = config.base_url
            if config.api_key:
                kwargs["api_key"] = config.api_key
            client = OpenAI(**kwargs)
        self._client = client
        self._logger = get_logger("model_gateway")

    def invoke(self, messages: Sequence[ChatMessage], tools: Optional[Sequence[ToolSpec]] = None) -> ModelReply:
        """Run one chat turn; tool calls requested by the model are returned unexecuted."""

        payload: Dict[str, Any] = {"messages": [_to_openai(message) for message in messages]}
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {"name": tool.name, "description": tool.description, "parameters": tool.parameters},
                }
                for tool in tools
            ]
        response = self._complete(**payload)
        message = response.choices[0].message
        calls = []
        for raw in message.tool_calls or []:
            try:
                args = json.loads(raw.function.arguments or "{}")
            except json.JSONDecodeError:
                self._logger.warning("Discarding malformed arguments for tool %s", raw.function.name)
                args = {}
            calls.append(ToolCall(id=raw.id, name=raw.function.name, args=args if isinstance(args, dict) else {}))
        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", None) or estimate_tokens(message.content or "")
        return ModelReply(content=message.content or "", tool_calls=calls, token_estimate=tokens)

    def structured(self, prompt: str, schema: Type[T], *, system_prompt: Optional[str] = None) -> T:
        """Ask the model for a JSON object and validate it against ``schema``."""

        instructions = (
            (system_prompt or "You extract structured data.")
            + "\nRespond with a single JSON object matching this JSON schema:\n"
            + json.dumps(schema.model_json_schema())
        )
        response = self._complete(
            messages=[{"role": "system", "content": instructions}, {"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
        )
        text = response.choices[0].message.content or ""
        try:
            return schema.model_validate_json(text)
        except ValidationError as exc:
            raise ModelGatewayError(f"{schema.__name__} output failed validation: {exc}") from exc

    @retry(
        retry=retry_if_exception_type(_TRANSIENT),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _complete(self, **extra: Any) -> Any:
        request_payload: Dict[str, Any] = {
            "model": self.config.model,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_output_tokens,
        }
        request_payload.update(extra)
        return self._client.chat.completions.create(**request_payload)


def _to_openai(message: ChatMessage) -> Dict[str, Any]:
    data: Dict[str, Any] = {"role": message.role, "content": message.content}
    if message.tool_calls:
        data["tool_calls"] = [
            {"id": call.id, "type": "function", "function": {"name": call.name, "arguments": json.dumps(call.args)}}
            for call in message.tool_calls
        ]
    if message.tool_call_id:
        data["tool_call_id"] = message.tool_call_id
    return data


__all__ = [
    "ChatMessage",
    "ModelReply",
    "OpenAIModelGateway",
    "ToolCall",
    "ToolSpec",
    "estimate_tokens",
    "human_message",
    "system_message",
    "tool_message",
]
