"""Canonical, vendor-independent value types."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel

#: Fallback context window when no metadata source knows the model.
DEFAULT_CONTEXT_WINDOW = 128_000

ReasoningEffort = Literal["low", "medium", "high", "disabled"]


@dataclass(frozen=True)
class ProviderDescriptor:
    """A supported vendor and whether credentials are available for it."""

    name: str
    display_name: str
    configured: bool


@dataclass(frozen=True)
class ModelDescriptor:
    """Capabilities and limits of one model."""

    id: str
    display_name: str
    context_window: int = DEFAULT_CONTEXT_WINDOW
    supports_tools: bool = False
    is_reasoning_model: bool = False
    supports_vision: bool = False
    supports_pdf: bool = False


@dataclass(frozen=True)
class ToolInvocation:
    """A tool call requested by the model.

    ``continuation`` is an opaque vendor token (e.g. a Gemini thought
    signature) that must be echoed back verbatim on the next turn.
    """

    id: str
    name: str
    arguments: str = "{}"
    continuation: Any = None

    def arguments_dict(self) -> dict[str, Any]:
        """Decode ``arguments``; malformed or non-object JSON yields ``{}``."""
        try:
            parsed = json.loads(self.arguments) if self.arguments else {}
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}


@dataclass(frozen=True)
class SystemMessage:
    content: str
    role: Literal["system"] = field(default="system", init=False)


@dataclass(frozen=True)
class UserMessage:
    content: str
    role: Literal["user"] = field(default="user", init=False)


@dataclass(frozen=True)
class AssistantMessage:
    content: str = ""
    tool_invocations: tuple[ToolInvocation, ...] = ()
    role: Literal["assistant"] = field(default="assistant", init=False)


@dataclass(frozen=True)
class ToolMessage:
    tool_invocation_id: str
    tool_name: str
    content: str
    role: Literal["tool"] = field(default="tool", init=False)


Message: TypeAlias = SystemMessage | UserMessage | AssistantMessage | ToolMessage


def coerce_message(item: Message | dict[str, Any]) -> Message:
    """Accept a canonical message or an OpenAI-style message dict."""
    if isinstance(item, (SystemMessage, UserMessage, AssistantMessage, ToolMessage)):
        return item
    if not isinstance(item, dict):
        raise TypeError(f"Expected a message, got {type(item).__name__}")

    role = item.get("role")
    content = item.get("content") or ""
    if role == "system":
        return SystemMessage(content)
    if role == "user":
        return UserMessage(content)
    if role == "assistant":
        invocations = []
        for tc in item.get("tool_calls") or ():
            fn = tc.get("function", tc)
            invocations.append(
                ToolInvocation(
                    id=tc.get("id", ""),
                    name=fn.get("name", ""),
                    arguments=fn.get("arguments") or "{}",
                    continuation=tc.get("thought_signature"),
                )
            )
        return AssistantMessage(content, tool_invocations=tuple(invocations))
    if role == "tool":
        return ToolMessage(
            tool_invocation_id=item.get("tool_call_id", ""),
            tool_name=item.get("name") or "tool",
            content=content,
        )
    raise ValueError(f"Unsupported message role: {role!r}")


@dataclass(frozen=True)
class ToolSchema:
    """A callable tool, independent of any vendor's schema dialect.

    ``parameters`` is either a JSON Schema dict or a pydantic model class.
    """

    name: str
    description: str = ""
    parameters: dict[str, Any] | type[BaseModel] | None = None

    def parameters_json(self) -> dict[str, Any]:
        """Return the parameter contract as JSON Schema."""
        params = self.parameters
        if params is None:
            return {"type": "object", "properties": {}}
        if isinstance(params, dict):
            return params
        return params.model_json_schema()


@dataclass(frozen=True)
class NamedToolChoice:
    """Force the model to call one specific tool."""

    name: str


ToolChoice: TypeAlias = Literal["auto", "none"] | NamedToolChoice


@dataclass(frozen=True)
class Usage:
    """Token accounting reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    reasoning_tokens: int | None = None
    cache_read_tokens: int | None = None
    cache_write_tokens: int | None = None


@dataclass(frozen=True)
class ChatCompletionResponse:
    """Terminal value of both the blocking and the streaming paths."""

    id: str
    model: str
    content: str
    tool_invocations: tuple[ToolInvocation, ...] | None = None
    usage: Usage | None = None
    tools_disabled: bool = False
