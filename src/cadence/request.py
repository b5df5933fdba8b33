"""Build vendor-shaped call parameters from canonical options.

:func:`build_request` is pure: no I/O, no clients, nothing cached. Each wire
dialect gets its own message conversion, tool bridging and reasoning options;
the result carries the SDK keyword arguments plus the settings the stream
normalizer needs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

from cadence.catalog import GATEWAY_MODEL_IDS, THINKING_BUDGETS
from cadence.types import (
    AssistantMessage,
    NamedToolChoice,
    SystemMessage,
    ToolMessage,
    ToolSchema,
    UserMessage,
)

if TYPE_CHECKING:
    from cadence.catalog import Dialect, ProviderSpec
    from cadence.options import ChatCompletionOptions
    from cadence.types import Message, ModelDescriptor, ToolChoice

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL = "web_search"
ANTHROPIC_DEFAULT_MAX_TOKENS = 8192

_EPHEMERAL = {"type": "ephemeral"}
_ANTHROPIC_WEB_SEARCH = {
    "type": "web_search_20250305",
    "name": WEB_SEARCH_TOOL,
    "max_uses": 5,
}


@dataclass(frozen=True)
class ProviderCallParams:
    """Everything an adapter and the normalizer need for one call."""

    provider: str
    dialect: Dialect
    model: str
    #: SDK keyword arguments, without any streaming flag.
    payload: dict[str, Any]
    reasoning_enabled: bool = False
    tools_disabled: bool = False
    #: Tool names the provider executes server-side.
    native_tool_names: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class _ToolPlan:
    functions: tuple[ToolSchema, ...] = ()
    native_search: bool = False
    tools_disabled: bool = False

    @property
    def empty(self) -> bool:
        return not self.functions and not self.native_search


def _plan_tools(
    spec: ProviderSpec,
    options: ChatCompletionOptions,
    model: ModelDescriptor,
    external_search_configured: bool,
) -> _ToolPlan:
    tools = options.tools or ()
    if not tools:
        return _ToolPlan()
    if not (model.supports_tools or model.id in GATEWAY_MODEL_IDS):
        logger.info(
            "Model %s does not support tools; sending the request without them",
            model.id,
        )
        return _ToolPlan(tools_disabled=True)

    functions = []
    native_search = False
    for tool in tools:
        if tool.name != WEB_SEARCH_TOOL or external_search_configured:
            functions.append(tool)
        elif spec.native_web_search:
            native_search = True
        else:
            logger.warning(
                "No web search backend for %s: configure web_search.<provider>.api_key "
                "or use a provider with native search",
                spec.name,
            )
            functions.append(tool)
    return _ToolPlan(functions=tuple(functions), native_search=native_search)


def _choice_name(choice: ToolChoice | None, plan: _ToolPlan) -> str | None:
    """Return ``"auto"``, a tool name, or None when no directive is sent."""
    if plan.empty or choice is None or choice == "none":
        return None
    if isinstance(choice, NamedToolChoice):
        return choice.name
    return "auto"


def _reasoning_effort(
    spec: ProviderSpec, options: ChatCompletionOptions, model: ModelDescriptor
) -> str | None:
    """Effort level to send, or None when no reasoning field may be set."""
    if spec.reasoning_style is None or not model.is_reasoning_model:
        return None
    if not options.reasoning_requested:
        return None
    return options.reasoning_effort


def build_request(
    spec: ProviderSpec,
    options: ChatCompletionOptions,
    model: ModelDescriptor,
    *,
    external_search_configured: bool = False,
) -> ProviderCallParams:
    """Translate canonical options into one provider call."""
    plan = _plan_tools(spec, options, model, external_search_configured)
    effort = _reasoning_effort(spec, options, model)

    if spec.dialect == "openai-responses":
        payload = _responses_payload(options, plan, effort)
    elif spec.dialect == "anthropic":
        payload = _anthropic_payload(spec, options, plan, effort)
    elif spec.dialect == "gemini":
        payload = _gemini_payload(options, plan, effort)
    else:
        payload = _chat_payload(spec, options, plan, effort)

    return ProviderCallParams(
        provider=spec.name,
        dialect=spec.dialect,
        model=options.model,
        payload=payload,
        reasoning_enabled=options.reasoning_requested,
        tools_disabled=plan.tools_disabled,
        native_tool_names=(
            frozenset({WEB_SEARCH_TOOL}) if plan.native_search else frozenset()
        ),
    )


# --- OpenAI Responses ---


def _responses_input(messages: tuple[Message, ...]) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for msg in messages:
        if isinstance(msg, (SystemMessage, UserMessage)):
            items.append({"role": msg.role, "content": msg.content})
        elif isinstance(msg, AssistantMessage):
            if msg.content:
                items.append({"role": "assistant", "content": msg.content})
            for inv in msg.tool_invocations:
                items.append(
                    {
                        "type": "function_call",
                        "call_id": inv.id,
                        "name": inv.name,
                        "arguments": inv.arguments,
                    }
                )
        elif isinstance(msg, ToolMessage):
            items.append(
                {
                    "type": "function_call_output",
                    "call_id": msg.tool_invocation_id,
                    "output": msg.content,
                }
            )
    return items


def _responses_payload(
    options: ChatCompletionOptions, plan: _ToolPlan, effort: str | None
) -> dict[str, Any]:
    create_kwargs: dict[str, Any] = {
        "model": options.model,
        "input": _responses_input(options.messages),
    }
    if options.temperature is not None:
        create_kwargs["temperature"] = options.temperature
    if options.max_tokens is not None:
        create_kwargs["max_output_tokens"] = options.max_tokens

    tools: list[dict[str, Any]] = [
        {
            "type": "function",
            "name": t.name,
            "description": t.description,
            "parameters": t.parameters_json(),
        }
        for t in plan.functions
    ]
    if plan.native_search:
        tools.append({"type": WEB_SEARCH_TOOL})
    if tools:
        create_kwargs["tools"] = tools
        choice = _choice_name(options.tool_choice, plan)
        if choice == "auto":
            create_kwargs["tool_choice"] = "auto"
        elif choice is not None:
            create_kwargs["tool_choice"] = {"type": "function", "name": choice}

    if effort is not None:
        create_kwargs["reasoning"] = {"effort": effort, "summary": "auto"}
    return create_kwargs


# --- Anthropic Messages ---


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation, so tool results
    followed by a user turn collapse into one user message.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        prev = messages[-1]
        prev_content = prev["content"]
        new_content = msg["content"]
        if isinstance(prev_content, str):
            prev_content = [{"type": "text", "text": prev_content}]
        if isinstance(new_content, str):
            new_content = [{"type": "text", "text": new_content}]
        prev["content"] = prev_content + new_content
    else:
        messages.append(msg)


def _thinking_blocks(msg: AssistantMessage) -> list[dict[str, Any]]:
    """Thinking blocks ride on the first invocation's continuation."""
    if not msg.tool_invocations:
        return []
    continuation = msg.tool_invocations[0].continuation
    if continuation is None:
        return []
    return [*continuation]


def _anthropic_messages(
    messages: tuple[Message, ...],
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    system: list[dict[str, Any]] = []
    out: list[dict[str, Any]] = []
    for msg in messages:
        if isinstance(msg, SystemMessage):
            system.append({"type": "text", "text": msg.content})
        elif isinstance(msg, UserMessage):
            _append_message(out, {"role": "user", "content": msg.content})
        elif isinstance(msg, AssistantMessage):
            blocks = _thinking_blocks(msg)
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for inv in msg.tool_invocations:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": inv.id,
                        "name": inv.name,
                        "input": inv.arguments_dict(),
                    }
                )
            if blocks:
                _append_message(out, {"role": "assistant", "content": blocks})
        elif isinstance(msg, ToolMessage):
            _append_message(
                out,
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": msg.tool_invocation_id,
                            "content": msg.content,
                        }
                    ],
                },
            )
    return system, out


def _anthropic_payload(
    spec: ProviderSpec,
    options: ChatCompletionOptions,
    plan: _ToolPlan,
    effort: str | None,
) -> dict[str, Any]:
    system, messages = _anthropic_messages(options.messages)
    if system and spec.prompt_caching:
        # One breakpoint after the full system prefix.
        system[-1]["cache_control"] = dict(_EPHEMERAL)

    budget = THINKING_BUDGETS.get(effort) if effort is not None else None
    max_tokens = options.max_tokens or ANTHROPIC_DEFAULT_MAX_TOKENS
    create_kwargs: dict[str, Any] = {
        "model": options.model,
        "messages": messages,
        "max_tokens": max_tokens + budget if budget else max_tokens,
    }
    if system:
        create_kwargs["system"] = system
    if budget:
        create_kwargs["thinking"] = {"type": "enabled", "budget_tokens": budget}
    elif options.temperature is not None:
        create_kwargs["temperature"] = options.temperature

    tools: list[dict[str, Any]] = []
    for t in plan.functions:
        tool_def: dict[str, Any] = {
            "name": t.name,
            "input_schema": t.parameters_json(),
        }
        if t.description:
            tool_def["description"] = t.description
        tools.append(tool_def)
    if plan.native_search:
        tools.append(dict(_ANTHROPIC_WEB_SEARCH))
    if tools:
        create_kwargs["tools"] = tools
        choice = _choice_name(options.tool_choice, plan)
        if choice == "auto":
            create_kwargs["tool_choice"] = {"type": "auto"}
        elif choice is not None:
            create_kwargs["tool_choice"] = {"type": "tool", "name": choice}
    return create_kwargs


# --- Gemini ---


def _gemini_contents(
    messages: tuple[Message, ...],
) -> tuple[str | None, list[dict[str, Any]]]:
    system: list[str] = []
    contents: list[dict[str, Any]] = []
    for msg in messages:
        if isinstance(msg, SystemMessage):
            system.append(msg.content)
        elif isinstance(msg, UserMessage):
            contents.append({"role": "user", "parts": [{"text": msg.content}]})
        elif isinstance(msg, AssistantMessage):
            parts: list[dict[str, Any]] = []
            if msg.content:
                parts.append({"text": msg.content})
            for inv in msg.tool_invocations:
                part: dict[str, Any] = {
                    "function_call": {
                        "id": inv.id,
                        "name": inv.name,
                        "args": inv.arguments_dict(),
                    }
                }
                if inv.continuation is not None:
                    part["thought_signature"] = inv.continuation
                parts.append(part)
            if parts:
                contents.append({"role": "model", "parts": parts})
        elif isinstance(msg, ToolMessage):
            contents.append(
                {
                    "role": "user",
                    "parts": [
                        {
                            "function_response": {
                                "id": msg.tool_invocation_id,
                                "name": msg.tool_name,
                                "response": {"result": msg.content},
                            }
                        }
                    ],
                }
            )
    return ("\n\n".join(system) if system else None), contents


def _gemini_payload(
    options: ChatCompletionOptions, plan: _ToolPlan, effort: str | None
) -> dict[str, Any]:
    system, contents = _gemini_contents(options.messages)
    config: dict[str, Any] = {}
    if system:
        config["system_instruction"] = system
    if options.temperature is not None:
        config["temperature"] = options.temperature
    if options.max_tokens is not None:
        config["max_output_tokens"] = options.max_tokens

    tools: list[dict[str, Any]] = []
    if plan.functions:
        tools.append(
            {
                "function_declarations": [
                    {
                        "name": t.name,
                        "description": t.description,
                        "parameters_json_schema": t.parameters_json(),
                    }
                    for t in plan.functions
                ]
            }
        )
    if plan.native_search:
        tools.append({"google_search": {}})
    if tools:
        config["tools"] = tools
        choice = _choice_name(options.tool_choice, plan)
        if choice == "auto":
            config["tool_config"] = {"function_calling_config": {"mode": "AUTO"}}
        elif choice is not None:
            config["tool_config"] = {
                "function_calling_config": {
                    "mode": "ANY",
                    "allowed_function_names": [choice],
                }
            }

    budget = THINKING_BUDGETS.get(effort) if effort is not None else None
    if budget:
        config["thinking_config"] = {
            "thinking_budget": budget,
            "include_thoughts": True,
        }

    payload: dict[str, Any] = {"model": options.model, "contents": contents}
    if config:
        payload["config"] = config
    return payload


# --- OpenAI-compatible Chat Completions ---


def _chat_messages(
    messages: tuple[Message, ...], *, cache_system: bool
) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for msg in messages:
        if isinstance(msg, SystemMessage):
            if cache_system:
                out.append(
                    {
                        "role": "system",
                        "content": [
                            {
                                "type": "text",
                                "text": msg.content,
                                "cache_control": dict(_EPHEMERAL),
                            }
                        ],
                    }
                )
            else:
                out.append({"role": "system", "content": msg.content})
        elif isinstance(msg, UserMessage):
            out.append({"role": "user", "content": msg.content})
        elif isinstance(msg, AssistantMessage):
            entry: dict[str, Any] = {
                "role": "assistant",
                "content": msg.content or None,
            }
            if msg.tool_invocations:
                entry["tool_calls"] = [
                    {
                        "id": inv.id,
                        "type": "function",
                        "function": {"name": inv.name, "arguments": inv.arguments},
                    }
                    for inv in msg.tool_invocations
                ]
            out.append(entry)
        elif isinstance(msg, ToolMessage):
            out.append(
                {
                    "role": "tool",
                    "tool_call_id": msg.tool_invocation_id,
                    "content": msg.content,
                }
            )
    return out


def _chat_payload(
    spec: ProviderSpec,
    options: ChatCompletionOptions,
    plan: _ToolPlan,
    effort: str | None,
) -> dict[str, Any]:
    cache_system = spec.prompt_caching and options.model.startswith("anthropic/")
    create_kwargs: dict[str, Any] = {
        "model": options.model,
        "messages": _chat_messages(options.messages, cache_system=cache_system),
    }
    if options.temperature is not None:
        create_kwargs["temperature"] = options.temperature
    if options.max_tokens is not None:
        create_kwargs["max_tokens"] = options.max_tokens

    if plan.functions:
        create_kwargs["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.parameters_json(),
                },
            }
            for t in plan.functions
        ]
        choice = _choice_name(options.tool_choice, plan)
        if choice == "auto":
            create_kwargs["tool_choice"] = "auto"
        elif choice is not None:
            create_kwargs["tool_choice"] = {
                "type": "function",
                "function": {"name": choice},
            }

    if effort is not None:
        if spec.reasoning_style == "effort":
            create_kwargs["reasoning_effort"] = effort
        elif spec.reasoning_style == "openrouter":
            create_kwargs["extra_body"] = {"reasoning": {"effort": effort}}
        elif spec.reasoning_style == "think-flag":
            create_kwargs["extra_body"] = {"think": True}
    return create_kwargs
