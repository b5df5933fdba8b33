"""Request building characterization tests.

These pin the exact vendor-shaped keyword arguments produced for each wire
dialect. Vendor formats are consumed externally and drift is hard to detect,
so the shapes are asserted literally.
"""

from __future__ import annotations

import pytest
from pydantic import BaseModel

from cadence.catalog import PROVIDERS
from cadence.options import ChatCompletionOptions
from cadence.request import ANTHROPIC_DEFAULT_MAX_TOKENS, build_request
from cadence.types import (
    AssistantMessage,
    ModelDescriptor,
    NamedToolChoice,
    SystemMessage,
    ToolInvocation,
    ToolMessage,
    ToolSchema,
    UserMessage,
)

pytestmark = pytest.mark.contract

WEATHER = ToolSchema(
    name="get_weather",
    description="Current weather for a city",
    parameters={"type": "object", "properties": {"city": {"type": "string"}}},
)
SEARCH = ToolSchema(name="web_search", description="Search the web")

TOOL_MODEL = ModelDescriptor("m", "M", supports_tools=True)
REASONING_MODEL = ModelDescriptor("m", "M", supports_tools=True, is_reasoning_model=True)
PLAIN_MODEL = ModelDescriptor("m", "M")


def _options(model: str = "m", **kwargs) -> ChatCompletionOptions:
    kwargs.setdefault("messages", [UserMessage("hi")])
    return ChatCompletionOptions(model=model, **kwargs)


def _build(provider: str, options: ChatCompletionOptions, model=TOOL_MODEL, **kw):
    return build_request(PROVIDERS[provider], options, model, **kw)


# =============================================================================
# Reasoning
# =============================================================================


@pytest.mark.parametrize(
    "provider", ["openai", "anthropic", "google", "xai", "openrouter", "ollama"]
)
def test_disabled_reasoning_sends_no_reasoning_fields(provider: str) -> None:
    params = _build(
        provider, _options(reasoning_effort="disable"), model=REASONING_MODEL
    )

    flat = repr(params.payload)
    for key in ("reasoning", "thinking", "think", "budget"):
        assert key not in flat
    assert params.reasoning_enabled is False


def test_reasoning_fields_require_a_reasoning_model() -> None:
    params = _build("openai", _options(reasoning_effort="high"), model=TOOL_MODEL)

    assert "reasoning" not in params.payload
    # The normalizer still honors the caller's request.
    assert params.reasoning_enabled is True


def test_openai_effort_with_summary() -> None:
    params = _build("openai", _options(reasoning_effort="low"), model=REASONING_MODEL)

    assert params.payload["reasoning"] == {"effort": "low", "summary": "auto"}


@pytest.mark.parametrize(
    ("effort", "budget"), [("low", 1024), ("medium", 4096), ("high", 16384)]
)
def test_anthropic_budget_extends_max_tokens(effort: str, budget: int) -> None:
    params = _build(
        "anthropic",
        _options(reasoning_effort=effort, temperature=0.3),
        model=REASONING_MODEL,
    )

    assert params.payload["thinking"] == {"type": "enabled", "budget_tokens": budget}
    assert params.payload["max_tokens"] == ANTHROPIC_DEFAULT_MAX_TOKENS + budget
    assert "temperature" not in params.payload


def test_anthropic_without_thinking_keeps_temperature_and_max_tokens() -> None:
    params = _build("anthropic", _options(temperature=0.3, max_tokens=500))

    assert params.payload["temperature"] == 0.3
    assert params.payload["max_tokens"] == 500
    assert "thinking" not in params.payload


def test_gemini_budget_and_thoughts() -> None:
    params = _build("google", _options(reasoning_effort="medium"), model=REASONING_MODEL)

    assert params.payload["config"]["thinking_config"] == {
        "thinking_budget": 4096,
        "include_thoughts": True,
    }


def test_chat_completions_reasoning_styles() -> None:
    xai = _build("xai", _options(reasoning_effort="high"), model=REASONING_MODEL)
    router = _build(
        "openrouter", _options(reasoning_effort="low"), model=REASONING_MODEL
    )
    ollama = _build("ollama", _options(reasoning_effort="low"), model=REASONING_MODEL)
    mistral = _build("mistral", _options(reasoning_effort="low"), model=REASONING_MODEL)

    assert xai.payload["reasoning_effort"] == "high"
    assert router.payload["extra_body"] == {"reasoning": {"effort": "low"}}
    assert ollama.payload["extra_body"] == {"think": True}
    assert "reasoning_effort" not in mistral.payload
    assert "extra_body" not in mistral.payload


# =============================================================================
# Tools
# =============================================================================


def test_tools_are_dropped_for_models_without_tool_support() -> None:
    params = _build("openai", _options(tools=[WEATHER]), model=PLAIN_MODEL)

    assert params.tools_disabled is True
    assert "tools" not in params.payload
    assert "tool_choice" not in params.payload


def test_gateway_alias_keeps_tools() -> None:
    alias = ModelDescriptor("openrouter/auto", "Auto Router")
    params = _build(
        "openrouter",
        _options(model="openrouter/auto", tools=[WEATHER], tool_choice="auto"),
        model=alias,
    )

    assert params.tools_disabled is False
    assert params.payload["tools"] == [
        {
            "type": "function",
            "function": {
                "name": "get_weather",
                "description": "Current weather for a city",
                "parameters": WEATHER.parameters,
            },
        }
    ]
    assert params.payload["tool_choice"] == "auto"


def test_tool_choice_none_sends_no_directive() -> None:
    params = _build("anthropic", _options(tools=[WEATHER], tool_choice="none"))

    assert "tool_choice" not in params.payload
    assert params.payload["tools"][0]["name"] == "get_weather"


@pytest.mark.parametrize(
    ("provider", "expected"),
    [
        ("openai", {"type": "function", "name": "get_weather"}),
        ("anthropic", {"type": "tool", "name": "get_weather"}),
        ("xai", {"type": "function", "function": {"name": "get_weather"}}),
    ],
)
def test_named_tool_choice_per_dialect(provider: str, expected: dict) -> None:
    params = _build(
        provider,
        _options(tools=[WEATHER], tool_choice=NamedToolChoice("get_weather")),
    )

    assert params.payload["tool_choice"] == expected


def test_gemini_named_choice_uses_any_mode() -> None:
    params = _build(
        "google", _options(tools=[WEATHER], tool_choice={"name": "get_weather"})
    )

    assert params.payload["config"]["tool_config"] == {
        "function_calling_config": {
            "mode": "ANY",
            "allowed_function_names": ["get_weather"],
        }
    }


def test_pydantic_parameters_are_bridged_to_json_schema() -> None:
    class Args(BaseModel):
        city: str

    tool = ToolSchema(name="get_weather", parameters=Args)
    params = _build("anthropic", _options(tools=[tool]))

    schema = params.payload["tools"][0]["input_schema"]
    assert schema["properties"]["city"]["type"] == "string"
    assert "description" not in params.payload["tools"][0]


# =============================================================================
# Web search
# =============================================================================


@pytest.mark.parametrize(
    ("provider", "native"),
    [
        ("openai", {"type": "web_search"}),
        (
            "anthropic",
            {"type": "web_search_20250305", "name": "web_search", "max_uses": 5},
        ),
    ],
)
def test_web_search_is_replaced_by_native_tool(provider: str, native: dict) -> None:
    params = _build(provider, _options(tools=[SEARCH, WEATHER]))

    tools = params.payload["tools"]
    assert tools[-1] == native
    assert len(tools) == 2
    assert params.native_tool_names == frozenset({"web_search"})


def test_gemini_native_search_is_google_search() -> None:
    params = _build("google", _options(tools=[SEARCH]))

    assert params.payload["config"]["tools"] == [{"google_search": {}}]


def test_external_search_key_keeps_caller_tool() -> None:
    params = _build(
        "openai", _options(tools=[SEARCH]), external_search_configured=True
    )

    assert params.payload["tools"][0]["type"] == "function"
    assert params.payload["tools"][0]["name"] == "web_search"
    assert params.native_tool_names == frozenset()


def test_search_without_any_backend_warns_and_proceeds(caplog) -> None:
    params = _build("mistral", _options(tools=[SEARCH]))

    assert params.payload["tools"][0]["function"]["name"] == "web_search"
    assert any("No web search backend" in r.getMessage() for r in caplog.records)


# =============================================================================
# Messages, caching and continuations
# =============================================================================


CONVERSATION = [
    SystemMessage("Be brief."),
    SystemMessage("Use metric units."),
    UserMessage("Weather in Oslo?"),
    AssistantMessage(
        "Checking.",
        tool_invocations=(
            ToolInvocation(
                "call_1",
                "get_weather",
                '{"city": "Oslo"}',
                continuation=[{"type": "thinking", "thinking": "t", "signature": "s"}],
            ),
        ),
    ),
    ToolMessage("call_1", "get_weather", "4C"),
    UserMessage("And tomorrow?"),
]


def test_anthropic_messages_cache_and_echo_thinking() -> None:
    params = _build("anthropic", _options(messages=CONVERSATION))
    payload = params.payload

    assert payload["system"] == [
        {"type": "text", "text": "Be brief."},
        {
            "type": "text",
            "text": "Use metric units.",
            "cache_control": {"type": "ephemeral"},
        },
    ]
    assert [m["role"] for m in payload["messages"]] == ["user", "assistant", "user"]
    assistant = payload["messages"][1]["content"]
    assert assistant[0] == {"type": "thinking", "thinking": "t", "signature": "s"}
    assert assistant[1] == {"type": "text", "text": "Checking."}
    assert assistant[2] == {
        "type": "tool_use",
        "id": "call_1",
        "name": "get_weather",
        "input": {"city": "Oslo"},
    }
    # Tool result and the following user turn merge into one user message.
    assert payload["messages"][2]["content"] == [
        {"type": "tool_result", "tool_use_id": "call_1", "content": "4C"},
        {"type": "text", "text": "And tomorrow?"},
    ]


def test_anthropic_continuation_blocks_are_echoed_untouched() -> None:
    opaque = object()
    redacted = {"type": "redacted_thinking", "data": "xyz"}
    messages = [
        UserMessage("Weather?"),
        AssistantMessage(
            "",
            tool_invocations=(
                ToolInvocation(
                    "call_1", "get_weather", "{}", continuation=(redacted, opaque)
                ),
            ),
        ),
    ]

    params = _build("anthropic", _options(messages=messages))

    assistant = params.payload["messages"][1]["content"]
    assert assistant[0] is redacted
    assert assistant[1] is opaque
    assert assistant[2]["type"] == "tool_use"


def test_gemini_echoes_thought_signature() -> None:
    messages = [
        UserMessage("Weather?"),
        AssistantMessage(
            tool_invocations=(
                ToolInvocation("c1", "get_weather", "{}", continuation=b"sig"),
            )
        ),
        ToolMessage("c1", "get_weather", "sunny"),
    ]
    payload = _build("google", _options(messages=messages)).payload

    model_turn = payload["contents"][1]
    assert model_turn["role"] == "model"
    assert model_turn["parts"][0]["thought_signature"] == b"sig"
    assert payload["contents"][2]["parts"][0]["function_response"] == {
        "id": "c1",
        "name": "get_weather",
        "response": {"result": "sunny"},
    }


def test_openrouter_caches_system_prompt_for_anthropic_models() -> None:
    cached = _build(
        "openrouter",
        _options(model="anthropic/claude-sonnet-4.5", messages=CONVERSATION[:3]),
    ).payload
    plain = _build(
        "openrouter", _options(model="openai/gpt-4o", messages=CONVERSATION[:3])
    ).payload

    assert cached["messages"][0]["content"] == [
        {"type": "text", "text": "Be brief.", "cache_control": {"type": "ephemeral"}}
    ]
    assert plain["messages"][0] == {"role": "system", "content": "Be brief."}


def test_responses_input_items_preserve_order() -> None:
    payload = _build("openai", _options(messages=CONVERSATION)).payload

    kinds = [item.get("type", item.get("role")) for item in payload["input"]]
    assert kinds == [
        "system",
        "system",
        "user",
        "assistant",
        "function_call",
        "function_call_output",
        "user",
    ]
    assert payload["input"][4]["call_id"] == "call_1"


def test_openai_style_dicts_are_accepted() -> None:
    options = ChatCompletionOptions(
        model="m",
        messages=[
            {"role": "user", "content": "hi"},
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "t1",
                        "type": "function",
                        "function": {"name": "get_weather", "arguments": "{}"},
                    }
                ],
            },
            {"role": "tool", "tool_call_id": "t1", "name": "get_weather", "content": "ok"},
        ],
    )
    payload = _build("deepseek", options).payload

    assert payload["messages"][1]["tool_calls"][0]["id"] == "t1"
    assert payload["messages"][2] == {
        "role": "tool",
        "tool_call_id": "t1",
        "content": "ok",
    }
