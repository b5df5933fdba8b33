"""Supported providers and their static model tables.

Each provider speaks one wire dialect and lists its models either from a
static table (metadata enriched from models.dev) or from its own listing
endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Dialect = Literal["openai-responses", "anthropic", "gemini", "chat-completions"]
ReasoningStyle = Literal["effort", "budget", "think-flag", "openrouter"]

#: Token budgets for vendors that control reasoning by budget.
THINKING_BUDGETS: dict[str, int] = {"low": 1024, "medium": 4096, "high": 16384}

#: Model ids that route to backends of unknown capability.
GATEWAY_MODEL_IDS: frozenset[str] = frozenset({"openrouter/auto"})


@dataclass(frozen=True)
class StaticModel:
    id: str
    display_name: str
    is_reasoning_model: bool = False


@dataclass(frozen=True)
class ProviderSpec:
    """Static facts about one vendor."""

    name: str
    display_name: str
    dialect: Dialect
    env_vars: tuple[str, ...] = ()
    #: API base URL; *None* for SDK-default endpoints.
    base_url: str | None = None
    #: ``None`` means the provider is listed statically.
    listing_path: str | None = None
    static_models: tuple[StaticModel, ...] = ()
    requires_api_key: bool = True
    reasoning_style: ReasoningStyle | None = None
    native_web_search: bool = False
    prompt_caching: bool = False

    @property
    def dynamic(self) -> bool:
        return self.listing_path is not None


_OPENAI_MODELS = (
    StaticModel("gpt-5.1", "GPT-5.1", True),
    StaticModel("gpt-5.1-codex", "GPT-5.1 Codex", True),
    StaticModel("gpt-5", "GPT-5", True),
    StaticModel("gpt-5-pro", "GPT-5 Pro", True),
    StaticModel("gpt-5-codex", "GPT-5 Codex", True),
    StaticModel("gpt-5-mini", "GPT-5 Mini", True),
    StaticModel("gpt-5-nano", "GPT-5 Nano", True),
    StaticModel("gpt-4.1", "GPT-4.1"),
    StaticModel("gpt-4.1-mini", "GPT-4.1 Mini"),
    StaticModel("gpt-4.1-nano", "GPT-4.1 Nano"),
    StaticModel("gpt-4o", "GPT-4o"),
    StaticModel("gpt-4o-mini", "GPT-4o Mini"),
    StaticModel("o4-mini", "o4-mini", True),
)

_ANTHROPIC_MODELS = (
    StaticModel("claude-sonnet-4-5", "Claude Sonnet 4.5", True),
    StaticModel("claude-haiku-4-5", "Claude Haiku 4.5", True),
    StaticModel("claude-opus-4-1", "Claude Opus 4.1", True),
)

_GOOGLE_MODELS = (
    StaticModel("gemini-3-pro-preview", "Gemini 3 Pro (Preview)", True),
    StaticModel("gemini-2.5-pro", "Gemini 2.5 Pro", True),
    StaticModel("gemini-2.5-flash", "Gemini 2.5 Flash", True),
    StaticModel("gemini-2.5-flash-lite", "Gemini 2.5 Flash Lite", True),
    StaticModel("gemini-2.0-flash", "Gemini 2.0 Flash"),
)

_MISTRAL_MODELS = (
    StaticModel("mistral-large-latest", "Mistral Large"),
    StaticModel("mistral-medium-latest", "Mistral Medium"),
    StaticModel("mistral-small-latest", "Mistral Small"),
    StaticModel("ministral-14b-latest", "Mistral 3 14B"),
    StaticModel("ministral-8b-latest", "Mistral 3 8B"),
    StaticModel("ministral-3b-latest", "Mistral 3 3B"),
    StaticModel("magistral-medium-2506", "Magistral Medium", True),
    StaticModel("magistral-small-2506", "Magistral Small", True),
)

_XAI_MODELS = (
    StaticModel("grok-4-fast-non-reasoning", "Grok 4 Fast (Non-Reasoning)"),
    StaticModel("grok-4-fast-reasoning", "Grok 4 Fast (Reasoning)", True),
    StaticModel("grok-4", "Grok 4"),
    StaticModel("grok-code-fast-1", "Grok Code Fast 1", True),
    StaticModel("grok-3", "Grok 3"),
    StaticModel("grok-3-mini", "Grok 3 Mini", True),
)

_DEEPSEEK_MODELS = (
    StaticModel("deepseek-chat", "DeepSeek Chat"),
    StaticModel("deepseek-reasoner", "DeepSeek Reasoner", True),
)

_ALIBABA_MODELS = (
    StaticModel("qwen3-max", "Qwen3 Max"),
    StaticModel("qwen-plus", "Qwen Plus", True),
    StaticModel("qwen-flash", "Qwen Flash", True),
)

_MOONSHOT_MODELS = (
    StaticModel("kimi-k2-0905-preview", "Kimi K2"),
    StaticModel("kimi-k2-thinking", "Kimi K2 Thinking", True),
)

_MINIMAX_MODELS = (StaticModel("MiniMax-M2", "MiniMax M2", True),)


PROVIDERS: dict[str, ProviderSpec] = {
    spec.name: spec
    for spec in (
        ProviderSpec(
            name="openai",
            display_name="OpenAI",
            dialect="openai-responses",
            env_vars=("OPENAI_API_KEY",),
            static_models=_OPENAI_MODELS,
            reasoning_style="effort",
            native_web_search=True,
        ),
        ProviderSpec(
            name="anthropic",
            display_name="Anthropic",
            dialect="anthropic",
            env_vars=("ANTHROPIC_API_KEY",),
            static_models=_ANTHROPIC_MODELS,
            reasoning_style="budget",
            native_web_search=True,
            prompt_caching=True,
        ),
        ProviderSpec(
            name="google",
            display_name="Google",
            dialect="gemini",
            env_vars=("GOOGLE_GENERATIVE_AI_API_KEY", "GEMINI_API_KEY"),
            static_models=_GOOGLE_MODELS,
            reasoning_style="budget",
            native_web_search=True,
        ),
        ProviderSpec(
            name="mistral",
            display_name="Mistral",
            dialect="chat-completions",
            env_vars=("MISTRAL_API_KEY",),
            base_url="https://api.mistral.ai/v1",
            static_models=_MISTRAL_MODELS,
        ),
        ProviderSpec(
            name="xai",
            display_name="xAI",
            dialect="chat-completions",
            env_vars=("XAI_API_KEY",),
            base_url="https://api.x.ai/v1",
            static_models=_XAI_MODELS,
            reasoning_style="effort",
        ),
        ProviderSpec(
            name="deepseek",
            display_name="DeepSeek",
            dialect="chat-completions",
            env_vars=("DEEPSEEK_API_KEY",),
            base_url="https://api.deepseek.com/v1",
            static_models=_DEEPSEEK_MODELS,
        ),
        ProviderSpec(
            name="alibaba",
            display_name="Alibaba",
            dialect="chat-completions",
            env_vars=("DASHSCOPE_API_KEY", "ALIBABA_API_KEY"),
            base_url="https://dashscope-intl.aliyuncs.com/compatible-mode/v1",
            static_models=_ALIBABA_MODELS,
        ),
        ProviderSpec(
            name="moonshotai",
            display_name="Moonshot AI",
            dialect="chat-completions",
            env_vars=("MOONSHOT_API_KEY",),
            base_url="https://api.moonshot.ai/v1",
            static_models=_MOONSHOT_MODELS,
        ),
        ProviderSpec(
            name="minimax",
            display_name="MiniMax",
            dialect="chat-completions",
            env_vars=("MINIMAX_API_KEY",),
            base_url="https://api.minimax.io/v1",
            static_models=_MINIMAX_MODELS,
        ),
        ProviderSpec(
            name="openrouter",
            display_name="OpenRouter",
            dialect="chat-completions",
            env_vars=("OPENROUTER_API_KEY",),
            base_url="https://openrouter.ai/api/v1",
            listing_path="/models",
            reasoning_style="openrouter",
            prompt_caching=True,
        ),
        ProviderSpec(
            name="ai_gateway",
            display_name="Vercel AI Gateway",
            dialect="chat-completions",
            env_vars=("AI_GATEWAY_API_KEY",),
            base_url="https://ai-gateway.vercel.sh/v1",
            listing_path="/models",
            reasoning_style="openrouter",
        ),
        ProviderSpec(
            name="groq",
            display_name="Groq",
            dialect="chat-completions",
            env_vars=("GROQ_API_KEY",),
            base_url="https://api.groq.com/openai/v1",
            listing_path="/models",
            reasoning_style="effort",
        ),
        ProviderSpec(
            name="cerebras",
            display_name="Cerebras",
            dialect="chat-completions",
            env_vars=("CEREBRAS_API_KEY",),
            base_url="https://api.cerebras.ai/v1",
            listing_path="/models",
            reasoning_style="effort",
        ),
        ProviderSpec(
            name="togetherai",
            display_name="Together AI",
            dialect="chat-completions",
            env_vars=("TOGETHER_AI_API_KEY", "TOGETHER_API_KEY"),
            base_url="https://api.together.xyz/v1",
            listing_path="/models",
            reasoning_style="effort",
        ),
        ProviderSpec(
            name="fireworks",
            display_name="Fireworks",
            dialect="chat-completions",
            env_vars=("FIREWORKS_API_KEY",),
            base_url="https://api.fireworks.ai/inference/v1",
            listing_path="/models",
            reasoning_style="effort",
        ),
        ProviderSpec(
            name="ollama",
            display_name="Ollama",
            dialect="chat-completions",
            env_vars=("OLLAMA_API_KEY",),
            base_url="http://localhost:11434/v1",
            listing_path="/api/tags",
            requires_api_key=False,
            reasoning_style="think-flag",
        ),
    )
}


def display_name(provider: str) -> str:
    """Human-readable provider name, falling back to the raw identifier."""
    spec = PROVIDERS.get(provider)
    return spec.display_name if spec is not None else provider
