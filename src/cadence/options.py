"""Per-call options for chat completions."""

from __future__ import annotations

from dataclasses import dataclass

from cadence.types import (
    Message,
    NamedToolChoice,
    ReasoningEffort,
    ToolChoice,
    ToolSchema,
    coerce_message,
)

_REASONING_ALIASES = {"disable": "disabled", "none": "disabled", "off": "disabled"}
_REASONING_LEVELS = frozenset({"low", "medium", "high", "disabled"})


@dataclass(frozen=True)
class ChatCompletionOptions:
    """What to ask the model, independent of provider."""

    model: str
    #: Ordered conversation; OpenAI-style dicts are coerced to canonical messages.
    messages: tuple[Message, ...] = ()
    temperature: float | None = None
    max_tokens: int | None = None
    tools: tuple[ToolSchema, ...] | None = None
    tool_choice: ToolChoice | None = None
    reasoning_effort: ReasoningEffort | None = None

    def __post_init__(self) -> None:
        """Normalize collection fields and aliases."""
        object.__setattr__(
            self, "messages", tuple(coerce_message(m) for m in self.messages)
        )
        if self.tools is not None:
            object.__setattr__(self, "tools", tuple(self.tools))
        if isinstance(self.tool_choice, dict):
            object.__setattr__(
                self, "tool_choice", NamedToolChoice(self.tool_choice["name"])
            )

        effort = self.reasoning_effort
        if effort is not None:
            normalized = _REASONING_ALIASES.get(effort.strip().lower(), effort.strip().lower())
            if normalized not in _REASONING_LEVELS:
                raise ValueError(
                    f"reasoning_effort must be one of {sorted(_REASONING_LEVELS)}, "
                    f"got {effort!r}"
                )
            object.__setattr__(self, "reasoning_effort", normalized)

    @property
    def reasoning_requested(self) -> bool:
        """True when the caller asked for reasoning at any level."""
        return self.reasoning_effort is not None and self.reasoning_effort != "disabled"
