"""Cadence: one chat-completion contract over many LLM vendors.

Public API:
    - LLMService: list providers, run blocking or streaming completions
    - ChatCompletionOptions: what to ask the model
    - Config: credentials and tuning
    - Canonical messages, stream events and the LLMError taxonomy
"""

from __future__ import annotations

import logging

from cadence.classify import classify_error, clean_error_message
from cadence.config import Config
from cadence.errors import (
    AuthenticationError,
    CadenceError,
    ConfigurationError,
    LLMError,
    RateLimitError,
    RequestError,
)
from cadence.events import (
    Complete,
    ErrorEvent,
    StreamEvent,
    StreamMetrics,
    StreamStart,
    TextChunk,
    TextStart,
    ThinkingChunk,
    ThinkingComplete,
    ThinkingStart,
    ToolCall,
    UsageUpdate,
)
from cadence.options import ChatCompletionOptions
from cadence.registry import ProviderHandle
from cadence.service import LLMService
from cadence.stream import StreamingResult, StreamState
from cadence.types import (
    AssistantMessage,
    ChatCompletionResponse,
    ModelDescriptor,
    NamedToolChoice,
    ProviderDescriptor,
    SystemMessage,
    ToolInvocation,
    ToolMessage,
    ToolSchema,
    Usage,
    UserMessage,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("cadence-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("cadence").addHandler(logging.NullHandler())

__all__ = [
    "AssistantMessage",
    "AuthenticationError",
    "CadenceError",
    "ChatCompletionOptions",
    "ChatCompletionResponse",
    "Complete",
    "Config",
    "ConfigurationError",
    "ErrorEvent",
    "LLMError",
    "LLMService",
    "ModelDescriptor",
    "NamedToolChoice",
    "ProviderDescriptor",
    "ProviderHandle",
    "RateLimitError",
    "RequestError",
    "StreamEvent",
    "StreamMetrics",
    "StreamStart",
    "StreamState",
    "StreamingResult",
    "SystemMessage",
    "TextChunk",
    "TextStart",
    "ThinkingChunk",
    "ThinkingComplete",
    "ThinkingStart",
    "ToolCall",
    "ToolInvocation",
    "ToolMessage",
    "ToolSchema",
    "Usage",
    "UsageUpdate",
    "UserMessage",
    "classify_error",
    "clean_error_message",
]
