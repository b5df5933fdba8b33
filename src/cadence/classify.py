"""Map raw provider failures onto the typed LLM error taxonomy.

Three views of one failure:

- :func:`classify_error` builds the typed error callers see.
- :func:`clean_error_message` is the short, user-safe text.
- :func:`error_diagnostics` is the verbose form, for debug logs only.
"""

from __future__ import annotations

from collections.abc import Mapping
import json
import logging
import re
import traceback
from typing import Any

from cadence.catalog import PROVIDERS, display_name
from cadence.errors import (
    AuthenticationError,
    LLMError,
    RateLimitError,
    RequestError,
    _walk_exception_chain,
)

logger = logging.getLogger(__name__)

#: Messages kept after the first one when echoing a request body.
DEFAULT_KEEP_LAST = 5

_MESSAGE_KEYS = ("messages", "input", "contents")
_STATUS_IN_TEXT_RE = re.compile(r"(\d{3})\s")
_MAX_TRACEBACK_LINES = 20
_MAX_ECHO_CHARS = 4000


def _valid_status(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return 100 <= value <= 599


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if _valid_status(value):
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if _valid_status(value):
            return value
    return None


def _status_from_text(message: str) -> int | None:
    match = _STATUS_IN_TEXT_RE.search(message)
    if match is None:
        return None
    code = int(match.group(1))
    return code if _valid_status(code) else None


def _strip_suffix(message: str) -> str:
    if " | " in message:
        head = message.split(" | ", 1)[0]
        return head or message
    return message


def _raw_message(error: object) -> str:
    if isinstance(error, Mapping):
        message = error.get("message")
        if isinstance(message, str):
            return message
        nested = error.get("error")
        if isinstance(nested, Mapping) and isinstance(nested.get("message"), str):
            return nested["message"]
    return str(error)


def clean_error_message(error: object) -> str:
    """Return the user-facing part of an error's text.

    Vendors append pipe-delimited diagnostics (``"Bad request | {...}"``);
    only the part before the first ``" | "`` is kept. Plain mappings are
    read through ``message`` or ``error.message``.
    """
    return _strip_suffix(_raw_message(error)).strip()


def _auth_message(provider: str) -> tuple[str, str]:
    spec = PROVIDERS.get(provider)
    env_var = spec.env_vars[0] if spec is not None and spec.env_vars else "the API key"
    name = display_name(provider)
    message = (
        f"{name} API key is missing or invalid. "
        f"Set llm.{provider}.api_key in your configuration or export {env_var}."
    )
    return message, f"Check llm.{provider}.api_key or {env_var}."


def classify_error(error: object, provider: str) -> LLMError:
    """Classify any raw failure into exactly one typed error.

    Total and side-effect free: the same raw error always yields an equal
    typed error, and an :class:`LLMError` is returned unchanged.
    """
    if isinstance(error, LLMError):
        return error

    message = clean_error_message(error)
    status = extract_status_code(error) if isinstance(error, BaseException) else None
    if status is None:
        # Diagnostics after " | " may carry the only status code.
        status = _status_from_text(_raw_message(error))

    if status in (401, 403):
        return AuthenticationError(provider, message, status_code=status)
    if status == 429:
        return RateLimitError(
            provider,
            message,
            status_code=status,
            hint="The provider is throttling requests; retry after a short delay.",
        )
    if status is not None and 400 <= status < 500:
        return RequestError(provider, message, status_code=status)
    if status is not None and status >= 500:
        return RequestError(
            provider, f"Server error ({status}): {message}", status_code=status
        )

    lowered = message.lower()
    if "authentication" in lowered or "api key" in lowered:
        friendly, hint = _auth_message(provider)
        return AuthenticationError(provider, friendly, hint=hint)
    return RequestError(provider, message or "Unknown LLM request error")


# --- Diagnostics (logs only) ---


def truncate_request_body(
    body: Mapping[str, Any], keep_last: int = DEFAULT_KEEP_LAST
) -> dict[str, Any]:
    """Shorten the message list of an echoed request body.

    Keeps the first message (usually the system or task prompt) plus the last
    *keep_last*; the result is marked with ``_truncated`` and
    ``_originalMessageCount``. Bodies that are already short come back as an
    unmarked copy.

    Example:
        >>> body = {"messages": list(range(8))}
        >>> truncate_request_body(body)["messages"]
        [0, 3, 4, 5, 6, 7]
    """
    out = dict(body)
    for key in _MESSAGE_KEYS:
        messages = out.get(key)
        if not isinstance(messages, list):
            continue
        if len(messages) <= keep_last + 1:
            return out
        tail = messages[-keep_last:] if keep_last > 0 else []
        out[key] = [messages[0], *tail]
        out["_truncated"] = True
        out["_originalMessageCount"] = len(messages)
        return out
    return out


def _request_body(exc: BaseException) -> Mapping[str, Any] | None:
    """Find the outbound request body attached to a failure, if any."""
    candidates: list[BaseException] = list(_walk_exception_chain(exc))
    if isinstance(exc, BaseExceptionGroup):
        candidates.extend(exc.exceptions)
    for e in candidates:
        body = getattr(e, "request_body", None)
        if isinstance(body, Mapping):
            return body
        content = getattr(getattr(e, "request", None), "content", None)
        if isinstance(content, (bytes, str)) and content:
            try:
                decoded = json.loads(content)
            except ValueError:
                continue
            if isinstance(decoded, Mapping):
                return decoded
    return None


def _vendor_error_type(exc: BaseException) -> str | None:
    for e in _walk_exception_chain(exc):
        body = getattr(e, "body", None)
        if isinstance(body, Mapping):
            nested = body.get("error", body)
            if isinstance(nested, Mapping) and isinstance(nested.get("type"), str):
                return nested["type"]
        for attr in ("type", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, str) and value:
                return value
    return None


def error_diagnostics(error: object, provider: str) -> dict[str, Any]:
    """Collect the detailed view of a failure for debug logging."""
    diagnostics: dict[str, Any] = {
        "provider": provider,
        "error_type": type(error).__name__,
        "message": str(error),
    }
    if not isinstance(error, BaseException):
        return diagnostics

    diagnostics["status_code"] = extract_status_code(error)
    diagnostics["vendor_error_type"] = _vendor_error_type(error)
    lines = "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    ).splitlines()
    diagnostics["traceback"] = "\n".join(lines[-_MAX_TRACEBACK_LINES:])

    body = _request_body(error)
    if body is not None:
        echoed = truncate_request_body(body)
        text = json.dumps(echoed, default=str)
        if len(text) > _MAX_ECHO_CHARS:
            diagnostics["request_body"] = text[:_MAX_ECHO_CHARS] + "...[truncated]"
        else:
            diagnostics["request_body"] = echoed
    return diagnostics


def log_failure(error: LLMError, raw: object, provider: str) -> None:
    """Log one concise line at error level and the details at debug level."""
    logger.error("%s request failed: %s", display_name(provider), error.message)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "LLM failure diagnostics",
            extra={"diagnostics": error_diagnostics(raw, provider)},
        )
