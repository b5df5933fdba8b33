"""Exception hierarchy for Cadence."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class CadenceError(Exception):
    """Base exception for all Cadence errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class LLMError(CadenceError):
    """A provider-scoped failure surfaced to callers.

    Instances are built once by :func:`cadence.classify.classify_error` at the
    failure boundary and propagated unchanged afterwards. Two errors compare
    equal when their type, provider, message and status code match, so
    classifying the same raw failure twice yields equal errors.
    """

    #: Whether the caller may reasonably retry (this layer never retries).
    retryable: bool = False

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider
        self.message = message
        self.status_code = status_code

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LLMError):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.provider == other.provider
            and self.message == other.message
            and self.status_code == other.status_code
        )

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.provider, self.message, self.status_code))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider={self.provider!r}, message={self.message!r})"


class AuthenticationError(LLMError):
    """Missing or rejected credential (HTTP 401/403)."""


class RateLimitError(LLMError):
    """Vendor throttling (HTTP 429)."""

    retryable = True


class RequestError(LLMError):
    """Malformed request, unsupported model, or vendor-side failure."""


class ConfigurationError(LLMError):
    """No usable provider, unknown provider, or unresolvable model."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
