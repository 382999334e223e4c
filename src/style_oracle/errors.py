"""Error hierarchy for the style oracle."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from style_oracle.model.query import StyleResult


class StyleEngineError(Exception):
    """Base error for all style_oracle errors."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ConfigurationError(StyleEngineError):
    """Invalid engine configuration."""


# ---------------------------------------------------------------------------
# Process-level errors
# ---------------------------------------------------------------------------


class EngineNotFoundError(StyleEngineError):
    """The engine executable is missing or not executable."""

    def __init__(self, message: str, *, path: str | None = None, cause: Exception | None = None) -> None:
        super().__init__(message, cause=cause)
        self.path = path


class SpawnFailureError(StyleEngineError):
    """The operating system failed to start the engine process."""

    def __init__(self, message: str, *, path: str | None = None, cause: Exception | None = None) -> None:
        super().__init__(message, cause=cause)
        self.path = path


class EngineTimeoutError(StyleEngineError):
    """The engine process exceeded its allotted time and was killed."""

    def __init__(
        self,
        message: str,
        *,
        timeout: float,
        partial_output: str = "",
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.timeout = timeout
        self.partial_output = partial_output


class EngineShutdownError(StyleEngineError):
    """The daemon was shut down before the query could be served."""


# ---------------------------------------------------------------------------
# Extraction errors
# ---------------------------------------------------------------------------


class ExtractionError(StyleEngineError):
    """Output was captured but no usable result could be recovered."""


class NoResultFoundError(ExtractionError):
    """No payload for the query was present in the captured output."""

    def __init__(self, message: str, *, raw_excerpt: str = "", cause: Exception | None = None) -> None:
        super().__init__(message, cause=cause)
        self.raw_excerpt = raw_excerpt


class DecodeFailureError(ExtractionError):
    """A payload was present but could not be decoded.

    Carries the decoder's reason and an excerpt of the offending payload so a
    truncated payload (engine exited before the output flushed) can be told
    apart from a malformed one.
    """

    def __init__(
        self,
        message: str,
        *,
        reason: str,
        payload_excerpt: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.reason = reason
        self.payload_excerpt = payload_excerpt


# ---------------------------------------------------------------------------
# Result-level errors (raised by the facade for failed results)
# ---------------------------------------------------------------------------


class StyleComputationError(StyleEngineError):
    """The engine reported a failed result for the query."""

    def __init__(self, message: str, *, result: StyleResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class ElementNotMatchedError(StyleComputationError):
    """The selector matched no element in the markup."""
