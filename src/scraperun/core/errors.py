"""
Structured error types for scraperun.

Every failure a run can hit is classified into a typed error carrying a
category, structured context and the chained underlying exception. None of
them are retried: the orchestrator converts each one into a terminal run
state with a distinguishing status code, so callers always observe a
deterministic end state instead of an exception.

Manifesto:
    - **Typed Error Hierarchy:** One error type per failure domain
    - **Terminal, not retried:** ``retryable`` is always False here
    - **Rich Context:** Errors carry run id, container name and stream
    - **Error Chaining:** Original exceptions are preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       ScrapeRunError                             │
        │  (category, retryable, context, cause)                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  SetupError          InfrastructureError      StreamError        │
        │  (SETUP, 999)        (INFRASTRUCTURE, 998)    (STREAM, 997)      │
        │                                                                  │
        │  ConfigError         InvalidTransitionError   ReadOnlyFieldError │
        │  (CONFIG)            (STATE, ValueError)      (STATE,            │
        │                                                AttributeError)   │
        └─────────────────────────────────────────────────────────────────┘

    A non-zero exit from the scraper itself is *not* an exception: it is
    a normal terminal state carrying the process's exit code.

Examples:
    >>> error = StreamError("read failed").with_context(run_id="42", stream="stderr")
    >>> error.context.stream
    'stderr'
    >>> error.to_dict()["category"]
    'STREAM'

Tags:
    error-handling, exception-hierarchy, error-context, scraperun

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        SETUP: The source tree cannot be run (no recognised entrypoint)
        INFRASTRUCTURE: The executor could not build or start the process
        STREAM: Output of the running process could not be read
        STATE: Illegal run state transition or write to a derived field
        CONFIG: Missing or invalid settings
        STORAGE: Data store or repository failures
        INTERNAL: Bugs, unexpected state
    """

    SETUP = "SETUP"
    INFRASTRUCTURE = "INFRASTRUCTURE"
    STREAM = "STREAM"
    STATE = "STATE"
    CONFIG = "CONFIG"
    STORAGE = "STORAGE"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-None fields end up in ``to_dict()``; anything that does not
    have a dedicated field goes into ``metadata``.

    Attributes:
        run_id: Run identifier
        container_name: Name of the container/process the error relates to
        stream: Output stream name (``stdout`` / ``stderr``)
        path: Filesystem path involved
        metadata: Additional key-value pairs
    """

    run_id: str | None = None
    container_name: str | None = None
    stream: str | None = None
    path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["run_id", "container_name", "stream", "path"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ScrapeRunError(Exception):
    """
    Base exception for all scraperun errors.

    Subclasses set ``default_category``. ``retryable`` exists so the
    errors serialise the same way as other structured errors, but nothing
    in this package ever retries.

    Examples:
        >>> try:
        ...     raise OSError("pipe closed")
        ... except OSError as e:
        ...     error = StreamError("stdout read failed", cause=e)
        >>> error.cause
        OSError('pipe closed')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ScrapeRunError:
        """
        Add context to this error (fluent API).

        Usage:
            raise InfrastructureError("build failed").with_context(
                container_name="alice_weather_12",
                exit_code=1,
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# RUN FAILURES (terminal states)
# =============================================================================


class SetupError(ScrapeRunError):
    """The source tree contains no recognised entrypoint file."""

    default_category = ErrorCategory.SETUP


class InfrastructureError(ScrapeRunError):
    """
    The executor failed before the scraper process ran.

    Raised for image build failures, a missing ``docker`` binary, a
    Procfile without a ``scraper`` entry, or any unexpected exception
    while preparing the isolated environment. The exit status is never
    meaningful when this is raised.
    """

    default_category = ErrorCategory.INFRASTRUCTURE


class StreamError(ScrapeRunError):
    """
    Reading the process's stdout or stderr failed.

    The streaming loop is aborted and the run is truncated, so metrics and
    diff collection must not be attempted against it.
    """

    default_category = ErrorCategory.STREAM


class ConfigError(ScrapeRunError):
    """Invalid or missing configuration."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# STATE ERRORS
# =============================================================================


class InvalidTransitionError(ScrapeRunError, ValueError):
    """Raised when an illegal run state transition is attempted.

    Transition validation is deliberately strict: a run never re-enters
    Running after reaching a terminal state.
    """

    default_category = ErrorCategory.STATE

    def __init__(self, current: str, target: str, run_id: str | None = None) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid run transition: {current} → {target}",
            context=ErrorContext(run_id=run_id),
        )


class ReadOnlyFieldError(ScrapeRunError, AttributeError):
    """Raised when a derived field such as ``wall_time`` is assigned."""

    default_category = ErrorCategory.STATE

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"Can't set {field_name} directly")


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ScrapeRunError",
    "SetupError",
    "InfrastructureError",
    "StreamError",
    "ConfigError",
    "InvalidTransitionError",
    "ReadOnlyFieldError",
]
