"""Error taxonomy for the generation pipeline.

Every failure raised out of an adapter is a :class:`GenerationError` carrying
one of three categories, so callers can decide how to surface it without
inspecting messages:

- ``validation``: the config was rejected before any provider call. Surfaced
  as a blocking message and never retried.
- ``cancelled``: the user cancelled the generation. Not an error state.
- ``provider_failure``: network or provider-side failure. Surfaced as an
  error; the user may resubmit, nothing retries automatically.

Persistence and feedback-commit failures are deliberately absent: they are
logged and swallowed where they happen and never reach a caller.
"""

from typing import Literal

ErrorCategory = Literal["validation", "cancelled", "provider_failure"]


class GenerationError(Exception):
    """Base class for failures of a generation attempt."""

    category: ErrorCategory = "provider_failure"


class ValidationError(GenerationError):
    """User-friendly validation error.

    The message is intended to be displayed directly to the user. The
    individual problems are kept in ``errors``.
    """

    category: ErrorCategory = "validation"

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class GenerationCancelledError(GenerationError):
    """The in-flight generation was cancelled by the user."""

    category: ErrorCategory = "cancelled"


class ProviderFailure(GenerationError):
    """The provider call failed. Retryable by the caller, never by the adapter."""

    category: ErrorCategory = "provider_failure"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GenerationInProgressError(RuntimeError):
    """A generation is already processing in this session."""

    pass
