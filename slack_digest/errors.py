"""Error types for Slack Digest.

Every error carries the name of the operation that failed plus any
identifiers (batch index, generation id) useful for debugging.
"""

from typing import Optional


class DigestError(Exception):
    """Base class for all Slack Digest failures."""

    def __init__(self, message: str, operation: Optional[str] = None, **context):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.context = context

    def __str__(self) -> str:
        details = []
        if self.operation:
            details.append(f"operation={self.operation}")
        for key, value in self.context.items():
            if value is not None:
                details.append(f"{key}={value}")
        if not details:
            return self.message
        return f"{self.message} ({', '.join(details)})"


# ----------------------------------------------------------------------------
# Input errors: raised before any collaborator is called
# ----------------------------------------------------------------------------

class InputError(DigestError):
    """Raised when the input data or arguments are unusable."""
    pass


class LoaderError(InputError):
    """Raised when an export file cannot be read or a row is malformed."""
    pass


class RecordValidationError(InputError):
    """Raised when a message record violates its invariants."""
    pass


class TemplateError(InputError):
    """Raised when a prompt template is missing a required placeholder."""
    pass


class ConfigError(InputError):
    """Raised when settings or classification config are invalid."""
    pass


# ----------------------------------------------------------------------------
# Collaborator errors
# ----------------------------------------------------------------------------

class LLMError(DigestError):
    """Raised when the LLM collaborator fails."""

    retryable = False


class TransientLLMError(LLMError):
    """Timeouts, connection errors, rate limits and 5xx responses."""

    retryable = True


class EmptyCompletionError(TransientLLMError):
    """The LLM call succeeded but returned no text."""
    pass


class PermanentLLMError(LLMError):
    """Authentication, validation and other 4xx responses."""
    pass


class BatchFailedError(LLMError):
    """Raised when a batch still fails after every retry attempt."""
    pass


class ServiceError(DigestError):
    """Raised when the slide-generation collaborator fails."""

    retryable = False


class TransientServiceError(ServiceError):
    """Timeouts, connection errors and 5xx responses from the slide service."""

    retryable = True


class PermanentServiceError(ServiceError):
    """4xx responses and malformed payloads from the slide service."""
    pass


class PresentationFailedError(ServiceError):
    """The slide service reported that generation failed."""
    pass


class PresentationTimeoutError(ServiceError):
    """Polling gave up before the generation finished.

    The remote job may still complete, so the outcome is unknown.
    """
    pass


class AggregationError(DigestError):
    """Raised when summarization results cannot be merged."""
    pass
