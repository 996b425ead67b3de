"""Error types shared across services, workers and adapters."""
from typing import Optional


class ValidationError(ValueError):
    """Caller supplied invalid input. Nothing was created or changed."""
    pass


class NotFoundError(LookupError):
    """Referenced entity does not exist (or is not visible to the caller)."""
    pass


class VideoDeletedError(NotFoundError):
    """The video disappeared while a pipeline stage was working on it."""
    pass


class ConcurrencyConflict(RuntimeError):
    """A conditional update lost a race with another writer."""
    pass


class ProviderError(Exception):
    """Base class for failures reported by an external provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Timeouts, rate limits and 5xx responses. Safe to retry."""
    pass


class PermanentProviderError(ProviderError):
    """Authentication, quota and other non-retryable provider failures."""
    pass


class UnsupportedMediaError(ProviderError):
    """Provider could not decode the media. Normalizing it may help."""
    pass


class StageError(Exception):
    """A pipeline stage failed and the video must move to failed."""

    def __init__(self, reason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class PermissionDeniedError(PermissionError):
    """Caller lacks the right required for the action."""
    pass
