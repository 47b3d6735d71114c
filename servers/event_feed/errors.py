"""Error taxonomy for the event feed.

Only QueryValidationError ever reaches a caller of the pipeline. Everything
else is raised inside the resilience layer or an adapter and contained there.
"""

from typing import Optional


class EventFeedError(Exception):
    """Base class for all event feed errors."""


class QueryValidationError(EventFeedError, ValueError):
    """Raised when query coordinates, radius or paging are out of range."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field


class RateLimitedError(EventFeedError):
    """Raised when a source's outbound rate ceiling would be exceeded."""

    def __init__(self, source: str, reason: str, retry_after: float):
        super().__init__(
            f"Rate limited ({reason}) for '{source}', retry in {retry_after:.2f}s"
        )
        self.source = source
        self.reason = reason
        self.retry_after = retry_after


class SourceTimeoutError(EventFeedError):
    """Raised when a provider call exceeds its wall-clock timeout."""

    def __init__(self, source: str, timeout: float):
        super().__init__(f"Request to '{source}' timed out after {timeout}s")
        self.source = source
        self.timeout = timeout


class ProviderError(EventFeedError):
    """Raised on a non-2xx response or a transport failure."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        prefix = f"HTTP {status_code}" if status_code is not None else "Request failed"
        super().__init__(f"{prefix} from '{source}': {message}")
        self.source = source
        self.status_code = status_code


class NormalizationSkip(EventFeedError):
    """Raised by a normalizer for a record that has no stable identity."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"Skipped {source} record: {reason}")
        self.source = source
        self.reason = reason
