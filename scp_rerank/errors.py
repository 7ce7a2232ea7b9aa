"""Error taxonomy shared by the pipelines and the search engine."""

from __future__ import annotations


class ScpRerankError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(ScpRerankError):
    """Raised when required settings are missing or invalid."""


class NotFoundError(ScpRerankError):
    """Raised when an article, embedding or tag set does not exist."""


class SearchFailureError(ScpRerankError):
    """Raised when the similarity search backend fails."""


class StoreError(ScpRerankError):
    """Raised for store backend errors and malformed store rows."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderError(ScpRerankError):
    """Raised for non-retryable embedding/completion provider failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(ProviderError):
    """Raised when a provider throttles us. Retryable."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class ParseError(ScpRerankError):
    """Raised when a tagging response is not a JSON object."""


class ScoringPreconditionError(ScpRerankError):
    """Raised when vectors cannot be compared (e.g. dimension mismatch)."""
