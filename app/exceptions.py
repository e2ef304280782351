"""
Custom exceptions for the ingestion pipeline
"""

import httpx
from anthropic import (
    APIConnectionError as AnthropicConnectionError,
    APIStatusError as AnthropicStatusError,
    APITimeoutError as AnthropicTimeoutError,
)
from openai import (
    APIConnectionError as OpenAIConnectionError,
    APIStatusError as OpenAIStatusError,
    APITimeoutError as OpenAITimeoutError,
)
from pydantic import ValidationError
from pymongo.errors import AutoReconnect, NetworkTimeout


class PipelineError(Exception):
    """Base class for errors raised by the ingestion pipeline"""

    retryable: bool = True

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TransientError(PipelineError):
    """Error worth retrying later (timeouts, rate limits, 5xx)"""

    retryable = True


class PermanentError(PipelineError):
    """Error that will not go away on retry (malformed payload, empty post)"""

    retryable = False


class ProviderUnavailableError(TransientError):
    """Raised when an external provider times out, is unreachable or returns 5xx"""

    def __init__(self, message: str, provider: str = "unknown", status_code: int = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class LLMRateLimitError(TransientError):
    """Raised when LLM API rate limit is hit"""

    def __init__(self, message: str, provider: str = "unknown", retry_after: int = None):
        self.provider = provider
        self.retry_after = retry_after
        super().__init__(message)


class LLMQuotaExceededError(TransientError):
    """Raised when the LLM quota or the monthly spending limit is exceeded"""

    def __init__(self, message: str, provider: str = "unknown", original_error: Exception = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


class MalformedProviderResponseError(TransientError):
    """Raised when a provider answers with something that cannot be parsed"""

    def __init__(self, message: str, provider: str = "unknown", raw_response: str = None):
        self.provider = provider
        self.raw_response = raw_response
        super().__init__(message)


class ProviderRequestError(PermanentError):
    """Raised when a provider rejects the request itself (4xx other than 429)"""

    def __init__(self, message: str, provider: str = "unknown", status_code: int = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class InvalidJobPayloadError(PermanentError):
    """Raised when a job payload is missing required data"""


class PostNotFoundError(PermanentError):
    """Raised when a job references a post that does not exist"""


class EmptyPostError(PermanentError):
    """Raised when a post has no text to analyze"""


class ScraperNotConfiguredError(PermanentError):
    """Raised when the scraping actor credentials are missing"""


def _status_error(message: str, provider: str, status_code: int) -> PipelineError:
    if status_code == 429:
        return LLMRateLimitError(message, provider=provider)
    if status_code >= 500:
        return ProviderUnavailableError(message, provider=provider, status_code=status_code)
    return ProviderRequestError(message, provider=provider, status_code=status_code)


def classify_error(error: Exception, provider: str = "unknown") -> PipelineError:
    """Map an arbitrary exception onto the transient/permanent taxonomy"""
    if isinstance(error, PipelineError):
        return error

    if isinstance(error, (OpenAITimeoutError, AnthropicTimeoutError, httpx.TimeoutException)):
        return ProviderUnavailableError(f"Timeout: {error}", provider=provider)
    if isinstance(error, (OpenAIConnectionError, AnthropicConnectionError, httpx.TransportError)):
        return ProviderUnavailableError(f"Connection error: {error}", provider=provider)
    if isinstance(error, (OpenAIStatusError, AnthropicStatusError)):
        return _status_error(str(error), provider, error.status_code)
    if isinstance(error, httpx.HTTPStatusError):
        return _status_error(str(error), provider, error.response.status_code)
    if isinstance(error, (AutoReconnect, NetworkTimeout)):
        return TransientError(f"Database temporarily unavailable: {error}")
    if isinstance(error, ValidationError):
        return PermanentError(f"Validation failed: {error}")

    # Unknown failures are retried, bounded by the job's max_attempts
    return TransientError(f"{type(error).__name__}: {error}")
