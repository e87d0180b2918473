"""
Exception hierarchy for DeepSearch.

Component-local failures (upstream HTTP errors, cache store hiccups) are
converted into result objects close to where they happen. Only loop-entry
failures (credentials, rate limit, rate-limit backend) reach the transport.
"""

from typing import Any


class DeepSearchError(Exception):
    """Base exception for all DeepSearch errors."""

    def __init__(self, message: str, *, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(DeepSearchError):
    """A required setting (usually a provider credential) is missing."""

    def __init__(self, setting: str, message: str | None = None):
        super().__init__(message or f"{setting} is not set in the environment or .env file")
        self.setting = setting


class UpstreamError(DeepSearchError):
    """A search or scrape call returned a non-success result."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        self.status_code = status_code
        self.retryable = retryable


class RateLimitExceeded(DeepSearchError):
    """The caller is still over its request budget after exhausting retries."""

    def __init__(self, key: str, reset_in_ms: int = 0):
        super().__init__(f"Rate limit exceeded for '{key}'")
        self.key = key
        self.reset_in_ms = reset_in_ms


class BackendError(DeepSearchError):
    """The shared key-value store could not be reached."""


class CacheBackendError(BackendError):
    """A cache read or write failed. Never fatal; the cache falls back to a direct call."""


class OperationCancelled(DeepSearchError):
    """The caller went away; in-flight work must stop without side effects."""

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


class ChatNotFoundError(DeepSearchError):
    """The chat does not exist or belongs to another user."""

    def __init__(self, chat_id: str):
        super().__init__("Chat not found")
        self.chat_id = chat_id
