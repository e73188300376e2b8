from __future__ import annotations

from typing import Optional


class GatorError(Exception):
    """Base class for every error raised by rss_gator."""


class ConfigError(GatorError):
    """Raised when a configuration value is missing or malformed."""


class FetchError(GatorError):
    """Raised when a feed cannot be fetched or parsed."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{message}: {url}")
        self.url = url


class InvalidFeedURL(FetchError):
    """The request could not be built (malformed URL, unsupported scheme)."""


class FeedTransportError(FetchError):
    """Network, DNS or timeout failure while talking to the remote host."""


class FeedStatusError(FetchError):
    """The server answered with a non-2xx status."""

    def __init__(self, url: str, status_code: int, reason: str = "") -> None:
        message = f"unexpected status {status_code}"
        if reason:
            message += f" {reason}"
        super().__init__(url, message)
        self.status_code = status_code


class FeedBodyError(FetchError):
    """The response body could not be read."""


class FeedParseError(FetchError):
    """The document is not a well-formed feed."""


class DateParseError(GatorError, ValueError):
    """Raised when a publish date matches none of the known layouts."""

    def __init__(self, value: str, cause: Optional[Exception] = None) -> None:
        message = f"unable to parse date {value!r} with any known format"
        if cause is not None:
            message += f" ({cause})"
        super().__init__(message)
        self.value = value
        self.cause = cause


class StoreError(GatorError):
    """Raised when the backing store rejects or cannot run an operation."""


class NotFoundError(StoreError):
    """Raised when a looked-up record does not exist."""
