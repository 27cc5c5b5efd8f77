"""Exception hierarchy for the ticker poller."""

from __future__ import annotations

from typing import Optional


class PollerError(RuntimeError):
    """Base class for all poller-specific exceptions."""


class ConfigError(PollerError):
    """Configuration is missing or malformed; fatal at startup."""


class UnsupportedExchangeError(ConfigError):
    """No adapter is registered for the configured exchange name."""


class FetchError(PollerError):
    """An exchange call returned a non-2xx status or an unusable payload."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class StorageError(PollerError):
    """The persistence sink could not connect or write."""
