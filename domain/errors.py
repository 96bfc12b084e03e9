from __future__ import annotations

from typing import Optional


class StoreError(Exception):
    """
    A failure raised by the persistent store itself.

    Anything that is not `StoreBusyError` is treated as fatal for the session
    it happened on.
    """

    busy = False

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class StoreBusyError(StoreError):
    """Another writer holds the write lock; retrying later may succeed."""

    busy = True


class ConfigError(Exception):
    """Invalid or missing configuration."""
