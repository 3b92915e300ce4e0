"""Quota store contract shared by every backend."""

from abc import ABC, abstractmethod
from typing import Optional

from quotaguard.app.exceptions import InvalidConfigurationError


class QuotaStore(ABC):
    """Abstract base class for quota stores.

    Every backend implements the same fixed-window algorithm with its own
    atomicity primitive:

    1. A missing or expired window resolves to usage 0 and a fresh expiry of
       ``now + window_ms``; an active window keeps its count and expiry.
    2. If ``limit`` is given and the resolved usage is already ``>= limit``,
       nothing is written and ``usage + delta`` is returned.
    3. Otherwise ``usage + delta`` is persisted and returned.

    A ``delta`` of 0 is a pure read.
    """

    name: str = "base"

    @abstractmethod
    async def increment(
        self,
        key: str,
        delta: int,
        window_ms: int,
        limit: Optional[int] = None,
    ) -> int:
        """Add ``delta`` to the usage of ``key`` in its current window.

        Args:
            key: Quota key (e.g. 'global', 'user:123')
            delta: Amount to add; 0 reads without writing
            window_ms: Length of the window in milliseconds
            limit: Optional limit enabling the no-write optimization

        Returns:
            Usage after the operation, or the simulated usage when the
            limit was already reached.
        """
        pass

    async def close(self) -> None:
        """Release resources owned by the store."""


def validate_increment_args(
    key: str, delta: int, window_ms: int, limit: Optional[int]
) -> None:
    """Reject arguments outside the store contract."""
    if not key:
        raise InvalidConfigurationError("Quota key must not be empty")
    if delta < 0:
        raise InvalidConfigurationError(f"delta must not be negative, got {delta}")
    if window_ms <= 0:
        raise InvalidConfigurationError(f"window_ms must be positive, got {window_ms}")
    if limit is not None and limit < 0:
        raise InvalidConfigurationError(f"limit must not be negative, got {limit}")
