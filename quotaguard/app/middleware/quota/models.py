"""Quota middleware configuration models.

This module contains the key-source variants and the options dataclass.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Union

from quotaguard.app.exceptions import InvalidConfigurationError
from quotaguard.app.services.quota.base import QuotaStore

DEFAULT_QUOTA_KEY = "global"


@dataclass(frozen=True)
class StaticKey:
    """The same quota key for every request."""
    value: str = DEFAULT_QUOTA_KEY

    def resolve(self, request: Any) -> str:
        return self.value


@dataclass(frozen=True)
class DerivedKey:
    """A quota key computed from each request."""
    fn: Callable[[Any], str]

    def resolve(self, request: Any) -> str:
        key = self.fn(request)
        if not key:
            raise InvalidConfigurationError("Key function returned an empty quota key")
        return key


KeySource = Union[StaticKey, DerivedKey]


def key_source(key: Union[KeySource, str, Callable[[Any], str], None] = None) -> KeySource:
    """Coerce a caller-supplied key into a KeySource.

    A string becomes a StaticKey, a callable a DerivedKey, and None the
    global key shared by all requests.
    """
    if key is None:
        return StaticKey()
    if isinstance(key, (StaticKey, DerivedKey)):
        return key
    if isinstance(key, str):
        if not key:
            raise InvalidConfigurationError("Quota key must not be empty")
        return StaticKey(key)
    if callable(key):
        return DerivedKey(key)
    raise InvalidConfigurationError(
        f"Quota key must be a string or a callable, got {type(key).__name__}"
    )


@dataclass
class QuotaOptions:
    """Configuration of one quota middleware instance.

    Attributes:
        store: Backend counting usage
        limit: Maximum usage allowed within a window; usage equal to the
            limit is still allowed through
        window_ms: Window length in milliseconds
        key: Static key, key function, or None for the global key. A key
            function returning an empty string raises
            InvalidConfigurationError for that request, which is never
            covered by fail_open
        log_only: Only warn on breach instead of blocking
        fail_open: Let requests through when the store itself fails
    """
    store: QuotaStore
    limit: int
    window_ms: int
    key: Any = None
    log_only: bool = False
    fail_open: bool = False
    key_source: KeySource = field(init=False)

    def __post_init__(self) -> None:
        if self.limit < 0:
            raise InvalidConfigurationError(f"limit must not be negative, got {self.limit}")
        if self.window_ms <= 0:
            raise InvalidConfigurationError(
                f"window_ms must be positive, got {self.window_ms}"
            )
        self.key_source = key_source(self.key)
