"""Quota enforcement middleware.

A middleware is an async callable ``(request, next_) -> response``. The quota
middleware derives a key for the request, counts the request against the
store, and then either forwards the request, forwards it with a warning
(log-only), or raises.

Store verdicts and store failures are kept apart: a breach always raises
``QuotaExceededError`` (unless log-only), while an error raised by the store
is governed by ``fail_open``.
"""

from typing import Any, Awaitable, Callable, Optional

from quotaguard.app.core.logging import get_log_context, get_logger
from quotaguard.app.exceptions import (
    InvalidConfigurationError,
    QuotaCheckError,
    QuotaExceededError,
)

# Re-export models
from quotaguard.app.middleware.quota.models import (
    DEFAULT_QUOTA_KEY,
    DerivedKey,
    KeySource,
    QuotaOptions,
    StaticKey,
    key_source,
)

logger = get_logger(__name__)

__all__ = [
    # Models
    "DEFAULT_QUOTA_KEY",
    "StaticKey",
    "DerivedKey",
    "KeySource",
    "key_source",
    "QuotaOptions",
    # Middleware
    "QuotaMiddleware",
    "quota",
]

NextHandler = Callable[[Any], Awaitable[Any]]


class QuotaMiddleware:
    """Middleware enforcing a fixed-window quota before calling ``next_``."""

    def __init__(self, options: QuotaOptions):
        self.options = options

    async def __call__(self, request: Any, next_: NextHandler) -> Any:
        opts = self.options
        key = opts.key_source.resolve(request)
        backend = getattr(opts.store, "name", type(opts.store).__name__)

        try:
            usage = await opts.store.increment(key, 1, opts.window_ms, opts.limit)
        except (QuotaExceededError, InvalidConfigurationError):
            # Verdicts and misconfiguration are never subject to fail_open
            raise
        except Exception as e:
            logger.error(
                f"Failed to check quota for '{key}': {e}",
                exc_info=True,
                extra=get_log_context(quota_key=key, backend=backend),
            )
            if not opts.fail_open:
                if isinstance(e, QuotaCheckError):
                    raise
                raise QuotaCheckError(key, e) from e
        else:
            if usage > opts.limit:
                exc = QuotaExceededError(
                    usage=usage, limit=opts.limit, window_ms=opts.window_ms, key=key
                )
                if not opts.log_only:
                    raise exc
                logger.warning(
                    f"Quota warning: {exc.message}",
                    extra=get_log_context(
                        quota_key=key,
                        backend=backend,
                        usage=usage,
                        limit=opts.limit,
                        window_ms=opts.window_ms,
                    ),
                )

        return await next_(request)


def quota(options: Optional[QuotaOptions] = None, **kwargs: Any) -> QuotaMiddleware:
    """Create a quota middleware.

    Accepts either a ready ``QuotaOptions`` or its fields as keyword
    arguments.

    Example:
        >>> q = quota(store=InMemoryQuotaStore(), limit=10, window_ms=60_000)
        >>> response = await q(request, handler)
    """
    if options is None:
        options = QuotaOptions(**kwargs)
    elif kwargs:
        raise TypeError("Pass either QuotaOptions or keyword arguments, not both")
    return QuotaMiddleware(options)
