"""Sequential composition of ``(request, next_)`` middlewares."""

from typing import Any, Awaitable, Callable

Handler = Callable[[Any], Awaitable[Any]]
Middleware = Callable[[Any, Handler], Awaitable[Any]]


def compose(*middlewares: Middleware) -> Middleware:
    """Fold middlewares into a single one.

    The first middleware runs outermost. Each decides whether to call the
    next one; the final ``next_`` is the handler the pipeline is invoked with.

    Example:
        >>> pipeline = compose(cache_mw, quota(store=store, limit=5, window_ms=1000))
        >>> response = await pipeline(request, call_model)
    """
    chain = tuple(middlewares)

    async def pipeline(request: Any, handler: Handler) -> Any:
        async def dispatch(index: int, req: Any) -> Any:
            if index == len(chain):
                return await handler(req)

            async def next_(next_req: Any) -> Any:
                return await dispatch(index + 1, next_req)

            return await chain[index](req, next_)

        return await dispatch(0, request)

    return pipeline
