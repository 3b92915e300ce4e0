"""HTTP quota enforcement for FastAPI / Starlette applications."""

import hashlib
from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from quotaguard.app.core.logging import get_log_context, get_logger
from quotaguard.app.exceptions import QuotaExceededError, QuotaGuardException
from quotaguard.app.middleware.quota import QuotaMiddleware, QuotaOptions
from quotaguard.app.services.quota.base import QuotaStore

logger = get_logger(__name__)

MAX_API_KEY_LENGTH = 512


def client_quota_key(request: Request) -> str:
    """Get the quota key for an HTTP request.

    Uses the bearer token if available, otherwise falls back to the client
    IP. Both are hashed with SHA-256 so raw credentials never reach the store.
    """
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        api_key = auth[7:].strip()[:MAX_API_KEY_LENGTH]
        key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:32]
        return f"apikey:{key_hash}"

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else "unknown"
    ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
    return f"ip:{ip_hash}"


def quota_error_response(exc: QuotaGuardException, request: Optional[Request] = None) -> JSONResponse:
    """Convert a quota exception into a JSON response.

    Breaches become 429 with a Retry-After header. Anything else is a server
    side failure and gets a generic message; details stay in the logs.
    """
    if isinstance(exc, QuotaExceededError):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers={
                "Retry-After": str(exc.retry_after),
                "X-Quota-Limit": str(exc.limit),
                "X-Quota-Usage": str(exc.usage),
            },
        )

    request_id = getattr(request.state, "request_id", None) if request is not None else None
    logger.error(
        f"Quota check failed: {exc.message}",
        extra=get_log_context(
            quota_key=getattr(exc, "key", None),
            request_id=request_id,
            path=request.url.path if request is not None else None,
        ),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "quota_check_failed", "message": "Failed to check quota"},
    )


class QuotaHTTPMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce a quota on every HTTP request.

    Requests are keyed per API key if available, otherwise per IP, unless a
    static key or key function is given.
    """

    def __init__(
        self,
        app,
        store: QuotaStore,
        limit: int,
        window_ms: int,
        key: Optional[str | Callable[[Request], str]] = None,
        log_only: bool = False,
        fail_open: bool = False,
        exempt_paths: Iterable[str] = ("/health",),
    ):
        super().__init__(app)
        self.exempt_paths = frozenset(exempt_paths)
        self.quota = QuotaMiddleware(
            QuotaOptions(
                store=store,
                limit=limit,
                window_ms=window_ms,
                key=key if key is not None else client_quota_key,
                log_only=log_only,
                fail_open=fail_open,
            )
        )

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with quota enforcement."""
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        # Exception handlers do not see errors raised inside BaseHTTPMiddleware
        try:
            return await self.quota(request, call_next)
        except QuotaGuardException as exc:
            return quota_error_response(exc, request)
