"""Custom exceptions for the quota layer."""


class QuotaGuardException(Exception):
    """Base class for quota exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Quota error"):
        self.message = message
        super().__init__(message)


class QuotaExceededError(QuotaGuardException):
    """Raised when usage for a quota key surpassed its limit in the current window.

    This is a verdict, not a failure: it always reaches the caller unless the
    quota runs in log-only mode. Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        usage: int,
        limit: int,
        window_ms: int,
        key: str,
        detail: str | None = None,
    ):
        self.usage = usage
        self.limit = limit
        self.window_ms = window_ms
        self.key = key
        message = detail or (
            f"Quota exceeded for key '{key}'. "
            f"Usage: {usage}/{limit} in {window_ms}ms"
        )
        super().__init__(message)

    @property
    def retry_after(self) -> int:
        """Upper bound in whole seconds until the window can reset."""
        return max(1, -(-self.window_ms // 1000))

    def to_response(self) -> dict:
        """Convert to API response format."""
        return {
            "error": "quota_exceeded",
            "message": self.message,
            "usage": self.usage,
            "limit": self.limit,
            "window_ms": self.window_ms,
            "key": self.key,
        }


class QuotaCheckError(QuotaGuardException):
    """Raised when the quota store could not be consulted and the quota fails closed.

    The original store error is chained as ``__cause__``.
    Maps to HTTP 500 Internal Server Error.
    """
    status_code = 500

    def __init__(self, key: str, cause: BaseException | None = None):
        self.key = key
        self.cause = cause
        message = "Failed to check quota"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class InvalidConfigurationError(QuotaGuardException):
    """Raised eagerly for malformed quota or backend configuration.

    Never swallowed by the fail-open policy.
    """
    status_code = 500

    def __init__(self, message: str = "Invalid quota configuration"):
        super().__init__(message)
