"""Middleware package for quotaguard."""

from quotaguard.app.middleware.pipeline import compose
from quotaguard.app.middleware.quota import QuotaMiddleware, QuotaOptions, quota
from quotaguard.app.middleware.quota_http import QuotaHTTPMiddleware, quota_error_response

__all__ = [
    "compose",
    "quota",
    "QuotaMiddleware",
    "QuotaOptions",
    "QuotaHTTPMiddleware",
    "quota_error_response",
]
