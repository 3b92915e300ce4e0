from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from quotaguard.app.core.config import CLIENT_QUOTA_KEY, Settings, settings as default_settings
from quotaguard.app.core.logging import get_logger, setup_logging
from quotaguard.app.exceptions import QuotaGuardException
from quotaguard.app.middleware.quota_http import QuotaHTTPMiddleware, quota_error_response
from quotaguard.app.services.quota import QuotaStore, create_quota_store

HEALTH_CHECK_KEY = "_health_check"


def register_exception_handlers(app: FastAPI) -> None:
    """Map quota exceptions raised by endpoints to JSON responses."""

    @app.exception_handler(QuotaGuardException)
    async def quota_exception_handler(request: Request, exc: QuotaGuardException) -> JSONResponse:
        """Handle quota exceptions (429 for breaches, 500 otherwise)."""
        return quota_error_response(exc, request)


def create_app(
    config: Optional[Settings] = None,
    store: Optional[QuotaStore] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Run with ``uvicorn quotaguard.app.main:create_app --factory``.

    Args:
        config: Settings to use; defaults to the global settings
        store: Quota store to enforce against; built from settings if omitted
        configure_logging: Apply the logging configuration

    Returns:
        Configured FastAPI application instance
    """
    config = config or default_settings
    if configure_logging:
        setup_logging()
    logger = get_logger(__name__)

    quota_store = store if store is not None else create_quota_store(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Application lifespan context manager.

        Closes the quota store's connections on shutdown.
        """
        logger.info(
            "Application startup complete",
            extra={"backend": quota_store.name, "limit": config.quota_limit},
        )
        yield {"quota_store": quota_store}
        await quota_store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="quotaguard",
        description="Fixed-window request quotas over pluggable storage backends",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.quota_store = quota_store

    app.add_middleware(
        QuotaHTTPMiddleware,
        store=quota_store,
        limit=config.quota_limit,
        window_ms=config.quota_window_ms,
        key=None if config.quota_key == CLIENT_QUOTA_KEY else config.quota_key,
        log_only=config.quota_log_only,
        fail_open=config.quota_fail_open,
    )

    register_exception_handlers(app)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check including a read-only check of the quota store."""
        health_status: dict[str, Any] = {"status": "ok", "components": {}}
        try:
            await quota_store.increment(HEALTH_CHECK_KEY, 0, 1000)
            health_status["components"]["quota_store"] = {
                "status": "ok",
                "type": quota_store.name,
            }
        except Exception as e:
            health_status["status"] = "degraded"
            health_status["components"]["quota_store"] = {
                "status": "error",
                "type": quota_store.name,
                "error": str(e)[:100],  # Truncate for security
            }
        return health_status

    return app
