"""
Main FastAPI application.

Receives Stripe webhooks and provisions Jira records with:
- Request ID tracking
- Structured logging
- Prometheus metrics
- Detached provisioning runs drained on shutdown
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from provisioning import __version__
from provisioning.config import Settings, get_settings
from provisioning.core.orchestrator import ProvisioningOrchestrator
from provisioning.integrations.jira_client import JiraClient
from provisioning.integrations.webhook_handler import build_webhook_handler
from provisioning.monitoring.logging import setup_logging
from provisioning.workers.dispatcher import BackgroundDispatcher

from .routes import admin_router, monitoring_router, webhook_router

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    jira_client: Optional[JiraClient] = None,
    orchestrator: Optional[ProvisioningOrchestrator] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Optional settings (uses cached settings if not provided)
        jira_client: Optional Jira client (created on startup if not provided)
        orchestrator: Optional orchestrator (built around the Jira client if not provided)

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            env=settings.app_env,
            test_mode=settings.is_test_mode,
        )

        client = jira_client or JiraClient(settings)
        runner = orchestrator or ProvisioningOrchestrator(client, settings)
        dispatcher = BackgroundDispatcher(settings.dead_letter_capacity)

        app.state.settings = settings
        app.state.jira_client = client
        app.state.dispatcher = dispatcher
        app.state.webhook_handler = build_webhook_handler(runner, dispatcher, settings)

        yield

        logger.info("application_shutdown", runs_in_flight=dispatcher.in_flight)
        await dispatcher.drain(timeout=settings.shutdown_grace_seconds)
        if jira_client is None:
            await client.close()

    app = FastAPI(
        title="Checkout Provisioning Service",
        description=(
            "Receives Stripe checkout webhooks and provisions Jira Service Management "
            "customers and Jira records for the paying customer."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        openapi_url=None if settings.is_production else "/openapi.json",
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """Add request ID to all requests for tracing."""
        request_id = str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    app.include_router(webhook_router)
    app.include_router(admin_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


def main() -> None:
    """Run the service with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "provisioning.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
