"""
API routes for the provisioning service.
"""
import time
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Header, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from provisioning.integrations.webhook_handler import WebhookError

from .schemas import DeadLetterListResponse, HealthCheckResponse, WebhookResponse

logger = structlog.get_logger(__name__)

webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])


@webhook_router.post(
    "/stripe",
    response_model=WebhookResponse,
    summary="Stripe webhook endpoint",
    description="Verify a Stripe event and schedule provisioning for completed checkouts",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
) -> Dict[str, Any]:
    """
    Handle Stripe webhook events.

    Responds as soon as the signature is verified; provisioning runs detached.
    """
    start_time = time.time()
    webhook_handler = request.app.state.webhook_handler

    if not stripe_signature:
        logger.warning("api_webhook_missing_signature")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header"
        )

    body = await request.body()

    try:
        event = webhook_handler.verify_signature(body, stripe_signature)
    except WebhookError as e:
        logger.warning("api_webhook_rejected", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    result = await webhook_handler.process_event(event)

    logger.info(
        "api_webhook_acknowledged",
        event_id=result.get("event_id"),
        event_type=result.get("event_type"),
        status=result.get("status"),
        duration_seconds=time.time() - start_time,
    )
    return result


@admin_router.get(
    "/dead-letters",
    response_model=DeadLetterListResponse,
    summary="Failed provisioning runs",
    description="Recent runs that failed after their webhook was acknowledged (in-memory only)",
)
async def dead_letters(request: Request) -> Dict[str, Any]:
    """List recent dead letters."""
    items = [entry.to_dict() for entry in request.app.state.dispatcher.dead_letters]
    return {"count": len(items), "items": items}


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Report configuration readiness and in-flight provisioning runs",
)
async def health(request: Request) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    settings = request.app.state.settings
    dispatcher = request.app.state.dispatcher
    service_desk_configured = bool(
        settings.jira_service_desk_key and settings.jira_service_desk_id
    )
    return {
        "status": "healthy" if service_desk_configured else "degraded",
        "checks": {
            "jira_domain": settings.jira_domain,
            "service_desk_configured": service_desk_configured,
            "runs_in_flight": dispatcher.in_flight,
            "dead_letters": len(dispatcher.dead_letters),
        },
    }


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness() -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return {"status": "healthy", "checks": {}}


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
