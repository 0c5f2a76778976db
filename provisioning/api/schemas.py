"""
Pydantic schemas for API responses.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class WebhookResponse(BaseModel):
    """Acknowledgement returned to Stripe."""

    status: str = Field(..., description="scheduled, ignored or malformed")
    event_id: Optional[str] = Field(default=None, description="Stripe event ID")
    event_type: Optional[str] = Field(default=None, description="Stripe event type")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "status": "scheduled",
                    "event_id": "evt_1NqXyZ2eZvKYlo2C",
                    "event_type": "checkout.session.completed",
                }
            ]
        }
    }


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="healthy or degraded")
    checks: Dict[str, Any] = Field(default_factory=dict, description="Individual checks")


class DeadLetterResponse(BaseModel):
    """A failed provisioning run."""

    job: str
    reason: str
    error: str
    error_type: str
    context: Dict[str, Any] = Field(default_factory=dict)
    failed_at: str


class DeadLetterListResponse(BaseModel):
    """Recent failed provisioning runs, newest last."""

    count: int
    items: List[DeadLetterResponse]
