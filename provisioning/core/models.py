"""
Domain models for a provisioning run.

All models are immutable: an OrderEvent is built once per notification and
everything downstream is derived from it.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

NOT_AVAILABLE = "N/A"
MAX_DURATION_DAYS = 3650


class RoutingMetadata(BaseModel):
    """Free-form checkout metadata that decides which records are created."""

    model_config = ConfigDict(frozen=True)

    workspace_project_key: Optional[str] = None
    service_desk_key: Optional[str] = None
    service_desk_id: Optional[str] = None
    issue_kind: str = "Task"
    summary: str = "New Task"
    duration_days: int = Field(default=5, ge=0, le=MAX_DURATION_DAYS)

    @property
    def is_support(self) -> bool:
        return self.issue_kind.strip().lower() == "support"


class OrderEvent(BaseModel):
    """Canonical view of a completed checkout."""

    model_config = ConfigDict(frozen=True)

    customer_email: str
    customer_name: str = NOT_AVAILABLE
    customer_phone: str = NOT_AVAILABLE
    customer_address_lines: Tuple[str, ...] = ()
    amount_minor_units: int = 0
    currency: str = "EUR"
    routing: RoutingMetadata = Field(default_factory=RoutingMetadata)
    session_id: Optional[str] = None

    def snapshot(self) -> CustomerSnapshot:
        """Derive the human-readable customer view used in record descriptions."""
        amount = (Decimal(self.amount_minor_units) / Decimal(100)).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
        address = ", ".join(line for line in self.customer_address_lines if line)
        return CustomerSnapshot(
            name=self.customer_name or NOT_AVAILABLE,
            email=self.customer_email or NOT_AVAILABLE,
            phone=self.customer_phone or NOT_AVAILABLE,
            address=address or NOT_AVAILABLE,
            formatted_amount=f"{amount} {self.currency.upper()}",
        )


class CustomerSnapshot(BaseModel):
    """Contact details and amount, formatted for display."""

    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    phone: str
    address: str
    formatted_amount: str


class IdentityResolution(BaseModel):
    """
    Outcome of identity resolution.

    account_id is None when the directory never returned the customer within
    the search budget; callers fall back to email attribution.
    """

    model_config = ConfigDict(frozen=True)

    account_id: Optional[str] = None
    is_new_identity: bool = False

    @property
    def is_resolved(self) -> bool:
        return self.account_id is not None


class ReporterRef(BaseModel):
    """Who a created record is attributed to: an account id, else a raw email."""

    model_config = ConfigDict(frozen=True)

    account_id: Optional[str] = None
    email_address: Optional[str] = None

    @classmethod
    def from_resolution(
        cls, resolution: Optional[IdentityResolution], email: str
    ) -> ReporterRef:
        if resolution is not None and resolution.is_resolved:
            return cls(account_id=resolution.account_id)
        return cls(email_address=email)

    def to_field(self) -> Dict[str, str]:
        """Render as the Jira `reporter` field value."""
        if self.account_id:
            return {"accountId": self.account_id}
        return {"emailAddress": self.email_address or ""}


class WorkflowVariant(str, Enum):
    """Record-creation sequence selected by the routing metadata."""

    SUPPORT = "support"
    WORK_ITEM = "work_item"


class ProvisionedRecord(BaseModel):
    """A record created in Jira during a run."""

    model_config = ConfigDict(frozen=True)

    role: str  # support_request, parent, child, confirmation
    key: str
    project_key: str


class ProvisioningResult(BaseModel):
    """Summary of a finished run."""

    model_config = ConfigDict(frozen=True)

    variant: WorkflowVariant
    identity: Optional[IdentityResolution] = None
    reporter: ReporterRef
    records: Tuple[ProvisionedRecord, ...] = ()

    def keys(self) -> Dict[str, str]:
        return {record.role: record.key for record in self.records}

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            "variant": self.variant.value,
            "account_id": self.identity.account_id if self.identity else None,
            "is_new_identity": self.identity.is_new_identity if self.identity else None,
            "records": self.keys(),
        }
