"""
Normalize a Stripe checkout session into an OrderEvent.

Pure function, no I/O. Every optional field is defaulted; the only failure is
a session whose nested objects are missing entirely.
"""
import re
from typing import Any, Mapping, Optional

from .exceptions import MalformedEventError
from .models import MAX_DURATION_DAYS, NOT_AVAILABLE, OrderEvent, RoutingMetadata

DEFAULT_DURATION_DAYS = 5
DEFAULT_CURRENCY = "EUR"
DEFAULT_ISSUE_KIND = "Task"
DEFAULT_SUMMARY = "New Task"

ADDRESS_COMPONENTS = ("line1", "line2", "city", "state", "postal_code", "country")

_LEADING_INT = re.compile(r"^\s*(\d{1,9})(?!\d)")


def parse_duration_days(value: Any, default: int = DEFAULT_DURATION_DAYS) -> int:
    """
    Parse the duration metadata value.

    Accepts ints and strings with a leading integer ("7", "7 days").
    Anything else, including negative numbers and durations over
    MAX_DURATION_DAYS, resolves to the default.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if 0 <= value <= MAX_DURATION_DAYS else default
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match and int(match.group(1)) <= MAX_DURATION_DAYS:
            return int(match.group(1))
    return default


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _upper(value: Any) -> Optional[str]:
    text = _clean(value)
    return text.upper() if text else None


def _require_mapping(session: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = session.get(name)
    if not isinstance(value, Mapping):
        raise MalformedEventError(
            f"Checkout session is missing '{name}'",
            session_id=session.get("id"),
            missing=name,
        )
    return value


def normalize_routing(
    metadata: Mapping[str, Any], default_duration_days: int = DEFAULT_DURATION_DAYS
) -> RoutingMetadata:
    """Build routing metadata from the session's free-form metadata."""
    return RoutingMetadata(
        workspace_project_key=_upper(metadata.get("project")),
        service_desk_key=_upper(metadata.get("service_desk")),
        service_desk_id=_clean(metadata.get("service_desk_id")),
        issue_kind=_clean(metadata.get("issue")) or DEFAULT_ISSUE_KIND,
        summary=_clean(metadata.get("summary")) or DEFAULT_SUMMARY,
        duration_days=parse_duration_days(metadata.get("duration"), default_duration_days),
    )


def normalize_checkout_session(
    session: Any, default_duration_days: int = DEFAULT_DURATION_DAYS
) -> OrderEvent:
    """
    Extract an OrderEvent from a `checkout.session` object.

    Args:
        session: The `data.object` of a checkout.session.completed event
        default_duration_days: Duration used when metadata has none

    Returns:
        OrderEvent: Canonical, immutable event

    Raises:
        MalformedEventError: If customer_details or metadata is missing,
            or the session carries no customer email
    """
    if not isinstance(session, Mapping):
        raise MalformedEventError("Checkout session is not an object")

    customer = _require_mapping(session, "customer_details")
    metadata = _require_mapping(session, "metadata")

    email = _clean(customer.get("email"))
    if not email:
        raise MalformedEventError(
            "Checkout session has no customer email",
            session_id=session.get("id"),
            missing="customer_details.email",
        )

    address = customer.get("address")
    if not isinstance(address, Mapping):
        address = {}
    address_lines = tuple(
        line for line in (_clean(address.get(part)) for part in ADDRESS_COMPONENTS) if line
    )

    amount = session.get("amount_total")
    if not isinstance(amount, int) or isinstance(amount, bool):
        amount = 0

    return OrderEvent(
        customer_email=email,
        customer_name=_clean(customer.get("name")) or NOT_AVAILABLE,
        customer_phone=_clean(customer.get("phone")) or NOT_AVAILABLE,
        customer_address_lines=address_lines,
        amount_minor_units=amount,
        currency=_upper(session.get("currency")) or DEFAULT_CURRENCY,
        routing=normalize_routing(metadata, default_duration_days),
        session_id=_clean(session.get("id")),
    )
