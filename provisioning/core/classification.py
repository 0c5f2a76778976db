"""
Classification of Jira API failures per call site.

Each external call in a provisioning run has its own classifier so the
status-code and message matching lives in one place and can be tested
without a network. Classifiers return a CallOutcome; the caller decides what
the outcome means for the run.
"""
from enum import Enum
from typing import Iterable

from provisioning.integrations.jira_client import JiraAPIError


class CallOutcome(Enum):
    """Classification of a failed external call."""

    CONFLICT = "conflict"  # Idempotent replay of work already done; treat as success
    TRANSIENT = "transient"  # Rate limit, 5xx, transport failure
    FATAL = "fatal"  # Anything else


HTTP_CONFLICT = 409
HTTP_TOO_MANY_REQUESTS = 429

CUSTOMER_EXISTS_MARKERS = ("already exists", "already belongs to")
MEMBERSHIP_MARKERS = ("already exists", "already belongs to", "already a member")


def _mentions(error: JiraAPIError, markers: Iterable[str]) -> bool:
    text = " ".join(error.error_messages()).lower()
    return any(marker in text for marker in markers)


def _is_transient(error: JiraAPIError) -> bool:
    if error.status_code is None:
        return True
    return error.status_code == HTTP_TOO_MANY_REQUESTS or error.status_code >= 500


def classify_customer_creation(error: JiraAPIError) -> CallOutcome:
    """A customer that already exists is a conflict; everything else is fatal."""
    if error.status_code == HTTP_CONFLICT or _mentions(error, CUSTOMER_EXISTS_MARKERS):
        return CallOutcome.CONFLICT
    if _is_transient(error):
        return CallOutcome.TRANSIENT
    return CallOutcome.FATAL


def classify_user_search(error: JiraAPIError) -> CallOutcome:
    """Search failures caused by load or lag consume an attempt rather than end the run."""
    if error.status_code == HTTP_CONFLICT:
        return CallOutcome.CONFLICT
    if _is_transient(error):
        return CallOutcome.TRANSIENT
    return CallOutcome.FATAL


def classify_service_desk_association(error: JiraAPIError) -> CallOutcome:
    """A customer already on the service desk is a conflict."""
    if error.status_code == HTTP_CONFLICT or _mentions(error, MEMBERSHIP_MARKERS):
        return CallOutcome.CONFLICT
    if _is_transient(error):
        return CallOutcome.TRANSIENT
    return CallOutcome.FATAL


def classify_record_creation(error: JiraAPIError) -> CallOutcome:
    """
    Issue creation has no idempotency key, so a conflict is never assumed.

    Transient failures are still tagged so logs and metrics tell them apart.
    """
    if _is_transient(error):
        return CallOutcome.TRANSIENT
    return CallOutcome.FATAL
