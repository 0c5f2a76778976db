"""Core provisioning logic."""
from .exceptions import (
    IdentityAssociationError,
    IdentityCreationError,
    MalformedEventError,
    MissingRoutingKeyError,
    ProvisioningError,
    RecordCreationError,
)
from .identity import IdentityResolver, SearchRetryPolicy
from .normalizer import normalize_checkout_session
from .orchestrator import ProvisioningOrchestrator

__all__ = [
    "IdentityAssociationError",
    "IdentityCreationError",
    "IdentityResolver",
    "MalformedEventError",
    "MissingRoutingKeyError",
    "ProvisioningError",
    "ProvisioningOrchestrator",
    "RecordCreationError",
    "SearchRetryPolicy",
    "normalize_checkout_session",
]
