"""
Exception taxonomy for provisioning runs.

Every exception here is fatal for the run that raised it. Expected conflicts
("already exists", "already a member") are not exceptions at all: they are
classified at the call site and absorbed as success.
"""
from typing import Any, Optional


class ProvisioningError(Exception):
    """Base exception for all provisioning failures."""

    reason = "provisioning_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for logs and the dead-letter sink."""
        return {
            "type": self.__class__.__name__,
            "reason": self.reason,
            "message": self.message,
            **self.context,
        }


class MalformedEventError(ProvisioningError):
    """The notification payload is structurally unusable. Never retried."""

    reason = "malformed_event"


class MissingRoutingKeyError(ProvisioningError):
    """The selected workflow variant needs a project key that is not configured."""

    reason = "missing_routing_key"

    def __init__(self, message: str, key_name: str, variant: str):
        super().__init__(message, key_name=key_name, variant=variant)
        self.key_name = key_name
        self.variant = variant


class IdentityCreationError(ProvisioningError):
    """Customer creation failed with something other than a conflict."""

    reason = "identity_creation_failed"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.status_code = status_code
        self.original_error = original_error


class IdentityAssociationError(ProvisioningError):
    """
    Adding the customer to the service desk failed.

    This call is what grants portal access, so the run stops here rather
    than provisioning records the customer cannot see.
    """

    reason = "identity_association_failed"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.status_code = status_code
        self.original_error = original_error


class RecordCreationError(ProvisioningError):
    """A Jira record could not be created."""

    reason = "record_creation_failed"

    def __init__(
        self,
        message: str,
        step: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, step=step, status_code=status_code)
        self.step = step
        self.status_code = status_code
        self.original_error = original_error
