"""
Stripe webhook handler.

Implements:
- Webhook signature verification before any payload parsing
- Event type routing to registered handlers
- The checkout.session.completed handler that schedules provisioning

There is no event deduplication: a redelivered event is provisioned again.
"""
import json
from typing import Any, Awaitable, Callable, Dict, Optional

import stripe
import structlog

from provisioning.config import Settings, get_settings
from provisioning.core.exceptions import MalformedEventError
from provisioning.core.normalizer import normalize_checkout_session
from provisioning.core.orchestrator import ProvisioningOrchestrator
from provisioning.monitoring.metrics import metrics
from provisioning.workers.dispatcher import BackgroundDispatcher

logger = structlog.get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"

EventHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class WebhookError(Exception):
    """Raised when a webhook cannot be verified or decoded."""

    pass


class WebhookHandler:
    """
    Verifies Stripe webhooks and routes them by event type.

    Unregistered event types are acknowledged and ignored.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize webhook handler.

        Args:
            settings: Optional settings (uses cached settings if not provided)
        """
        self.settings = settings or get_settings()
        self.event_handlers: Dict[str, EventHandler] = {}

        logger.info("webhook_handler_initialized")

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: Stripe event type (e.g., 'checkout.session.completed')
            handler: Async callable receiving the event's data.object
        """
        self.event_handlers[event_type] = handler
        logger.info("webhook_handler_registered", event_type=event_type)

    def verify_signature(
        self, payload: bytes, signature: str, secret: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Verify webhook signature and decode the event.

        Args:
            payload: Raw request body as bytes
            signature: Stripe-Signature header value
            secret: Optional webhook secret (uses config if not provided)

        Returns:
            Dict[str, Any]: The verified event as plain JSON

        Raises:
            WebhookError: If signature verification fails
        """
        webhook_secret = secret or self.settings.stripe_webhook_secret

        try:
            stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            logger.error("webhook_signature_verification_failed", error=str(e))
            raise WebhookError(f"Invalid webhook signature: {str(e)}")
        except ValueError as e:
            logger.error("webhook_payload_invalid", error=str(e))
            raise WebhookError(f"Invalid webhook payload: {str(e)}")

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise WebhookError(f"Invalid webhook payload: {str(e)}")
        if not isinstance(event, dict):
            raise WebhookError("Invalid webhook payload: not an object")

        logger.info(
            "webhook_signature_verified",
            event_id=event.get("id"),
            event_type=event.get("type"),
        )
        return event

    async def process_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Route a verified event to its handler.

        Args:
            event: Verified Stripe event

        Returns:
            Dict[str, Any]: Acknowledgement body
        """
        event_id = event.get("id")
        event_type = event.get("type") or "unknown"

        handler = self.event_handlers.get(event_type)
        if handler is None:
            logger.info("webhook_event_ignored", event_id=event_id, event_type=event_type)
            metrics.record_webhook_event(event_type, "ignored")
            return {"status": "ignored", "event_id": event_id, "event_type": event_type}

        data = event.get("data")
        data_object = data.get("object") if isinstance(data, dict) else None
        result = await handler(data_object)
        metrics.record_webhook_event(event_type, result.get("status", "handled"))
        return {"event_id": event_id, "event_type": event_type, **result}


class CheckoutCompletedHandler:
    """
    Handles checkout.session.completed by scheduling a provisioning run.

    The run is detached: the handler returns as soon as it is submitted.
    """

    def __init__(
        self,
        orchestrator: ProvisioningOrchestrator,
        dispatcher: BackgroundDispatcher,
        settings: Optional[Settings] = None,
    ):
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()

    async def __call__(self, session: Any) -> Dict[str, Any]:
        try:
            event = normalize_checkout_session(
                session, default_duration_days=self.settings.default_duration_days
            )
        except MalformedEventError as e:
            session_id = session.get("id") if isinstance(session, dict) else None
            self.dispatcher.dead_letter(
                "normalize_checkout_session", e.reason, e, {"session_id": session_id, **e.context}
            )
            return {"status": "malformed"}

        self.dispatcher.submit(
            f"provision:{event.session_id or event.customer_email}",
            self.orchestrator.run(event),
            context={"session_id": event.session_id, "customer_email": event.customer_email},
        )
        logger.info(
            "provisioning_scheduled",
            session_id=event.session_id,
            issue_kind=event.routing.issue_kind,
        )
        return {"status": "scheduled"}


def build_webhook_handler(
    orchestrator: ProvisioningOrchestrator,
    dispatcher: BackgroundDispatcher,
    settings: Optional[Settings] = None,
) -> WebhookHandler:
    """Create a WebhookHandler with the checkout handler registered."""
    handler = WebhookHandler(settings)
    handler.register_handler(
        CHECKOUT_COMPLETED, CheckoutCompletedHandler(orchestrator, dispatcher, settings)
    )
    return handler
