"""
Integration tests for the webhook endpoint and the service surface.

Provisioning runs are detached, so Jira assertions are made after the
TestClient context exits: shutdown drains the dispatcher.
"""
import json
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from provisioning.api.main import create_app
from provisioning.config import Settings
from provisioning.integrations.jira_client import JiraClient

from tests.conftest import FakeJira, checkout_session, make_settings, signed_event


def build_app(settings: Settings, fake_jira: FakeJira) -> FastAPI:
    jira_client = JiraClient(settings, transport=httpx.MockTransport(fake_jira.handler))
    return create_app(settings=settings, jira_client=jira_client)


def post_event(client: TestClient, data_object: Any, **kwargs: Any) -> httpx.Response:
    payload, signature = signed_event(data_object, **kwargs)
    return client.post(
        "/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


class TestStripeWebhook:
    """Test suite for POST /webhooks/stripe."""

    @pytest.mark.integration
    def test_checkout_completed_is_scheduled_and_provisioned(
        self, test_settings: Settings, fake_jira: FakeJira
    ) -> None:
        """Test a valid checkout is acknowledged and the run completes in the background."""
        app = build_app(test_settings, fake_jira)

        with TestClient(app) as client:
            response = post_event(client, checkout_session())

        assert response.status_code == 200
        assert response.json() == {
            "status": "scheduled",
            "event_id": "evt_test_123",
            "event_type": "checkout.session.completed",
        }
        assert fake_jira.operations == ["create_customer", "add_customer", "create_issue"]
        assert fake_jira.issues[0]["key"] == "SUP-1"
        assert app.state.dispatcher.dead_letters == []

    @pytest.mark.integration
    def test_missing_signature_header(self, test_settings: Settings, fake_jira: FakeJira) -> None:
        """Test a request without a signature is rejected."""
        with TestClient(build_app(test_settings, fake_jira)) as client:
            response = client.post("/webhooks/stripe", content=b"{}")

        assert response.status_code == 400
        assert fake_jira.requests == []

    @pytest.mark.integration
    def test_invalid_signature(self, test_settings: Settings, fake_jira: FakeJira) -> None:
        """Test an event signed with the wrong secret is rejected before parsing."""
        with TestClient(build_app(test_settings, fake_jira)) as client:
            response = post_event(client, checkout_session(), secret="whsec_wrong")

        assert response.status_code == 400
        assert "signature" in response.json()["detail"].lower()
        assert fake_jira.requests == []

    @pytest.mark.integration
    def test_tampered_payload(self, test_settings: Settings, fake_jira: FakeJira) -> None:
        """Test a body changed after signing is rejected."""
        payload, signature = signed_event(checkout_session())
        tampered = payload.replace(b"ada@example.com", b"eve@example.com")

        with TestClient(build_app(test_settings, fake_jira)) as client:
            response = client.post(
                "/webhooks/stripe", content=tampered, headers={"Stripe-Signature": signature}
            )

        assert response.status_code == 400
        assert fake_jira.requests == []

    @pytest.mark.integration
    def test_other_event_types_ignored(self, test_settings: Settings, fake_jira: FakeJira) -> None:
        """Test events other than checkout completion are acknowledged and ignored."""
        with TestClient(build_app(test_settings, fake_jira)) as client:
            response = post_event(client, {"id": "pi_1"}, event_type="payment_intent.succeeded")

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert fake_jira.requests == []

    @pytest.mark.integration
    def test_malformed_session_is_dead_lettered(
        self, test_settings: Settings, fake_jira: FakeJira
    ) -> None:
        """Test a session without customer details is acknowledged and recorded."""
        session = checkout_session()
        del session["customer_details"]

        with TestClient(build_app(test_settings, fake_jira)) as client:
            response = post_event(client, session)
            dead_letters = client.get("/admin/dead-letters").json()

        assert response.status_code == 200
        assert response.json()["status"] == "malformed"
        assert dead_letters["count"] == 1
        assert dead_letters["items"][0]["reason"] == "malformed_event"
        assert dead_letters["items"][0]["context"]["session_id"] == "cs_test_a1b2c3"
        assert fake_jira.requests == []

    @pytest.mark.integration
    def test_failed_run_is_dead_lettered(self, test_settings: Settings, fake_jira: FakeJira) -> None:
        """Test a run failing after acknowledgement lands in the dead-letter sink."""
        fake_jira.create_customer_reply = (403, {"errorMessage": "Forbidden"})
        app = build_app(test_settings, fake_jira)

        with TestClient(app) as client:
            response = post_event(client, checkout_session())

        assert response.status_code == 200
        [entry] = app.state.dispatcher.dead_letters
        assert entry.reason == "identity_creation_failed"
        assert entry.context["session_id"] == "cs_test_a1b2c3"
        assert entry.context["status_code"] == 403
        assert fake_jira.issues == []

    @pytest.mark.integration
    def test_redelivery_provisions_again(self, test_settings: Settings, fake_jira: FakeJira) -> None:
        """Test the same event delivered twice creates records twice."""
        app = build_app(test_settings, fake_jira)

        with TestClient(app) as client:
            first = post_event(client, checkout_session())
            second = post_event(client, checkout_session())

        assert first.status_code == second.status_code == 200
        assert sorted(issue["key"] for issue in fake_jira.issues) == ["SUP-1", "SUP-2"]


class TestServiceEndpoints:
    """Test suite for health, metrics and root endpoints."""

    @pytest.mark.integration
    def test_health_healthy(self, test_settings: Settings, fake_jira: FakeJira) -> None:
        """Test health reports healthy when the service desk is configured."""
        with TestClient(build_app(test_settings, fake_jira)) as client:
            response = client.get("/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["checks"]["jira_domain"] == "https://acme.atlassian.net"
        assert body["checks"]["runs_in_flight"] == 0

    @pytest.mark.integration
    def test_health_degraded_without_service_desk(self, fake_jira: FakeJira) -> None:
        """Test health reports degraded when onboarding cannot run."""
        settings = make_settings(jira_service_desk_key=None, jira_service_desk_id=None)

        with TestClient(build_app(settings, fake_jira)) as client:
            response = client.get("/health")

        assert response.json()["status"] == "degraded"
        assert response.json()["checks"]["service_desk_configured"] is False

    @pytest.mark.integration
    def test_liveness(self, test_settings: Settings, fake_jira: FakeJira) -> None:
        """Test the liveness probe."""
        with TestClient(build_app(test_settings, fake_jira)) as client:
            response = client.get("/health/live")

        assert response.json() == {"status": "healthy", "checks": {}}

    @pytest.mark.integration
    def test_metrics_exposed(self, test_settings: Settings, fake_jira: FakeJira) -> None:
        """Test webhook metrics are exported in Prometheus format."""
        with TestClient(build_app(test_settings, fake_jira)) as client:
            post_event(client, {"id": "pi_1"}, event_type="payment_intent.succeeded")
            response = client.get("/metrics")

        assert response.status_code == 200
        assert "webhook_events_received_total" in response.text

    @pytest.mark.integration
    def test_request_id_header(self, test_settings: Settings, fake_jira: FakeJira) -> None:
        """Test every response carries a request id."""
        with TestClient(build_app(test_settings, fake_jira)) as client:
            response = client.get("/")

        assert response.headers["X-Request-ID"]
        assert response.json()["service"] == "checkout-provisioning-test"
        assert json.loads(response.content)["health"] == "/health"
