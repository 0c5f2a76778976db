"""
Pytest configuration and fixtures.

Jira is faked at the HTTP layer with httpx.MockTransport so the real
JiraClient request/error handling runs in every test.
"""
import hashlib
import hmac
import json
import time
from collections import defaultdict
from datetime import date
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from provisioning.config import Settings
from provisioning.integrations.jira_client import JiraClient

WEBHOOK_SECRET = "whsec_test_fake_secret"
FIXED_TODAY = date(2024, 3, 10)

Reply = Tuple[int, Any]


class FakeJira:
    """
    In-memory stand-in for the Jira REST APIs.

    Replies are configured per operation; every request is recorded so tests
    can assert on call order and payloads.
    """

    def __init__(self) -> None:
        self.requests: List[Tuple[str, str, Any]] = []
        self.create_customer_reply: Reply = (201, {"accountId": "acc-new-1"})
        self.search_replies: List[Reply] = [(200, [])]
        self.add_customer_reply: Reply = (204, None)
        self.issue_failures: Dict[int, Reply] = {}
        self.issues: List[Dict[str, Any]] = []
        self._counters: Dict[str, int] = defaultdict(int)
        self._search_calls = 0

    @property
    def operations(self) -> List[str]:
        return [operation for operation, _, _ in self.requests]

    def calls(self, operation: str) -> List[Any]:
        return [body for op, _, body in self.requests if op == operation]

    def _reply(self, reply: Reply) -> httpx.Response:
        status, body = reply
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None

        if request.method == "POST" and path == "/rest/servicedeskapi/customer":
            self.requests.append(("create_customer", path, body))
            return self._reply(self.create_customer_reply)

        if request.method == "GET" and path == "/rest/api/3/user/search":
            self.requests.append(("search_users", path, dict(request.url.params)))
            reply = self.search_replies[min(self._search_calls, len(self.search_replies) - 1)]
            self._search_calls += 1
            return self._reply(reply)

        if request.method == "POST" and path.startswith("/rest/servicedeskapi/servicedesk/"):
            self.requests.append(("add_customer", path, body))
            return self._reply(self.add_customer_reply)

        if request.method == "POST" and path == "/rest/api/3/issue":
            index = len(self.issues)
            self.requests.append(("create_issue", path, body))
            if index in self.issue_failures:
                self.issues.append({"fields": body["fields"], "key": None})
                return self._reply(self.issue_failures[index])
            project = body["fields"]["project"]["key"]
            self._counters[project] += 1
            key = f"{project}-{self._counters[project]}"
            self.issues.append({"fields": body["fields"], "key": key})
            return httpx.Response(201, json={"id": str(1000 + index), "key": key})

        return httpx.Response(404, json={"errorMessages": [f"No route for {path}"]})


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = dict(
        stripe_secret_key="sk_test_fake_key_for_testing",
        stripe_webhook_secret=WEBHOOK_SECRET,
        jira_domain="https://acme.atlassian.net/",
        jira_email="automation@example.com",
        jira_api_token="token",
        jira_service_desk_key="sup",
        jira_service_desk_id="7",
        customer_search_delay_seconds=0,
        shutdown_grace_seconds=5.0,
        app_name="checkout-provisioning-test",
        app_env="test",
        log_level="DEBUG",
    )
    values.update(overrides)
    return Settings(**values)


def checkout_session(
    metadata: Optional[Dict[str, Any]] = None, **overrides: Any
) -> Dict[str, Any]:
    """A checkout.session object shaped like Stripe's."""
    session: Dict[str, Any] = {
        "id": "cs_test_a1b2c3",
        "object": "checkout.session",
        "amount_total": 4999,
        "currency": "eur",
        "customer_details": {
            "email": "ada@example.com",
            "name": "Ada Lovelace",
            "phone": "+353 1 555 0100",
            "address": {
                "line1": "12 Elm St",
                "line2": None,
                "city": "Cork",
                "state": None,
                "postal_code": "T12",
                "country": "IE",
            },
        },
        "metadata": metadata if metadata is not None else {"issue": "support", "summary": "Website audit"},
    }
    session.update(overrides)
    return session


def signed_event(
    data_object: Any,
    event_type: str = "checkout.session.completed",
    secret: str = WEBHOOK_SECRET,
    event_id: str = "evt_test_123",
) -> Tuple[bytes, str]:
    """Serialize an event and sign it the way Stripe does."""
    payload = json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "data": {"object": data_object}}
    ).encode("utf-8")
    timestamp = int(time.time())
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return payload, f"t={timestamp},v1={signature}"


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return make_settings()


@pytest.fixture
def fake_jira() -> FakeJira:
    return FakeJira()


@pytest_asyncio.fixture
async def jira_client(
    test_settings: Settings, fake_jira: FakeJira
) -> AsyncGenerator[JiraClient, Any]:
    """JiraClient wired to the fake Jira."""
    client = JiraClient(test_settings, transport=httpx.MockTransport(fake_jira.handler))
    yield client
    await client.close()


class SleepRecorder:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()
