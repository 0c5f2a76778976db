"""
Jira Cloud / Jira Service Management API client.

Covers the four calls the provisioning run needs:
- Create a service desk customer
- Search users by email
- Add a customer to a service desk
- Create an issue

Every call is a single attempt; retry policy belongs to the caller.
"""
import time
from typing import Any, Dict, List, Optional

import httpx
import structlog

from provisioning.config import Settings, get_settings
from provisioning.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class JiraAPIError(Exception):
    """
    Raised when a Jira API call fails.

    status_code is None for transport failures (timeouts, connection errors).
    """

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: Optional[int] = None,
        body: Any = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.status_code = status_code
        self.body = body
        self.original_error = original_error

    def error_messages(self) -> List[str]:
        """Collect every human-readable message Jira put in the error body."""
        messages = [self.message]
        body = self.body
        if isinstance(body, dict):
            for key in ("errorMessage", "message"):
                if isinstance(body.get(key), str):
                    messages.append(body[key])
            error_messages = body.get("errorMessages")
            if isinstance(error_messages, list):
                messages.extend(str(m) for m in error_messages)
            errors = body.get("errors")
            if isinstance(errors, dict):
                messages.extend(str(m) for m in errors.values())
        elif isinstance(body, str):
            messages.append(body)
        return messages


def _extract_message(body: Any, default: str) -> str:
    if isinstance(body, dict):
        for key in ("errorMessage", "message"):
            if isinstance(body.get(key), str):
                return body[key]
        error_messages = body.get("errorMessages")
        if isinstance(error_messages, list) and error_messages:
            return str(error_messages[0])
        errors = body.get("errors")
        if isinstance(errors, dict) and errors:
            return "; ".join(f"{k}: {v}" for k, v in errors.items())
    if isinstance(body, str) and body:
        return body
    return default


class JiraClient:
    """
    Async wrapper around the Jira REST APIs.

    Features:
    - Basic auth with email + API token
    - One structured JiraAPIError for every failure mode
    - Per-operation latency and status metrics
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize Jira client.

        Args:
            settings: Optional settings (uses cached settings if not provided)
            transport: Optional httpx transport, used by tests to fake Jira
        """
        self.settings = settings or get_settings()
        self.base_url = self.settings.jira_domain
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=httpx.BasicAuth(self.settings.jira_email, self.settings.jira_api_token),
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=self.settings.jira_request_timeout_seconds,
            transport=transport,
        )

        logger.info("jira_client_initialized", base_url=self.base_url)

    def browse_url(self, issue_key: str) -> str:
        return f"{self.base_url}/browse/{issue_key}"

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Send one request and decode the JSON body.

        Raises:
            JiraAPIError: On transport failure or non-2xx status
        """
        start_time = time.time()
        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            metrics.record_jira_api_call(operation, "transport_error", time.time() - start_time)
            logger.error("jira_transport_error", operation=operation, error=str(e))
            raise JiraAPIError(
                f"Jira {operation} request failed: {e}",
                operation=operation,
                original_error=e,
            ) from e

        metrics.record_jira_api_call(
            operation, str(response.status_code), time.time() - start_time
        )

        try:
            body = response.json() if response.content else None
        except ValueError:
            body = response.text

        if response.is_error:
            message = _extract_message(body, f"HTTP {response.status_code}")
            logger.warning(
                "jira_api_error",
                operation=operation,
                status_code=response.status_code,
                error_message=message,
            )
            raise JiraAPIError(
                message,
                operation=operation,
                status_code=response.status_code,
                body=body,
            )

        return body

    async def create_customer(self, email: str, display_name: str) -> Dict[str, Any]:
        """
        Create a service desk customer.

        Returns:
            Dict[str, Any]: Customer payload; `accountId` may be missing
        """
        logger.info("jira_creating_customer", email=email)
        body = await self._request(
            "create_customer",
            "POST",
            "/rest/servicedeskapi/customer",
            json={"email": email, "displayName": display_name},
            headers={"X-ExperimentalApi": "opt-in"},
        )
        return body if isinstance(body, dict) else {}

    async def search_users_by_email(self, email: str) -> List[Dict[str, Any]]:
        """
        Look up directory users matching an email.

        Returns:
            List[Dict[str, Any]]: Matching users, possibly empty
        """
        body = await self._request(
            "search_users",
            "GET",
            "/rest/api/3/user/search",
            params={"query": email},
        )
        if not isinstance(body, list):
            return []
        return [user for user in body if isinstance(user, dict)]

    async def add_customer_to_service_desk(self, service_desk_id: str, account_id: str) -> None:
        """Grant a customer portal access to a service desk."""
        logger.info(
            "jira_adding_customer_to_service_desk",
            service_desk_id=service_desk_id,
            account_id=account_id,
        )
        await self._request(
            "add_customer",
            "POST",
            f"/rest/servicedeskapi/servicedesk/{service_desk_id}/customer",
            json={"accountIds": [account_id]},
        )

    async def create_issue(self, fields: Dict[str, Any]) -> str:
        """
        Create an issue.

        Args:
            fields: Jira `fields` object, including `project`

        Returns:
            str: Created issue key
        """
        body = await self._request("create_issue", "POST", "/rest/api/3/issue", json={"fields": fields})
        key = body.get("key") if isinstance(body, dict) else None
        if not key:
            raise JiraAPIError(
                "Jira issue create returned no key",
                operation="create_issue",
                body=body,
            )
        logger.info("jira_issue_created", issue_key=key, project=fields.get("project"))
        return key

    async def close(self) -> None:
        """Close the HTTP connection pool."""
        await self._client.aclose()
