"""
Identity resolution against the Jira customer directory.

The directory's write path and its search index are not synchronously
consistent: a customer created a moment ago may not be searchable yet. The
resolver therefore creates first, and only when the customer already existed
polls the search endpoint under a bounded, constant-delay retry policy.

States:
    Start -> Creating -> Resolved                 (create returned an id)
    Start -> Creating -> Searching -> Resolved    (conflict, found by email)
    Start -> Creating -> Searching -> Unresolved  (conflict, never found)

Once an id is known the customer is added to the service desk, which is the
call that actually grants portal access.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from provisioning.config import Settings
from provisioning.integrations.jira_client import JiraAPIError, JiraClient
from provisioning.monitoring.metrics import metrics

from .classification import (
    CallOutcome,
    classify_customer_creation,
    classify_service_desk_association,
    classify_user_search,
)
from .exceptions import IdentityAssociationError, IdentityCreationError
from .models import NOT_AVAILABLE, IdentityResolution

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class SearchRetryPolicy:
    """Bounded, constant-delay policy for directory lookups."""

    max_attempts: int = 3
    delay_seconds: float = 1.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "SearchRetryPolicy":
        return cls(
            max_attempts=settings.customer_search_attempts,
            delay_seconds=settings.customer_search_delay_seconds,
        )


class _CustomerNotSearchable(Exception):
    """The lookup returned nothing usable; try again if the budget allows."""


class IdentityResolver:
    """
    Create-or-find a directory customer and grant service desk access.

    One instance can serve many runs; it holds no per-run state.
    """

    def __init__(
        self,
        jira_client: JiraClient,
        policy: Optional[SearchRetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Initialize identity resolver.

        Args:
            jira_client: Client for the directory API
            policy: Search retry policy (3 attempts, 1.5s apart by default)
            sleep: Awaitable sleep used between lookups
        """
        self.jira = jira_client
        self.policy = policy or SearchRetryPolicy()
        self._sleep = sleep

    async def resolve(
        self, email: str, display_name: str, service_desk_id: str
    ) -> IdentityResolution:
        """
        Resolve the customer identity and add it to the service desk.

        Args:
            email: Customer email
            display_name: Customer display name
            service_desk_id: Service desk the customer must be able to reach

        Returns:
            IdentityResolution: account_id is None if the customer could not be found

        Raises:
            IdentityCreationError: If customer creation fails without a conflict
            IdentityAssociationError: If the service desk refuses the customer
        """
        account_id = await self._create(email, display_name)
        attempts = 0

        if account_id is not None:
            resolution = IdentityResolution(account_id=account_id, is_new_identity=True)
            metrics.record_identity_resolution("created")
        else:
            account_id, attempts = await self._search(email)
            resolution = IdentityResolution(account_id=account_id, is_new_identity=False)
            metrics.record_identity_resolution(
                "found" if account_id else "unresolved", search_attempts=attempts
            )

        if not resolution.is_resolved:
            logger.warning("identity_unresolved", email=email, attempts=attempts)
            return resolution

        await self._associate(service_desk_id, resolution.account_id)

        logger.info(
            "identity_resolved",
            account_id=resolution.account_id,
            is_new_identity=resolution.is_new_identity,
        )
        return resolution

    async def _create(self, email: str, display_name: str) -> Optional[str]:
        """Return the new account id, or None when the directory already knows the customer."""
        name = display_name if display_name and display_name != NOT_AVAILABLE else email
        try:
            customer = await self.jira.create_customer(email, name)
        except JiraAPIError as e:
            outcome = classify_customer_creation(e)
            if outcome is CallOutcome.CONFLICT:
                logger.info("customer_already_exists", email=email, status_code=e.status_code)
                return None
            logger.error(
                "customer_creation_failed",
                email=email,
                status_code=e.status_code,
                outcome=outcome.value,
                error=str(e),
            )
            raise IdentityCreationError(
                f"Failed to create customer {email}: {e}",
                status_code=e.status_code,
                original_error=e,
            ) from e

        account_id = customer.get("accountId")
        if not account_id:
            logger.info("customer_created_without_id", email=email)
            return None
        logger.info("customer_created", email=email, account_id=account_id)
        return account_id

    async def _search(self, email: str) -> tuple[Optional[str], int]:
        """
        Poll the directory until the customer shows up or the budget is spent.

        Returns:
            tuple: (account id or None, attempts used)
        """
        account_id: Optional[str] = None
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_fixed(self.policy.delay_seconds),
            retry=retry_if_exception_type(_CustomerNotSearchable),
            sleep=self._sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    account_id = await self._search_once(email, attempts)
        except RetryError:
            return None, attempts
        except JiraAPIError as e:
            logger.warning(
                "customer_search_abandoned",
                email=email,
                attempt=attempts,
                status_code=e.status_code,
            )
            return None, attempts

        return account_id, attempts

    async def _search_once(self, email: str, attempt: int) -> str:
        logger.info("customer_search_attempt", email=email, attempt=attempt)
        try:
            users = await self.jira.search_users_by_email(email)
        except JiraAPIError as e:
            outcome = classify_user_search(e)
            if outcome is CallOutcome.FATAL:
                raise
            logger.warning(
                "customer_search_error",
                email=email,
                attempt=attempt,
                outcome=outcome.value,
                status_code=e.status_code,
            )
            raise _CustomerNotSearchable(email) from e

        matches = _exact_matches(users, email)
        if not matches:
            raise _CustomerNotSearchable(email)
        return matches[0]["accountId"]

    async def _associate(self, service_desk_id: str, account_id: str) -> None:
        try:
            await self.jira.add_customer_to_service_desk(service_desk_id, account_id)
        except JiraAPIError as e:
            outcome = classify_service_desk_association(e)
            if outcome is CallOutcome.CONFLICT:
                logger.info(
                    "customer_already_on_service_desk",
                    service_desk_id=service_desk_id,
                    account_id=account_id,
                )
                return
            logger.error(
                "service_desk_association_failed",
                service_desk_id=service_desk_id,
                account_id=account_id,
                status_code=e.status_code,
                outcome=outcome.value,
            )
            raise IdentityAssociationError(
                f"Failed to add {account_id} to service desk {service_desk_id}: {e}",
                status_code=e.status_code,
                original_error=e,
            ) from e


def _exact_matches(users: List[Dict[str, Any]], email: str) -> List[Dict[str, Any]]:
    """
    Keep users whose email equals the target.

    Users whose email is hidden by profile visibility are kept: the query was
    already an email, and the directory does not reveal a better signal.
    """
    target = email.strip().lower()
    matches = []
    for user in users:
        if not user.get("accountId"):
            continue
        address = user.get("emailAddress")
        if address is None or address.strip().lower() == target:
            matches.append(user)
    return matches
