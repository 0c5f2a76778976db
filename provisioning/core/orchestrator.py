"""
Provisioning orchestrator for completed checkouts.

Runs one strictly sequential chain of Jira calls per OrderEvent:

    validate routing -> resolve identity -> build reporter -> create records

Variants:
    support    one service desk request
    work item  parent "New Client" epic -> child task -> customer confirmation

Any error that is not an expected conflict stops the run where it is.
Records created before the failure are left in place: Jira issue creation
is not transactional, and a redelivered event starts again from scratch.
"""
import time
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from provisioning.config import Settings, get_settings
from provisioning.integrations.jira_client import JiraAPIError, JiraClient
from provisioning.monitoring.metrics import metrics

from .classification import classify_record_creation
from .documents import StructuredDocument, build_confirmation, build_description
from .exceptions import MissingRoutingKeyError, RecordCreationError
from .identity import IdentityResolver, SearchRetryPolicy
from .models import (
    IdentityResolution,
    OrderEvent,
    ProvisionedRecord,
    ProvisioningResult,
    ReporterRef,
    RoutingMetadata,
    WorkflowVariant,
)

logger = structlog.get_logger(__name__)

NEW_CUSTOMER_LABEL = "New-Customer"
EXISTING_CUSTOMER_LABEL = "Existing-Customer"


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def select_variant(routing: RoutingMetadata) -> WorkflowVariant:
    """Pick the record-creation sequence from the issue kind."""
    return WorkflowVariant.SUPPORT if routing.is_support else WorkflowVariant.WORK_ITEM


def engagement_dates(today: date, duration_days: int) -> Tuple[date, date]:
    """Start and end dates of the engagement, as calendar days."""
    return today, today + timedelta(days=duration_days)


class ProvisioningOrchestrator:
    """
    Drives a provisioning run from an OrderEvent to created Jira records.

    The orchestrator is the only component that knows the order of steps and
    the failure policy. It never retries a run.
    """

    def __init__(
        self,
        jira_client: JiraClient,
        settings: Optional[Settings] = None,
        identity_resolver: Optional[IdentityResolver] = None,
        today: Callable[[], date] = utc_today,
    ):
        """
        Initialize provisioning orchestrator.

        Args:
            jira_client: Client for the Jira APIs
            settings: Optional settings (uses cached settings if not provided)
            identity_resolver: Optional resolver (built from settings if not provided)
            today: Clock returning the current UTC date
        """
        self.jira = jira_client
        self.settings = settings or get_settings()
        self.identity_resolver = identity_resolver or IdentityResolver(
            jira_client, policy=SearchRetryPolicy.from_settings(self.settings)
        )
        self._today = today

    def _service_desk(self, routing: RoutingMetadata) -> Tuple[Optional[str], Optional[str]]:
        """
        Service desk key and id, taken as a pair from one source.

        Checkout metadata naming either one replaces the configured default
        entirely, so a customer is never onboarded to one desk while the
        record lands in another.
        """
        if routing.service_desk_key or routing.service_desk_id:
            return routing.service_desk_key, routing.service_desk_id
        return self.settings.jira_service_desk_key, self.settings.jira_service_desk_id

    @staticmethod
    def _require_routing_keys(
        variant: WorkflowVariant, routing: RoutingMetadata, service_desk_key: Optional[str]
    ) -> None:
        if variant is WorkflowVariant.SUPPORT and not service_desk_key:
            raise MissingRoutingKeyError(
                "Support requests need a service desk key",
                key_name="service_desk_key",
                variant=variant.value,
            )
        if variant is WorkflowVariant.WORK_ITEM and not routing.workspace_project_key:
            raise MissingRoutingKeyError(
                "Work items need a workspace project key",
                key_name="workspace_project_key",
                variant=variant.value,
            )

    async def run(self, event: OrderEvent) -> ProvisioningResult:
        """
        Execute the provisioning run.

        Args:
            event: Normalized checkout event

        Returns:
            ProvisioningResult: Identity and created records

        Raises:
            MissingRoutingKeyError: Before any Jira call, if a required key is absent
            IdentityCreationError: If the customer cannot be created
            IdentityAssociationError: If the customer cannot be added to the service desk
            RecordCreationError: If a record cannot be created
        """
        routing = event.routing
        variant = select_variant(routing)
        start_time = time.time()

        with structlog.contextvars.bound_contextvars(
            run_id=str(uuid.uuid4()),
            customer_email=event.customer_email,
            variant=variant.value,
        ):
            logger.info(
                "provisioning_started",
                session_id=event.session_id,
                issue_kind=routing.issue_kind,
            )
            try:
                result = await self._execute(event, variant)
            except Exception as e:
                duration = time.time() - start_time
                metrics.record_provisioning_run(variant.value, "failed", duration)
                logger.error(
                    "provisioning_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_seconds=duration,
                )
                raise

            duration = time.time() - start_time
            metrics.record_provisioning_run(variant.value, "succeeded", duration)
            logger.info("provisioning_completed", duration_seconds=duration, **result.to_log_dict())
            return result

    async def _execute(self, event: OrderEvent, variant: WorkflowVariant) -> ProvisioningResult:
        routing = event.routing
        desk_key, desk_id = self._service_desk(routing)
        self._require_routing_keys(variant, routing, desk_key)
        start_date, end_date = engagement_dates(self._today(), routing.duration_days)

        # Step 1: onboarding
        resolution: Optional[IdentityResolution] = None
        if desk_key and desk_id:
            resolution = await self.identity_resolver.resolve(
                event.customer_email, event.customer_name, desk_id
            )
        else:
            logger.info(
                "onboarding_skipped",
                service_desk_key=desk_key,
                service_desk_id=desk_id,
            )

        # Step 2: reporter
        reporter = ReporterRef.from_resolution(resolution, event.customer_email)

        # Step 3: records
        description = build_description(event.snapshot(), start_date, end_date)

        if variant is WorkflowVariant.SUPPORT:
            records = [
                await self._create_support_request(
                    desk_key, routing, description, start_date, end_date, reporter, resolution
                )
            ]
        else:
            records = await self._create_work_items(
                desk_key, routing, description, start_date, end_date, reporter
            )

        return ProvisioningResult(
            variant=variant,
            identity=resolution,
            reporter=reporter,
            records=tuple(records),
        )

    def _support_labels(self, resolution: Optional[IdentityResolution]) -> List[str]:
        labels = []
        if resolution is not None:
            labels.append(
                NEW_CUSTOMER_LABEL if resolution.is_new_identity else EXISTING_CUSTOMER_LABEL
            )
        labels.append(self.settings.source_label)
        return labels

    async def _create_support_request(
        self,
        service_desk_key: str,
        routing: RoutingMetadata,
        description: StructuredDocument,
        start_date: date,
        end_date: date,
        reporter: ReporterRef,
        resolution: Optional[IdentityResolution],
    ) -> ProvisionedRecord:
        fields: Dict[str, Any] = {
            "project": {"key": service_desk_key},
            "summary": f"Support Request for {routing.summary}",
            "issuetype": {"name": self.settings.support_issue_type},
            "description": description.to_adf(),
            self.settings.field_start_date: start_date.isoformat(),
            "duedate": end_date.isoformat(),
            "reporter": reporter.to_field(),
        }
        if self.settings.support_request_type_id:
            fields[self.settings.field_request_type] = self.settings.support_request_type_id
        if self.settings.support_labels_enabled:
            fields["labels"] = self._support_labels(resolution)

        return await self._create_record("support_request", fields)

    async def _create_work_items(
        self,
        service_desk_key: Optional[str],
        routing: RoutingMetadata,
        description: StructuredDocument,
        start_date: date,
        end_date: date,
        reporter: ReporterRef,
    ) -> List[ProvisionedRecord]:
        project_key = routing.workspace_project_key
        settings = self.settings

        parent = await self._create_record(
            "parent",
            {
                "project": {"key": project_key},
                "summary": settings.parent_record_name,
                "issuetype": {"name": settings.epic_issue_type},
                settings.field_epic_name: settings.parent_record_name,
            },
        )

        child = await self._create_record(
            "child",
            {
                "project": {"key": project_key},
                "summary": routing.summary,
                "issuetype": {"name": routing.issue_kind},
                "description": description.to_adf(),
                settings.field_start_date: start_date.isoformat(),
                "duedate": end_date.isoformat(),
                settings.field_epic_link: parent.key,
                "reporter": reporter.to_field(),
            },
        )

        records = [parent, child]
        if not service_desk_key:
            logger.info("confirmation_skipped", reason="no_service_desk_key")
            return records

        confirmation = await self._create_record(
            "confirmation",
            {
                "project": {"key": service_desk_key},
                "summary": f'Order received for "{routing.summary}"',
                "issuetype": {"name": settings.confirmation_issue_type},
                "description": build_confirmation(self.jira.browse_url(child.key)).to_adf(),
                "reporter": reporter.to_field(),
            },
        )
        records.append(confirmation)
        return records

    async def _create_record(self, step: str, fields: Dict[str, Any]) -> ProvisionedRecord:
        project_key = fields["project"]["key"]
        logger.info("provisioning_step_executing", step=step, project=project_key)
        try:
            key = await self.jira.create_issue(fields)
        except JiraAPIError as e:
            outcome = classify_record_creation(e)
            logger.error(
                "provisioning_step_failed",
                step=step,
                project=project_key,
                status_code=e.status_code,
                outcome=outcome.value,
                error=str(e),
            )
            raise RecordCreationError(
                f"Failed to create {step} record in {project_key}: {e}",
                step=step,
                status_code=e.status_code,
                original_error=e,
            ) from e

        logger.info("provisioning_step_completed", step=step, issue_key=key)
        return ProvisionedRecord(role=step, key=key, project_key=project_key)
