"""
Background dispatcher for detached provisioning runs.

The webhook acknowledges Stripe as soon as the signature checks out, then
hands the run to this dispatcher. Runs execute as asyncio tasks on the
application's event loop; their failures go to a dead-letter sink (a
structured `dead_letter` log event plus a bounded in-memory buffer) because
nobody is waiting on them.
"""
import asyncio
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Deque, Dict, List, Optional, Set

import structlog

from provisioning.core.exceptions import ProvisioningError
from provisioning.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DeadLetter:
    """A run that failed after its notification was acknowledged."""

    job: str
    reason: str
    error: str
    error_type: str
    context: Dict[str, Any] = field(default_factory=dict)
    failed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BackgroundDispatcher:
    """
    Runs detached jobs and records their failures.

    Jobs are not retried and not persisted; a process restart loses
    whatever was in flight.
    """

    def __init__(self, dead_letter_capacity: int = 100):
        """
        Initialize dispatcher.

        Args:
            dead_letter_capacity: Number of recent failures kept in memory
        """
        self._tasks: Set[asyncio.Task] = set()
        self._dead_letters: Deque[DeadLetter] = deque(maxlen=dead_letter_capacity)
        logger.info("background_dispatcher_initialized", capacity=dead_letter_capacity)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def dead_letters(self) -> List[DeadLetter]:
        return list(self._dead_letters)

    def submit(
        self, job: str, work: Awaitable[Any], context: Optional[Dict[str, Any]] = None
    ) -> "asyncio.Task[Any]":
        """
        Schedule a job without waiting for it.

        Args:
            job: Job name for logs
            work: Awaitable to run
            context: Fields recorded with a dead letter if the job fails

        Returns:
            asyncio.Task: The scheduled task
        """
        task = asyncio.create_task(self._run(job, work, context or {}), name=job)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        metrics.set_runs_in_flight(self.in_flight)
        logger.info("background_job_submitted", job=job, in_flight=self.in_flight)
        return task

    def _on_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        metrics.set_runs_in_flight(self.in_flight)

    async def _run(self, job: str, work: Awaitable[Any], context: Dict[str, Any]) -> Any:
        try:
            return await work
        except ProvisioningError as e:
            self.dead_letter(job, e.reason, e, {**context, **e.context})
        except Exception as e:
            logger.exception("background_job_crashed", job=job)
            self.dead_letter(job, "unexpected_error", e, context)
        return None

    def dead_letter(
        self, job: str, reason: str, error: Exception, context: Optional[Dict[str, Any]] = None
    ) -> DeadLetter:
        """Record a failed job in the dead-letter sink."""
        entry = DeadLetter(
            job=job,
            reason=reason,
            error=str(error),
            error_type=type(error).__name__,
            context=dict(context or {}),
        )
        self._dead_letters.append(entry)
        metrics.record_dead_letter(reason)
        logger.error("dead_letter", **entry.to_dict())
        return entry

    async def drain(self, timeout: float = 10.0) -> None:
        """
        Wait for in-flight jobs, cancelling whatever is still running after timeout.

        Args:
            timeout: Seconds to wait before cancelling
        """
        if not self._tasks:
            return

        pending = set(self._tasks)
        logger.info("background_dispatcher_draining", in_flight=len(pending))
        done, still_running = await asyncio.wait(pending, timeout=timeout)

        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("background_jobs_cancelled", count=len(still_running))

        logger.info("background_dispatcher_drained", completed=len(done))
