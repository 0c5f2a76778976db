"""
Unit tests for the background dispatcher and its dead-letter sink.
"""
import asyncio

import pytest

from provisioning.core.exceptions import RecordCreationError
from provisioning.workers.dispatcher import BackgroundDispatcher


class TestBackgroundDispatcher:
    """Test suite for BackgroundDispatcher."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_successful_job(self) -> None:
        """Test a finished job leaves nothing in flight and no dead letter."""
        dispatcher = BackgroundDispatcher()

        async def work() -> str:
            return "done"

        task = dispatcher.submit("job-1", work())
        assert await task == "done"

        assert dispatcher.in_flight == 0
        assert dispatcher.dead_letters == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_provisioning_error_is_dead_lettered(self) -> None:
        """Test a domain failure is recorded with its reason and context."""
        dispatcher = BackgroundDispatcher()

        async def work() -> None:
            raise RecordCreationError("boom", step="child", status_code=400)

        await dispatcher.submit("provision:cs_1", work(), context={"session_id": "cs_1"})

        [entry] = dispatcher.dead_letters
        assert entry.job == "provision:cs_1"
        assert entry.reason == "record_creation_failed"
        assert entry.error_type == "RecordCreationError"
        assert entry.context == {"session_id": "cs_1", "step": "child", "status_code": 400}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unexpected_error_is_dead_lettered(self) -> None:
        """Test any other exception is captured rather than lost."""
        dispatcher = BackgroundDispatcher()

        async def work() -> None:
            raise KeyError("fields")

        await dispatcher.submit("job-2", work())

        [entry] = dispatcher.dead_letters
        assert entry.reason == "unexpected_error"
        assert entry.error_type == "KeyError"

    @pytest.mark.unit
    def test_capacity_is_bounded(self) -> None:
        """Test only the most recent dead letters are kept."""
        dispatcher = BackgroundDispatcher(dead_letter_capacity=2)

        for i in range(3):
            dispatcher.dead_letter(f"job-{i}", "malformed_event", ValueError(str(i)))

        assert [entry.job for entry in dispatcher.dead_letters] == ["job-1", "job-2"]

    @pytest.mark.unit
    def test_dead_letter_to_dict(self) -> None:
        """Test dead letters serialize with a timestamp."""
        dispatcher = BackgroundDispatcher()

        entry = dispatcher.dead_letter("job", "malformed_event", ValueError("bad"), {"a": 1})
        data = entry.to_dict()

        assert data["error"] == "bad"
        assert data["context"] == {"a": 1}
        assert data["failed_at"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_drain_waits_for_jobs(self) -> None:
        """Test drain lets running jobs finish."""
        dispatcher = BackgroundDispatcher()
        finished = []

        async def work() -> None:
            await asyncio.sleep(0.01)
            finished.append(True)

        dispatcher.submit("job", work())
        await dispatcher.drain(timeout=1.0)

        assert finished == [True]
        assert dispatcher.in_flight == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_drain_cancels_after_timeout(self) -> None:
        """Test jobs still running after the grace period are cancelled."""
        dispatcher = BackgroundDispatcher()

        async def work() -> None:
            await asyncio.sleep(60)

        task = dispatcher.submit("slow", work())
        await dispatcher.drain(timeout=0.01)

        assert task.cancelled()
        assert dispatcher.dead_letters == []
