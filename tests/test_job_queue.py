"""Tests for job admission, claiming and state transitions."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from api.v1.core.exceptions import (
    DuplicateActiveError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from api.v1.core.security import TenantContext
from api.v1.infra.jobs.models import (
    Job,
    JobStatus,
    JobType,
    can_transition,
    sources_for,
)
from api.v1.infra.jobs.service import (
    WORKER_TIMEOUT_CODE,
    JobQueue,
    calculate_retry_delay,
)
from tests.conftest import as_utc

WEBSITE = JobType.WEBSITE_ANALYSIS.value
NARRATIVE = JobType.NARRATIVE_GENERATION.value
CONTENT = JobType.CONTENT_GENERATION.value


def site_payload(url: str = "https://example.com") -> dict:
    return {"url": url}


async def claim_and_fail(queue: JobQueue, message: str = "boom") -> Job:
    job = await queue.claim_next("w1")
    assert job is not None
    return await queue.fail(job.id, message, worker_id="w1")


class TestSubmit:
    """Admission control."""

    @pytest.mark.asyncio
    async def test_submit_creates_pending_job(self, queue, session_tenant):
        job = await queue.submit(WEBSITE, site_payload(), session_tenant)

        assert job.status == JobStatus.PENDING.value
        assert job.type == WEBSITE
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.priority == 0
        assert job.session_id == "s1"
        assert job.user_id is None
        assert job.tenant_key == "session:s1"
        assert job.payload == {
            "url": "https://example.com/",
            "context": {},
            "scenario_count": None,
        }
        assert job.result is None

    @pytest.mark.asyncio
    async def test_duplicate_active_job_is_rejected(self, queue, session_tenant):
        first = await queue.submit(WEBSITE, site_payload(), session_tenant)

        with pytest.raises(DuplicateActiveError) as exc_info:
            await queue.submit(WEBSITE, site_payload("https://other.example"), session_tenant)

        assert exc_info.value.existing_job.id == first.id
        assert exc_info.value.status_code == 409
        assert exc_info.value.details["job_id"] == str(first.id)

    @pytest.mark.asyncio
    async def test_duplicate_rejected_while_processing(self, queue, session_tenant):
        first = await queue.submit(WEBSITE, site_payload(), session_tenant)
        await queue.claim_next("w1")

        with pytest.raises(DuplicateActiveError) as exc_info:
            await queue.submit(WEBSITE, site_payload(), session_tenant)

        assert exc_info.value.existing_job.id == first.id

    @pytest.mark.asyncio
    async def test_rapid_submissions_share_one_job(self, queue, job_store, session_tenant):
        results = await asyncio.gather(
            *(queue.enqueue(WEBSITE, site_payload(), session_tenant) for _ in range(5))
        )

        assert len({r.job_id for r in results}) == 1
        assert sum(not r.deduplicated for r in results) == 1

        jobs, total = await job_store.list_jobs(session_tenant.key, None, WEBSITE, 50, 0)
        assert total == 1

    @pytest.mark.asyncio
    async def test_other_tenants_and_types_are_independent(
        self, queue, session_tenant, user_tenant
    ):
        await queue.submit(WEBSITE, site_payload(), session_tenant)
        await queue.submit(WEBSITE, site_payload(), user_tenant)
        await queue.submit(NARRATIVE, {}, session_tenant)
        await queue.submit(
            WEBSITE, site_payload(), TenantContext(session_id="s2")
        )

    @pytest.mark.asyncio
    async def test_submit_allowed_after_previous_job_terminates(
        self, queue, session_tenant
    ):
        first = await queue.submit(WEBSITE, site_payload(), session_tenant)
        await queue.cancel(first.id, session_tenant)

        second = await queue.submit(WEBSITE, site_payload(), session_tenant)
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_invalid_url_is_rejected(self, queue, job_store, session_tenant):
        with pytest.raises(ValidationError) as exc_info:
            await queue.submit(WEBSITE, {"url": "not-a-url"}, session_tenant)

        assert exc_info.value.details["errors"]
        assert await job_store.find_active(session_tenant.key, WEBSITE) is None

    @pytest.mark.asyncio
    async def test_unknown_type_is_rejected(self, queue, session_tenant):
        with pytest.raises(ValidationError, match="Unknown job type"):
            await queue.submit("compute_embeddings", {}, session_tenant)

    @pytest.mark.asyncio
    async def test_unexpected_payload_fields_are_rejected(self, queue, session_tenant):
        with pytest.raises(ValidationError):
            await queue.submit(
                WEBSITE, {"url": "https://example.com", "extra": 1}, session_tenant
            )

    @pytest.mark.asyncio
    async def test_missing_tenant_is_rejected(self, queue):
        with pytest.raises(ValidationError, match="identity"):
            await queue.submit(WEBSITE, site_payload(), None)

    @pytest.mark.asyncio
    async def test_content_generation_requires_user(
        self, queue, session_tenant, user_tenant
    ):
        with pytest.raises(ValidationError, match="signed-in user"):
            await queue.submit(CONTENT, {"topic": "Sourdough"}, session_tenant)

        job = await queue.submit(CONTENT, {"topic": "Sourdough"}, user_tenant)
        assert job.status == JobStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_priority_out_of_range_is_rejected(self, queue, session_tenant):
        with pytest.raises(ValidationError, match="Priority"):
            await queue.submit(WEBSITE, site_payload(), session_tenant, priority=11)


class TestClaim:
    """Claiming order and exclusivity."""

    @pytest.mark.asyncio
    async def test_claim_moves_job_to_processing(self, queue, session_tenant):
        submitted = await queue.submit(WEBSITE, site_payload(), session_tenant)

        job = await queue.claim_next("w1")

        assert job.id == submitted.id
        assert job.status == JobStatus.PROCESSING.value
        assert job.locked_by == "w1"
        assert job.started_at is not None
        assert job.heartbeat_at is not None

    @pytest.mark.asyncio
    async def test_claim_returns_none_when_queue_empty(self, queue):
        assert await queue.claim_next("w1") is None

    @pytest.mark.asyncio
    async def test_higher_priority_then_older_first(self, queue):
        low = await queue.submit(WEBSITE, site_payload(), TenantContext(session_id="a"), priority=1)
        high = await queue.submit(WEBSITE, site_payload(), TenantContext(session_id="b"), priority=9)
        low_newer = await queue.submit(WEBSITE, site_payload(), TenantContext(session_id="c"), priority=1)

        claimed = [(await queue.claim_next("w1")).id for _ in range(3)]

        assert claimed == [high.id, low.id, low_newer.id]

    @pytest.mark.asyncio
    async def test_jobs_not_yet_runnable_are_skipped(self, queue, job_store, session_tenant):
        job = await queue.submit(WEBSITE, site_payload(), session_tenant)
        await job_store.transition(
            job.id,
            [JobStatus.PENDING.value],
            {"run_at": datetime.now(UTC) + timedelta(minutes=5)},
        )

        assert await queue.claim_next("w1") is None
        later = datetime.now(UTC) + timedelta(minutes=10)
        assert (await queue.claim_next("w1", now=later)).id == job.id

    @pytest.mark.asyncio
    async def test_concurrent_claims_are_exclusive(self, queue, session_tenant):
        await queue.submit(WEBSITE, site_payload(), session_tenant)

        results = await asyncio.gather(
            *(queue.claim_next(f"w{i}") for i in range(5))
        )

        claimed = [job for job in results if job is not None]
        assert len(claimed) == 1


class TestFailAndRetry:
    """Attempt accounting, backoff and explicit retry."""

    @pytest.mark.asyncio
    async def test_failure_below_budget_returns_to_pending(self, queue, session_tenant):
        await queue.submit(WEBSITE, site_payload(), session_tenant)

        job = await claim_and_fail(queue, "fetch: timed out")

        assert job.status == JobStatus.PENDING.value
        assert job.attempts == 1
        assert job.error_message == "fetch: timed out"
        assert job.error_code == "PROCESSING_ERROR"
        assert job.locked_by is None

    @pytest.mark.asyncio
    async def test_failure_schedules_backoff(self, job_store, test_settings, session_tenant):
        settings = test_settings.model_copy(update={"job_backoff_base_ms": 60_000})
        queue = JobQueue(job_store, settings)
        await queue.submit(WEBSITE, site_payload(), session_tenant)

        job = await claim_and_fail(queue)

        # 60s base with at most 25% jitter
        assert as_utc(job.run_at) > datetime.now(UTC) + timedelta(seconds=40)
        assert await queue.claim_next("w1") is None

    @pytest.mark.asyncio
    async def test_exhausted_attempts_fail_terminally(self, queue, session_tenant):
        await queue.submit(WEBSITE, site_payload(), session_tenant)

        for _ in range(2):
            job = await claim_and_fail(queue)
            assert job.status == JobStatus.PENDING.value
        job = await claim_and_fail(queue, "analyze: bad output")

        assert job.status == JobStatus.FAILED.value
        assert job.attempts == 3
        assert job.completed_at is not None
        assert job.error_message == "analyze: bad output"
        assert await queue.claim_next("w1") is None

    @pytest.mark.asyncio
    async def test_retry_after_exhaustion_allows_another_attempt(
        self, queue, session_tenant
    ):
        submitted = await queue.submit(WEBSITE, site_payload(), session_tenant)
        for _ in range(3):
            await claim_and_fail(queue)

        retried = await queue.retry(submitted.id, session_tenant)
        assert retried.status == JobStatus.PENDING.value
        assert retried.attempts == 3
        assert retried.completed_at is None
        assert retried.error_message is None
        assert retried.error_code is None

        job = await queue.claim_next("w1")
        assert job.id == submitted.id
        failed = await queue.fail(job.id, "still broken", worker_id="w1")

        assert failed.status == JobStatus.FAILED.value
        assert failed.attempts == 4

    @pytest.mark.asyncio
    async def test_retry_requires_failed_status(self, queue, session_tenant):
        job = await queue.submit(WEBSITE, site_payload(), session_tenant)

        with pytest.raises(InvalidStateError, match="Only failed jobs"):
            await queue.retry(job.id, session_tenant)

    @pytest.mark.asyncio
    async def test_retry_blocked_by_newer_active_job(
        self, queue, test_settings, job_store, session_tenant
    ):
        settings = test_settings.model_copy(update={"job_max_attempts": 1})
        single_attempt = JobQueue(job_store, settings)
        failed = await single_attempt.submit(WEBSITE, site_payload(), session_tenant)
        await claim_and_fail(single_attempt)
        newer = await queue.submit(WEBSITE, site_payload(), session_tenant)

        with pytest.raises(DuplicateActiveError) as exc_info:
            await queue.retry(failed.id, session_tenant)

        assert exc_info.value.existing_job.id == newer.id

    @pytest.mark.asyncio
    async def test_fail_requires_processing(self, queue, session_tenant):
        job = await queue.submit(WEBSITE, site_payload(), session_tenant)

        with pytest.raises(InvalidStateError):
            await queue.fail(job.id, "nope")

    def test_retry_delay_grows_and_is_capped(self):
        for attempt, expected in ((1, 2.0), (2, 4.0), (3, 8.0)):
            delay = calculate_retry_delay(attempt, base_ms=2000, max_s=300)
            assert expected * 0.75 <= delay <= expected * 1.25

        capped = calculate_retry_delay(20, base_ms=2000, max_s=300)
        assert capped <= 300 * 1.25


class TestCancelAndComplete:
    """Cancellation, completion and terminal immutability."""

    @pytest.mark.asyncio
    async def test_cancel_pending_job(self, queue, session_tenant):
        job = await queue.submit(WEBSITE, site_payload(), session_tenant)

        cancelled = await queue.cancel(job.id, session_tenant)

        assert cancelled.status == JobStatus.CANCELLED.value
        assert cancelled.completed_at is not None
        assert await queue.claim_next("w1") is None

    @pytest.mark.asyncio
    async def test_cancel_processing_job_signals_worker(self, queue, session_tenant):
        await queue.submit(WEBSITE, site_payload(), session_tenant)
        job = await queue.claim_next("w1")
        assert await queue.is_cancelled(job.id, "w1") is False

        await queue.cancel(job.id, session_tenant)

        assert await queue.is_cancelled(job.id, "w1") is True
        with pytest.raises(InvalidStateError):
            await queue.complete(job.id, {"done": True}, worker_id="w1")
        assert (await queue.status(job.id, session_tenant)).result is None

    @pytest.mark.asyncio
    async def test_terminal_jobs_cannot_be_cancelled(self, queue, session_tenant):
        await queue.submit(WEBSITE, site_payload(), session_tenant)
        job = await queue.claim_next("w1")
        await queue.complete(job.id, {"ok": True}, worker_id="w1")

        with pytest.raises(InvalidStateError):
            await queue.cancel(job.id, session_tenant)

    @pytest.mark.asyncio
    async def test_complete_stores_result_once(self, queue, session_tenant):
        await queue.submit(WEBSITE, site_payload(), session_tenant)
        job = await queue.claim_next("w1")

        done = await queue.complete(job.id, {"scenarios": []}, worker_id="w1")

        assert done.status == JobStatus.SUCCEEDED.value
        assert done.result == {"scenarios": []}
        assert done.completed_at is not None
        with pytest.raises(InvalidStateError):
            await queue.complete(job.id, {"scenarios": [1]}, worker_id="w1")

    @pytest.mark.asyncio
    async def test_complete_from_other_worker_is_rejected(self, queue, session_tenant):
        await queue.submit(WEBSITE, site_payload(), session_tenant)
        job = await queue.claim_next("w1")

        with pytest.raises(InvalidStateError):
            await queue.complete(job.id, {}, worker_id="w2")


class TestReadsAndIsolation:
    """Tenant-scoped reads, progress and listing."""

    @pytest.mark.asyncio
    async def test_status_hides_other_tenants_jobs(
        self, queue, session_tenant, user_tenant
    ):
        job = await queue.submit(WEBSITE, site_payload(), session_tenant)

        assert (await queue.status(job.id, session_tenant)).id == job.id
        with pytest.raises(NotFoundError):
            await queue.status(job.id, user_tenant)
        with pytest.raises(NotFoundError):
            await queue.cancel(job.id, user_tenant)

    @pytest.mark.asyncio
    async def test_report_progress(self, queue, session_tenant):
        await queue.submit(WEBSITE, site_payload(), session_tenant)
        job = await queue.claim_next("w1")

        assert await queue.report_progress(job.id, 2, "Generating audiences", 4)

        stored = await queue.status(job.id, session_tenant)
        assert stored.progress == {
            "step_index": 2,
            "step_label": "Generating audiences",
            "total_steps": 4,
            "percent": 50,
        }
        assert stored.get_progress_percentage() == 50.0

    @pytest.mark.asyncio
    async def test_progress_ignored_after_cancel(self, queue, session_tenant):
        await queue.submit(WEBSITE, site_payload(), session_tenant)
        job = await queue.claim_next("w1")
        await queue.cancel(job.id, session_tenant)

        assert await queue.report_progress(job.id, 1, "Analyzing website", 4) is False

    @pytest.mark.asyncio
    async def test_list_and_stats_are_tenant_scoped(
        self, queue, session_tenant, user_tenant
    ):
        await queue.submit(WEBSITE, site_payload(), session_tenant)
        await queue.submit(NARRATIVE, {}, session_tenant)
        await queue.submit(WEBSITE, site_payload(), user_tenant)

        jobs, total = await queue.list_jobs(session_tenant)
        assert total == 2
        assert {job.tenant_key for job in jobs} == {"session:s1"}

        jobs, total = await queue.list_jobs(session_tenant, job_type=NARRATIVE)
        assert total == 1

        stats = await queue.stats(session_tenant)
        assert stats.total_jobs == 2
        assert stats.queue_depth == 2
        assert stats.by_type == {WEBSITE: 1, NARRATIVE: 1}


class TestMaintenance:
    """Heartbeats, stuck-job recovery and cleanup."""

    @pytest.mark.asyncio
    async def test_stuck_job_is_recovered_as_failed_attempt(
        self, queue, job_store, session_tenant
    ):
        await queue.submit(WEBSITE, site_payload(), session_tenant)
        job = await queue.claim_next("w1")
        stale = datetime.now(UTC) - timedelta(hours=1)
        await job_store.transition(
            job.id, [JobStatus.PROCESSING.value], {"heartbeat_at": stale}
        )

        assert await queue.recover_stuck() == 1

        recovered = await queue.status(job.id, session_tenant)
        assert recovered.status == JobStatus.PENDING.value
        assert recovered.attempts == 1
        assert recovered.error_code == WORKER_TIMEOUT_CODE
        assert await queue.is_cancelled(job.id, "w1") is True

    @pytest.mark.asyncio
    async def test_heartbeat_keeps_job_alive(self, queue, job_store, session_tenant):
        await queue.submit(WEBSITE, site_payload(), session_tenant)
        job = await queue.claim_next("w1")
        stale = datetime.now(UTC) - timedelta(hours=1)
        await job_store.transition(
            job.id, [JobStatus.PROCESSING.value], {"heartbeat_at": stale}
        )

        assert await queue.heartbeat([job.id], "w1") == 1
        assert await queue.heartbeat([job.id], "w2") == 0
        assert await queue.recover_stuck() == 0

    @pytest.mark.asyncio
    async def test_cleanup_deletes_old_terminal_jobs(
        self, queue, job_store, session_tenant, user_tenant
    ):
        old = await queue.submit(WEBSITE, site_payload(), session_tenant)
        await queue.cancel(old.id, session_tenant)
        await job_store.transition(
            old.id,
            [JobStatus.CANCELLED.value],
            {"updated_at": datetime.now(UTC) - timedelta(days=90)},
        )
        active = await queue.submit(WEBSITE, site_payload(), user_tenant)

        assert await queue.cleanup() == 1
        assert await job_store.get(old.id) is None
        assert await job_store.get(active.id) is not None


class TestStateMachine:
    """The transition table behind every guarded update."""

    def test_terminal_statuses_only_leave_failed_by_retry(self):
        assert can_transition(JobStatus.FAILED, JobStatus.PENDING)
        assert not can_transition(JobStatus.SUCCEEDED, JobStatus.PENDING)
        assert not can_transition(JobStatus.CANCELLED, JobStatus.PENDING)
        assert not can_transition("failed", "processing")

    def test_cancellable_sources(self):
        assert sorted(sources_for(JobStatus.CANCELLED)) == ["pending", "processing"]

    @pytest.mark.asyncio
    async def test_job_status_helpers(self, queue, session_tenant):
        job = await queue.submit(WEBSITE, site_payload(), session_tenant)
        assert job.is_active() and not job.is_terminal()

        cancelled = await queue.cancel(job.id, session_tenant)
        assert cancelled.is_terminal() and not cancelled.is_active()
