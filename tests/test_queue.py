"""Tests for the job queue, priority derivation and retry policy."""

from datetime import UTC, datetime, timedelta

import pytest

from mediaqueue.v1.core.exceptions import QueueFull
from mediaqueue.v1.jobs.models import (
    MIB,
    Job,
    JobKind,
    JobPayload,
    derive_priority,
    new_job_id,
)
from mediaqueue.v1.jobs.queue import JobQueue
from mediaqueue.v1.jobs.retry import RetryPolicy

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def make_job(
    job_id: str,
    priority: int = 50,
    scheduled_for: datetime = NOW,
    created_at: datetime = NOW,
    kind: JobKind = JobKind.IMAGE_ANALYSIS,
) -> Job:
    return Job(
        id=job_id,
        kind=kind,
        payload=JobPayload(media_id=f"media-{job_id}", project_id="p1", user_id="u1"),
        priority=priority,
        max_attempts=3,
        scheduled_for=scheduled_for,
        created_at=created_at,
    )


class TestDerivePriority:
    @pytest.mark.parametrize(
        "size,expected",
        [
            (None, 50),
            (100 * 1024, 80),
            (2 * MIB, 60),
            (10 * MIB, 50),
            (25 * MIB, 30),
        ],
    )
    def test_image_bands(self, size, expected):
        assert derive_priority(JobKind.IMAGE_ANALYSIS, size) == expected

    @pytest.mark.parametrize(
        "size,expected",
        [(None, 45), (100 * 1024, 75), (2 * MIB, 55), (25 * MIB, 25)],
    )
    def test_video_frame_bands(self, size, expected):
        assert derive_priority(JobKind.VIDEO_FRAME_ANALYSIS, size) == expected

    def test_job_ids_are_unique_and_prefixed(self):
        first = new_job_id(JobKind.IMAGE_ANALYSIS)
        second = new_job_id(JobKind.IMAGE_ANALYSIS)

        assert first != second
        assert first.startswith("image_analysis-")

    def test_job_id_embeds_the_given_time(self):
        now = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

        job_id = new_job_id(JobKind.VIDEO_FRAME_ANALYSIS, now)

        assert job_id.startswith(f"video_frame_analysis-{int(now.timestamp() * 1000)}-")


class TestJobQueue:
    def test_higher_priority_first_then_fifo(self):
        queue = JobQueue(max_size=10)
        queue.push(make_job("a", priority=80, created_at=NOW))
        queue.push(make_job("b", priority=50, created_at=NOW + timedelta(seconds=1)))
        queue.push(make_job("c", priority=80, created_at=NOW + timedelta(seconds=2)))

        order = [queue.pop_ready(NOW + timedelta(seconds=5)).id for _ in range(3)]

        assert order == ["a", "c", "b"]
        assert queue.pop_ready(NOW + timedelta(seconds=5)) is None

    def test_same_instant_ties_keep_insertion_order(self):
        queue = JobQueue(max_size=10)
        for job_id in ("x", "y", "z"):
            queue.push(make_job(job_id))

        assert [queue.pop_ready(NOW).id for _ in range(3)] == ["x", "y", "z"]

    def test_ineligible_job_is_not_returned_early(self):
        queue = JobQueue(max_size=10)
        queue.push(make_job("later", priority=90, scheduled_for=NOW + timedelta(seconds=30)))

        assert queue.pop_ready(NOW) is None
        assert queue.next_ready_at() == NOW + timedelta(seconds=30)
        assert queue.pop_ready(NOW + timedelta(seconds=30)).id == "later"

    def test_eligible_low_priority_not_starved_by_waiting_high_priority(self):
        queue = JobQueue(max_size=10)
        queue.push(make_job("waiting", priority=90, scheduled_for=NOW + timedelta(seconds=60)))
        queue.push(make_job("ready", priority=10))

        assert queue.pop_ready(NOW).id == "ready"
        assert queue.eligible_count(NOW) == 0
        assert len(queue) == 1

    def test_push_beyond_capacity_raises_queue_full(self):
        queue = JobQueue(max_size=2)
        queue.push(make_job("a"))
        queue.push(make_job("b"))

        with pytest.raises(QueueFull) as exc_info:
            queue.push(make_job("c"))

        assert exc_info.value.status_code == 429
        assert exc_info.value.details == {"capacity": 2}
        assert len(queue) == 2
        assert "c" not in queue

    def test_requeue_ignores_capacity(self):
        queue = JobQueue(max_size=1)
        queue.push(make_job("a"))
        retried = make_job("b", scheduled_for=NOW + timedelta(seconds=5))

        queue.requeue(retried)

        assert len(queue) == 2
        assert "b" in queue

    def test_duplicate_job_id_rejected(self):
        queue = JobQueue(max_size=5)
        queue.push(make_job("a"))

        with pytest.raises(ValueError, match="already queued"):
            queue.push(make_job("a"))

    def test_popped_job_leaves_membership(self):
        queue = JobQueue(max_size=5)
        queue.push(make_job("a"))

        assert "a" in queue
        queue.pop_ready(NOW)
        assert "a" not in queue
        assert len(queue) == 0

    def test_snapshot_lists_all_pending_in_serving_order(self):
        queue = JobQueue(max_size=5)
        queue.push(make_job("low", priority=30))
        queue.push(make_job("high", priority=80, scheduled_for=NOW + timedelta(seconds=10)))
        queue.push(make_job("mid", priority=50))

        assert [job.id for job in queue.snapshot_items()] == ["high", "mid", "low"]

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            JobQueue(max_size=0)


class TestRetryPolicy:
    def test_exponential_backoff(self):
        policy = RetryPolicy(base_delay_s=5, max_delay_s=300)

        assert policy.delay_for(1) == 10
        assert policy.delay_for(2) == 20
        assert policy.delay_for(3) == 40

    def test_backoff_is_capped(self):
        policy = RetryPolicy(base_delay_s=5, max_delay_s=60)

        assert policy.delay_for(10) == 60

    def test_should_retry_until_max_attempts(self):
        policy = RetryPolicy()

        assert policy.should_retry(1, 3)
        assert policy.should_retry(2, 3)
        assert not policy.should_retry(3, 3)

    def test_next_run_at(self):
        policy = RetryPolicy(base_delay_s=5)

        assert policy.next_run_at(1, NOW) == NOW + timedelta(seconds=10)
