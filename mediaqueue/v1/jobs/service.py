"""
Job pipeline facade: the only entry point request handlers use.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from fastapi import Depends, Request

from mediaqueue.config.logging import get_logger
from mediaqueue.config.settings import Settings
from mediaqueue.v1.jobs.breaker import CircuitBreaker
from mediaqueue.v1.jobs.models import (
    Job,
    JobKind,
    JobPayload,
    TransferState,
    derive_priority,
    new_job_id,
)
from mediaqueue.v1.jobs.queue import JobQueue
from mediaqueue.v1.jobs.retry import RetryPolicy
from mediaqueue.v1.jobs.schemas import BreakerSnapshot, QueueSnapshot, TransferSummary
from mediaqueue.v1.jobs.tracker import TransferStatusTracker
from mediaqueue.v1.jobs.worker import WorkerPoolScheduler
from mediaqueue.v1.media.gateway import AnalysisGateway
from mediaqueue.v1.media.store import MediaStore
from mediaqueue.v1.notifications.notifier import (
    ChangeNotifier,
    JobEvent,
    PollResult,
    ProcessingItem,
    Subscription,
)
from mediaqueue.v1.notifications.policy import ClientState, PollingPolicy

logger = get_logger(__name__)


class JobPipeline:
    """
    Composition of queue, worker pool, breaker, status tracker and notifier.

    Owned by the application's composition root; collaborators are injected
    so tests can run the whole pipeline against fakes.
    """

    def __init__(
        self,
        settings: Settings,
        media_store: MediaStore,
        gateway: AnalysisGateway,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        polling_policy: PollingPolicy | None = None,
    ):
        self.settings = settings
        self.media_store = media_store
        self.gateway = gateway
        self._clock = clock

        self.queue = JobQueue(settings.queue_max_size)
        self.retry_policy = RetryPolicy.from_settings(settings)
        self.breaker = CircuitBreaker(
            threshold=settings.breaker_threshold,
            cooldown_s=settings.breaker_cooldown_s,
        )
        self.tracker = TransferStatusTracker(
            ttl_s=settings.transfer_status_ttl_s,
            unknown_policy=settings.unknown_job_policy,
            clock=clock,
        )
        self.notifier = ChangeNotifier(
            settings, media_store, policy=polling_policy, clock=clock
        )
        self.scheduler = WorkerPoolScheduler(
            settings=settings,
            queue=self.queue,
            gateway=gateway,
            media_store=media_store,
            tracker=self.tracker,
            breaker=self.breaker,
            retry_policy=self.retry_policy,
            notifier=self.notifier,
            clock=clock,
        )
        self._background: set[asyncio.Task] = set()

    async def start(self, watch_changes: bool = True) -> None:
        await self.scheduler.start()
        if watch_changes:
            self.notifier.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.notifier.stop()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def enqueue(
        self,
        kind: JobKind,
        payload: JobPayload,
        estimated_size: int | None = None,
    ) -> str:
        """
        Accept a job and return its id immediately.

        Raises:
            QueueFull: the queue is at capacity; the caller must push back.
        """
        size = estimated_size if estimated_size is not None else payload.estimated_size
        now = self._clock()
        job = Job(
            id=new_job_id(kind, now),
            kind=kind,
            payload=payload,
            priority=derive_priority(kind, size),
            max_attempts=self.settings.max_attempts,
            scheduled_for=now,
            created_at=now,
        )

        self.queue.push(job)
        self.tracker.set(job.id, TransferState.QUEUED)
        self.notifier.track(payload.project_id, payload.media_id, kind.value, job.id)
        self._spawn(self._mark_queued(job))
        self.scheduler.notify()

        logger.info(
            "Job enqueued",
            job_id=job.id,
            kind=kind.value,
            priority=job.priority,
            project_id=payload.project_id,
            queue_length=len(self.queue),
        )
        return job.id

    def get_transfer_status(self, job_ids: list[str]) -> TransferSummary:
        return self.tracker.query(job_ids, in_queue=self._is_pending)

    def get_queue_snapshot(self, include_items: bool = False) -> QueueSnapshot:
        now = self._clock()
        return QueueSnapshot(
            queue_length=len(self.queue),
            eligible=self.queue.eligible_count(now),
            capacity=self.queue.max_size,
            active_workers=len(self.scheduler.active_jobs),
            max_workers=self.scheduler.max_workers,
            downstream_in_flight=self.scheduler.limiter.in_use,
            downstream_ceiling=self.scheduler.limiter.ceiling,
            breaker=BreakerSnapshot(**self.breaker.snapshot()),
            recent_errors=self.scheduler.recent_error_count(),
            running=self.scheduler.running,
            items=[job.describe() for job in self.queue.snapshot_items()]
            if include_items
            else [],
            timestamp=now,
            **self.scheduler.stats,
        )

    # Notification layer

    def subscribe(self, project_id: str) -> Subscription:
        return self.notifier.subscribe(project_id)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.notifier.unsubscribe(subscription)

    async def outstanding(self, project_id: str) -> list[ProcessingItem]:
        return await self.notifier.outstanding(project_id)

    async def poll(self, project_id: str, client_state: ClientState) -> PollResult | None:
        return await self.notifier.poll(project_id, client_state)

    def record_external_completion(
        self,
        project_id: str,
        media_id: str,
        success: bool,
        items_processed: int = 0,
        error: str | None = None,
    ) -> bool:
        """Feed a completion reported by the analysis service webhook."""
        return self.notifier.publish(
            JobEvent(
                project_id=project_id,
                media_id=media_id,
                success=success,
                error=error,
                items_processed=items_processed,
                origin="webhook",
                occurred_at=self._clock(),
            )
        )

    def _is_pending(self, job_id: str) -> bool:
        return job_id in self.queue or job_id in self.scheduler.active_jobs

    async def _mark_queued(self, job: Job) -> None:
        try:
            await self.media_store.mark_queued(job.payload.media_id, job.id)
        except Exception:
            logger.exception("Failed to mark media queued", job_id=job.id)

    def _spawn(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            # No loop (sync caller); the worker marks processing on pickup
            coro.close()
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def get_pipeline(request: Request) -> JobPipeline:
    """Dependency injection for the pipeline owned by the running app."""
    return request.app.state.pipeline


# Convenience type alias for dependency injection
PipelineDep = Depends(get_pipeline)
