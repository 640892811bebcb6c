"""
In-process worker pool draining the job queue into the analysis service.
"""

import asyncio
import threading
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from mediaqueue.config.logging import get_logger
from mediaqueue.config.settings import Settings
from mediaqueue.v1.core.exceptions import (
    DownstreamError,
    DownstreamTimeout,
    DownstreamUnavailable,
    PermanentFailure,
)
from mediaqueue.v1.jobs.breaker import CircuitBreaker
from mediaqueue.v1.jobs.models import MIB, Job, TransferState
from mediaqueue.v1.jobs.queue import JobQueue
from mediaqueue.v1.jobs.retry import RetryPolicy
from mediaqueue.v1.jobs.tracker import TransferStatusTracker
from mediaqueue.v1.media.gateway import AnalysisGateway
from mediaqueue.v1.media.models import MediaRecord
from mediaqueue.v1.media.store import MediaStore
from mediaqueue.v1.notifications.notifier import ChangeNotifier, JobEvent

logger = get_logger(__name__)


class DownstreamLimiter:
    """
    Ceiling on concurrent calls to the analysis service.

    ``acquire`` polls with a short sleep instead of failing, so a worker that
    holds a job simply waits for a slot and no job is lost to backpressure.
    """

    def __init__(self, ceiling: int, poll_interval_s: float = 0.1):
        if ceiling < 1:
            raise ValueError("ceiling must be at least 1")
        self.ceiling = ceiling
        self.poll_interval_s = poll_interval_s
        self._lock = threading.Lock()
        self._in_use = 0
        self.max_observed = 0

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._in_use

    def try_acquire(self) -> bool:
        with self._lock:
            if self._in_use >= self.ceiling:
                return False
            self._in_use += 1
            self.max_observed = max(self.max_observed, self._in_use)
            return True

    async def acquire(self) -> None:
        while not self.try_acquire():
            await asyncio.sleep(self.poll_interval_s)

    def release(self) -> None:
        with self._lock:
            if self._in_use == 0:
                raise RuntimeError("release() without a matching acquire()")
            self._in_use -= 1


class WorkerPoolScheduler:
    """
    Fixed pool of asyncio workers pulling from the shared ``JobQueue``.

    Features:
    - Local worker ceiling (number of worker tasks)
    - Downstream ceiling shared across workers
    - Circuit breaker fail-fast while the analysis service is unhealthy
    - Exponential backoff retries, abandonment after max attempts
    - Idle workers rearm on a short fixed timer or when woken by enqueue
    """

    def __init__(
        self,
        settings: Settings,
        queue: JobQueue,
        gateway: AnalysisGateway,
        media_store: MediaStore,
        tracker: TransferStatusTracker,
        breaker: CircuitBreaker,
        retry_policy: RetryPolicy,
        notifier: ChangeNotifier,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.settings = settings
        self.queue = queue
        self.gateway = gateway
        self.media_store = media_store
        self.tracker = tracker
        self.breaker = breaker
        self.retry_policy = retry_policy
        self.notifier = notifier
        self.limiter = DownstreamLimiter(
            settings.downstream_ceiling, settings.downstream_slot_poll_s
        )
        self._clock = clock

        self.running = False
        self.active_jobs: dict[str, Job] = {}
        self._tasks: list[asyncio.Task] = []
        self._wake = asyncio.Event()
        self._recent_errors: deque[tuple[datetime, str]] = deque(maxlen=100)
        self.stats = {"processed": 0, "succeeded": 0, "retried": 0, "abandoned": 0}

    @property
    def max_workers(self) -> int:
        return self.settings.local_worker_ceiling

    async def start(self) -> None:
        """Spawn the worker tasks and the housekeeping loop."""
        if self.running:
            raise RuntimeError("Scheduler is already running")

        self.running = True
        logger.info(
            "Starting worker pool",
            workers=self.max_workers,
            downstream_ceiling=self.limiter.ceiling,
            idle_poll_interval_s=self.settings.idle_poll_interval_s,
        )
        self._tasks = [
            asyncio.create_task(self._worker_loop(f"worker-{i + 1}"))
            for i in range(self.max_workers)
        ]
        self._tasks.append(asyncio.create_task(self._housekeeping_loop()))

    async def stop(self, timeout_s: float = 30.0) -> None:
        """Stop claiming work, wait for in-flight jobs, then cancel workers."""
        if not self.running:
            return
        logger.info("Stopping worker pool", active_jobs=len(self.active_jobs))
        self.running = False
        self._wake.set()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        while self.active_jobs and loop.time() < deadline:
            await asyncio.sleep(0.05)

        if self.active_jobs:
            logger.warning(
                "Worker pool stopped with active jobs",
                active_jobs=list(self.active_jobs),
            )

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    def notify(self) -> None:
        """Wake idle workers because new work was enqueued."""
        self._wake.set()

    def timeout_for_size(self, size: int | None) -> float:
        """Downstream timeout grows with payload size, up to a ceiling."""
        if not size:
            return self.settings.base_timeout_s
        timeout = self.settings.base_timeout_s + (
            size / MIB
        ) * self.settings.timeout_per_mib_s
        return min(self.settings.max_timeout_s, timeout)

    def recent_error_count(self) -> int:
        cutoff = self._clock() - timedelta(seconds=self.settings.recent_error_window_s)
        return sum(1 for at, _ in self._recent_errors if at >= cutoff)

    async def _worker_loop(self, name: str) -> None:
        """Claim eligible jobs one at a time until stopped."""
        while self.running:
            try:
                job = self.queue.pop_ready(self._clock())
                if job is None:
                    await self._wait_for_work()
                    continue

                self.active_jobs[job.id] = job
                try:
                    await self._process_job(job)
                finally:
                    self.active_jobs.pop(job.id, None)

            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in worker loop", worker=name)
                await asyncio.sleep(self.settings.idle_poll_interval_s)

    async def _wait_for_work(self) -> None:
        if self._wake.is_set():
            self._wake.clear()
            return
        try:
            await asyncio.wait_for(
                self._wake.wait(), self.settings.idle_poll_interval_s
            )
        except TimeoutError:
            pass
        self._wake.clear()

    async def _process_job(self, job: Job) -> None:
        """Run one attempt of a job and settle its outcome."""
        job_logger = logger.bind(
            job_id=job.id, kind=job.kind.value, attempt=job.attempt + 1
        )
        job_logger.info("Processing job started", priority=job.priority)
        self.stats["processed"] += 1
        self.tracker.set(job.id, TransferState.SENDING)

        try:
            await self.media_store.mark_processing(job.payload.media_id, job.id)

            record = await self.media_store.load(job.payload.media_id)
            if record is None:
                self._discard_withdrawn(job)
                return

            if not self.breaker.allow_request():
                raise DownstreamUnavailable("Analysis service circuit breaker is open")

            ack = await self._submit(job, record)

        except DownstreamUnavailable as e:
            job_logger.warning("Analysis service unavailable, failing fast")
            await self._handle_failure(job, e)

        except DownstreamError as e:
            self.breaker.record_failure()
            job_logger.warning("Analysis submission failed", error=str(e))
            await self._handle_failure(job, e)

        except asyncio.CancelledError:
            job_logger.info("Job processing cancelled")
            raise

        except Exception as e:
            job_logger.exception("Job processing failed unexpectedly")
            await self._handle_failure(job, e)

        else:
            await self._handle_success(job, ack)

    async def _submit(self, job: Job, record: MediaRecord) -> dict[str, Any]:
        size = job.payload.estimated_size or record.size
        timeout = self.timeout_for_size(size)
        payload = {
            **job.payload.to_dict(),
            "jobId": job.id,
            "type": job.kind.value,
            "attempt": job.attempt + 1,
            "storageUrl": record.storage_url,
            "size": size,
        }

        await self.limiter.acquire()
        try:
            return await asyncio.wait_for(
                self.gateway.submit(payload, timeout), timeout
            )
        except TimeoutError as e:
            raise DownstreamTimeout(
                f"Analysis service timed out after {timeout:.0f}s"
            ) from e
        except DownstreamError:
            raise
        except Exception as e:
            raise DownstreamError(f"{e.__class__.__name__}: {e}") from e
        finally:
            self.limiter.release()

    async def _handle_success(self, job: Job, ack: dict[str, Any] | None) -> None:
        media_id = job.payload.media_id
        self.tracker.set(job.id, TransferState.SENT)
        self.breaker.record_success()
        self.stats["succeeded"] += 1

        try:
            if await self.media_store.exists(media_id):
                await self.media_store.mark_completed(media_id, ack)
            else:
                logger.info(
                    "Media withdrawn during processing, result discarded",
                    job_id=job.id,
                    media_id=media_id,
                )
        except Exception:
            logger.exception("Failed to mark media completed", job_id=job.id)

        ack = ack or {}
        self.notifier.publish(
            JobEvent(
                project_id=job.payload.project_id,
                media_id=media_id,
                success=True,
                job_id=job.id,
                items_processed=int(ack.get("itemsProcessed", 0) or 0),
                occurred_at=self._clock(),
            )
        )
        logger.info("Processing job completed successfully", job_id=job.id)

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        """Re-queue with backoff, or abandon once attempts are exhausted."""
        now = self._clock()
        job.attempt += 1
        job.last_error = str(error) or error.__class__.__name__
        self._recent_errors.append((now, job.last_error))

        if self.retry_policy.should_retry(job.attempt, job.max_attempts):
            delay = self.retry_policy.delay_for(job.attempt)
            job.scheduled_for = self.retry_policy.next_run_at(job.attempt, now)
            self.tracker.set(job.id, TransferState.QUEUED, job.last_error)
            self.stats["retried"] += 1

            try:
                await self.media_store.mark_queued(job.payload.media_id, job.id)
            except Exception:
                logger.exception("Failed to mark media queued", job_id=job.id)

            # Ownership passes back to the queue; nothing touches the job after this
            self.queue.requeue(job)
            logger.info(
                "Job scheduled for retry",
                job_id=job.id,
                attempt=job.attempt,
                max_attempts=job.max_attempts,
                delay_s=delay,
                next_run_at=job.scheduled_for.isoformat(),
            )
            return

        failure = PermanentFailure(job.id, job.attempt, job.last_error)
        self.tracker.set(job.id, TransferState.FAILED, job.last_error)
        self.stats["abandoned"] += 1

        media_id = job.payload.media_id
        try:
            if await self.media_store.exists(media_id):
                await self.media_store.mark_failed(media_id, job.last_error)
        except Exception:
            logger.exception("Failed to mark media failed", job_id=job.id)

        self.notifier.publish(
            JobEvent(
                project_id=job.payload.project_id,
                media_id=media_id,
                success=False,
                job_id=job.id,
                error=job.last_error,
                occurred_at=now,
            )
        )
        logger.error(
            "Job permanently failed",
            job_id=job.id,
            attempts=failure.attempts,
            error=failure.last_error,
        )

    def _discard_withdrawn(self, job: Job) -> None:
        message = "Media record no longer exists"
        self.tracker.set(job.id, TransferState.FAILED, message)
        self.stats["abandoned"] += 1
        logger.info(
            "Media withdrawn before processing, job dropped",
            job_id=job.id,
            media_id=job.payload.media_id,
        )
        self.notifier.publish(
            JobEvent(
                project_id=job.payload.project_id,
                media_id=job.payload.media_id,
                success=False,
                job_id=job.id,
                error=message,
                occurred_at=self._clock(),
            )
        )

    async def _housekeeping_loop(self) -> None:
        """Evict expired transfer status entries."""
        interval = min(60.0, max(1.0, self.settings.transfer_status_ttl_s / 10))
        while self.running:
            try:
                evicted = self.tracker.evict_expired(self._clock())
                if evicted:
                    logger.debug("Evicted transfer status entries", count=evicted)
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in housekeeping loop")
                await asyncio.sleep(interval)
