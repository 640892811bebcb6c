"""
Project-scoped fan-out of job completion events.

Events arrive from the worker pool, from the media store change feed and from
the analysis service webhook. The same completion usually arrives more than
once, so events are de-duplicated inside a short window: per job when the
event names its job, per (project, media, outcome) when it does not. Reconnecting subscribers read ``outstanding()`` for a consistent
snapshot instead of replaying missed deltas.
"""

import asyncio
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from mediaqueue.config.logging import get_logger
from mediaqueue.config.settings import Settings
from mediaqueue.v1.media.models import MediaChange
from mediaqueue.v1.media.store import MediaStore
from mediaqueue.v1.notifications.policy import ClientState, PollingPolicy

logger = get_logger(__name__)


@dataclass(frozen=True)
class JobEvent:
    """Media item for a project finished processing."""

    project_id: str
    media_id: str
    success: bool
    job_id: str | None = None
    error: str | None = None
    items_processed: int = 0
    origin: str = "scheduler"
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_change(cls, change: MediaChange) -> "JobEvent":
        return cls(
            project_id=change.project_id,
            media_id=change.media_id,
            success=change.success,
            error=change.error,
            items_processed=change.items_processed,
            origin="change_feed",
            occurred_at=change.occurred_at,
        )

    @property
    def outcome_key(self) -> tuple[str, str, bool]:
        return (self.project_id, self.media_id, self.success)

    @property
    def dedupe_key(self) -> tuple[str, str, str | bool]:
        if self.job_id is not None:
            return (self.project_id, self.media_id, self.job_id)
        return self.outcome_key

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        data["type"] = "processing-complete"
        return data


@dataclass(frozen=True)
class ProcessingItem:
    """An item still in the pipeline for a project."""

    media_id: str
    project_id: str
    kind: str
    job_id: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data


@dataclass(frozen=True)
class PollResult:
    project_id: str
    items: list[ProcessingItem]

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "items": [item.to_dict() for item in self.items],
            "count": len(self.items),
        }


class Subscription:
    """Buffered event stream for one subscriber of one project."""

    def __init__(self, project_id: str, maxsize: int = 100):
        self.project_id = project_id
        self._queue: asyncio.Queue[JobEvent | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def deliver(self, event: JobEvent) -> None:
        if self.closed:
            return
        if self._queue.full():
            # Slow consumer: keep the newest events
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning(
                "Subscriber queue full, dropped oldest event",
                project_id=self.project_id,
                dropped=self.dropped,
            )
        self._queue.put_nowait(event)

    async def get(self, timeout: float | None = None) -> JobEvent | None:
        """Next event, or None on timeout or once the subscription closes."""
        if self.closed and self._queue.empty():
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except TimeoutError:
            return None

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> JobEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeNotifier:
    """Fans completion events out to project subscribers."""

    def __init__(
        self,
        settings: Settings,
        media_store: MediaStore,
        policy: PollingPolicy | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.settings = settings
        self.media_store = media_store
        self.policy = policy or PollingPolicy()
        self._clock = clock
        self._subscribers: dict[str, set[Subscription]] = {}
        self._outstanding: dict[str, dict[str, ProcessingItem]] = {}
        self._seen: OrderedDict[tuple, tuple[datetime, str | None]] = OrderedDict()
        self._feed_task: asyncio.Task | None = None
        self.feed_reconnects = 0

    # Subscriptions

    def subscribe(self, project_id: str) -> Subscription:
        subscription = Subscription(project_id, self.settings.subscriber_queue_size)
        self._subscribers.setdefault(project_id, set()).add(subscription)
        logger.debug("Subscriber added", project_id=project_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.project_id)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.project_id]
        subscription.close()

    def subscriber_count(self, project_id: str | None = None) -> int:
        if project_id is not None:
            return len(self._subscribers.get(project_id, ()))
        return sum(len(subs) for subs in self._subscribers.values())

    # Outstanding set

    def track(
        self, project_id: str, media_id: str, kind: str, job_id: str | None = None
    ) -> None:
        self._outstanding.setdefault(project_id, {})[media_id] = ProcessingItem(
            media_id=media_id,
            project_id=project_id,
            kind=kind,
            job_id=job_id,
            started_at=self._clock(),
        )

    async def outstanding(self, project_id: str) -> list[ProcessingItem]:
        """Items of the project still in flight, tracked here or in the store."""
        items = dict(self._outstanding.get(project_id, {}))
        for record in await self.media_store.list_outstanding(project_id):
            items.setdefault(
                record.id,
                ProcessingItem(
                    media_id=record.id,
                    project_id=record.project_id,
                    kind=record.kind,
                    job_id=record.job_id,
                    started_at=record.created_at,
                ),
            )
        return sorted(items.values(), key=lambda item: item.started_at)

    # Events

    def publish(self, event: JobEvent) -> bool:
        """Deliver an event; returns False when it was a duplicate."""
        now = self._clock()
        self._prune_seen(now)

        if event.job_id is not None:
            # The job is finished whether or not this event is news
            self._untrack(event.project_id, event.media_id, event.job_id)

        if self._is_duplicate(event):
            logger.debug(
                "Duplicate completion event ignored",
                project_id=event.project_id,
                media_id=event.media_id,
                job_id=event.job_id,
                origin=event.origin,
            )
            return False

        self._remember(event.dedupe_key, now, event.job_id)
        if event.job_id is not None:
            self._remember(event.outcome_key, now, event.job_id)
        else:
            self._untrack(event.project_id, event.media_id)

        subscribers = list(self._subscribers.get(event.project_id, ()))
        for subscription in subscribers:
            subscription.deliver(event)

        logger.info(
            "Completion event published",
            project_id=event.project_id,
            media_id=event.media_id,
            job_id=event.job_id,
            success=event.success,
            origin=event.origin,
            subscribers=len(subscribers),
        )
        return True

    async def poll(
        self, project_id: str, client_state: ClientState
    ) -> PollResult | None:
        """Polling fallback; None when the policy says to skip this poll."""
        reason = self.policy.skip_reason(client_state)
        if reason is not None:
            logger.debug("Poll skipped", project_id=project_id, reason=reason)
            return None
        return PollResult(project_id, await self.outstanding(project_id))

    # Change feed

    def start(self) -> None:
        if self._feed_task is None or self._feed_task.done():
            self._feed_task = asyncio.create_task(self.run_change_feed())

    async def stop(self) -> None:
        if self._feed_task is not None:
            self._feed_task.cancel()
            try:
                await self._feed_task
            except asyncio.CancelledError:
                pass
            self._feed_task = None

        for subscribers in list(self._subscribers.values()):
            for subscription in list(subscribers):
                subscription.close()
        self._subscribers.clear()

    async def run_change_feed(self) -> None:
        """Tail the media store change feed, re-subscribing after errors."""
        while True:
            try:
                logger.info("Watching media store changes")
                async for change in self.media_store.watch_changes():
                    self.publish(JobEvent.from_change(change))
                logger.warning("Media store change feed ended")
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Media store change feed error",
                    retry_in_s=self.settings.feed_retry_delay_s,
                )

            self.feed_reconnects += 1
            await asyncio.sleep(self.settings.feed_retry_delay_s)

    def _is_duplicate(self, event: JobEvent) -> bool:
        if event.dedupe_key in self._seen:
            return True
        if event.job_id is None:
            return event.outcome_key in self._seen

        claimed = self._seen.get(event.outcome_key)
        if claimed is not None and claimed[1] is None:
            # An event without a job id already announced this completion
            seen_at = claimed[0]
            self._seen[event.outcome_key] = (seen_at, event.job_id)
            self._remember(event.dedupe_key, seen_at, event.job_id)
            return True
        return False

    def _remember(self, key: tuple, seen_at: datetime, job_id: str | None) -> None:
        self._seen.pop(key, None)
        self._seen[key] = (seen_at, job_id)

    def _untrack(self, project_id: str, media_id: str, job_id: str | None = None) -> None:
        project_items = self._outstanding.get(project_id)
        if project_items is None:
            return
        item = project_items.get(media_id)
        if item is None or (job_id is not None and item.job_id != job_id):
            return
        del project_items[media_id]
        if not project_items:
            del self._outstanding[project_id]

    def _prune_seen(self, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.settings.dedupe_window_s)
        while self._seen:
            seen_at, _ = next(iter(self._seen.values()))
            if seen_at >= cutoff:
                break
            self._seen.popitem(last=False)
