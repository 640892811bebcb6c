"""
Bounded, thread-safe priority queue of pending analysis jobs.
"""

import heapq
import threading
from datetime import datetime

from mediaqueue.v1.core.exceptions import QueueFull
from mediaqueue.v1.jobs.models import Job


class JobQueue:
    """
    Pending jobs ordered by eligibility first, then priority.

    Jobs whose ``scheduled_for`` is still in the future wait in a heap keyed by
    that instant. ``pop_ready`` promotes every job that became eligible into a
    second heap keyed by ``Job.sort_key()`` and pops from it, so a backed-off
    job is never returned early and an eligible low-priority job is never
    starved by an ineligible high-priority one.
    """

    def __init__(self, max_size: int):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._lock = threading.Lock()
        self._waiting: list[tuple[datetime, int, Job]] = []
        self._ready: list[tuple[int, datetime, int, Job]] = []
        self._ids: set[str] = set()

    def push(self, job: Job) -> None:
        """Add a new job, raising ``QueueFull`` when at capacity."""
        with self._lock:
            if len(self._ids) >= self.max_size:
                raise QueueFull(self.max_size)
            self._insert(job)

    def requeue(self, job: Job) -> None:
        """Re-insert a retried job; capacity is not enforced for retries."""
        with self._lock:
            self._insert(job)

    def pop_ready(self, now: datetime) -> Job | None:
        """Remove and return the best eligible job, or None."""
        with self._lock:
            self._promote(now)
            if not self._ready:
                return None
            job = heapq.heappop(self._ready)[-1]
            self._ids.discard(job.id)
            return job

    def next_ready_at(self) -> datetime | None:
        """Earliest instant at which a waiting job becomes eligible."""
        with self._lock:
            if self._ready:
                return self._ready[0][-1].scheduled_for
            if self._waiting:
                return self._waiting[0][0]
            return None

    def eligible_count(self, now: datetime) -> int:
        with self._lock:
            self._promote(now)
            return len(self._ready)

    def snapshot_items(self) -> list[Job]:
        """Pending jobs in the order they would be served if all were eligible."""
        with self._lock:
            jobs = [entry[-1] for entry in self._ready]
            jobs.extend(entry[-1] for entry in self._waiting)
        return sorted(jobs, key=Job.sort_key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._ids

    def _insert(self, job: Job) -> None:
        if job.id in self._ids:
            raise ValueError(f"Job {job.id} is already queued")
        heapq.heappush(self._waiting, (job.scheduled_for, job.sequence, job))
        self._ids.add(job.id)

    def _promote(self, now: datetime) -> None:
        while self._waiting and self._waiting[0][0] <= now:
            job = heapq.heappop(self._waiting)[-1]
            heapq.heappush(self._ready, (*job.sort_key(), job))
