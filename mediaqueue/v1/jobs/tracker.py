"""
Per-job transfer status, kept apart from the queue's own bookkeeping.
"""

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from mediaqueue.config.settings import UnknownJobPolicy
from mediaqueue.v1.jobs.models import TransferState
from mediaqueue.v1.jobs.schemas import TransferStatusDetail, TransferSummary


@dataclass
class _Entry:
    state: TransferState
    error: str | None
    updated_at: datetime


class TransferStatusTracker:
    """
    Last-write-wins map of job id to transfer state.

    Transition legality is not enforced so a status update can never block or
    fail the scheduler. Entries older than ``ttl_s`` are evicted; how evicted
    or never-seen ids are reported depends on ``unknown_policy``.
    """

    def __init__(
        self,
        ttl_s: float = 3600.0,
        unknown_policy: UnknownJobPolicy = UnknownJobPolicy.REPORT_UNKNOWN,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.ttl = timedelta(seconds=ttl_s)
        self.unknown_policy = unknown_policy
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def set(
        self, job_id: str, state: TransferState, error: str | None = None
    ) -> None:
        with self._lock:
            self._entries[job_id] = _Entry(state, error, self._clock())

    def get(self, job_id: str) -> TransferStatusDetail | None:
        with self._lock:
            entry = self._entries.get(job_id)
        if entry is None:
            return None
        return TransferStatusDetail(
            state=entry.state, error=entry.error, updated_at=entry.updated_at
        )

    def query(
        self,
        job_ids: Iterable[str],
        in_queue: Callable[[str], bool] = lambda _job_id: False,
    ) -> TransferSummary:
        """Summarise the given ids; never blocks on in-flight work."""
        summary = TransferSummary()
        # Duplicate ids are reported once
        for job_id in dict.fromkeys(job_ids):
            detail = self.get(job_id)
            if detail is None:
                detail = self._resolve_untracked(job_id, in_queue)

            summary.total += 1
            setattr(summary, detail.state.value, getattr(summary, detail.state.value) + 1)
            summary.per_id[job_id] = detail

        return summary

    def evict_expired(self, now: datetime | None = None) -> int:
        cutoff = (now or self._clock()) - self.ttl
        with self._lock:
            expired = [
                job_id
                for job_id, entry in self._entries.items()
                if entry.updated_at < cutoff
            ]
            for job_id in expired:
                del self._entries[job_id]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _resolve_untracked(
        self, job_id: str, in_queue: Callable[[str], bool]
    ) -> TransferStatusDetail:
        if in_queue(job_id):
            return TransferStatusDetail(state=TransferState.QUEUED)
        if self.unknown_policy is UnknownJobPolicy.ASSUME_SENT:
            # Long-evicted ids are assumed to have completed
            return TransferStatusDetail(state=TransferState.SENT)
        return TransferStatusDetail(state=TransferState.UNKNOWN)
