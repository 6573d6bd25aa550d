"""Durable job checkpoints, failure log and export history."""

import time
from typing import Callable

from convoport.models import ExportJobSummary, FailureRecord, SyncJob
from convoport.store import KeyValueStore

PROGRESS_PREFIX = "export_progress_"
FAILURES_KEY = "failures"
HISTORY_KEY = "export_history"

RESUME_WINDOW_SECONDS = 60 * 60
FAILURE_LOG_SIZE = 50
HISTORY_SIZE = 50


class JobProgressStore:
    """Checkpoints of in-flight bulk jobs, keyed by job id."""

    def __init__(
        self,
        store: KeyValueStore,
        resume_window_seconds: float = RESUME_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._resume_window = resume_window_seconds
        self._clock = clock

    def save(self, job: SyncJob) -> SyncJob:
        """Persist a checkpoint, stamping last_update."""
        job.last_update = self._clock()
        self._store.set(PROGRESS_PREFIX + job.job_id, job.to_dict())
        return job

    def load(self, job_id: str) -> SyncJob | None:
        data = self._store.get(PROGRESS_PREFIX + job_id)
        return SyncJob.from_dict(data) if data else None

    def clear(self, job_id: str) -> None:
        self._store.remove(PROGRESS_PREFIX + job_id)

    def list_jobs(self) -> list[SyncJob]:
        jobs = []
        for key in self._store.keys(PROGRESS_PREFIX):
            data = self._store.get(key)
            if data:
                jobs.append(SyncJob.from_dict(data))
        return jobs

    def find_resumable(self) -> SyncJob | None:
        """Return the most recent unfinished job inside the freshness window."""
        now = self._clock()
        candidates = [
            job
            for job in self.list_jobs()
            if now - job.last_update < self._resume_window and job.cursor < job.total
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda job: job.last_update)


class FailureLog:
    """Most recent export failures, newest first, capped in size."""

    def __init__(
        self,
        store: KeyValueStore,
        max_size: int = FAILURE_LOG_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._max_size = max_size
        self._clock = clock

    def record(self, thread_id: str, reason: str, title: str = "Unknown") -> FailureRecord:
        failure = FailureRecord(id=thread_id, title=title or "Unknown", reason=reason, timestamp=self._clock())
        entries = [failure.to_dict()] + self._store.get(FAILURES_KEY, [])
        self._store.set(FAILURES_KEY, entries[: self._max_size])
        return failure

    def recent(self) -> list[FailureRecord]:
        return [FailureRecord.from_dict(d) for d in self._store.get(FAILURES_KEY, [])]

    def get(self, thread_id: str) -> FailureRecord | None:
        for failure in self.recent():
            if failure.id == thread_id:
                return failure
        return None

    def clear(self) -> None:
        self._store.remove(FAILURES_KEY)


class ExportHistory:
    """Summaries of finished bulk jobs, newest first."""

    def __init__(self, store: KeyValueStore, max_size: int = HISTORY_SIZE) -> None:
        self._store = store
        self._max_size = max_size

    def record(self, summary: ExportJobSummary) -> None:
        entries = [summary.to_dict()] + self._store.get(HISTORY_KEY, [])
        self._store.set(HISTORY_KEY, entries[: self._max_size])

    def recent(self) -> list[ExportJobSummary]:
        return [ExportJobSummary.from_dict(d) for d in self._store.get(HISTORY_KEY, [])]
