"""Bulk sync orchestration: fetch, validate, dedupe, upload, checkpoint."""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Sequence

from convoport.errors import NoSourceSessionError, OperationInProgressError, ValidationFailedError
from convoport.logging import get_logger
from convoport.models import ExportJobSummary, JobState, SyncJob, SyncStatus, ThreadDetail
from convoport.sources.base import SourceAdapter
from convoport.sync.fingerprint import FingerprintStore
from convoport.sync.normalizer import ContentNormalizer
from convoport.sync.notion import build_properties
from convoport.sync.progress import ExportHistory, FailureLog, JobProgressStore
from convoport.sync.recovery import ErrorRecovery, RecoveryDirective
from convoport.sync.retry import RetryPolicy
from convoport.sync.uploader import ChunkedUploader, build_blocks
from convoport.sync.validator import DataValidator, generate_report

logger = get_logger("orchestrator")

CHECKPOINT_EVERY = 5
ITEM_DELAY_SECONDS = 0.8
BULK_SYNC_KEY = "bulk_sync"


class SingleFlight:
    """Rejects a second concurrent run of the same named operation."""

    def __init__(self) -> None:
        self._active: set[str] = set()
        self._lock = threading.Lock()

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._active

    @contextmanager
    def guard(self, key: str) -> Iterator[None]:
        with self._lock:
            if key in self._active:
                logger.warning("Duplicate request ignored: %s", key)
                raise OperationInProgressError(key)
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)


@dataclass
class ItemResult:
    thread_id: str
    status: SyncStatus
    reason: str | None = None
    record: dict[str, Any] | None = None
    completeness: int | None = None


@dataclass
class JobResult:
    job_id: str
    state: JobState
    total: int
    success: int = 0
    failed: int = 0
    skipped: int = 0
    items: list[ItemResult] = field(default_factory=list)


class BulkSyncOrchestrator:
    """Drives the per-thread export pipeline across a selection of threads.

    Items are processed one at a time in selection order. A failing item
    never aborts the batch: unresolved errors become FailureRecords.
    """

    def __init__(
        self,
        resolve_adapter: Callable[[], SourceAdapter | None],
        uploader: ChunkedUploader,
        fingerprints: FingerprintStore,
        jobs: JobProgressStore,
        failures: FailureLog,
        history: ExportHistory | None = None,
        normalizer: ContentNormalizer | None = None,
        validator: DataValidator | None = None,
        recovery: ErrorRecovery | None = None,
        retry_policy: RetryPolicy | None = None,
        properties_builder: Callable[[ThreadDetail], dict[str, Any]] | None = None,
        platform: str = "",
        checkpoint_every: int = CHECKPOINT_EVERY,
        item_delay: float = ITEM_DELAY_SECONDS,
        single_flight: SingleFlight | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._resolve_adapter = resolve_adapter
        self._uploader = uploader
        self._fingerprints = fingerprints
        self._jobs = jobs
        self._failures = failures
        self._history = history
        self._normalizer = normalizer or ContentNormalizer()
        self._validator = validator or DataValidator()
        self._recovery = recovery or ErrorRecovery()
        self._retry = retry_policy or RetryPolicy()
        self._properties_builder = properties_builder
        self.platform = platform
        self.checkpoint_every = max(1, checkpoint_every)
        self.item_delay = item_delay
        self._single_flight = single_flight or SingleFlight()
        self._sleep = sleep
        self._clock = clock
        self._stop = threading.Event()
        self.state = JobState.IDLE
        self.statuses: dict[str, SyncStatus] = {}

    def request_stop(self) -> None:
        """Stop after the in-flight item; a checkpoint is written."""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def _properties(self, detail: ThreadDetail) -> dict[str, Any]:
        if self._properties_builder is not None:
            return self._properties_builder(detail)
        return build_properties(detail, None, detail.platform or self.platform)

    def _export(self, thread_id: str, force: bool) -> ItemResult:
        adapter = self._resolve_adapter()
        if adapter is None or not adapter.has_session():
            raise NoSourceSessionError("No source session available")

        detail = self._retry.call(lambda: adapter.get_thread_detail(thread_id))
        detail = self._normalizer.normalize(detail)

        validation = self._validator.validate(detail)
        logger.info("Validated thread: id=%s %s", thread_id, generate_report(validation))
        if not validation.valid:
            raise ValidationFailedError(f"Validation failed: {', '.join(validation.errors)}")

        fingerprint = self._fingerprints.compute_fingerprint(detail)
        if not force and not self._fingerprints.has_changed(thread_id, fingerprint):
            logger.info("Skipped thread, no changes detected: id=%s title=%s", thread_id, detail.title)
            return ItemResult(thread_id, SyncStatus.SKIPPED, completeness=validation.completeness)

        if not self._validator.meets_minimum_quality(validation):
            logger.warning("Low quality export: id=%s completeness=%d%%", thread_id, validation.completeness)

        platform = detail.platform or self.platform or adapter.platform
        blocks = build_blocks(detail, platform)
        record = self._uploader.upload(self._properties(detail), blocks)

        self._fingerprints.save(thread_id, fingerprint)
        logger.info("Synced thread: id=%s title=%s url=%s", thread_id, detail.title, record.get("url"))
        return ItemResult(thread_id, SyncStatus.SYNCED, record=record, completeness=validation.completeness)

    def _wait(self, directive: RecoveryDirective) -> None:
        if directive.wait_for_online:
            connectivity = self._recovery.connectivity
            while not connectivity.wait_until_online(1.0):
                if self._stop.is_set():
                    return
        elif directive.delay > 0:
            self._sleep(directive.delay)

    def sync_thread(self, thread_id: str, title: str | None = None, force: bool = False) -> ItemResult:
        """Run the full pipeline for one thread.

        A failure whose recovery directive asks for a retry is retried once
        after the directive's wait; otherwise it is recorded as a failure.
        """
        attempts = 0
        while True:
            self.statuses[thread_id] = SyncStatus.SYNCING
            try:
                result = self._export(thread_id, force)
            except Exception as e:
                directive = self._recovery.directive_for(e)
                if directive.retry and attempts == 0 and not self._stop.is_set():
                    attempts += 1
                    logger.warning("Retrying thread: id=%s reason=%s", thread_id, directive.message)
                    self._wait(directive)
                    continue

                reason = str(e) or type(e).__name__
                logger.error(
                    "Sync failed: id=%s class=%s reason=%s", thread_id, directive.error_class.value, reason
                )
                if directive.user_action:
                    logger.error("Action required: %s", directive.user_action)
                self._failures.record(thread_id, reason, title or "Unknown")
                result = ItemResult(thread_id, SyncStatus.FAILED, reason=reason)

            self.statuses[thread_id] = result.status
            return result

    def retry_failed(self, thread_id: str) -> ItemResult:
        """Re-run the single-item pipeline for a recorded failure."""
        failure = self._failures.get(thread_id)
        title = failure.title if failure else None
        logger.info("Retrying failed thread: id=%s title=%s", thread_id, title)
        with self._single_flight.guard(f"retry:{thread_id}"):
            return self.sync_thread(thread_id, title)

    def run(
        self,
        selected_ids: Sequence[str],
        titles: Mapping[str, str] | None = None,
        job_id: str | None = None,
        force: bool = False,
    ) -> JobResult:
        """Export the selected threads as one resumable bulk job."""
        with self._single_flight.guard(BULK_SYNC_KEY):
            job = SyncJob(job_id=job_id or f"job_{int(self._clock() * 1000)}", selected_ids=list(selected_ids))
            return self._run_job(job, titles or {}, force)

    def resume(self, job_id: str | None = None, titles: Mapping[str, str] | None = None) -> JobResult | None:
        """Continue a checkpointed job from its cursor.

        Without a job id, the most recent resumable job is picked.
        Returns None when there is nothing to resume.
        """
        with self._single_flight.guard(BULK_SYNC_KEY):
            job = self._jobs.load(job_id) if job_id else self._jobs.find_resumable()
            if job is None or job.is_complete:
                return None
            logger.info("Resuming job: job_id=%s cursor=%d total=%d", job.job_id, job.cursor, job.total)
            return self._run_job(job, titles or {}, force=False)

    def sync_all(self, force: bool = False) -> JobResult | None:
        """Export every listed thread that was never exported."""
        adapter = self._resolve_adapter()
        if adapter is None:
            raise NoSourceSessionError("No source session available")
        threads = adapter.list_all_threads()
        pending = [t for t in threads if force or not self._fingerprints.is_exported(t.id)]
        if not pending:
            logger.info("Nothing to export: threads=%d", len(threads))
            return None
        return self.run([t.id for t in pending], titles={t.id: t.title for t in pending}, force=force)

    def _run_job(self, job: SyncJob, titles: Mapping[str, str], force: bool) -> JobResult:
        self._stop.clear()
        self.state = JobState.RUNNING
        started = self._clock()
        result = JobResult(job.job_id, JobState.RUNNING, job.total, success=job.success, failed=job.failed)
        for thread_id in job.remaining_ids:
            self.statuses[thread_id] = SyncStatus.PENDING

        self._jobs.save(job)
        logger.info("Starting bulk sync: job_id=%s threads=%d cursor=%d", job.job_id, job.total, job.cursor)

        try:
            while job.cursor < job.total and not self._stop.is_set():
                thread_id = job.selected_ids[job.cursor]
                item = self.sync_thread(thread_id, titles.get(thread_id), force)
                result.items.append(item)

                if item.status is SyncStatus.SYNCED:
                    job.success += 1
                elif item.status is SyncStatus.FAILED:
                    job.failed += 1
                else:
                    result.skipped += 1
                job.cursor += 1

                if job.cursor % self.checkpoint_every == 0:
                    self._jobs.save(job)

                if job.cursor < job.total and not self._stop.is_set():
                    self._sleep(self.item_delay)
        except BaseException:
            # Leave the last checkpoint in place for resume
            self.state = JobState.ABORTED
            logger.error("Bulk sync aborted: job_id=%s cursor=%d", job.job_id, job.cursor)
            raise

        result.success = job.success
        result.failed = job.failed

        if job.cursor < job.total:
            self._jobs.save(job)
            self.state = result.state = JobState.ABORTED
            logger.info("Bulk sync stopped: job_id=%s cursor=%d/%d", job.job_id, job.cursor, job.total)
            return result

        self._jobs.clear(job.job_id)
        self.state = result.state = JobState.COMPLETED
        duration = int(self._clock() - started)
        if self._history is not None:
            self._history.record(
                ExportJobSummary(
                    timestamp=self._clock(),
                    total=job.total,
                    success=job.success,
                    failed=job.failed,
                    skipped=result.skipped,
                    duration_seconds=duration,
                    platform=self.platform,
                )
            )
        logger.info(
            "Bulk sync complete: job_id=%s success=%d failed=%d skipped=%d duration=%ds",
            job.job_id,
            job.success,
            job.failed,
            result.skipped,
            duration,
        )
        return result
