"""Canonical data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    """Per-item state within a bulk sync."""

    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


class JobState(str, Enum):
    """Lifecycle of a bulk sync run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class Thread:
    """A conversation as listed by a source platform."""

    id: str
    title: str
    updated_at: str | None = None  # ISO 8601, as reported by the platform


@dataclass
class ThreadPage:
    threads: list[Thread]
    has_more: bool


@dataclass
class Citation:
    name: str
    url: str


@dataclass
class Entry:
    """One question/answer turn."""

    query: str = ""
    answer: str = ""
    sources: list[Citation] = field(default_factory=list)
    related_queries: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when the entry has neither a query nor an answer."""
        return not self.query.strip() and not self.answer.strip()


@dataclass
class ThreadDetail:
    """Full content of a thread, owned transiently by the pipeline."""

    id: str
    title: str
    entries: list[Entry] = field(default_factory=list)
    platform: str = ""
    updated_at: str | None = None
    raw: dict[str, Any] | None = None  # Untouched adapter payload


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str]
    warnings: list[str]
    completeness: int  # 0-100
    stats: dict[str, int | bool] = field(default_factory=dict)


@dataclass
class ExportRecord:
    """Persisted proof that a thread was exported with a given fingerprint."""

    id: str
    fingerprint: str
    exported_at: float  # Unix timestamp (seconds)

    def to_dict(self) -> dict:
        return {"id": self.id, "fingerprint": self.fingerprint, "exported_at": self.exported_at}

    @classmethod
    def from_dict(cls, data: dict) -> "ExportRecord":
        return cls(id=data["id"], fingerprint=data["fingerprint"], exported_at=data["exported_at"])


@dataclass
class SyncJob:
    """Checkpoint of an in-flight bulk job."""

    job_id: str
    selected_ids: list[str]
    cursor: int = 0
    success: int = 0
    failed: int = 0
    last_update: float = 0.0

    @property
    def total(self) -> int:
        return len(self.selected_ids)

    @property
    def remaining_ids(self) -> list[str]:
        return self.selected_ids[self.cursor:]

    @property
    def is_complete(self) -> bool:
        return self.cursor >= self.total

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "selected_ids": list(self.selected_ids),
            "cursor": self.cursor,
            "success": self.success,
            "failed": self.failed,
            "last_update": self.last_update,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncJob":
        return cls(
            job_id=data["job_id"],
            selected_ids=list(data.get("selected_ids", [])),
            cursor=data.get("cursor", 0),
            success=data.get("success", 0),
            failed=data.get("failed", 0),
            last_update=data.get("last_update", 0.0),
        )


@dataclass
class FailureRecord:
    id: str
    title: str
    reason: str
    timestamp: float

    def to_dict(self) -> dict:
        return {"id": self.id, "title": self.title, "reason": self.reason, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict) -> "FailureRecord":
        return cls(
            id=data["id"],
            title=data.get("title", "Unknown"),
            reason=data.get("reason", "Unknown error"),
            timestamp=data.get("timestamp", 0.0),
        )


@dataclass
class ExportJobSummary:
    """Outcome of a finished bulk job, kept for the history view."""

    timestamp: float
    total: int
    success: int
    failed: int
    skipped: int
    duration_seconds: int
    platform: str

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration_seconds": self.duration_seconds,
            "platform": self.platform,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExportJobSummary":
        return cls(
            timestamp=data.get("timestamp", 0.0),
            total=data.get("total", 0),
            success=data.get("success", 0),
            failed=data.get("failed", 0),
            skipped=data.get("skipped", 0),
            duration_seconds=data.get("duration_seconds", 0),
            platform=data.get("platform", ""),
        )
