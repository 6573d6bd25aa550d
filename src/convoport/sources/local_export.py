"""Adapter for thread exports saved as JSON files on disk.

Each file in the export directory holds one thread, either in the
Perplexity thread shape:

    {"uuid": "...", "title": "...", "last_query_datetime": "...",
     "detail": {"entries": [{"query_str": "...", "blocks": [...]}]}}

or a flat shape:

    {"id": "...", "title": "...", "updated_at": "...",
     "entries": [{"query": "...", "answer": "...", "sources": [...]}]}

Entries are left raw for the content normalizer.
"""

import json
from pathlib import Path

from convoport.errors import AdapterUnavailableError, NotFoundError, ValidationFailedError
from convoport.logging import get_logger
from convoport.models import Thread, ThreadDetail, ThreadPage
from convoport.sources.base import SourceAdapter

logger = get_logger("sources.local_export")


def _thread_id(data: dict, path: Path) -> str:
    return str(data.get("uuid") or data.get("id") or path.stem)


def _updated_at(data: dict) -> str | None:
    return data.get("last_query_datetime") or data.get("updated_at") or data.get("updatedAt")


class LocalExportAdapter(SourceAdapter):
    """Reads *.json thread exports from a directory."""

    platform = "local_export"
    url_patterns = (
        r"perplexity\.ai/search/([a-zA-Z0-9._-]+)",
        r"^file://.*/([^/]+)\.json$",
    )
    hosts = ("perplexity.ai",)

    def __init__(self, export_dir: Path) -> None:
        self._export_dir = export_dir

    def has_session(self) -> bool:
        return self._export_dir.is_dir()

    def _load(self, path: Path) -> dict | None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.warning("Skipping unreadable export: path=%s", path)
            return None
        return data if isinstance(data, dict) else None

    def _scan(self) -> dict[str, tuple[Path, dict]]:
        if not self._export_dir.is_dir():
            raise AdapterUnavailableError(f"Export directory not found: {self._export_dir}")
        found: dict[str, tuple[Path, dict]] = {}
        for path in sorted(self._export_dir.glob("*.json")):
            data = self._load(path)
            if data is not None:
                found[_thread_id(data, path)] = (path, data)
        return found

    def list_threads(self, page: int = 0, limit: int = 50) -> ThreadPage:
        threads = [
            Thread(id=thread_id, title=data.get("title") or "Untitled", updated_at=_updated_at(data))
            for thread_id, (_path, data) in self._scan().items()
        ]
        # Newest first, ties by id to keep paging stable
        threads.sort(key=lambda t: t.id)
        threads.sort(key=lambda t: t.updated_at or "", reverse=True)

        start = page * limit
        return ThreadPage(threads=threads[start:start + limit], has_more=start + limit < len(threads))

    def get_thread_detail(self, thread_id: str) -> ThreadDetail:
        found = self._scan().get(thread_id)
        if found is None:
            raise NotFoundError(f"No export found for thread: {thread_id}")
        _path, data = found
        if not isinstance(data.get("entries", data.get("detail", {})), (list, dict)):
            raise ValidationFailedError(f"Malformed export for thread: {thread_id}")
        return ThreadDetail(
            id=thread_id,
            title=data.get("title") or "",
            platform=data.get("platform") or self.platform,
            updated_at=_updated_at(data),
            raw=data,
        )
