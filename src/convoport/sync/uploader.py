"""Block building and chunked upload to the destination.

Notion rejects rich text longer than 2000 characters and accepts at most
100 child blocks per request, so content is cut into paragraph-sized
blocks and written as one create call followed by paginated appends.
"""

import time
from datetime import datetime
from typing import Any, Callable, Protocol

from convoport.errors import UploadPartialError
from convoport.logging import get_logger
from convoport.models import ThreadDetail
from convoport.sync.rate_limiter import DestinationRateLimiter
from convoport.sync.retry import RetryPolicy

logger = get_logger("uploader")

# Notion hard limit is 2000; keep a margin
MAX_TEXT_LENGTH = 1900
MAX_BLOCKS_PER_CALL = 100
APPEND_DELAY_SECONDS = 0.3
MAX_SOURCES = 10
MAX_RELATED_QUERIES = 5
LINK_TEXT_LENGTH = 200

Block = dict[str, Any]


class Destination(Protocol):
    def create_record(self, properties: dict[str, Any], blocks: list[Block]) -> dict[str, Any]: ...

    def append_blocks(self, record_id: str, blocks: list[Block]) -> None: ...


def _find_break(text: str, max_length: int) -> tuple[int, int]:
    """Return (chunk_end, next_start) for the best break within max_length.

    Prefers the last newline, then the last sentence end, then the last
    space, but never looks back further than half the limit.
    """
    floor = max_length // 2

    idx = text.rfind("\n", 0, max_length + 1)
    if idx >= floor:
        return idx, idx + 1

    idx = text.rfind(". ", 0, max_length + 1)
    if idx >= floor:
        return idx + 1, idx + 2

    idx = text.rfind(" ", 0, max_length + 1)
    if idx >= floor:
        return idx, idx + 1

    return max_length, max_length


def split_text_into_chunks(text: str, max_length: int = MAX_TEXT_LENGTH) -> list[str]:
    """Split text into chunks of at most max_length characters.

    Whitespace is trimmed only at chunk boundaries.
    """
    if max_length < 1:
        raise ValueError("max_length must be positive")

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break
        end, resume = _find_break(remaining, max_length)
        chunk = remaining[:end].rstrip()
        if chunk:
            chunks.append(chunk)
        remaining = remaining[resume:].lstrip()
    return chunks


def _rich_text(content: str, link: str | None = None) -> list[dict[str, Any]]:
    text: dict[str, Any] = {"content": content}
    if link:
        text["link"] = {"url": link}
    return [{"type": "text", "text": text}]


def _block(block_type: str, content: str, link: str | None = None) -> Block:
    return {"type": block_type, block_type: {"rich_text": _rich_text(content, link)}}


def divider() -> Block:
    return {"type": "divider", "divider": {}}


def build_blocks(detail: ThreadDetail, platform: str, exported_at: datetime | None = None) -> list[Block]:
    """Render a normalized thread as destination blocks."""
    exported_at = exported_at or datetime.now()
    blocks: list[Block] = [
        {
            "type": "callout",
            "callout": {
                "icon": {"emoji": "🤖"},
                "color": "blue_background",
                "rich_text": _rich_text(f"Exported from {platform} on {exported_at:%Y-%m-%d %H:%M}"),
            },
        },
        divider(),
    ]

    for index, entry in enumerate(detail.entries):
        if entry.query:
            blocks.append(_block("heading_2", entry.query[:MAX_TEXT_LENGTH]))

        if entry.answer:
            for chunk in split_text_into_chunks(entry.answer, MAX_TEXT_LENGTH):
                blocks.append(_block("paragraph", chunk))

        if entry.sources:
            blocks.append(_block("heading_3", "Sources"))
            for source in entry.sources[:MAX_SOURCES]:
                blocks.append(_block("bulleted_list_item", source.name[:LINK_TEXT_LENGTH], link=source.url))

        if entry.related_queries:
            blocks.append(_block("heading_3", "Related Questions"))
            for query in entry.related_queries[:MAX_RELATED_QUERIES]:
                blocks.append(_block("bulleted_list_item", query[:LINK_TEXT_LENGTH]))

        if index < len(detail.entries) - 1:
            blocks.append(divider())

    return blocks


class ChunkedUploader:
    """Writes a block list as one create call plus paginated appends.

    Every call is queued through the rate limiter and wrapped in the retry
    policy. A failed create leaves nothing behind and propagates as-is; a
    failed append raises UploadPartialError, since the page already exists.
    """

    def __init__(
        self,
        destination: Destination,
        limiter: DestinationRateLimiter,
        retry_policy: RetryPolicy,
        max_blocks_per_call: int = MAX_BLOCKS_PER_CALL,
        append_delay: float = APPEND_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._destination = destination
        self._limiter = limiter
        self._retry = retry_policy
        self.max_blocks_per_call = max_blocks_per_call
        self.append_delay = append_delay
        self._sleep = sleep

    def _call(self, fn: Callable[[], Any]) -> Any:
        return self._retry.call(lambda: self._limiter.throttle(fn))

    def upload(self, properties: dict[str, Any], blocks: list[Block]) -> dict[str, Any]:
        """Create the record and append any overflow blocks.

        Returns:
            The created record ({"id", "url"})
        """
        limit = self.max_blocks_per_call
        first = blocks[:limit]
        record = self._call(lambda: self._destination.create_record(properties, first))

        written = len(first)
        rest = blocks[limit:]
        if rest:
            logger.info("Appending additional blocks: record=%s blocks=%d", record.get("id"), len(rest))

        for start in range(0, len(rest), limit):
            chunk = rest[start:start + limit]
            try:
                self._call(lambda: self._destination.append_blocks(record["id"], chunk))
            except Exception as e:
                raise UploadPartialError(
                    f"Partial upload: {written}/{len(blocks)} blocks written ({e})",
                    record=record,
                    blocks_written=written,
                    blocks_total=len(blocks),
                ) from e
            written += len(chunk)
            self._sleep(self.append_delay)

        return record
