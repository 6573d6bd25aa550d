"""Adapter for xAI Grok conversations.

Grok exposes a cookie-authenticated REST API under /rest/app-chat:
- GET /conversations returns every conversation at once
  ({"conversations": [{"conversationId", "title", "updateTime"}, ...]})
- conversation detail has moved between several endpoints over time, so
  each known endpoint is tried in order.

Messages alternate user/assistant turns and are paired into entries.
"""

from typing import Any

import httpx

from convoport.errors import (
    AdapterUnavailableError,
    NotFoundError,
    RateLimitedError,
    SyncError,
    TransientNetworkError,
)
from convoport.logging import get_logger
from convoport.models import Entry, Thread, ThreadDetail, ThreadPage
from convoport.sources.base import (
    ADAPTER_TIMEOUT_SECONDS,
    BROWSER_HEADERS,
    ListingCache,
    SourceAdapter,
    raise_for_source_status,
)

logger = get_logger("sources.grok")

DEFAULT_BASE_URL = "https://grok.com"

USER_ROLES = {"user", "human"}
ASSISTANT_ROLES = {"assistant", "grok", "bot", "ai"}


class GrokAdapter(SourceAdapter):
    """Adapter for grok.com and x.com/i/grok."""

    platform = "grok"
    hosts = ("grok.com", "x.com")
    url_patterns = (
        r"([a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})",
        r"grok\.com/(?:chat|c)/([a-zA-Z0-9_-]+)",
        r"x\.com/i/grok/([a-zA-Z0-9_-]+)",
    )

    def __init__(
        self,
        client: httpx.Client | None = None,
        base_url: str = DEFAULT_BASE_URL,
        cookies: dict[str, str] | None = None,
        cache: ListingCache | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(
            headers=BROWSER_HEADERS,
            cookies=cookies or {},
            timeout=ADAPTER_TIMEOUT_SECONDS,
        )
        self._cookies = cookies
        self._cache = cache or ListingCache()

    @property
    def api_base(self) -> str:
        return f"{self._base_url}/rest/app-chat"

    def has_session(self) -> bool:
        return bool(self._client.cookies) or bool(self._cookies)

    def _get_json(self, url: str) -> Any:
        try:
            response = self._client.get(url)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Grok request failed: {e}") from e
        raise_for_source_status(response, "Grok")
        return response.json()

    def fetch_all_threads(self) -> list[Thread]:
        """Fetch the full listing and refresh the cache."""
        data = self._get_json(f"{self.api_base}/conversations")
        chats = data.get("conversations") or data.get("data") or data.get("items") or []

        threads = []
        for chat in chats:
            thread_id = chat.get("conversationId") or chat.get("id") or chat.get("uuid")
            if not thread_id:
                continue
            threads.append(
                Thread(
                    id=thread_id,
                    title=chat.get("title") or chat.get("name") or "Grok Chat",
                    updated_at=chat.get("updateTime") or chat.get("updatedAt") or chat.get("createTime"),
                )
            )

        self._cache.store(threads)
        logger.debug("Fetched Grok listing: threads=%d", len(threads))
        return threads

    def list_threads(self, page: int = 0, limit: int = 50) -> ThreadPage:
        if not self._cache.is_valid():
            self.fetch_all_threads()
        return self._cache.page(page, limit)

    def _detail_endpoints(self, thread_id: str) -> list[str]:
        return [
            f"{self.api_base}/conversations_v2/{thread_id}?includeWorkspaces=true&includeTaskResult=true",
            f"{self.api_base}/conversation/{thread_id}",
            f"{self._base_url}/api/conversation/{thread_id}",
        ]

    def get_thread_detail(self, thread_id: str) -> ThreadDetail:
        not_found = 0
        last_error: SyncError | None = None
        endpoints = self._detail_endpoints(thread_id)
        for endpoint in endpoints:
            try:
                data = self._get_json(endpoint)
            except (AdapterUnavailableError, RateLimitedError):
                raise
            except NotFoundError:
                not_found += 1
                continue
            except SyncError as e:
                logger.warning("Grok endpoint failed: endpoint=%s error=%s", endpoint, e)
                last_error = e
                continue

            messages = _extract_messages(data)
            if not messages:
                continue

            conversation = data.get("conversation") or {}
            title = data.get("title") or conversation.get("title") or data.get("name") or "Grok Conversation"
            entries = pair_messages(messages)
            logger.debug("Fetched Grok thread: id=%s entries=%d", thread_id, len(entries))
            return ThreadDetail(id=thread_id, title=title, entries=entries, platform=self.platform, raw=data)

        if not_found == len(endpoints):
            raise NotFoundError(f"Grok conversation not found: {thread_id}")
        raise TransientNetworkError(f"All Grok endpoints failed for {thread_id}") from last_error


def _extract_messages(data: dict) -> list[dict]:
    conversation = data.get("conversation") or {}
    nested = data.get("data") if isinstance(data.get("data"), dict) else {}
    for candidate in (
        data.get("messages"),
        conversation.get("messages"),
        nested.get("messages"),
        data.get("turns"),
        data.get("items"),
    ):
        if isinstance(candidate, list) and candidate:
            return candidate
    return []


def _message_text(message: dict) -> str:
    content = message.get("content") or message.get("text") or message.get("message")
    if isinstance(content, str):
        return content
    parts = message.get("parts")
    if isinstance(parts, list):
        return "\n".join(str(p) for p in parts)
    return ""


def pair_messages(messages: list[dict]) -> list[Entry]:
    """Pair user turns with the assistant turn that follows them.

    A user turn with no assistant reply is kept with an empty answer so
    the validator can flag it.
    """
    entries: list[Entry] = []
    current_query = ""

    for message in messages:
        role = str(
            message.get("role") or message.get("sender") or message.get("author") or message.get("type") or ""
        ).lower()
        content = _message_text(message)

        if role in USER_ROLES:
            if current_query:
                entries.append(Entry(query=current_query))
            current_query = content
        elif role in ASSISTANT_ROLES and current_query:
            entries.append(Entry(query=current_query, answer=content))
            current_query = ""

    if current_query:
        entries.append(Entry(query=current_query))

    return entries
