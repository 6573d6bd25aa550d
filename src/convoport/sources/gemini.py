"""Adapter for Google Gemini conversations.

Gemini's web app talks to a `batchexecute` RPC endpoint. Requests are
form-encoded `f.req=[[[rpcid, "<json payload>", null, "generic"]]]` and
responses start with the `)]}'` guard followed by length-prefixed lines;
the first line that parses as a JSON array holds
`[["wrb.fr", rpcid, "<json result>", ...]]`.

- MaZiqc lists conversations: payload [limit, cursor, [0, null, 1]],
  result [[[id, title, ...], ...], next_cursor]
- message history has shipped under several rpc ids and payload shapes,
  tried in order until one yields turns.
"""

import json
from typing import Any
from urllib.parse import quote

import httpx

from convoport.errors import AdapterUnavailableError, RateLimitedError, SyncError, TransientNetworkError
from convoport.logging import get_logger
from convoport.models import Entry, Thread, ThreadDetail, ThreadPage
from convoport.sources.base import ADAPTER_TIMEOUT_SECONDS, SourceAdapter, raise_for_source_status
from convoport.sources.channel import RequestChannel

logger = get_logger("sources.gemini")

DEFAULT_BASE_URL = "https://gemini.google.com"
LIST_RPC_ID = "MaZiqc"
DETAIL_RPC_IDS = ("hNvQHb", "WqGlee", "Mklfhc")

HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded;charset=UTF-8",
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
}


def build_batch_request(rpc_id: str, payload: Any, at_token: str | None = None) -> str:
    """Encode a batchexecute form body."""
    req_data = json.dumps([[[rpc_id, json.dumps(payload), None, "generic"]]])
    body = f"f.req={quote(req_data)}&"
    if at_token:
        body += f"at={quote(at_token)}&"
    return body


def parse_batch_response(text: str) -> list | None:
    """Return the first JSON array line of a batchexecute response."""
    cleaned = text.removeprefix(")]}'").strip()
    for line in cleaned.split("\n"):
        if not line.startswith("["):
            continue
        try:
            return json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping unparseable batchexecute line: %s", line[:100])
    return None


def _rpc_result(response: list | None) -> Any:
    if not response or not isinstance(response[0], list) or len(response[0]) < 3:
        return None
    data_str = response[0][2]
    if not isinstance(data_str, str):
        return None
    try:
        return json.loads(data_str)
    except json.JSONDecodeError:
        return None


def _turn_text(turn: list) -> str:
    for candidate in (
        turn[1] if len(turn) > 1 else None,
        turn[2] if len(turn) > 2 else None,
        turn[0] if turn else None,
    ):
        if isinstance(candidate, list) and candidate:
            candidate = candidate[0]
        if isinstance(candidate, list):
            candidate = "\n".join(str(c) for c in candidate)
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def parse_turns(data: Any) -> list[Entry]:
    """Pair alternating user/model turns into entries."""
    if not isinstance(data, list) or not data:
        return []
    turns = data[0] if isinstance(data[0], list) and data[0] and isinstance(data[0][0], list) else data

    entries: list[Entry] = []
    current_query = ""
    for idx, turn in enumerate(turns):
        if not isinstance(turn, list):
            continue
        content = _turn_text(turn)
        role = turn[3] if len(turn) > 3 and turn[3] is not None else idx % 2
        is_user = role in (0, "user", "USER")

        if is_user and content:
            current_query = content
        elif not is_user and current_query and content:
            entries.append(Entry(query=current_query, answer=content))
            current_query = ""
    return entries


class GeminiAdapter(SourceAdapter):
    """Adapter for gemini.google.com."""

    platform = "gemini"
    hosts = ("gemini.google.com",)
    url_patterns = (
        r"gemini\.google\.com/app/([a-zA-Z0-9_-]+)",
        r"gemini\.google\.com/gem/([a-zA-Z0-9_-]+)",
    )

    def __init__(
        self,
        client: httpx.Client | None = None,
        base_url: str = DEFAULT_BASE_URL,
        cookies: dict[str, str] | None = None,
        channel: RequestChannel | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(headers=HEADERS, cookies=cookies or {}, timeout=ADAPTER_TIMEOUT_SECONDS)
        self._cookies = cookies
        self._channel = channel
        # Cursor needed to fetch each zero-based page, per page size
        self._cursors: dict[tuple[int, int], str | None] = {}
        self._titles: dict[str, str] = {}

    @property
    def api_base(self) -> str:
        return f"{self._base_url}/_/BardChatUi/data/batchexecute"

    def has_session(self) -> bool:
        return bool(self._client.cookies) or bool(self._cookies)

    def _auth_token(self) -> str | None:
        if self._channel is None:
            return None
        try:
            result = self._channel.request("GET_AUTH_TOKEN")
        except SyncError as e:
            logger.debug("Could not obtain Gemini auth token: %s", e)
            return None
        if isinstance(result, dict):
            return result.get("token") or result.get("SNlM0e")
        return result if isinstance(result, str) else None

    def _batch_execute(self, rpc_id: str, payload: Any) -> list | None:
        body = build_batch_request(rpc_id, payload, self._auth_token())
        url = f"{self.api_base}?rpcids={rpc_id}&source-path=/app&bl=boq_assistant-bard-web-server"
        try:
            response = self._client.post(url, content=body)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Gemini request failed: {e}") from e
        raise_for_source_status(response, "Gemini")
        return parse_batch_response(response.text)

    def _fetch_page(self, cursor: str | None, limit: int) -> tuple[list[Thread], str | None]:
        data = _rpc_result(self._batch_execute(LIST_RPC_ID, [limit, cursor, [0, None, 1]]))
        if not isinstance(data, list) or not data:
            return [], None

        threads = []
        for conv in data[0] or []:
            if not isinstance(conv, list) or not conv or not conv[0]:
                continue
            title = (conv[1] if len(conv) > 1 and conv[1] else "Gemini Chat")[:100]
            self._titles[conv[0]] = title
            threads.append(Thread(id=conv[0], title=title))
        next_cursor = data[1] if len(data) > 1 and data[1] else None
        return threads, next_cursor

    def list_threads(self, page: int = 0, limit: int = 50) -> ThreadPage:
        # Walk forward from the last known cursor when a page is requested out of order
        known = max((p for (size, p) in self._cursors if size == limit and p <= page), default=0)
        threads: list[Thread] = []
        next_cursor: str | None = None
        for current in range(known, page + 1):
            cursor = self._cursors.get((limit, current))
            if current > 0 and cursor is None:
                return ThreadPage(threads=[], has_more=False)
            threads, next_cursor = self._fetch_page(cursor, limit)
            self._cursors[(limit, current + 1)] = next_cursor
        return ThreadPage(threads=threads, has_more=next_cursor is not None)

    def get_thread_detail(self, thread_id: str) -> ThreadDetail:
        """Try each known rpc id and payload shape until one yields turns.

        Raises the last transport or rate-limit error when no attempt got an
        answer; AdapterUnavailableError when answers came back without turns.
        """
        payloads = ([thread_id, 50, None, 1, [0], [4], None, 1], [thread_id, 100], [thread_id])
        last_error: SyncError | None = None
        rate_limited: RateLimitedError | None = None
        answered = 0
        for rpc_id in DETAIL_RPC_IDS:
            for payload in payloads:
                try:
                    data = _rpc_result(self._batch_execute(rpc_id, payload))
                except AdapterUnavailableError:
                    raise
                except RateLimitedError as e:
                    rate_limited = e
                    continue
                except SyncError as e:
                    logger.debug("Gemini detail attempt failed: rpc=%s error=%s", rpc_id, e)
                    last_error = e
                    continue

                answered += 1
                entries = parse_turns(data)
                if entries:
                    title = self._titles.get(thread_id) or entries[0].query[:100] or "Gemini Conversation"
                    logger.debug("Fetched Gemini thread: id=%s rpc=%s entries=%d", thread_id, rpc_id, len(entries))
                    return ThreadDetail(id=thread_id, title=title, entries=entries, platform=self.platform)

        if rate_limited is not None:
            raise rate_limited
        if not answered and last_error is not None:
            raise last_error
        raise AdapterUnavailableError("Gemini API unreachable - check login or refresh the session")
