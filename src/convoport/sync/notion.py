"""Notion API client, token providers and page property mapping."""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

import httpx

from convoport.config import NotionConfig
from convoport.errors import (
    AuthRequiredError,
    ConfigError,
    NotFoundError,
    RateLimitedError,
    TransientNetworkError,
    UnknownSyncError,
    ValidationFailedError,
)
from convoport.logging import get_logger
from convoport.models import ThreadDetail
from convoport.store import KeyValueStore
from convoport.sync.recovery import Connectivity

logger = get_logger("notion")

SCHEMA_CACHE_TTL_SECONDS = 5 * 60
OAUTH_TOKEN_KEY = "notion_oauth_token"
TITLE_MAX_LENGTH = 2000

ERROR_MESSAGES = {
    "object_not_found": "Database not found. Please verify your Database ID.",
    "unauthorized": "Invalid API key. Please check your Notion integration.",
    "restricted_resource": "This database is not shared with your integration.",
    "rate_limited": "Too many requests. Please wait a moment and try again.",
    "validation_error": "Invalid data format. Check your content.",
    "conflict_error": "A conflict occurred. Please try again.",
    "internal_server_error": "Notion is experiencing issues. Try again later.",
}

# Thread URL templates for the URL property
THREAD_URLS = {
    "grok": "https://grok.com/chat/{id}",
    "gemini": "https://gemini.google.com/app/{id}",
    "local_export": "https://www.perplexity.ai/search/{id}",
}


class TokenProvider(Protocol):
    def get_active_token(self) -> str:
        """Return a bearer token, or raise AuthRequiredError."""
        ...


class StaticTokenProvider:
    """Internal integration token from configuration."""

    def __init__(self, token: str) -> None:
        self._token = token

    def get_active_token(self) -> str:
        if not self._token:
            raise AuthRequiredError("Notion is not connected: no API key configured")
        return self._token


class StoredTokenProvider:
    """OAuth access token saved in the state store by an external login flow.

    Falls back to the configured integration token when no OAuth token is stored.
    """

    def __init__(self, store: KeyValueStore, fallback: str = "") -> None:
        self._store = store
        self._fallback = fallback

    def get_active_token(self) -> str:
        stored = self._store.get(OAUTH_TOKEN_KEY) or {}
        token = stored.get("access_token") if isinstance(stored, dict) else stored
        if token:
            return token
        if self._fallback:
            return self._fallback
        raise AuthRequiredError("Notion is not connected: log in or configure an API key")


def is_valid_database_id(database_id: str) -> bool:
    clean = database_id.replace("-", "")
    return len(clean) == 32 and all(c in "0123456789abcdefABCDEF" for c in clean)


def map_error(status: int, payload: dict[str, Any] | None) -> Exception:
    """Build a taxonomy error from a Notion error response."""
    payload = payload or {}
    code = payload.get("code", "")
    message = ERROR_MESSAGES.get(code) or payload.get("message") or f"HTTP {status}"

    if status == 429 or code == "rate_limited":
        return RateLimitedError(message)
    if status in (401, 403) or code in ("unauthorized", "restricted_resource"):
        return AuthRequiredError(message)
    if status == 404 or code == "object_not_found":
        return NotFoundError(message)
    if status == 400 or code == "validation_error":
        return ValidationFailedError(message)
    if status >= 500 or code == "conflict_error":
        return TransientNetworkError(message)
    return UnknownSyncError(message)


class NotionClient:
    """Thin httpx client for the Notion endpoints the uploader needs."""

    def __init__(
        self,
        config: NotionConfig,
        token_provider: TokenProvider,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
        connectivity: Connectivity | None = None,
    ) -> None:
        self._config = config
        self._tokens = token_provider
        self._client = client or httpx.Client(timeout=config.timeout_seconds)
        self._clock = clock
        self._schema_cache: dict[str, tuple[float, dict[str, Any]]] = {}
        self._connectivity = connectivity

    @property
    def database_id(self) -> str:
        return self._config.database_id

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._tokens.get_active_token()}",
            "Content-Type": "application/json",
            "Notion-Version": self._config.notion_version,
        }

    def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._config.api_base.rstrip('/')}/{path.lstrip('/')}"
        try:
            response = self._client.request(method, url, headers=self._headers(), json=json)
        except httpx.TransportError as e:
            if isinstance(e, httpx.ConnectError) and self._connectivity is not None:
                self._connectivity.mark_offline()
            raise TransientNetworkError(f"Notion request failed: {e}") from e

        if self._connectivity is not None:
            self._connectivity.mark_online()
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"message": response.text.strip()}
            logger.error("Notion API error: status=%d code=%s", response.status_code, payload.get("code"))
            raise map_error(response.status_code, payload)
        return response.json()

    def create_record(self, properties: dict[str, Any], blocks: list[dict[str, Any]]) -> dict[str, Any]:
        """Create a page in the configured database. Returns {"id", "url"}."""
        if not self.database_id:
            raise ConfigError("Notion not configured: database_id is missing")
        result = self._request(
            "POST",
            "pages",
            json={
                "parent": {"database_id": self.database_id},
                "properties": properties,
                "children": blocks,
            },
        )
        return {"id": result["id"], "url": result.get("url", "")}

    def append_blocks(self, record_id: str, blocks: list[dict[str, Any]]) -> None:
        self._request("PATCH", f"blocks/{record_id}/children", json={"children": blocks})

    def cached_schema(self) -> dict[str, Any] | None:
        """Return the cached schema if still fresh, without any request."""
        cached = self._schema_cache.get(self.database_id)
        if cached and self._clock() - cached[0] < SCHEMA_CACHE_TTL_SECONDS:
            return cached[1]
        return None

    def fetch_database(self) -> dict[str, Any]:
        """Read the database object, raising on any failure."""
        database = self._request("GET", f"databases/{self.database_id}")
        self._schema_cache[self.database_id] = (self._clock(), database)
        return database

    def get_database_schema(self) -> dict[str, Any] | None:
        """Fetch the database schema, cached for five minutes.

        Returns None when the schema can't be read; callers fall back to
        title-only properties.
        """
        cached = self.cached_schema()
        if cached is not None:
            return cached
        try:
            return self.fetch_database()
        except (TransientNetworkError, NotFoundError, UnknownSyncError) as e:
            logger.warning("Schema fetch failed: %s", e)
            return None


def database_title(database: dict[str, Any]) -> str:
    parts = database.get("title") or []
    return "".join(p.get("plain_text") or p.get("text", {}).get("content", "") for p in parts) or "Untitled"


def _text(content: str) -> list[dict[str, Any]]:
    return [{"type": "text", "text": {"content": content}}]


def build_properties(
    detail: ThreadDetail,
    schema: dict[str, Any] | None,
    platform: str,
) -> dict[str, Any]:
    """Map a thread onto database properties.

    Title is always set; URL, Chat Time, Platform and Tags only when the
    database has a column with that name.
    """
    properties: dict[str, Any] = {
        "title": {"title": _text((detail.title or "Untitled Chat")[:TITLE_MAX_LENGTH])},
    }
    available = (schema or {}).get("properties") or {}
    if not available:
        return properties

    url_template = THREAD_URLS.get(platform)
    if "URL" in available and url_template and detail.id:
        properties["URL"] = {"url": url_template.format(id=detail.id)}

    if "Chat Time" in available and detail.updated_at:
        try:
            chat_time = datetime.fromisoformat(detail.updated_at.replace("Z", "+00:00"))
        except ValueError:
            chat_time = None
        if chat_time is not None:
            if chat_time.tzinfo is None:
                chat_time = chat_time.replace(tzinfo=timezone.utc)
            properties["Chat Time"] = {"date": {"start": chat_time.isoformat()}}

    if "Platform" in available:
        properties["Platform"] = {"select": {"name": platform or "Unknown"}}

    if "Tags" in available:
        properties["Tags"] = {"multi_select": [{"name": platform or "AI"}]}

    return properties
