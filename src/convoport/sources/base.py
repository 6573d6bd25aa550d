"""Source adapter interface and registry."""

import re
import time
from abc import ABC, abstractmethod
from typing import Callable

import httpx

from convoport.errors import AdapterUnavailableError, NotFoundError, RateLimitedError, TransientNetworkError
from convoport.models import Thread, ThreadDetail, ThreadPage

__all__ = ["AdapterRegistry", "ListingCache", "SourceAdapter", "raise_for_source_status"]

# Source adapter calls must not hang a bulk job
ADAPTER_TIMEOUT_SECONDS = 20.0

# Listings are reused across pages for this long
LISTING_CACHE_TTL_SECONDS = 60.0

BROWSER_HEADERS = {
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-origin",
}


def raise_for_source_status(response: httpx.Response, platform: str) -> None:
    """Translate a source platform HTTP error into the error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    if status in (401, 403):
        raise AdapterUnavailableError(f"Authentication required - please login to {platform}")
    if status == 404:
        raise NotFoundError(f"{platform} returned 404 for {response.request.url}")
    if status == 429:
        raise RateLimitedError(f"{platform} rate limited the request (HTTP 429)")
    if status >= 500:
        raise TransientNetworkError(f"{platform} server error: HTTP {status}")
    raise TransientNetworkError(f"{platform} request failed: HTTP {status}")


class ListingCache:
    """Per-adapter cache of the full thread listing.

    Lets page/limit listings be served as stable slices of one fetch.
    """

    def __init__(
        self,
        ttl_seconds: float = LISTING_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._items: list[Thread] = []
        self._timestamp: float | None = None

    def is_valid(self) -> bool:
        if self._timestamp is None or not self._items:
            return False
        return self._clock() - self._timestamp < self._ttl

    def store(self, items: list[Thread]) -> None:
        self._items = list(items)
        self._timestamp = self._clock()

    def page(self, page: int, limit: int) -> ThreadPage:
        """Slice a zero-based page out of the cached listing."""
        start = page * limit
        return ThreadPage(
            threads=self._items[start:start + limit],
            has_more=start + limit < len(self._items),
        )


class SourceAdapter(ABC):
    """Base class for chat platform adapters.

    Subclasses must set the `platform` class attribute and the `url_patterns`
    used by extract_id(), and implement list_threads() and get_thread_detail().
    Pages are zero-based.
    """

    platform: str
    url_patterns: tuple[str, ...] = ()
    # Hostnames used to detect the platform from a URL
    hosts: tuple[str, ...] = ()

    @abstractmethod
    def list_threads(self, page: int = 0, limit: int = 50) -> ThreadPage:
        """List threads on one page.

        Raises:
            AdapterUnavailableError: platform session is not authenticated
            TransientNetworkError: connectivity problem, retryable
        """

    @abstractmethod
    def get_thread_detail(self, thread_id: str) -> ThreadDetail:
        """Fetch a thread's entries in chronological order.

        Raises:
            NotFoundError: the thread no longer exists upstream
        """

    def extract_id(self, url: str) -> str | None:
        """Extract a thread id from a platform URL, without I/O."""
        for pattern in self.url_patterns:
            match = re.search(pattern, url, re.IGNORECASE)
            if match:
                return match.group(1)
        return None

    def has_session(self) -> bool:
        """Whether the adapter currently has a usable platform session."""
        return True

    def list_all_threads(self, limit: int = 50) -> list[Thread]:
        """Walk every page of the listing."""
        threads: list[Thread] = []
        page = 0
        while True:
            result = self.list_threads(page, limit)
            threads.extend(result.threads)
            if not result.has_more or not result.threads:
                return threads
            page += 1


class AdapterRegistry:
    """Registry of source adapters keyed by platform name.

    Instances are independent so tests and multiple orchestrators don't
    share hidden state.
    """

    def __init__(self) -> None:
        self._adapters: dict[str, SourceAdapter] = {}

    def register(self, adapter: SourceAdapter) -> None:
        """Register an adapter."""
        self._adapters[adapter.platform] = adapter

    def get(self, platform: str) -> SourceAdapter | None:
        """Get adapter by platform name."""
        return self._adapters.get(platform)

    def all_platforms(self) -> list[str]:
        """List all registered platform names."""
        return list(self._adapters.keys())

    def detect(self, url: str) -> SourceAdapter | None:
        """Find the adapter whose hosts match the given URL."""
        host = httpx.URL(url).host if "://" in url else ""
        for adapter in self._adapters.values():
            if any(host == h or host.endswith("." + h) for h in adapter.hosts):
                return adapter
        return None
