"""Tests for the Notion client and property mapping."""

import json
from pathlib import Path

import httpx
import pytest

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
from convoport.models import ThreadDetail
from convoport.store import KeyValueStore
from convoport.sync.notion import (
    OAUTH_TOKEN_KEY,
    NotionClient,
    StaticTokenProvider,
    StoredTokenProvider,
    build_properties,
    database_title,
    is_valid_database_id,
    map_error,
)
from convoport.sync.recovery import Connectivity, ErrorRecovery

DATABASE_ID = "0123456789abcdef0123456789abcdef"


def make_client(handler, token: str = "secret", clock=None, connectivity: Connectivity | None = None) -> NotionClient:
    config = NotionConfig(api_key=token, database_id=DATABASE_ID)
    client = httpx.Client(transport=httpx.MockTransport(handler))
    kwargs = {"clock": clock} if clock else {}
    return NotionClient(config, StaticTokenProvider(token), client=client, connectivity=connectivity, **kwargs)


class TestNotionClientWrites:
    def test_create_record(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"id": "page-1", "url": "https://notion.so/page-1", "object": "page"})

        record = make_client(handler).create_record({"title": {}}, [{"type": "divider", "divider": {}}])

        assert record == {"id": "page-1", "url": "https://notion.so/page-1"}
        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/pages"
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.headers["Notion-Version"] == "2022-06-28"
        body = json.loads(request.content)
        assert body["parent"] == {"database_id": DATABASE_ID}
        assert len(body["children"]) == 1

    def test_create_requires_database(self) -> None:
        config = NotionConfig(api_key="secret")
        client = NotionClient(config, StaticTokenProvider("secret"), client=httpx.Client())
        with pytest.raises(ConfigError):
            client.create_record({}, [])

    def test_missing_token_raises_before_request(self) -> None:
        calls = []
        client = make_client(lambda request: calls.append(request) or httpx.Response(200), token="")
        with pytest.raises(AuthRequiredError):
            client.create_record({}, [])
        assert calls == []

    def test_append_blocks(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"results": []})

        make_client(handler).append_blocks("page-1", [{"type": "divider", "divider": {}}])

        assert requests[0].method == "PATCH"
        assert requests[0].url.path == "/v1/blocks/page-1/children"

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientNetworkError):
            make_client(handler).append_blocks("p", [])

    def test_refused_connection_marks_offline(self) -> None:
        """A refused connection flips connectivity offline so recovery waits for it to return."""
        connectivity = Connectivity()
        online = [False]

        def handler(request: httpx.Request) -> httpx.Response:
            if not online[0]:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"results": []})

        client = make_client(handler, connectivity=connectivity)
        with pytest.raises(TransientNetworkError) as exc_info:
            client.append_blocks("p", [])

        assert connectivity.is_online() is False
        directive = ErrorRecovery(connectivity).directive_for(exc_info.value)
        assert directive.wait_for_online is True

        online[0] = True
        client.append_blocks("p", [])
        assert connectivity.is_online() is True

    def test_read_timeout_keeps_online(self) -> None:
        connectivity = Connectivity()

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransientNetworkError):
            make_client(handler, connectivity=connectivity).append_blocks("p", [])
        assert connectivity.is_online() is True


class TestErrorMapping:
    """Tests for map_error() and HTTP error handling."""

    @pytest.mark.parametrize(
        "status,payload,expected",
        [
            (429, {"code": "rate_limited"}, RateLimitedError),
            (401, {"code": "unauthorized"}, AuthRequiredError),
            (403, {"code": "restricted_resource"}, AuthRequiredError),
            (404, {"code": "object_not_found"}, NotFoundError),
            (400, {"code": "validation_error"}, ValidationFailedError),
            (409, {"code": "conflict_error"}, TransientNetworkError),
            (502, None, TransientNetworkError),
            (418, {}, UnknownSyncError),
        ],
    )
    def test_status_mapping(self, status: int, payload: dict | None, expected: type) -> None:
        assert isinstance(map_error(status, payload), expected)

    def test_friendly_message(self) -> None:
        error = map_error(404, {"code": "object_not_found", "message": "raw"})
        assert str(error) == "Database not found. Please verify your Database ID."

    def test_http_error_raised(self) -> None:
        client = make_client(lambda request: httpx.Response(400, json={"code": "validation_error"}))
        with pytest.raises(ValidationFailedError, match="Invalid data format"):
            client.create_record({}, [])

    def test_non_json_error_body(self) -> None:
        client = make_client(lambda request: httpx.Response(503, text="upstream down"))
        with pytest.raises(TransientNetworkError, match="upstream down"):
            client.append_blocks("p", [])


class TestSchemaCache:
    def test_schema_cached_for_five_minutes(self) -> None:
        now = [0.0]
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(200, json={"properties": {"Name": {"type": "title"}}})

        client = make_client(handler, clock=lambda: now[0])
        assert client.cached_schema() is None

        first = client.get_database_schema()
        now[0] = 299
        second = client.get_database_schema()
        now[0] = 301
        client.get_database_schema()

        assert first == second
        assert calls == [f"/v1/databases/{DATABASE_ID}"] * 2

    def test_schema_failure_returns_none(self) -> None:
        client = make_client(lambda request: httpx.Response(500, json={"code": "internal_server_error"}))
        assert client.get_database_schema() is None

    def test_fetch_database_raises(self) -> None:
        client = make_client(lambda request: httpx.Response(404, json={"code": "object_not_found"}))
        with pytest.raises(NotFoundError):
            client.fetch_database()

    def test_fetch_database_fills_cache(self) -> None:
        client = make_client(lambda request: httpx.Response(200, json={"title": [{"plain_text": "Chats"}]}))
        database = client.fetch_database()

        assert client.cached_schema() == database
        assert database_title(database) == "Chats"

    def test_database_title_fallback(self) -> None:
        assert database_title({"title": []}) == "Untitled"
        assert database_title({"title": [{"text": {"content": "Raw"}}]}) == "Raw"


class TestTokenProviders:
    def test_static_token(self) -> None:
        assert StaticTokenProvider("abc").get_active_token() == "abc"
        with pytest.raises(AuthRequiredError):
            StaticTokenProvider("").get_active_token()

    def test_stored_token_preferred(self, tmp_path: Path) -> None:
        with KeyValueStore(tmp_path / "state.db") as store:
            provider = StoredTokenProvider(store, fallback="integration")
            assert provider.get_active_token() == "integration"

            store.set(OAUTH_TOKEN_KEY, {"access_token": "oauth"})
            assert provider.get_active_token() == "oauth"

    def test_stored_token_missing(self, tmp_path: Path) -> None:
        with KeyValueStore(tmp_path / "state.db") as store:
            with pytest.raises(AuthRequiredError):
                StoredTokenProvider(store).get_active_token()


class TestDatabaseId:
    def test_valid_ids(self) -> None:
        assert is_valid_database_id(DATABASE_ID)
        assert is_valid_database_id("01234567-89ab-cdef-0123-456789abcdef")

    def test_invalid_ids(self) -> None:
        assert not is_valid_database_id("short")
        assert not is_valid_database_id("z" * 32)


class TestBuildProperties:
    """Tests for build_properties()."""

    def test_title_only_without_schema(self) -> None:
        detail = ThreadDetail(id="c1", title="Hello", updated_at="2024-05-01T10:00:00Z")
        assert build_properties(detail, None, "grok") == {
            "title": {"title": [{"type": "text", "text": {"content": "Hello"}}]}
        }

    def test_fills_known_columns(self) -> None:
        detail = ThreadDetail(id="c1", title="Hello", updated_at="2024-05-01T10:00:00Z")
        schema = {"properties": {"Name": {}, "URL": {}, "Chat Time": {}, "Platform": {}, "Tags": {}}}

        properties = build_properties(detail, schema, "grok")

        assert properties["URL"] == {"url": "https://grok.com/chat/c1"}
        assert properties["Chat Time"] == {"date": {"start": "2024-05-01T10:00:00+00:00"}}
        assert properties["Platform"] == {"select": {"name": "grok"}}
        assert properties["Tags"] == {"multi_select": [{"name": "grok"}]}

    def test_skips_missing_columns_and_bad_dates(self) -> None:
        detail = ThreadDetail(id="c1", title="", updated_at="yesterday")
        schema = {"properties": {"Chat Time": {}}}

        properties = build_properties(detail, schema, "gemini")

        assert "Chat Time" not in properties
        assert "URL" not in properties
        assert properties["title"]["title"][0]["text"]["content"] == "Untitled Chat"
