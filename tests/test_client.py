"""Tests for the Supermemory REST client against an in-process aiohttp server."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from kimi_supermemory.config import SupermemoryConfig
from kimi_supermemory.errors import AuthError, StoreTimeoutError, UpstreamError
from kimi_supermemory.memory.base import FactWithContent, RawText
from kimi_supermemory.memory.client import SOURCE_TAG, SupermemoryClient
from kimi_supermemory.tools.memory_tools import MemoryTools

API_KEY = "sm_test_key_12345"


class FakeSupermemory:
    """Minimal stand-in for the hosted API; records every request body."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, dict | None]] = []
        self.raw_paths: list[str] = []
        self.finished: list[str] = []
        self.delay = 0.0
        self.list_reply: web.Response | None = None

    async def _record(self, request: web.Request) -> dict | None:
        body = await request.json() if request.can_read_body else None
        self.requests.append((request.method, request.path, body))
        self.raw_paths.append(request.raw_path)
        assert request.headers["Authorization"] == f"Bearer {API_KEY}"
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished.append(request.raw_path)
        return body

    async def add(self, request: web.Request) -> web.Response:
        await self._record(request)
        return web.json_response({"id": "mem_123", "status": "queued"})

    async def search(self, request: web.Request) -> web.Response:
        await self._record(request)
        return web.json_response({
            "results": [
                {"id": "1", "memory": "Uses PostgreSQL", "similarity": 0.91},
                {"id": "2", "chunk": "JWT auth", "similarity": 0.7, "title": "auth"},
                {"id": "3"},
            ],
            "total": 3,
            "timing": 12,
        })

    async def profile(self, request: web.Request) -> web.Response:
        await self._record(request)
        return web.json_response({
            "profile": {"static": ["Prefers TypeScript"], "dynamic": [{"content": "Debugging CI"}]},
            "searchResults": {"results": [{"id": "9", "memory": "Likes uv", "similarity": 0.8}], "total": 1},
        })

    async def list(self, request: web.Request) -> web.Response:
        await self._record(request)
        if self.list_reply is not None:
            return self.list_reply
        return web.json_response({"memories": [{"id": "a", "content": "Newest"}, {"id": "b", "content": "Older"}]})

    async def delete(self, request: web.Request) -> web.Response:
        await self._record(request)
        if request.match_info["memory_id"] == "missing":
            return web.json_response({"error": "Document not found"}, status=404)
        return web.Response(status=204)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/v3/documents", self.add)
        app.router.add_post("/v4/search", self.search)
        app.router.add_post("/v4/profile", self.profile)
        app.router.add_post("/v3/documents/list", self.list)
        app.router.add_delete("/v3/documents/{memory_id:.+}", self.delete)
        return app


@pytest.fixture
def fake() -> FakeSupermemory:
    return FakeSupermemory()


class TestValidation:
    def test_missing_key(self):
        with pytest.raises(AuthError, match="SUPERMEMORY_API_KEY"):
            SupermemoryClient(None)

    def test_malformed_key(self):
        with pytest.raises(AuthError, match="sm_"):
            SupermemoryClient("sk-not-supermemory")


class TestOperations:
    @pytest.mark.asyncio
    async def test_add_memory(self, fake: FakeSupermemory):
        async with TestServer(fake.app()) as server:
            async with SupermemoryClient(API_KEY, str(server.make_url(""))) as client:
                result = await client.add_memory(
                    "Test memory", "kimi_project_test", {"type": "preference"}, custom_id="c1"
                )

        assert result.id == "mem_123"
        assert result.container_tag == "kimi_project_test"
        method, path, body = fake.requests[0]
        assert (method, path) == ("POST", "/v3/documents")
        assert body["content"] == "Test memory"
        assert body["containerTag"] == "kimi_project_test"
        assert body["metadata"] == {"sm_source": SOURCE_TAG, "type": "preference"}
        assert body["customId"] == "c1"

    @pytest.mark.asyncio
    async def test_search(self, fake: FakeSupermemory):
        async with TestServer(fake.app()) as server:
            async with SupermemoryClient(API_KEY, str(server.make_url(""))) as client:
                response = await client.search("database", "kimi_user_abc", limit=5)

        _, path, body = fake.requests[0]
        assert path == "/v4/search"
        assert body == {"q": "database", "containerTag": "kimi_user_abc", "limit": 5, "searchMode": "hybrid"}
        assert [h.text for h in response.hits] == ["Uses PostgreSQL", "JWT auth"]
        assert response.hits[0].similarity == 0.91
        assert response.hits[1].title == "auth"
        assert response.total == 3

    @pytest.mark.asyncio
    async def test_get_profile(self, fake: FakeSupermemory):
        async with TestServer(fake.app()) as server:
            async with SupermemoryClient(API_KEY, str(server.make_url(""))) as client:
                profile = await client.get_profile("kimi_user_abc", "myproject")

        _, path, body = fake.requests[0]
        assert path == "/v4/profile"
        assert body == {"containerTag": "kimi_user_abc", "q": "myproject"}
        assert profile.static == [RawText("Prefers TypeScript", "static")]
        assert profile.dynamic == [FactWithContent("Debugging CI", "dynamic")]
        assert profile.search_results.hits[0].text == "Likes uv"

    @pytest.mark.asyncio
    async def test_list_sends_tags_as_list(self, fake: FakeSupermemory):
        async with TestServer(fake.app()) as server:
            async with SupermemoryClient(API_KEY, str(server.make_url(""))) as client:
                records = await client.list_memories("kimi_project_abc123", limit=10)

        _, path, body = fake.requests[0]
        assert path == "/v3/documents/list"
        assert body["containerTags"] == ["kimi_project_abc123"]
        assert body["order"] == "desc"
        assert body["limit"] == 10
        assert [r.text for r in records] == ["Newest", "Older"]
        assert records[0].similarity is None

    @pytest.mark.asyncio
    async def test_delete(self, fake: FakeSupermemory):
        async with TestServer(fake.app()) as server:
            async with SupermemoryClient(API_KEY, str(server.make_url(""))) as client:
                await client.delete_memory("mem_123")

        assert fake.requests[0][:2] == ("DELETE", "/v3/documents/mem_123")

    @pytest.mark.asyncio
    async def test_delete_unknown_id_is_upstream_error(self, fake: FakeSupermemory):
        async with TestServer(fake.app()) as server:
            async with SupermemoryClient(API_KEY, str(server.make_url(""))) as client:
                with pytest.raises(UpstreamError) as exc_info:
                    await client.delete_memory("missing")

        assert exc_info.value.status == 404
        assert "Document not found" in str(exc_info.value)


class TestDeleteEscaping:
    @pytest.mark.asyncio
    async def test_slash_in_id_stays_in_one_segment(self, fake: FakeSupermemory):
        async with TestServer(fake.app()) as server:
            async with SupermemoryClient(API_KEY, str(server.make_url(""))) as client:
                await client.delete_memory("a/b")

        assert fake.raw_paths == ["/v3/documents/a%2Fb"]

    @pytest.mark.asyncio
    async def test_query_characters_are_escaped(self, fake: FakeSupermemory):
        async with TestServer(fake.app()) as server:
            async with SupermemoryClient(API_KEY, str(server.make_url(""))) as client:
                await client.delete_memory("x?force=1")

        raw_path = fake.raw_paths[0]
        assert raw_path.startswith("/v3/documents/x%3F")
        assert "?" not in raw_path


class TestFailures:
    @pytest.mark.asyncio
    async def test_timeout(self, fake: FakeSupermemory):
        fake.delay = 0.3
        async with TestServer(fake.app()) as server:
            async with SupermemoryClient(API_KEY, str(server.make_url("")), timeout=0.05) as client:
                with pytest.raises(StoreTimeoutError, match="Timeout"):
                    await client.search("slow", "kimi_project_test")
            await asyncio.wait_for(client.closing, timeout=5)

    @pytest.mark.asyncio
    async def test_unreachable_host(self):
        async with SupermemoryClient(API_KEY, "http://127.0.0.1:1") as client:
            with pytest.raises(UpstreamError):
                await client.list_memories("kimi_project_test")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text, content_type, message",
        [
            ("<html>gateway</html>", "text/html", "non-JSON body"),
            ('[{"id": "a"}]', "application/json", "expected an object"),
        ],
    )
    async def test_malformed_body(self, fake: FakeSupermemory, text, content_type, message):
        fake.list_reply = web.Response(text=text, content_type=content_type)
        async with TestServer(fake.app()) as server:
            async with SupermemoryClient(API_KEY, str(server.make_url(""))) as client:
                with pytest.raises(UpstreamError, match=message):
                    await client.list_memories("kimi_project_test")

    @pytest.mark.asyncio
    async def test_malformed_body_is_a_tool_failure(self, fake: FakeSupermemory, tmp_path: Path):
        fake.list_reply = web.Response(text="<html>gateway</html>", content_type="text/html")
        async with TestServer(fake.app()) as server:
            config = SupermemoryConfig(
                api_key=API_KEY, api_url=str(server.make_url("")), email="dev@example.com"
            )
            tools = MemoryTools(config, cwd=str(tmp_path))
            result = await tools.handle({"mode": "list"})

        assert result.success is False
        assert "non-JSON body" in result.error


class TestTimedOutRequests:
    """A request past its budget is abandoned, not aborted."""

    @pytest.mark.asyncio
    async def test_request_runs_to_completion_after_handle_returns(
        self, fake: FakeSupermemory, tmp_path: Path, caplog
    ):
        fake.delay = 0.3
        clients: list[SupermemoryClient] = []

        async with TestServer(fake.app()) as server:

            def factory(config: SupermemoryConfig) -> SupermemoryClient:
                client = SupermemoryClient(config.api_key, str(server.make_url("")), timeout=0.05)
                clients.append(client)
                return client

            config = SupermemoryConfig(api_key=API_KEY, email="dev@example.com")
            tools = MemoryTools(config, cwd=str(tmp_path), client_factory=factory)

            with caplog.at_level(logging.DEBUG, logger="kimi_supermemory"):
                result = await tools.handle({"mode": "forget", "memoryId": "m1"})

                assert result.success is False
                assert "Timeout" in result.error
                assert fake.finished == []
                assert clients[0].closing is not None

                await asyncio.wait_for(clients[0].closing, timeout=5)

        assert fake.finished == ["/v3/documents/m1"]
        assert "finished after timeout" in caplog.text
        assert "failed after timeout" not in caplog.text

    @pytest.mark.asyncio
    async def test_close_without_outstanding_requests_is_immediate(self, fake: FakeSupermemory):
        async with TestServer(fake.app()) as server:
            client = SupermemoryClient(API_KEY, str(server.make_url("")))
            await client.list_memories("kimi_project_test")
            await client.close()

        assert client.closing is None
