"""Supermemory REST client.

Every call goes through call_with_timeout with the same budget. One
aiohttp session per client; use it as an async context manager:

    async with SupermemoryClient(api_key) as client:
        await client.search("auth flow", tags.project)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import aiohttp

from kimi_supermemory.config import DEFAULT_API_URL
from kimi_supermemory.errors import AuthError, UpstreamError
from kimi_supermemory.memory.base import (
    AddResult,
    ProfileResult,
    SearchHit,
    SearchResponse,
    normalize_facts,
    normalize_hits,
)
from kimi_supermemory.memory.timeout import DEFAULT_TIMEOUT, call_with_timeout

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "sm_"
SOURCE_TAG = "kimi-cli-plugin"


def validate_api_key(api_key: str | None) -> str:
    if not api_key:
        raise AuthError(
            "SUPERMEMORY_API_KEY environment variable is not set. "
            "Get an API key from https://console.supermemory.ai"
        )
    if not api_key.startswith(API_KEY_PREFIX):
        raise AuthError(f'Invalid API key format. Should start with "{API_KEY_PREFIX}"')
    return api_key


def _search_response(payload: dict, scope: str | None = None) -> SearchResponse:
    hits = normalize_hits(payload.get("results"), scope)
    return SearchResponse(
        hits=hits,
        total=int(payload.get("total", len(hits)) or 0),
        timing=payload.get("timing"),
    )


# Deferred session closes, kept referenced until they finish.
_closing: set[asyncio.Future] = set()


async def _close_when_idle(session: aiohttp.ClientSession, inflight: set[asyncio.Future]) -> None:
    await asyncio.wait(inflight)
    await session.close()
    logger.debug("Closed session after %d outstanding request(s) finished", len(inflight))


class SupermemoryClient:
    """Async client for the hosted memory store.

    A request that outlives its timeout budget keeps running on the client's
    session. close() returns at once but leaves the session open until every
    such request has finished; `closing` is the pending close, if any.
    """

    def __init__(
        self,
        api_key: str | None,
        api_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._api_key = validate_api_key(api_key)
        self.api_url = (api_url or DEFAULT_API_URL).rstrip("/")
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None
        self._inflight: set[asyncio.Future] = set()
        self.closing: asyncio.Future | None = None

    async def __aenter__(self) -> SupermemoryClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        session, self._session = self._session, None
        if session is None or session.closed:
            return
        if self._inflight:
            self.closing = asyncio.ensure_future(_close_when_idle(session, set(self._inflight)))
            _closing.add(self.closing)
            self.closing.add_done_callback(_closing.discard)
            return
        await session.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                }
            )
        return self._session

    # ── Transport ─────────────────────────────────────────────

    async def _request(
        self,
        session: aiohttp.ClientSession,
        method: str,
        path: str,
        payload: dict | None = None,
    ) -> dict:
        url = f"{self.api_url}{path}"
        logger.debug("%s %s", method, path)
        try:
            async with session.request(method, url, json=payload) as resp:
                if resp.status >= 400:
                    detail = (await resp.text()).strip()
                    raise UpstreamError(
                        f"Supermemory {method} {path} failed ({resp.status}): {detail or resp.reason}",
                        status=resp.status,
                    )
                if resp.status == 204 or resp.content_length == 0:
                    return {}
                try:
                    data = await resp.json(content_type=None)
                except ValueError as e:
                    raise UpstreamError(
                        f"Supermemory {method} {path} returned a non-JSON body", status=resp.status
                    ) from e
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Supermemory {method} {path} failed: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise UpstreamError(
                f"Supermemory {method} {path} returned {type(data).__name__}, expected an object"
            )
        return data

    async def _call(self, method: str, path: str, payload: dict | None = None) -> dict:
        task = asyncio.ensure_future(self._request(self._get_session(), method, path, payload))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await call_with_timeout(task, self.timeout)

    # ── Store operations ──────────────────────────────────────

    async def add_memory(
        self,
        content: str,
        container_tag: str,
        metadata: dict[str, Any] | None = None,
        custom_id: str | None = None,
    ) -> AddResult:
        payload: dict[str, Any] = {
            "content": content,
            "containerTag": container_tag,
            "metadata": {"sm_source": SOURCE_TAG, **(metadata or {})},
        }
        if custom_id:
            payload["customId"] = custom_id
        result = await self._call("POST", "/v3/documents", payload)
        memory_id = result.get("id")
        if not memory_id:
            raise UpstreamError("Supermemory did not return an id for the stored memory")
        return AddResult(id=memory_id, status=result.get("status"), container_tag=container_tag)

    async def search(
        self, query: str, container_tag: str, limit: int = 10, search_mode: str = "hybrid"
    ) -> SearchResponse:
        result = await self._call(
            "POST",
            "/v4/search",
            {"q": query, "containerTag": container_tag, "limit": limit, "searchMode": search_mode},
        )
        return _search_response(result)

    async def get_profile(self, container_tag: str, query: str | None = None) -> ProfileResult:
        payload: dict[str, Any] = {"containerTag": container_tag}
        if query:
            payload["q"] = query
        result = await self._call("POST", "/v4/profile", payload)
        profile = result.get("profile") or {}
        search_results = result.get("searchResults")
        return ProfileResult(
            static=normalize_facts(profile.get("static"), "static"),
            dynamic=normalize_facts(profile.get("dynamic"), "dynamic"),
            search_results=_search_response(search_results) if search_results else None,
        )

    async def list_memories(self, container_tag: str, limit: int = 20) -> list[SearchHit]:
        # containerTags must be a list; a bare string is rejected with a 400
        result = await self._call(
            "POST",
            "/v3/documents/list",
            {"containerTags": [container_tag], "limit": limit, "order": "desc", "sort": "createdAt"},
        )
        records = result.get("memories") or result.get("documents") or result.get("results") or []
        return normalize_hits(records)

    async def delete_memory(self, memory_id: str) -> Any:
        return await self._call("DELETE", f"/v3/documents/{quote(memory_id, safe='')}")
