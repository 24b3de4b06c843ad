"""Memory tools exposed to the coding agent.

One mode-tagged entry point (`MemoryTools.handle`) backs every tool. Each
request resolves its own scope tags and opens its own store client; nothing
is shared between calls except configuration.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from kimi_supermemory.config import SupermemoryConfig
from kimi_supermemory.errors import PrivacyError, SupermemoryError, ValidationError
from kimi_supermemory.memory.base import (
    MEMORY_TYPES,
    SCOPES,
    MemoryBackend,
    MemoryRecord,
    ProfileFact,
    ProfileResult,
    ScopeTags,
    SearchHit,
    ToolResult,
)
from kimi_supermemory.memory.client import SupermemoryClient, validate_api_key
from kimi_supermemory.memory.context import NO_MEMORIES_PLACEHOLDER, format_context
from kimi_supermemory.memory.privacy import is_fully_private, strip_private_content
from kimi_supermemory.memory.tags import derive_tags, directory_name

logger = logging.getLogger(__name__)

MODES = ("add", "search", "profile", "list", "forget", "help")
REQUIRED_ARGS = {"add": "content", "search": "query", "forget": "memoryId"}
DEFAULT_SEARCH_LIMIT = 10
DEFAULT_LIST_LIMIT = 20

ClientFactory = Callable[[SupermemoryConfig], MemoryBackend]
ToolHandler = Callable[[dict[str, Any]], Awaitable[ToolResult]]

HELP = {
    "commands": [
        {"command": "add", "description": "Store a new memory", "args": ["content", "type?", "scope?"]},
        {"command": "search", "description": "Search memories (both scopes unless scope is given)", "args": ["query", "scope?", "limit?"]},
        {"command": "profile", "description": "View user profile facts", "args": ["query?"]},
        {"command": "list", "description": "List recent memories", "args": ["scope?", "limit?"]},
        {"command": "forget", "description": "Remove a memory", "args": ["memoryId"]},
        {"command": "help", "description": "Show this guide", "args": []},
    ],
    "scopes": {
        "user": "Cross-project preferences and knowledge",
        "project": "Project-specific knowledge (default)",
    },
    "types": list(MEMORY_TYPES),
    "privacy": "Wrap secrets in <private>...</private>; they are stored as [REDACTED].",
}


def _default_client_factory(config: SupermemoryConfig) -> SupermemoryClient:
    return SupermemoryClient(config.api_key, config.api_url, timeout=config.timeout)


async def _close(client: MemoryBackend) -> None:
    close = getattr(client, "close", None)
    if close and callable(close):
        await close()


def _positive_int(value: Any, name: str) -> None:
    if value is None:
        return
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or (isinstance(value, float) and not math.isfinite(value))
        or int(value) != value
    ):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if value < 1:
        raise ValidationError(f"{name} must be at least 1")


def _display(hit: SearchHit) -> dict[str, Any]:
    data = hit.to_dict()
    data["content"] = strip_private_content(hit.text)
    return data


def _redact_hit(hit: SearchHit) -> SearchHit:
    hit.text = strip_private_content(hit.text)
    return hit


def _redact_fact(fact: ProfileFact) -> ProfileFact:
    return type(fact)(strip_private_content(fact.content), fact.kind)


def _with_scope(hits: list[SearchHit], scope: str) -> list[SearchHit]:
    for hit in hits:
        hit.scope = scope
    return hits


def merge_by_similarity(results: list[list[SearchHit]], limit: int) -> list[SearchHit]:
    """Merge per-scope hit lists, highest similarity first; ties keep arrival order."""
    merged = [hit for hits in results for hit in hits]
    merged.sort(key=lambda h: h.similarity if h.similarity is not None else 0.0, reverse=True)
    return merged[:limit]


class MemoryTools:
    """Request router for the memory tools."""

    def __init__(
        self,
        config: SupermemoryConfig,
        cwd: str | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.config = config
        self.cwd = cwd
        self._client_factory = client_factory or _default_client_factory

    def _directory(self, cwd: str | None = None) -> str:
        return cwd or self.cwd or os.getcwd() or "/"

    def _tags(self, directory: str) -> ScopeTags:
        return derive_tags(self.config.container_tag_prefix, directory, email=self.config.email)

    def _open_client(self) -> MemoryBackend:
        validate_api_key(self.config.api_key)
        return self._client_factory(self.config)

    # ── Entry point ───────────────────────────────────────────

    async def handle(self, args: dict[str, Any] | None) -> ToolResult:
        """Validate, dispatch and shape one mode-tagged request.

        Every SupermemoryError (local validation, privacy, auth, timeout,
        upstream) comes back as a failed ToolResult rather than raising.
        """
        args = args or {}
        mode = args.get("mode")
        try:
            scope = self._validate(mode, args)
            if mode == "help":
                return ToolResult.ok("Supermemory Usage Guide", HELP)
            if mode == "add":
                self._check_privacy(args["content"])
            client = self._open_client()
            try:
                return await self._dispatch(client, mode, scope, args)
            finally:
                await _close(client)
        except SupermemoryError as e:
            logger.warning("supermemory %s failed: %s", mode, e)
            return ToolResult.fail(str(e))

    def _validate(self, mode: Any, args: dict[str, Any]) -> str | None:
        """Return the explicit scope (None if omitted); raise on bad input."""
        if not mode:
            raise ValidationError(f"mode parameter is required. Use one of: {', '.join(MODES)}")
        if mode not in MODES:
            raise ValidationError(f"Unknown mode: {mode}. Use one of: {', '.join(MODES)}")
        scope = args.get("scope")
        if scope is not None and scope not in SCOPES:
            raise ValidationError(f"Unknown scope: {scope}. Use 'user' or 'project'")
        required = REQUIRED_ARGS.get(mode)
        if required:
            value = args.get(required)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{required} parameter is required for {mode} mode")
        memory_type = args.get("type")
        if mode == "add" and memory_type is not None and memory_type not in MEMORY_TYPES:
            raise ValidationError(
                f"Unknown memory type: {memory_type}. Use one of: {', '.join(MEMORY_TYPES)}"
            )
        _positive_int(args.get("limit"), "limit")
        return scope

    def _check_privacy(self, content: str) -> None:
        if not self.config.allow_private_content and is_fully_private(content):
            raise PrivacyError("Cannot store content that is entirely private")

    async def _dispatch(
        self, client: MemoryBackend, mode: str, scope: str | None, args: dict[str, Any]
    ) -> ToolResult:
        tags = self._tags(self._directory())
        if mode == "add":
            return await self._add(client, tags, scope or "project", args)
        if mode == "search":
            return await self._search(client, tags, scope, args)
        if mode == "profile":
            return await self._profile(client, tags, args)
        if mode == "list":
            return await self._list(client, tags, scope or "project", args)
        return await self._forget(client, args)

    # ── Modes ─────────────────────────────────────────────────

    async def _add(
        self, client: MemoryBackend, tags: ScopeTags, scope: str, args: dict[str, Any]
    ) -> ToolResult:
        content = args["content"]
        if not self.config.allow_private_content:
            content = strip_private_content(content)
        metadata: dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat()}
        if args.get("type"):
            metadata["type"] = args["type"]
        record = MemoryRecord(content, tags.for_scope(scope), metadata, args.get("customId"))
        result = await client.add_memory(
            record.content, record.container_tag, record.metadata, record.custom_id
        )
        logger.info("Stored memory %s in %s scope", result.id, scope)
        return ToolResult.ok(
            f"Memory added to {scope} scope",
            {"id": result.id, "scope": scope, "type": args.get("type")},
        )

    async def _search(
        self, client: MemoryBackend, tags: ScopeTags, scope: str | None, args: dict[str, Any]
    ) -> ToolResult:
        query = args["query"]
        limit = int(args.get("limit") or DEFAULT_SEARCH_LIMIT)

        if scope:
            response = await client.search(query, tags.for_scope(scope), limit=limit)
            hits = _with_scope(response.hits, scope)[:limit]
            searched = f"{scope} scope"
        else:
            # Both legs are timed independently; either failing fails the search.
            user, project = await asyncio.gather(
                client.search(query, tags.user, limit=limit),
                client.search(query, tags.project, limit=limit),
            )
            hits = merge_by_similarity(
                [_with_scope(user.hits, "user"), _with_scope(project.hits, "project")], limit
            )
            searched = "user and project scopes"

        return ToolResult.ok(
            f"Found {len(hits)} memories in {searched}",
            {"query": query, "results": [_display(h) for h in hits]},
        )

    async def _profile(
        self, client: MemoryBackend, tags: ScopeTags, args: dict[str, Any]
    ) -> ToolResult:
        profile = await client.get_profile(tags.user, args.get("query") or None)
        data: dict[str, Any] = {
            "static": [_redact_fact(f).content for f in profile.static],
            "dynamic": [_redact_fact(f).content for f in profile.dynamic],
        }
        if profile.search_results:
            data["results"] = [_display(h) for h in profile.search_results.hits]
        return ToolResult.ok("User profile", data)

    async def _list(
        self, client: MemoryBackend, tags: ScopeTags, scope: str, args: dict[str, Any]
    ) -> ToolResult:
        limit = int(args.get("limit") or DEFAULT_LIST_LIMIT)
        records = (await client.list_memories(tags.for_scope(scope), limit=limit))[:limit]
        return ToolResult.ok(
            f"{len(records)} recent memories in {scope} scope",
            {"scope": scope, "memories": [_display(r) for r in records]},
        )

    async def _forget(self, client: MemoryBackend, args: dict[str, Any]) -> ToolResult:
        memory_id = args["memoryId"]
        await client.delete_memory(memory_id)
        logger.info("Deleted memory %s", memory_id)
        return ToolResult.ok(f"Memory {memory_id} removed", {"id": memory_id})

    # ── Session context ───────────────────────────────────────

    async def get_context(self, cwd: str | None = None, project_name: str | None = None) -> str:
        """Assembled context for a working directory, or the "no memories yet" placeholder.

        Raises SupermemoryError on auth, timeout or upstream failure.
        """
        directory = self._directory(cwd)
        name = project_name or directory_name(directory)
        tags = self._tags(directory)
        client = self._open_client()
        try:
            profile, project = await asyncio.gather(
                self._fetch_profile(client, tags, name),
                client.list_memories(tags.project, limit=self.config.max_project_memories),
            )
        finally:
            await _close(client)

        relevant: list[SearchHit] = []
        if profile and profile.search_results:
            relevant = [
                h
                for h in profile.search_results.hits
                if h.similarity is None or h.similarity >= self.config.similarity_threshold
            ]

        context = format_context(
            profile,
            [_redact_hit(h) for h in project],
            [_redact_hit(h) for h in relevant],
            max_profile_items=self.config.max_profile_items,
            max_project_items=self.config.max_project_memories,
            max_relevant_items=self.config.max_memories,
        )
        return context or NO_MEMORIES_PLACEHOLDER

    async def _fetch_profile(
        self, client: MemoryBackend, tags: ScopeTags, query: str
    ) -> ProfileResult | None:
        if not self.config.inject_profile:
            return None
        profile = await client.get_profile(tags.user, query)
        return ProfileResult(
            static=[_redact_fact(f) for f in profile.static],
            dynamic=[_redact_fact(f) for f in profile.dynamic],
            search_results=profile.search_results,
        )


def get_memory_tools(tools: MemoryTools) -> dict[str, ToolHandler]:
    """Return a dict of tool_name -> async callable for memory operations.

    `supermemory` takes an explicit mode; the per-mode tools fix it.
    """

    def for_mode(mode: str) -> ToolHandler:
        async def handler(args: dict[str, Any]) -> ToolResult:
            return await tools.handle({**(args or {}), "mode": mode})

        return handler

    async def get_context(args: dict[str, Any]) -> ToolResult:
        args = args or {}
        try:
            context = await tools.get_context(args.get("cwd") or None, args.get("projectName") or None)
        except SupermemoryError as e:
            logger.warning("supermemory get_context failed: %s", e)
            return ToolResult.fail(str(e))
        return ToolResult.ok(context)

    registry: dict[str, ToolHandler] = {"supermemory": tools.handle}
    for mode in MODES:
        registry[f"supermemory_{mode}"] = for_mode(mode)
    registry["supermemory_get_context"] = get_context
    return registry
