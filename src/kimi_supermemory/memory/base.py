"""Memory store protocol and shared types."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, Union, runtime_checkable

Scope = Literal["user", "project"]
SCOPES: tuple[str, ...] = ("user", "project")

MEMORY_TYPES: tuple[str, ...] = (
    "project-config",
    "architecture",
    "error-solution",
    "preference",
    "learned-pattern",
    "conversation",
)

# Field names a store payload may keep its text under, in priority order.
# Store API versions disagree on this; keep every accessor here.
TEXT_FIELDS: tuple[str, ...] = ("content", "memory", "chunk", "context")


def extract_text(item: Any, fields: Sequence[str] = TEXT_FIELDS) -> str | None:
    """Return the display text of a raw store item, or None if it has none."""
    if isinstance(item, str):
        text = item
    elif isinstance(item, Mapping):
        text = next((item[f] for f in fields if isinstance(item.get(f), str) and item[f].strip()), "")
    else:
        return None
    text = text.strip()
    return text or None


@dataclass(frozen=True)
class ScopeTags:
    """Container tags for the two memory scopes."""

    user: str
    project: str

    def for_scope(self, scope: str) -> str:
        return self.user if scope == "user" else self.project


@dataclass
class MemoryRecord:
    """A memory as handed to the store on add."""

    content: str
    container_tag: str
    metadata: dict[str, Any] = field(default_factory=dict)
    custom_id: str | None = None


@dataclass(frozen=True)
class RawText:
    """Profile fact the store returned as a bare string."""

    text: str
    kind: Literal["static", "dynamic"] = "static"

    @property
    def content(self) -> str:
        return self.text


@dataclass(frozen=True)
class FactWithContent:
    """Profile fact the store returned as an object with a content field."""

    content: str
    kind: Literal["static", "dynamic"] = "static"


ProfileFact = Union[RawText, FactWithContent]


def normalize_fact(raw: Any, kind: Literal["static", "dynamic"]) -> ProfileFact | None:
    """Normalize one raw profile fact. Facts without text are dropped (None)."""
    if isinstance(raw, (RawText, FactWithContent)):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        return RawText(text, kind) if text else None
    if isinstance(raw, Mapping):
        text = extract_text(raw)
        return FactWithContent(text, kind) if text else None
    return None


def normalize_facts(raw: Any, kind: Literal["static", "dynamic"]) -> list[ProfileFact]:
    facts = (normalize_fact(item, kind) for item in (raw or []))
    return [f for f in facts if f is not None]


@dataclass
class SearchHit:
    """One result of a store search or listing."""

    id: str | None
    text: str
    similarity: float | None = None
    title: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    scope: str | None = None

    @classmethod
    def from_raw(cls, raw: Any, scope: str | None = None) -> SearchHit | None:
        """Build a hit from a store payload item, or None if it carries no text."""
        if isinstance(raw, SearchHit):
            return raw
        text = extract_text(raw)
        if text is None:
            return None
        if not isinstance(raw, Mapping):
            return cls(id=None, text=text, scope=scope)
        similarity = raw.get("similarity")
        return cls(
            id=raw.get("id"),
            text=text,
            similarity=float(similarity) if similarity is not None else None,
            title=raw.get("title"),
            metadata=dict(raw.get("metadata") or {}),
            scope=scope,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "content": self.text}
        if self.similarity is not None:
            data["similarity"] = self.similarity
        if self.title:
            data["title"] = self.title
        if self.scope:
            data["scope"] = self.scope
        if self.metadata:
            data["metadata"] = self.metadata
        return data


def normalize_hits(raw: Any, scope: str | None = None) -> list[SearchHit]:
    hits = (SearchHit.from_raw(item, scope) for item in (raw or []))
    return [h for h in hits if h is not None]


@dataclass
class SearchResponse:
    hits: list[SearchHit] = field(default_factory=list)
    total: int = 0
    timing: float | None = None


@dataclass
class ProfileResult:
    static: list[ProfileFact] = field(default_factory=list)
    dynamic: list[ProfileFact] = field(default_factory=list)
    search_results: SearchResponse | None = None


@dataclass
class AddResult:
    id: str
    status: str | None = None
    container_tag: str | None = None


@dataclass
class ToolResult:
    """Uniform response for every memory tool call."""

    success: bool
    message: str = ""
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> ToolResult:
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        payload: dict[str, Any] = {"success": True, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload


@runtime_checkable
class MemoryBackend(Protocol):
    """Operations the tools consume from the hosted memory store."""

    async def add_memory(
        self,
        content: str,
        container_tag: str,
        metadata: dict[str, Any] | None = None,
        custom_id: str | None = None,
    ) -> AddResult: ...

    async def search(
        self, query: str, container_tag: str, limit: int = 10, search_mode: str = "hybrid"
    ) -> SearchResponse: ...

    async def get_profile(self, container_tag: str, query: str | None = None) -> ProfileResult: ...

    async def list_memories(self, container_tag: str, limit: int = 20) -> list[SearchHit]: ...

    async def delete_memory(self, memory_id: str) -> Any: ...
