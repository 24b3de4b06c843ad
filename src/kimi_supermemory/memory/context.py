"""Context assembly: profile facts, project knowledge and relevant memories in one block.

Layout (empty sections are left out entirely):

    [SUPERMEMORY]

    User Profile:
    - <static fact>

    Recent Context:
    - <dynamic fact, truncated>

    Project Knowledge:
    - [100%] <listed project memory>

    Relevant Memories:
    - [82%] <search hit>
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from kimi_supermemory.memory.base import (
    ProfileFact,
    ProfileResult,
    SearchHit,
    SearchResponse,
    normalize_facts,
    normalize_hits,
)

CONTEXT_HEADER = "[SUPERMEMORY]"
NO_MEMORIES_PLACEHOLDER = (
    f"{CONTEXT_HEADER}\n"
    "No previous memories found for this project. Memories will be saved as you work."
)

MAX_CONTEXT_ITEM_CHARS = 300
ELLIPSIS = "..."


def format_similarity(similarity: float | None, default: float = 0.0) -> int:
    """Similarity in [0, 1] as a whole percentage, rounding half up (0.825 -> 83)."""
    score = default if similarity is None else similarity
    # Go through the decimal repr so 0.825 rounds as written, not as its binary value.
    percent = Decimal(repr(float(score))) * 100
    return int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def truncate(text: str, limit: int = MAX_CONTEXT_ITEM_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + ELLIPSIS


def _as_profile(profile: Any) -> ProfileResult | None:
    if profile is None or isinstance(profile, ProfileResult):
        return profile
    if isinstance(profile, Mapping):
        # Raw payloads nest the fact lists under "profile"
        facts = profile.get("profile", profile) or {}
        return ProfileResult(
            static=normalize_facts(facts.get("static"), "static"),
            dynamic=normalize_facts(facts.get("dynamic"), "dynamic"),
        )
    raise TypeError(f"Unsupported profile payload: {type(profile).__name__}")


def _as_hits(results: Any) -> list[SearchHit]:
    if results is None:
        return []
    if isinstance(results, SearchResponse):
        return results.hits
    if isinstance(results, Mapping):
        for key in ("results", "memories", "documents"):
            if key in results:
                return normalize_hits(results[key])
        return []
    return normalize_hits(results)


def _fact_lines(facts: list[ProfileFact], limit: int, truncate_items: bool) -> list[str]:
    lines = []
    for fact in facts[:limit]:
        text = truncate(fact.content) if truncate_items else fact.content
        lines.append(f"- {text}")
    return lines


def _hit_lines(hits: list[SearchHit], limit: int, default_similarity: float) -> list[str]:
    return [
        f"- [{format_similarity(hit.similarity, default_similarity)}%] {hit.text}"
        for hit in hits[:limit]
    ]


def format_context(
    profile: ProfileResult | Mapping | None = None,
    project_memories: Any = None,
    relevant_memories: Any = None,
    *,
    max_profile_items: int = 5,
    max_project_items: int = 10,
    max_relevant_items: int = 5,
) -> str | None:
    """Compose the context block, or None if no section has anything to show.

    Project memories come from a listing, so a missing score counts as 100%.
    Relevant memories come from a search, so a missing score counts as 0%.
    """
    profile_result = _as_profile(profile)
    sections: list[tuple[str, list[str]]] = []

    if profile_result:
        sections.append(
            ("User Profile:", _fact_lines(profile_result.static, max_profile_items, False))
        )
        sections.append(
            ("Recent Context:", _fact_lines(profile_result.dynamic, max_profile_items, True))
        )
    sections.append(
        ("Project Knowledge:", _hit_lines(_as_hits(project_memories), max_project_items, 1.0))
    )
    sections.append(
        ("Relevant Memories:", _hit_lines(_as_hits(relevant_memories), max_relevant_items, 0.0))
    )

    parts = [CONTEXT_HEADER]
    for title, lines in sections:
        if lines:
            parts.append(f"\n{title}")
            parts.extend(lines)

    if len(parts) == 1:
        return None
    return "\n".join(parts)
