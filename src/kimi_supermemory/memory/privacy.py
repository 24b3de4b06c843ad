"""Redaction of <private>...</private> spans.

Unclosed markers are left as literal text.
"""

from __future__ import annotations

import re

REDACTED = "[REDACTED]"

_PRIVATE_RE = re.compile(r"<private>.*?</private>", re.IGNORECASE | re.DOTALL)


def contains_private_tag(content: str) -> bool:
    return _PRIVATE_RE.search(content) is not None


def strip_private_content(content: str) -> str:
    """Replace every closed private span with [REDACTED]."""
    return _PRIVATE_RE.sub(REDACTED, content)


def is_fully_private(content: str) -> bool:
    """True if nothing but a placeholder (or nothing) is left after redaction."""
    stripped = strip_private_content(content).strip()
    return stripped in ("", REDACTED)


def has_non_private_content(content: str) -> bool:
    stripped = strip_private_content(content).strip()
    return bool(stripped.replace(REDACTED, "").strip())
