"""Container tags for user- and project-scoped memories.

Tags are content-addressed: the identity behind a tag is hashed, never
embedded. Format:

    {prefix}_user_{hash(actor identity)}
    {prefix}_project_{hash(normalized git remote)}   or   {prefix}_project_{dir name}
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from collections.abc import Callable, Mapping
from pathlib import Path

from kimi_supermemory.memory.base import ScopeTags

logger = logging.getLogger(__name__)

HASH_LENGTH = 17

RemoteLookup = Callable[[str], "str | None"]

_EMAIL_RE = re.compile(r"^\s*email\s*=\s*(.+)$", re.MULTILINE)
_URL_RE = re.compile(r"^\s*url\s*=\s*(.+)$", re.MULTILINE)


def short_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def _read_git_config(directory: str) -> str | None:
    path = Path(directory) / ".git" / "config"
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def get_git_email(directory: str) -> str | None:
    """Email from the repository's local .git/config, if set."""
    git_config = _read_git_config(directory)
    if git_config is None:
        return None
    match = _EMAIL_RE.search(git_config)
    return match.group(1).strip() if match else None


def get_git_remote_url(directory: str) -> str | None:
    """First remote url in .git/config, or None if not a repo / no remote."""
    git_config = _read_git_config(directory)
    if git_config is None:
        return None
    match = _URL_RE.search(git_config)
    return match.group(1).strip() if match else None


def normalize_git_url(url: str) -> str:
    """Canonical host/path form shared by SSH and HTTPS remotes, without credentials."""
    normalized = url.strip()
    normalized = re.sub(r"https?://", "", normalized, count=1)
    normalized = re.sub(r"^git@", "", normalized)
    # SSH host:path -> host/path
    normalized = normalized.replace(":", "/")
    normalized = re.sub(r"[^@]+@", "", normalized, count=1)
    normalized = re.sub(r"\.git$", "", normalized)
    normalized = re.sub(r"/+", "/", normalized)
    return re.sub(r"/$", "", normalized)


def actor_identity(
    directory: str, email: str | None = None, env: Mapping[str, str] | None = None
) -> str:
    """Configured email > local git email > $USER > $USERNAME > "anonymous"."""
    env = os.environ if env is None else env
    return (
        email
        or get_git_email(directory)
        or env.get("USER")
        or env.get("USERNAME")
        or "anonymous"
    )


def directory_name(directory: str) -> str:
    return directory.rstrip("/").split("/")[-1] or "unknown"


def get_user_tag(
    prefix: str,
    directory: str,
    email: str | None = None,
    env: Mapping[str, str] | None = None,
) -> str:
    return f"{prefix}_user_{short_hash(actor_identity(directory, email, env))}"


def get_project_tag(prefix: str, directory: str, get_remote: RemoteLookup | None = None) -> str:
    remote = (get_remote or get_git_remote_url)(directory)
    if remote:
        return f"{prefix}_project_{short_hash(normalize_git_url(remote))}"
    return f"{prefix}_project_{directory_name(directory)}"


def derive_tags(
    prefix: str,
    directory: str,
    email: str | None = None,
    env: Mapping[str, str] | None = None,
    get_remote: RemoteLookup | None = None,
) -> ScopeTags:
    """Both scope tags for a working directory. Pure apart from reading .git/config."""
    tags = ScopeTags(
        user=get_user_tag(prefix, directory, email, env),
        project=get_project_tag(prefix, directory, get_remote),
    )
    logger.debug("Scope tags for %s: %s", directory, tags)
    return tags
