"""Configuration loading from environment variables and supermemory.{toml,jsonc,json}."""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.supermemory.ai"
_CONFIG_FILENAMES = ("supermemory.toml", "supermemory.jsonc", "supermemory.json")

# Documented (camelCase) option names -> dataclass fields
_FILE_KEYS = {
    "apiKey": "api_key",
    "apiUrl": "api_url",
    "similarityThreshold": "similarity_threshold",
    "maxMemories": "max_memories",
    "maxProjectMemories": "max_project_memories",
    "maxProfileItems": "max_profile_items",
    "injectProfile": "inject_profile",
    "containerTagPrefix": "container_tag_prefix",
    "debug": "debug",
    "allowPrivateContent": "allow_private_content",
    "email": "email",
    "timeout": "timeout",
    "logFile": "log_file",
}


@dataclass
class SupermemoryConfig:
    """Top-level configuration for the memory tools and server."""

    api_key: str | None = None
    api_url: str = DEFAULT_API_URL
    similarity_threshold: float = 0.6
    max_memories: int = 5
    max_project_memories: int = 10
    max_profile_items: int = 5
    inject_profile: bool = True
    container_tag_prefix: str = "kimi"
    debug: bool = False
    allow_private_content: bool = False
    email: str | None = None
    timeout: float = 30.0
    log_file: Path = field(default_factory=lambda: Path.home() / ".kimi-supermemory.log")


def config_dir() -> Path:
    """Return ~/.config/kimi, falling back to the legacy ~/.kimi if only that exists."""
    xdg_dir = Path.home() / ".config" / "kimi"
    legacy_dir = Path.home() / ".kimi"
    if xdg_dir.exists():
        return xdg_dir
    if legacy_dir.exists():
        return legacy_dir
    return xdg_dir


def _strip_json_comments(text: str) -> str:
    text = re.sub(r"/\*[\s\S]*?\*/", "", text)
    return re.sub(r"^\s*//.*$", "", text, flags=re.MULTILINE)


def _read_config_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".toml":
        return tomllib.loads(text)
    return json.loads(_strip_json_comments(text))


def _normalize_keys(data: dict) -> dict:
    normalized: dict = {}
    for key, value in data.items():
        name = _FILE_KEYS.get(key, key)
        if name in SupermemoryConfig.__dataclass_fields__:
            normalized[name] = value
        else:
            logger.debug("Ignoring unknown config key: %s", key)
    return normalized


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(config_path: Path | None = None) -> SupermemoryConfig:
    """Load configuration from environment variables and an optional config file.

    Priority: environment variables > config file > defaults.
    A file that cannot be parsed is skipped with a warning.
    """
    candidates = [config_path] if config_path else [config_dir() / n for n in _CONFIG_FILENAMES]

    file_data: dict = {}
    for candidate in candidates:
        if not candidate.exists():
            continue
        try:
            file_data = _normalize_keys(_read_config_file(candidate))
        except (OSError, ValueError, tomllib.TOMLDecodeError) as e:
            logger.warning("Skipping unreadable config %s: %s", candidate, e)
            continue
        logger.debug("Loaded config from %s", candidate)
        break
    else:
        logger.debug("No config file found, using defaults")

    defaults = SupermemoryConfig()
    log_file = file_data.get("log_file")

    return SupermemoryConfig(
        api_key=os.getenv("SUPERMEMORY_API_KEY") or file_data.get("api_key"),
        api_url=os.getenv("SUPERMEMORY_API_URL") or file_data.get("api_url", defaults.api_url),
        similarity_threshold=float(
            file_data.get("similarity_threshold", defaults.similarity_threshold)
        ),
        max_memories=int(file_data.get("max_memories", defaults.max_memories)),
        max_project_memories=int(
            file_data.get("max_project_memories", defaults.max_project_memories)
        ),
        max_profile_items=int(file_data.get("max_profile_items", defaults.max_profile_items)),
        inject_profile=bool(file_data.get("inject_profile", defaults.inject_profile)),
        container_tag_prefix=file_data.get("container_tag_prefix", defaults.container_tag_prefix),
        debug=_env_bool("SUPERMEMORY_DEBUG", bool(file_data.get("debug", defaults.debug))),
        allow_private_content=bool(
            file_data.get("allow_private_content", defaults.allow_private_content)
        ),
        email=os.getenv("KIMI_EMAIL") or file_data.get("email"),
        timeout=float(os.getenv("SUPERMEMORY_TIMEOUT", file_data.get("timeout", defaults.timeout))),
        log_file=Path(log_file).expanduser() if log_file else defaults.log_file,
    )
