"""Entry point: python -m kimi_supermemory [serve|context|help]

- No args / "serve": MCP server on stdio (what the agent launches)
- "context [cwd]":   Print the session context block for a directory
- "help":            Print the memory tool usage guide
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from kimi_supermemory.config import SupermemoryConfig, load_config


def _setup_logging(config: SupermemoryConfig) -> None:
    # stdout is the protocol channel; logs go to stderr and the log file only
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    try:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))
    except OSError as e:
        print(f"Cannot open log file {config.log_file}: {e}", file=sys.stderr)

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _run_serve() -> None:
    """MCP server mode."""
    config = load_config()
    _setup_logging(config)

    from kimi_supermemory.server import MemoryServer
    from kimi_supermemory.tools.memory_tools import MemoryTools, get_memory_tools

    if not config.api_key:
        logging.getLogger(__name__).error("SUPERMEMORY_API_KEY not set")

    server = MemoryServer(get_memory_tools(MemoryTools(config)))
    try:
        asyncio.run(server.serve_stdio())
    except KeyboardInterrupt:
        pass


def _run_context(cwd: str | None) -> None:
    config = load_config()
    _setup_logging(config)

    from kimi_supermemory.errors import SupermemoryError
    from kimi_supermemory.tools.memory_tools import MemoryTools

    try:
        print(asyncio.run(MemoryTools(config).get_context(cwd)))
    except SupermemoryError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _run_help() -> None:
    from kimi_supermemory.tools.memory_tools import HELP

    print(json.dumps(HELP, indent=2))


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "serve"

    if cmd == "serve":
        _run_serve()
    elif cmd == "context":
        _run_context(sys.argv[2] if len(sys.argv) > 2 else None)
    elif cmd == "help":
        _run_help()
    else:
        print("Usage: python -m kimi_supermemory [serve|context [cwd]|help]")
        print("  serve    - MCP server on stdio (default)")
        print("  context  - Print session context for a directory")
        print("  help     - Print memory tool usage guide")
        sys.exit(1)


if __name__ == "__main__":
    main()
