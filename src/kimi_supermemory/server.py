"""MCP server exposing the kimi-supermemory tools to coding agents.

Protocol: JSON-RPC 2.0 over stdio (NDJSON). stdout carries protocol
messages only; logs go to stderr and the log file.

Usage:
  python -m kimi_supermemory serve
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from kimi_supermemory.memory.base import MEMORY_TYPES, ToolResult
from kimi_supermemory.tools.memory_tools import MODES, ToolHandler

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────

SERVER_NAME = "kimi-supermemory"
SERVER_VERSION = "1.0.0"
PROTOCOL_VERSION = "2024-11-05"

# ── Tool definitions ─────────────────────────────────────────

_SCOPE = {
    "type": "string",
    "enum": ["user", "project"],
    "description": "user = cross-project, project = this repository (default)",
}
_LIMIT = {"type": "integer", "minimum": 1, "description": "Maximum number of results"}
_CONTENT = {"type": "string", "description": "Memory text. Wrap secrets in <private>...</private>"}
_TYPE = {"type": "string", "enum": list(MEMORY_TYPES), "description": "Kind of memory"}
_QUERY = {"type": "string", "description": "What to look for"}
_MEMORY_ID = {"type": "string", "description": "ID of the memory to remove"}


def _schema(properties: dict, required: list[str] | None = None) -> dict:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


TOOLS = [
    {
        "name": "supermemory",
        "description": (
            "Persistent memory across sessions. Modes: add (save a decision, pattern or "
            "preference), search (recall past work), profile (user facts), list (recent "
            "memories), forget (remove by id), help."
        ),
        "inputSchema": _schema(
            {
                "mode": {"type": "string", "enum": list(MODES)},
                "content": _CONTENT,
                "query": _QUERY,
                "type": _TYPE,
                "scope": _SCOPE,
                "memoryId": _MEMORY_ID,
                "limit": _LIMIT,
            },
            ["mode"],
        ),
    },
    {
        "name": "supermemory_add",
        "description": "Save a memory for future sessions.",
        "inputSchema": _schema({"content": _CONTENT, "type": _TYPE, "scope": _SCOPE}, ["content"]),
    },
    {
        "name": "supermemory_search",
        "description": (
            "Search past sessions, decisions and saved information. Searches both scopes "
            "unless scope is given."
        ),
        "inputSchema": _schema({"query": _QUERY, "scope": _SCOPE, "limit": _LIMIT}, ["query"]),
    },
    {
        "name": "supermemory_profile",
        "description": "Show what is known about the user, optionally filtered by a query.",
        "inputSchema": _schema({"query": _QUERY}),
    },
    {
        "name": "supermemory_list",
        "description": "List recent memories, newest first.",
        "inputSchema": _schema({"scope": _SCOPE, "limit": _LIMIT}),
    },
    {
        "name": "supermemory_forget",
        "description": "Remove a memory by id.",
        "inputSchema": _schema({"memoryId": _MEMORY_ID}, ["memoryId"]),
    },
    {
        "name": "supermemory_help",
        "description": "Describe the memory modes, scopes and memory types.",
        "inputSchema": _schema({}),
    },
    {
        "name": "supermemory_get_context",
        "description": (
            "Get profile and project memories for the current session. Call at session start."
        ),
        "inputSchema": _schema(
            {
                "cwd": {"type": "string", "description": "Current working directory"},
                "projectName": {"type": "string", "description": "Optional project name"},
            }
        ),
    },
]


# ── JSON-RPC 2.0 helpers ─────────────────────────────────────


def jsonrpc_result(req_id, result):
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def jsonrpc_error(req_id, code, message):
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


def tool_content(result: ToolResult) -> dict:
    """MCP tool result for a ToolResult. A bare message (context block) is sent as-is."""
    if result.success and result.data is None and result.message:
        text = result.message
    else:
        text = json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
    content: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if not result.success:
        content["isError"] = True
    return content


# ── Server ───────────────────────────────────────────────────


class MemoryServer:
    """Dispatches MCP requests to the memory tool handlers."""

    def __init__(self, handlers: dict[str, ToolHandler]) -> None:
        self.handlers = handlers

    async def handle_request(self, req: dict) -> dict | None:
        req_id = req.get("id")
        method = req.get("method", "")

        # Notifications carry no id and get no response
        if req_id is None:
            if method == "notifications/initialized":
                logger.info("Client initialized")
            return None

        if method == "initialize":
            return jsonrpc_result(req_id, {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            })

        if method == "ping":
            return jsonrpc_result(req_id, {})

        if method == "tools/list":
            return jsonrpc_result(req_id, {"tools": TOOLS})

        if method == "tools/call":
            params = req.get("params") or {}
            tool_name = params.get("name", "")
            args = params.get("arguments") or {}

            handler = self.handlers.get(tool_name)
            if handler is None:
                return jsonrpc_result(req_id, {
                    "content": [{"type": "text", "text": f"Unknown tool: {tool_name}"}],
                    "isError": True,
                })
            try:
                result = await handler(args)
            except Exception as e:
                logger.exception("Tool %s crashed", tool_name)
                result = ToolResult.fail(f"Internal error: {e}")
            return jsonrpc_result(req_id, tool_content(result))

        return jsonrpc_error(req_id, -32601, f"Method not found: {method}")

    # ── Stdio transport (NDJSON) ─────────────────────────────

    async def serve_stdio(self) -> None:
        logger.info("%s %s starting on stdio", SERVER_NAME, SERVER_VERSION)

        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)

        while True:
            line = await reader.readline()
            if not line:
                break
            line = line.decode("utf-8").strip()
            if not line:
                continue

            try:
                req = json.loads(line)
            except json.JSONDecodeError as e:
                logger.error("Parse error: %s", e)
                continue
            if not isinstance(req, dict):
                logger.error("Ignoring non-object message: %.80s", line)
                continue
            logger.debug("<- %s", req.get("method", "?"))
            response = await self.handle_request(req)
            if response:
                sys.stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
                sys.stdout.flush()

        logger.info("stdin closed, shutting down")
