from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Final

from ghbridge.core.db import QueueStore
from ghbridge.schemas.models import CherryPickParams, JobStatusReply

log = logging.getLogger(__name__)

SERVER_NAME: Final = "github-helper-server"
SERVER_VERSION: Final = "1.0.0"


class UnknownToolError(LookupError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


CHERRY_PICK_SCHEMA: Final[dict[str, Any]] = {
    "type": "object",
    "properties": {
        "repository": {"type": "string", "description": "Repository name"},
        "targetBranch": {"type": "string", "description": "Target branch for cherry-pick"},
        "prFilterQuery": {"type": "string", "description": "Pull request filter query"},
        "callbackUrl": {"type": "string", "description": "Optional callback URL"},
    },
    "required": ["repository", "targetBranch", "prFilterQuery"],
}

TOOLS: Final[list[dict[str, Any]]] = [
    {
        "name": "cherry-pick",
        "description": "Cherry-pick commits from PRs based on a filter query to a target branch",
        "inputSchema": CHERRY_PICK_SCHEMA,
    },
    {
        "name": "health",
        "description": "Health check tool",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "get_server_info",
        "description": "Get information about this MCP server",
        "inputSchema": {"type": "object", "properties": {}},
    },
]

# Herramientas que se ofrecen al LLM
LLM_TOOLS: Final = ("cherry-pick",)


def _text(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}]}


async def enqueue_cherry_pick(store: QueueStore, params: CherryPickParams) -> JobStatusReply:
    log.info("enqueuing cherry-pick job repo=%s", params.repository)
    job_id = str(uuid.uuid4())
    await store.enqueue(job_id, params.to_payload())
    log.info("job enqueued id=%s", job_id)
    return JobStatusReply(
        job_id=job_id,
        status="queued",
        message="Cherry-pick job has been queued successfully.",
    )


async def _cherry_pick(store: QueueStore, args: dict[str, Any]) -> dict[str, Any]:
    params = CherryPickParams.model_validate(args)
    reply = await enqueue_cherry_pick(store, params)
    return _text(f"Cherry-pick job enqueued with ID: {reply.job_id}")


async def _health(store: QueueStore, args: dict[str, Any]) -> dict[str, Any]:
    counts = await store.counts()
    return _text(
        json.dumps({"ok": True, "time": datetime.now().isoformat(), "jobs": counts})
    )


async def _server_info(store: QueueStore, args: dict[str, Any]) -> dict[str, Any]:
    info = {
        "server_name": SERVER_NAME,
        "version": SERVER_VERSION,
        "transport": "sse",
        "capabilities": ["tools"],
        "description": "GitHub Helper tool server: JSON-RPC requests answered over server-sent events",
    }
    return _text(json.dumps(info, indent=2))


ToolFn = Callable[[QueueStore, dict[str, Any]], Awaitable[dict[str, Any]]]

_HANDLERS: Final[dict[str, ToolFn]] = {
    "cherry-pick": _cherry_pick,
    "health": _health,
    "get_server_info": _server_info,
}


def list_tools(names: tuple[str, ...] | None = None) -> list[dict[str, Any]]:
    if names is None:
        return list(TOOLS)
    return [t for t in TOOLS if t["name"] in names]


async def call_tool(store: QueueStore, name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
    """Ejecuta una herramienta y devuelve el resultado con forma MCP (``content``)."""
    log.info("received tool call: %s with args: %s", name, json.dumps(arguments or {}))
    fn = _HANDLERS.get(name)
    if fn is None:
        raise UnknownToolError(name)
    return await fn(store, dict(arguments or {}))
