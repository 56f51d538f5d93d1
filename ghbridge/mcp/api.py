from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse

from ghbridge.core.db import QueueStore, get_store
from ghbridge.handlers.tools import (
    SERVER_NAME,
    SERVER_VERSION,
    UnknownToolError,
    call_tool,
    list_tools,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-06-18"

# Códigos JSON-RPC 2.0
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class RpcError(Exception):
    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def _error(req_id: Any, code: int, message: str, data: Any = None) -> dict[str, Any]:
    err: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        err["data"] = data
    return {"jsonrpc": "2.0", "id": req_id, "error": err}


async def _tools_call(store: QueueStore, params: dict[str, Any]) -> dict[str, Any]:
    name = params.get("name")
    if not isinstance(name, str) or not name:
        raise RpcError(INVALID_PARAMS, "Missing tool name")
    try:
        return await call_tool(store, name, params.get("arguments"))
    except UnknownToolError as e:
        raise RpcError(INVALID_PARAMS, str(e)) from e
    except ValidationError as e:
        raise RpcError(
            INVALID_PARAMS, "Invalid tool arguments", json.loads(e.json(include_url=False))
        ) from e
    except sqlite3.Error as e:
        logger.error("tool %s storage error: %r", name, e)
        raise RpcError(INTERNAL_ERROR, str(e)) from e


async def dispatch(store: QueueStore, message: Any) -> dict[str, Any] | None:
    """
    Resuelve un request JSON-RPC. Devuelve None para notificaciones (sin ``id``):
    se ejecutan igual pero no llevan respuesta.
    """
    if not isinstance(message, dict) or not isinstance(message.get("method"), str):
        return _error(None, INVALID_REQUEST, "Invalid Request")
    notification = "id" not in message
    req_id = message.get("id")
    method = message["method"]
    params = message.get("params") or {}
    if not isinstance(params, dict):
        return None if notification else _error(req_id, INVALID_PARAMS, "params must be an object")

    try:
        if method == "initialize":
            result: dict[str, Any] = {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            }
        elif method == "ping":
            result = {}
        elif method in ("tools/list", "listTools"):
            result = {"tools": list_tools()}
        elif method in ("tools/call", "callTool"):
            result = await _tools_call(store, params)
        else:
            raise RpcError(METHOD_NOT_FOUND, f"Method not found: {method}")
    except RpcError as e:
        if notification:
            logger.info("notification method=%s dropped error=%s", method, e.message)
            return None
        return _error(req_id, e.code, e.message, e.data)

    if notification:
        return None
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def create_app(store: QueueStore | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # si la DB no abre, el servidor no arranca
        await app.state.store.open()
        logger.info("tool server ready (%s %s)", SERVER_NAME, SERVER_VERSION)
        try:
            yield
        finally:
            await app.state.store.close()

    app = FastAPI(title=SERVER_NAME, version=SERVER_VERSION, lifespan=lifespan)
    app.state.store = store or get_store()

    @app.get("/health")
    async def health():
        return {"ok": True, "time": datetime.now().isoformat()}

    @app.post("/mcp/sse")
    async def mcp_sse(request: Request):
        raw = await request.body()
        try:
            message = json.loads(raw or b"null")
        except ValueError:
            response = _error(None, PARSE_ERROR, "Parse error")
        else:
            response = await dispatch(request.app.state.store, message)

        async def _events():
            # notificación: el stream se cierra sin eventos
            if response is not None:
                yield {"event": "message", "data": json.dumps(response, ensure_ascii=False)}

        return EventSourceResponse(_events())

    return app


app = create_app()
