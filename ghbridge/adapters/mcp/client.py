from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

import httpx

from ghbridge.config.settings import settings

logger = logging.getLogger(__name__)

TIMEOUT_MARKER = "[MCP tool call timeout waiting for SSE data]"

_EVENT_SEP = re.compile(r"\n\n+")


def parse_sse_payload(raw: str) -> Any:
    """
    Devuelve el JSON del primer evento con ``data:``. Si no hay evento con datos,
    o los datos no son JSON, devuelve el texto crudo.
    """
    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    for segment in _EVENT_SEP.split(text):
        lines = [ln for ln in segment.strip().split("\n") if ln.startswith("data:")]
        if not lines:
            continue
        payload = "\n".join(ln[5:].lstrip(" ") for ln in lines)
        try:
            return json.loads(payload)
        except ValueError:
            return raw
    return raw


def _has_complete_event(buffer: str) -> bool:
    # el último trozo puede estar incompleto
    *events, _tail = buffer.replace("\r\n", "\n").split("\n\n")
    return any(ln.startswith("data:") for ev in events for ln in ev.split("\n"))


class McpClient:
    """Cliente JSON-RPC cuyo servidor responde con un stream de eventos SSE."""

    def __init__(
        self,
        sse_url: str | None = None,
        timeout: float | None = None,
        first_event_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.sse_url = sse_url or settings.MCP_SSE_URL
        self.timeout = settings.MCP_TIMEOUT if timeout is None else timeout
        self.first_event_timeout = (
            settings.MCP_FIRST_EVENT_TIMEOUT if first_event_timeout is None else first_event_timeout
        )
        self._transport = transport
        self._next_id = 0

    def _request(self, name: str, args: dict[str, Any] | None) -> dict[str, Any]:
        self._next_id += 1
        return {
            "jsonrpc": "2.0",
            "id": self._next_id,
            "method": "tools/call",
            "params": {"name": name, "arguments": args or {}},
        }

    async def _read_first_event(self, resp: httpx.Response) -> str:
        buffer = ""
        async for chunk in resp.aiter_text():
            buffer += chunk
            if _has_complete_event(buffer):
                break
        return buffer

    async def call_tool(self, name: str, args: dict[str, Any] | None = None) -> Any:
        rpc = self._request(name, args)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as cli:
            async with cli.stream(
                "POST",
                self.sse_url,
                json=rpc,
                headers={"Accept": "text/event-stream"},
            ) as resp:
                logger.info("tool server responded with status: %s", resp.status_code)
                resp.raise_for_status()
                try:
                    raw = await asyncio.wait_for(
                        self._read_first_event(resp), timeout=self.first_event_timeout
                    )
                except asyncio.TimeoutError:
                    logger.warning("no SSE data from %s after %.1fs", self.sse_url, self.first_event_timeout)
                    return TIMEOUT_MARKER
        return parse_sse_payload(raw)
