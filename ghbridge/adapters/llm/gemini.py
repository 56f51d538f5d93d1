from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ghbridge.config.settings import settings

logger = logging.getLogger(__name__)


class GeminiError(RuntimeError):
    """Fallo HTTP/transporte contra la API de Gemini; ``details`` es serializable a JSON."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = _json_safe(details if details is not None else message)


def _json_safe(value: Any) -> Any:
    try:
        return json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return "[Unserializable error object]"


def function_declarations(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Traduce definiciones de herramientas (inputSchema) al formato ``tools`` de Gemini."""
    decls = [
        {"name": t["name"], "description": t["description"], "parameters": t["inputSchema"]}
        for t in tools
    ]
    return [{"function_declarations": decls}] if decls else []


def _first_candidate(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    cands = raw.get("candidates") or []
    if not cands or not isinstance(cands[0], dict):
        return None
    return cands[0]


def extract_tool_call(raw: Any) -> tuple[str, dict[str, Any]] | None:
    cand = _first_candidate(raw)
    parts = ((cand or {}).get("content") or {}).get("parts") or []
    for part in parts:
        if isinstance(part, dict) and part.get("functionCall"):
            call = part["functionCall"]
            return call.get("name", ""), dict(call.get("args") or {})
    return None


def extract_text(raw: Any) -> str:
    cand = _first_candidate(raw)
    content = (cand or {}).get("content") or {}
    parts = content.get("parts")
    if isinstance(parts, list) and parts and isinstance(parts[0], dict) and parts[0].get("text"):
        return parts[0]["text"]
    if content.get("text"):
        return content["text"]
    return json.dumps(cand)


class GeminiClient:
    def __init__(
        self,
        api_key: str | None = None,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.url = url or settings.GEMINI_API_URL
        self.timeout = settings.GEMINI_TIMEOUT if timeout is None else timeout
        self._transport = transport

    async def generate(self, prompt: str, tools: list[dict[str, Any]] | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if tools:
            body["tools"] = function_declarations(tools)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as cli:
                r = await cli.post(
                    self.url,
                    params={"key": self.api_key},
                    json=body,
                    headers={"Content-Type": "application/json"},
                )
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as e:
            try:
                details = e.response.json()
            except ValueError:
                details = e.response.text
            logger.error("gemini error status=%s", e.response.status_code)
            raise GeminiError(str(e), details) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("gemini request failed err=%r", e)
            raise GeminiError(str(e)) from e

        logger.debug("gemini raw response: %s", json.dumps(data))
        return data
