from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ghbridge.adapters.llm.gemini import GeminiClient, GeminiError, extract_text, extract_tool_call
from ghbridge.adapters.mcp.client import McpClient
from ghbridge.handlers.tools import LLM_TOOLS, list_tools

logger = logging.getLogger(__name__)


def _err(status: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": error, **extra}, status_code=status)


def create_app(gemini: GeminiClient | None = None, mcp: McpClient | None = None) -> FastAPI:
    app = FastAPI(title="ghbridge agent", version="1.0.0")
    app.state.gemini = gemini or GeminiClient()
    app.state.mcp = mcp or McpClient()

    @app.post("/api/agent")
    async def agent(request: Request):
        try:
            body = await request.json()
        except ValueError:
            body = None
        prompt = body.get("prompt") if isinstance(body, dict) else None
        if not prompt or not isinstance(prompt, str):
            return _err(400, "Prompt is required")

        gemini: GeminiClient = request.app.state.gemini
        if not gemini.api_key:
            return _err(500, "Gemini API key not configured in environment.")

        tool_result: Any = None
        try:
            raw = await gemini.generate(prompt, list_tools(LLM_TOOLS))
        except GeminiError as e:
            logger.error("gemini api error: %s", json.dumps(e.details))
            return _err(500, "Gemini API error", details=e.details)

        call = extract_tool_call(raw)
        if call:
            name, args = call
            logger.info("gemini requested tool call: %s with args: %s", name, json.dumps(args))
            try:
                tool_result = await request.app.state.mcp.call_tool(name, args)
            except httpx.HTTPError as e:
                logger.error("tool server call failed err=%r", e)
                return _err(502, "Tool server error", details=str(e))
            llm_response = f"Tool call result: {json.dumps(tool_result)}"
        else:
            logger.info("no tool call requested by gemini")
            llm_response = extract_text(raw)

        return {"llmResponse": llm_response, "toolCallResult": tool_result, "geminiRaw": raw}

    return app


app = create_app()
