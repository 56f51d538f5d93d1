import httpx
from fastapi.testclient import TestClient

from ghbridge.adapters.llm.gemini import GeminiError
from ghbridge.agent import api


class FakeGemini:
    def __init__(self, raw=None, api_key="k", error=None):
        self.api_key = api_key
        self.raw = raw
        self.error = error
        self.calls = []

    async def generate(self, prompt, tools=None):
        self.calls.append((prompt, [t["name"] for t in tools or []]))
        if self.error:
            raise self.error
        return self.raw


class FakeMcp:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def call_tool(self, name, args=None):
        self.calls.append((name, args))
        if self.error:
            raise self.error
        return self.result


def _client(gemini, mcp=None):
    return TestClient(api.create_app(gemini, mcp or FakeMcp()))


def test_rejects_non_post_and_missing_prompt():
    c = _client(FakeGemini())
    assert c.get("/api/agent").status_code == 405
    r = c.post("/api/agent", json={})
    assert r.status_code == 400 and r.json() == {"error": "Prompt is required"}
    r = c.post("/api/agent", content=b"nope", headers={"Content-Type": "application/json"})
    assert r.status_code == 400


def test_missing_api_key():
    r = _client(FakeGemini(api_key=None)).post("/api/agent", json={"prompt": "hi"})
    assert r.status_code == 500
    assert r.json()["error"] == "Gemini API key not configured in environment."


def test_plain_text_answer():
    raw = {"candidates": [{"content": {"parts": [{"text": "hello"}]}}]}
    g, m = FakeGemini(raw), FakeMcp()
    r = _client(g, m).post("/api/agent", json={"prompt": "hi"})
    assert r.status_code == 200
    body = r.json()
    assert body == {"llmResponse": "hello", "toolCallResult": None, "geminiRaw": raw}
    assert g.calls == [("hi", ["cherry-pick"])]
    assert m.calls == []


def test_tool_call_is_relayed():
    args = {"repository": "r", "targetBranch": "main", "prFilterQuery": "q"}
    raw = {"candidates": [{"content": {"parts": [{"functionCall": {"name": "cherry-pick", "args": args}}]}}]}
    result = {"jsonrpc": "2.0", "id": 1, "result": {"content": [{"type": "text", "text": "queued"}]}}
    m = FakeMcp(result)
    r = _client(FakeGemini(raw), m).post("/api/agent", json={"prompt": "backport"})
    body = r.json()
    assert m.calls == [("cherry-pick", args)]
    assert body["toolCallResult"] == result
    assert body["llmResponse"].startswith("Tool call result: ")


def test_llm_error_is_500_with_details():
    err = GeminiError("boom", {"error": {"message": "quota"}})
    r = _client(FakeGemini(error=err)).post("/api/agent", json={"prompt": "hi"})
    assert r.status_code == 500
    assert r.json() == {"error": "Gemini API error", "details": {"error": {"message": "quota"}}}


def test_tool_server_unreachable():
    raw = {"candidates": [{"content": {"parts": [{"functionCall": {"name": "health", "args": {}}}]}}]}
    m = FakeMcp(error=httpx.ConnectError("refused"))
    r = _client(FakeGemini(raw), m).post("/api/agent", json={"prompt": "ping"})
    assert r.status_code == 502
    assert r.json()["error"] == "Tool server error"
