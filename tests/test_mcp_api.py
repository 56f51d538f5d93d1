import sqlite3

import pytest
from fastapi.testclient import TestClient

from ghbridge.adapters.mcp.client import parse_sse_payload
from ghbridge.core.db import QueueStore
from ghbridge.mcp import api


@pytest.fixture
def client(temp_db_path):
    app = api.create_app(QueueStore(temp_db_path))
    with TestClient(app) as c:
        yield c


def _rpc(client, payload):
    r = client.post("/mcp/sse", json=payload)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    return parse_sse_payload(r.text)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200 and r.json()["ok"] is True


def test_startup_creates_database(client, temp_db_path):
    assert temp_db_path.exists()


def test_tools_list(client):
    msg = _rpc(client, {"jsonrpc": "2.0", "id": 7, "method": "tools/list"})
    assert msg["id"] == 7
    assert {t["name"] for t in msg["result"]["tools"]} == {"cherry-pick", "health", "get_server_info"}


def test_call_tool_enqueues(client, temp_db_path):
    msg = _rpc(
        client,
        {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "callTool",
            "params": {
                "name": "cherry-pick",
                "arguments": {"repository": "acme/api", "targetBranch": "main", "prFilterQuery": "q"},
            },
        },
    )
    text = msg["result"]["content"][0]["text"]
    job_id = text.rsplit(" ", 1)[-1]

    conn = sqlite3.connect(temp_db_path)
    try:
        row = conn.execute("SELECT status, params FROM jobs WHERE id=?", (job_id,)).fetchone()
    finally:
        conn.close()
    assert row[0] == "queued"
    assert '"repository": "acme/api"' in row[1]


def test_invalid_arguments_are_rpc_errors(client):
    msg = _rpc(
        client,
        {"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "cherry-pick", "arguments": {}}},
    )
    assert msg["error"]["code"] == api.INVALID_PARAMS
    assert isinstance(msg["error"]["data"], list)


def test_unknown_tool_and_method(client):
    msg = _rpc(client, {"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": {"name": "nope"}})
    assert msg["error"]["code"] == api.INVALID_PARAMS
    assert "Unknown tool" in msg["error"]["message"]

    msg = _rpc(client, {"jsonrpc": "2.0", "id": 4, "method": "resources/list"})
    assert msg["error"]["code"] == api.METHOD_NOT_FOUND


def test_parse_error(client):
    r = client.post("/mcp/sse", content=b"{not json", headers={"Content-Type": "application/json"})
    msg = parse_sse_payload(r.text)
    assert msg["error"]["code"] == api.PARSE_ERROR


def test_dispatch_duplicate_maps_to_internal_error(event_loop, store, monkeypatch):
    monkeypatch.setattr("uuid.uuid4", lambda: "fixed-id")
    req = {
        "jsonrpc": "2.0",
        "id": 9,
        "method": "tools/call",
        "params": {"name": "cherry-pick", "arguments": {"repository": "r", "targetBranch": "b", "prFilterQuery": "q"}},
    }
    first = event_loop.run_until_complete(api.dispatch(store, req))
    second = event_loop.run_until_complete(api.dispatch(store, req))
    assert "result" in first
    assert second["error"]["code"] == api.INTERNAL_ERROR


def test_dispatch_invalid_request(event_loop, store):
    out = event_loop.run_until_complete(api.dispatch(store, ["not", "an", "object"]))
    assert out["error"]["code"] == api.INVALID_REQUEST
    init = event_loop.run_until_complete(api.dispatch(store, {"id": 1, "method": "initialize"}))
    assert init["result"]["serverInfo"]["name"] == "github-helper-server"


def test_notification_runs_without_response(client, temp_db_path):
    r = client.post(
        "/mcp/sse",
        json={
            "jsonrpc": "2.0",
            "method": "tools/call",
            "params": {
                "name": "cherry-pick",
                "arguments": {"repository": "acme/api", "targetBranch": "main", "prFilterQuery": "q"},
            },
        },
    )
    assert r.status_code == 200
    assert "data:" not in r.text

    conn = sqlite3.connect(temp_db_path)
    try:
        (count,) = conn.execute("SELECT COUNT(1) FROM jobs").fetchone()
    finally:
        conn.close()
    assert count == 1


def test_dispatch_notification_errors_are_silent(event_loop, store):
    out = event_loop.run_until_complete(api.dispatch(store, {"jsonrpc": "2.0", "method": "resources/list"}))
    assert out is None
