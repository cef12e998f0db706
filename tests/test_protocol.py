from __future__ import annotations

import asyncio
import io
import json
from typing import AsyncIterator, List

from fastapi.testclient import TestClient

from pocketbase_mcp.app.mcp.protocol import PROTOCOL_VERSION, handle_message
from pocketbase_mcp.app.stdio import StdioServer


def rpc(client: TestClient, method: str, params: dict | None = None, request_id: int = 1) -> dict:
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    response = client.post("/mcp", json=message)
    assert response.status_code == 200
    return response.json()


def test_initialize(client: TestClient) -> None:
    payload = rpc(client, "initialize", {"protocolVersion": PROTOCOL_VERSION, "capabilities": {}})

    assert payload["id"] == 1
    result = payload["result"]
    assert result["protocolVersion"] == PROTOCOL_VERSION
    assert result["serverInfo"] == {"name": "pocketbase-mcp", "version": "2.1.0"}
    assert "tools" in result["capabilities"]


def test_tools_list(client: TestClient) -> None:
    tools = rpc(client, "tools/list")["result"]["tools"]

    assert len(tools) == 50
    names = {tool["name"] for tool in tools}
    assert {"list_collections", "auth_with_password", "create_hook_template"} <= names
    assert all(tool["inputSchema"]["type"] == "object" for tool in tools)


def test_tools_call(client: TestClient, backend) -> None:
    payload = rpc(
        client,
        "tools/call",
        {"name": "get_record", "arguments": {"collection": "posts", "id": "r1"}},
        request_id=7,
    )

    assert payload["id"] == 7
    result = payload["result"]
    assert result["isError"] is False
    assert json.loads(result["content"][0]["text"]) == {"id": "r1"}
    assert backend.calls[0].url.path == "/api/collections/posts/records/r1"


def test_tools_call_unknown_tool_is_a_tool_result(client: TestClient) -> None:
    result = rpc(client, "tools/call", {"name": "nonexistent_tool", "arguments": {}})["result"]

    assert result == {
        "content": [{"type": "text", "text": "Error: Unknown tool: nonexistent_tool"}],
        "isError": True,
    }


def test_tools_call_without_name(client: TestClient) -> None:
    payload = rpc(client, "tools/call", {"arguments": {}})

    assert payload["error"]["code"] == -32602


def test_unknown_method(client: TestClient) -> None:
    payload = rpc(client, "resources/list")

    assert payload["error"] == {"code": -32601, "message": "Method not found: resources/list"}


def test_ping(client: TestClient) -> None:
    assert rpc(client, "ping")["result"] == {}


def test_notification_has_no_response(client: TestClient) -> None:
    response = client.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})

    assert response.status_code == 204
    assert response.content == b""


def test_parse_error(client: TestClient) -> None:
    response = client.post("/mcp", content=b"{not json", headers={"Content-Type": "application/json"})

    payload = response.json()
    assert payload["id"] is None
    assert payload["error"]["code"] == -32700


def test_invalid_request(registry) -> None:
    payload = asyncio.run(handle_message(registry, {"id": 1, "method": "ping"}))

    assert payload["error"]["code"] == -32600


def test_index_and_health(client: TestClient) -> None:
    index = client.get("/mcp/index").json()
    assert len(index["tools"]) == 50

    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/mcp/health").json()["status"] == "ok"
    assert client.get("/mcp").json()["params"]["serverInfo"]["name"] == "pocketbase-mcp"


def test_websocket_tools_call(client: TestClient) -> None:
    with client.websocket_connect("/mcp") as websocket:
        websocket.send_text(json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}))
        websocket.send_text(
            json.dumps(
                {
                    "jsonrpc": "2.0",
                    "id": "ws-1",
                    "method": "tools/call",
                    "params": {"name": "get_health", "arguments": {}},
                }
            )
        )
        message = json.loads(websocket.receive_text())

    assert message["id"] == "ws-1"
    assert message["result"]["isError"] is False
    assert "API is healthy." in message["result"]["content"][0]["text"]


async def _lines(items: List[str]) -> AsyncIterator[str]:
    for item in items:
        yield item + "\n"


def test_stdio_server_answers_requests(registry) -> None:
    output = io.StringIO()
    lines = [
        json.dumps({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}),
        json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}),
        "",
        json.dumps({"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "get_health"}}),
        "{broken",
    ]

    asyncio.run(StdioServer(registry, output=output).serve(_lines(lines)))

    responses = [json.loads(line) for line in output.getvalue().splitlines()]
    assert len(responses) == 3
    by_id = {response["id"]: response for response in responses}
    assert by_id[1]["result"]["serverInfo"]["name"] == "pocketbase-mcp"
    assert by_id[2]["result"]["isError"] is False
    assert by_id[None]["error"]["code"] == -32700
