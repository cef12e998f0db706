from __future__ import annotations

import asyncio
import sys
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Tuple

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pocketbase_mcp.app import create_app  # noqa: E402
import pocketbase_mcp.app.main as main_module  # noqa: E402
from pocketbase_mcp.app.mcp.schemas import ToolCallRequest, ToolCallResponse  # noqa: E402
from pocketbase_mcp.app.mcp.tools import ToolRegistry  # noqa: E402
from pocketbase_mcp.app.pocketbase_client import PocketBaseClient  # noqa: E402
from pocketbase_mcp.app.settings import PocketBaseSettings  # noqa: E402

BASE_URL = "http://pb.test"

AUTH_METHODS = {
    "password": {"enabled": True, "identityFields": ["email"]},
    "oauth2": {
        "enabled": True,
        "providers": [
            {
                "name": "google",
                "displayName": "Google",
                "state": "state-123",
                "authURL": "https://accounts.example/auth?client_id=pb&redirect_uri=",
                "codeVerifier": "verifier",
                "codeChallenge": "challenge",
                "codeChallengeMethod": "S256",
            }
        ],
    },
}

AUTH_RESPONSE = {"token": "user-token", "record": {"id": "u1", "email": "ada@example.com"}}


class StubPocketBase:
    """In-memory PocketBase used for isolating tests from the network.

    Canned responses are keyed by ``(method, path)``; a value may be a JSON
    payload, an ``httpx.Response`` or a callable taking the request.
    """

    def __init__(self) -> None:
        self.responses: Dict[Tuple[str, str], Any] = {}
        self.calls: List[httpx.Request] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, request.url.path)
        if key not in self.responses:
            return self._default(request)
        response = self.responses[key]
        if callable(response):
            response = response(request)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def calls_to(self, method: str, path: str) -> List[httpx.Request]:
        return [call for call in self.calls if call.method == method and call.url.path == path]

    def _default(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "DELETE":
            return httpx.Response(204)
        if path.endswith("/auth-methods"):
            return httpx.Response(200, json=AUTH_METHODS)
        if path.endswith(("/auth-with-password", "/auth-refresh", "/auth-with-otp")):
            return httpx.Response(200, json=AUTH_RESPONSE)
        if path.endswith("/request-otp"):
            return httpx.Response(200, json={"otpId": "otp1"})
        if path == "/api/files/token":
            return httpx.Response(200, json={"token": "file-token"})
        if path == "/api/health":
            return httpx.Response(200, json={"code": 200, "message": "API is healthy.", "data": {}})
        if request.method == "GET" and (path.endswith("/records") or path in {"/api/collections", "/api/logs"}):
            return httpx.Response(
                200,
                json={"page": 1, "perPage": 30, "totalItems": 1, "totalPages": 1, "items": [{"id": "r1"}]},
            )
        if request.method == "GET" and path in {"/api/crons", "/api/backups"}:
            return httpx.Response(200, json=[])
        if request.method in {"POST", "PUT"} and path in {"/api/backups", "/api/backups/upload"}:
            return httpx.Response(204)
        return httpx.Response(200, json={"id": "r1"})


@pytest.fixture
def backend() -> StubPocketBase:
    return StubPocketBase()


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in ("POCKETBASE_URL", "POCKETBASE_HOOKS_DIR", "POCKETBASE_AUTH_TOKEN", "POCKETBASE_RETRIES"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def pb_client(backend: StubPocketBase, workspace: Path) -> PocketBaseClient:
    return PocketBaseClient(PocketBaseSettings(url=BASE_URL), transport=backend.transport())


@pytest.fixture
def registry(pb_client: PocketBaseClient, workspace: Path) -> ToolRegistry:
    return ToolRegistry(pb_client, hooks_dir=str(workspace / "pb_hooks"))


@pytest.fixture
def call_tool(registry: ToolRegistry) -> Callable[..., ToolCallResponse]:
    def _call(tool: str, params: Dict[str, Any] | None = None) -> ToolCallResponse:
        return asyncio.run(registry.call(ToolCallRequest(tool=tool, params=params or {})))

    return _call


@pytest.fixture
def app(monkeypatch: pytest.MonkeyPatch, backend: StubPocketBase, workspace: Path) -> FastAPI:
    monkeypatch.setenv("POCKETBASE_URL", BASE_URL)
    monkeypatch.setenv("POCKETBASE_HOOKS_DIR", str(workspace / "pb_hooks"))
    monkeypatch.setenv("SERVER_HOST", "127.0.0.1")
    monkeypatch.setenv("SERVER_PORT", "9000")
    monkeypatch.setattr(main_module, "PocketBaseClient", partial(PocketBaseClient, transport=backend.transport()))
    application = create_app()
    return application


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client
