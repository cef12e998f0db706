from __future__ import annotations

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request, Response, WebSocket, WebSocketDisconnect
from starlette.responses import JSONResponse

from ..dependencies import get_tool_registry
from .protocol import PARSE_ERROR, error_response, handle_message, handle_raw, handshake_payload, json_dumps
from .schemas import MCPIndexResponse, ToolCallRequest
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mcp", tags=["mcp"])

_HEALTH_PAYLOAD: Dict[str, str] = {"status": "ok", "message": "MCP endpoint is alive"}


@router.get("/index", response_model=MCPIndexResponse)
async def mcp_index(tool_registry: ToolRegistry = Depends(get_tool_registry)) -> MCPIndexResponse:
    return MCPIndexResponse(tools=tool_registry.descriptors())


@router.get("/health")
async def mcp_healthcheck() -> Dict[str, str]:
    return dict(_HEALTH_PAYLOAD)


@router.get("")
async def mcp_entrypoint() -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "method": "initialize", "params": handshake_payload()}


@router.post("")
async def mcp_jsonrpc(
    request: Request,
    tool_registry: ToolRegistry = Depends(get_tool_registry),
) -> Response:
    """Handle one MCP JSON-RPC 2.0 message posted over HTTP."""

    body = await request.body()
    if not body:
        logger.warning("Empty request body")
        return JSONResponse(error_response(None, PARSE_ERROR, "Parse error: empty request body"))

    try:
        message = json.loads(body)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse request body: %s", exc)
        return JSONResponse(error_response(None, PARSE_ERROR, f"Parse error: {exc}"))

    if isinstance(message, dict):
        logger.debug("MCP request method=%s id=%s", message.get("method"), message.get("id"))
    rpc_response = await handle_message(tool_registry, message)
    if rpc_response is None:
        return Response(status_code=204)
    return JSONResponse(rpc_response)


@router.post("/tool/call")
async def tool_call(
    payload: ToolCallRequest = Body(...),
    tool_registry: ToolRegistry = Depends(get_tool_registry),
) -> Dict[str, Any]:
    """Call a tool directly with ``{"tool": ..., "params": {...}}``."""

    response = await tool_registry.call(payload)
    return response.to_call_tool_result()


@router.websocket("")
async def mcp_websocket(websocket: WebSocket) -> None:
    """WebSocket transport for MCP JSON-RPC messages at path `/mcp`."""

    await websocket.accept()
    try:
        tool_registry = get_tool_registry(websocket)
    except RuntimeError:
        logger.error("MCP websocket opened before the tool registry was configured")
        await websocket.close(code=1011)
        return

    try:
        while True:
            data = await websocket.receive_text()
            rpc_response = await handle_raw(tool_registry, data)
            if rpc_response is not None:
                await websocket.send_text(json_dumps(rpc_response))
    except WebSocketDisconnect:
        logger.info("MCP websocket client disconnected")
