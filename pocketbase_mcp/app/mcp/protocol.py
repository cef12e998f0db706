from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .schemas import ToolCallRequest
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "pocketbase-mcp"
SERVER_VERSION = "2.1.0"
PROTOCOL_VERSION = "2025-06-18"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602

INSTRUCTIONS = (
    "Manage a PocketBase instance: collections, records, auth flows, files, logs, "
    "cron jobs, settings, backups and pb_hooks scripts. Superuser-only tools need a "
    "prior auth_with_password call against the _superusers collection."
)

Handler = Callable[[ToolRegistry, Dict[str, Any]], Awaitable[Dict[str, Any]]]


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False)


def error_response(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def handshake_payload() -> Dict[str, Any]:
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {"tools": {"listChanged": False}},
        "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        "instructions": INSTRUCTIONS,
    }


class InvalidParams(ValueError):
    pass


async def _handle_initialize(registry: ToolRegistry, params: Dict[str, Any]) -> Dict[str, Any]:
    return handshake_payload()


async def _handle_ping(registry: ToolRegistry, params: Dict[str, Any]) -> Dict[str, Any]:
    return {}


async def _handle_tools_list(registry: ToolRegistry, params: Dict[str, Any]) -> Dict[str, Any]:
    return {"tools": [descriptor.model_dump() for descriptor in registry.descriptors()]}


async def _handle_tools_call(registry: ToolRegistry, params: Dict[str, Any]) -> Dict[str, Any]:
    tool_name = params.get("name")
    if not isinstance(tool_name, str) or not tool_name:
        raise InvalidParams("Invalid params: tool name required")
    arguments = params.get("arguments") or {}
    if not isinstance(arguments, dict):
        raise InvalidParams("Invalid params: arguments must be an object")
    response = await registry.call(ToolCallRequest(tool=tool_name, params=arguments))
    return response.to_call_tool_result()


HANDLERS: Dict[str, Handler] = {
    "initialize": _handle_initialize,
    "ping": _handle_ping,
    "tools/list": _handle_tools_list,
    "tools/call": _handle_tools_call,
}


async def handle_message(registry: ToolRegistry, message: Any) -> Optional[Dict[str, Any]]:
    """Answer one decoded JSON-RPC message; notifications yield ``None``."""

    if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
        return error_response(None, INVALID_REQUEST, "Invalid Request")

    request_id = message.get("id")
    is_notification = "id" not in message
    method = message.get("method")
    params = message.get("params") or {}

    if is_notification:
        if method in {"initialized", "notifications/initialized"}:
            logger.info("Client finished initialization")
        else:
            logger.debug("Ignoring notification %s", method)
        return None

    if not isinstance(method, str):
        return error_response(request_id, INVALID_REQUEST, "Invalid method name")
    if not isinstance(params, dict):
        return error_response(request_id, INVALID_PARAMS, "Invalid params")

    handler = HANDLERS.get(method)
    if handler is None:
        return error_response(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

    try:
        result = await handler(registry, params)
    except InvalidParams as exc:
        return error_response(request_id, INVALID_PARAMS, str(exc))
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


async def handle_raw(registry: ToolRegistry, raw: str) -> Optional[Dict[str, Any]]:
    """Decode one JSON-RPC text frame and answer it."""

    try:
        message = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse JSON-RPC frame: %s", exc)
        return error_response(None, PARSE_ERROR, f"Parse error: {exc}")
    return await handle_message(registry, message)
