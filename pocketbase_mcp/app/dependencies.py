from __future__ import annotations

from starlette.requests import HTTPConnection

from .mcp.tools import ToolRegistry


def get_tool_registry(connection: HTTPConnection) -> ToolRegistry:
    """Registry stored on app state by the lifespan; works for requests and websockets."""

    registry = getattr(connection.app.state, "tool_registry", None)
    if registry is None:
        raise RuntimeError("Tool registry is not configured; was the app started through its lifespan?")
    return registry
