from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..exceptions import ErrorKind


class ToolDescriptor(BaseModel):
    name: str
    description: Optional[str] = None
    inputSchema: Dict[str, Any] = Field(default_factory=dict, description="JSON schema specifying accepted parameters")


class MCPIndexResponse(BaseModel):
    """Response model for the MCP discovery endpoint."""

    tools: List[ToolDescriptor]


class ToolCallRequest(BaseModel):
    tool: str
    params: Dict[str, Any] = Field(default_factory=dict)


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolCallResponse(BaseModel):
    """Outcome of one tool call: always exactly one text element.

    ``error_kind`` is for in-process callers only; the wire format carries the
    message text and the ``isError`` flag.
    """

    tool: str
    content: List[TextContent]
    is_error: bool = False
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def text(cls, tool: str, text: str) -> "ToolCallResponse":
        return cls(tool=tool, content=[TextContent(text=text)])

    @classmethod
    def error(cls, tool: str, kind: ErrorKind, message: str) -> "ToolCallResponse":
        return cls(
            tool=tool,
            content=[TextContent(text=f"Error: {message}")],
            is_error=True,
            error_kind=kind,
        )

    @property
    def first_text(self) -> str:
        return self.content[0].text

    def to_call_tool_result(self) -> Dict[str, Any]:
        return {
            "content": [item.model_dump() for item in self.content],
            "isError": self.is_error,
        }
