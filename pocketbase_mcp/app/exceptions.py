from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of failure categories a tool call can end in."""

    UNKNOWN_TOOL = "unknown_tool"
    INVALID_ARGUMENTS = "invalid_arguments"
    BACKEND = "backend"
    NOT_FOUND = "not_found"
    FILESYSTEM = "filesystem"
    UNKNOWN_TEMPLATE = "unknown_template"
    OAUTH2_PROVIDER_NOT_FOUND = "oauth2_provider_not_found"
    INTERNAL = "internal"


class ToolError(Exception):
    """Base error for tool failures; rendered as ``Error: <message>`` on the wire."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ToolNotFoundError(ToolError):
    kind = ErrorKind.UNKNOWN_TOOL

    def __init__(self, tool: str) -> None:
        super().__init__(f"Unknown tool: {tool}")
        self.tool = tool


class InvalidArgumentsError(ToolError):
    kind = ErrorKind.INVALID_ARGUMENTS


class HookNotFoundError(ToolError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, filename: str) -> None:
        super().__init__(f"Hook file {filename} not found")
        self.filename = filename


class InvalidHookFilenameError(ToolError):
    kind = ErrorKind.FILESYSTEM


class UnknownTemplateError(ToolError):
    kind = ErrorKind.UNKNOWN_TEMPLATE

    def __init__(self, template_type: str) -> None:
        super().__init__(f"Unknown template type: {template_type}")
        self.template_type = template_type


class OAuth2ProviderNotFoundError(ToolError):
    kind = ErrorKind.OAUTH2_PROVIDER_NOT_FOUND

    def __init__(self, provider: str) -> None:
        super().__init__(f"OAuth2 provider {provider} not found")
        self.provider = provider


class LocalFileNotFoundError(ToolError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, path: str) -> None:
        super().__init__(f"File {path} not found")
        self.path = path
