"""MCP server exposing a PocketBase instance to AI assistants."""

__version__ = "2.1.0"
