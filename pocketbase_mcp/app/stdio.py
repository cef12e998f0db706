"""MCP over stdio: newline-delimited JSON-RPC on stdin/stdout."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import AsyncIterator, Set, TextIO

from .main import configure_logging
from .mcp.protocol import handle_raw, json_dumps
from .mcp.tools import ToolRegistry
from .pocketbase_client import PocketBaseClient
from .settings import AppSettings, resolve_base_url

logger = logging.getLogger(__name__)


async def read_stdin_lines() -> AsyncIterator[str]:
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            return
        yield line


class StdioServer:
    """Dispatch each incoming line in its own task so slow tool calls do not block others."""

    def __init__(self, registry: ToolRegistry, output: TextIO | None = None) -> None:
        self._registry = registry
        self._output = output if output is not None else sys.stdout
        self._write_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    async def _respond(self, line: str) -> None:
        response = await handle_raw(self._registry, line)
        if response is None:
            return
        async with self._write_lock:
            self._output.write(json_dumps(response) + "\n")
            self._output.flush()

    async def serve(self, lines: AsyncIterator[str]) -> None:
        async for line in lines:
            line = line.strip()
            if not line:
                continue
            task = asyncio.create_task(self._respond(line))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        if self._tasks:
            await asyncio.gather(*self._tasks)


async def run() -> None:
    settings = AppSettings()
    configure_logging(settings.server.log_level)
    resolve_base_url(settings.pocketbase)
    client = PocketBaseClient(settings.pocketbase)
    registry = ToolRegistry(client, hooks_dir=settings.pocketbase.hooks_dir)
    logger.info("PocketBase MCP server running on stdio")
    try:
        await StdioServer(registry).serve(read_stdin_lines())
    except BrokenPipeError:
        logger.info("Client closed the stdio pipe")
    finally:
        await client.close()


def main() -> None:  # pragma: no cover
    asyncio.run(run())


if __name__ == "__main__":  # pragma: no cover
    main()
