from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import HookNotFoundError, InvalidHookFilenameError

logger = logging.getLogger(__name__)

HOOK_SUFFIX = ".pb.js"
DEFAULT_HOOKS_DIRNAME = "pb_hooks"


def resolve_hooks_dir(override: Optional[str] = None, configured: Optional[str] = None) -> Path:
    """Pick the hooks directory: explicit argument, configured value, then ``<cwd>/pb_hooks``."""

    if override:
        return Path(override).expanduser()
    if configured:
        return Path(configured).expanduser()
    return Path.cwd() / DEFAULT_HOOKS_DIRNAME


def _check_plain_name(filename: str) -> None:
    if not filename or filename in {".", ".."} or Path(filename).name != filename or "\\" in filename:
        raise InvalidHookFilenameError(f"Invalid hook filename: {filename!r}")


class HookStore:
    """Filesystem-backed store of pb_hooks scripts keyed by filename.

    Nothing is cached; every call goes to disk and concurrent writers to the
    same file are last-writer-wins.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    async def list(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._list)

    async def read(self, filename: str) -> str:
        _check_plain_name(filename)
        return await asyncio.to_thread(self._read, filename)

    async def write(self, filename: str, content: str) -> Path:
        _check_plain_name(filename)
        if not filename.endswith(HOOK_SUFFIX):
            raise InvalidHookFilenameError(f"Hook filename must end with {HOOK_SUFFIX}: {filename}")
        return await asyncio.to_thread(self._write, filename, content)

    async def delete(self, filename: str) -> None:
        _check_plain_name(filename)
        await asyncio.to_thread(self._delete, filename)

    def _list(self) -> List[Dict[str, Any]]:
        if not self.directory.is_dir():
            logger.debug("Hooks directory %s does not exist", self.directory)
            return []
        hooks: List[Dict[str, Any]] = []
        for path in sorted(self.directory.iterdir()):
            if not path.is_file() or not path.name.endswith(HOOK_SUFFIX):
                continue
            stats = path.stat()
            hooks.append(
                {
                    "filename": path.name,
                    "size": stats.st_size,
                    "modified": datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc).isoformat(),
                }
            )
        return hooks

    def _read(self, filename: str) -> str:
        try:
            return (self.directory / filename).read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise HookNotFoundError(filename) from exc

    def _write(self, filename: str, content: str) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / filename
        path.write_text(content, encoding="utf-8")
        logger.info("Wrote hook %s (%d bytes)", path, len(content))
        return path

    def _delete(self, filename: str) -> None:
        path = self.directory / filename
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise HookNotFoundError(filename) from exc
        logger.info("Deleted hook %s", path)
