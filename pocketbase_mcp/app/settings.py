from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple, Type

from pydantic import BaseModel, Field
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_POCKETBASE_URL = "http://127.0.0.1:8090"
LOCAL_CONFIG_FILENAME = ".pocketbase-mcp.json"


def _read_local_config(path: Path) -> Dict[str, Any]:
    """Return recognised keys from the per-project JSON config, or nothing.

    Only ``url`` is recognised. Unreadable or malformed files are logged and
    ignored so that resolution falls through to the environment.
    """

    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Error reading local config %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring local config %s: expected a JSON object", path)
        return {}
    url = data.get("url")
    if isinstance(url, str) and url:
        return {"url": url}
    return {}


class LocalConfigFileSource(PydanticBaseSettingsSource):
    """Settings source backed by ``.pocketbase-mcp.json`` in the working directory."""

    def __init__(self, settings_cls: Type[BaseSettings], path: Optional[Path] = None) -> None:
        super().__init__(settings_cls)
        self._data = _read_local_config(path or Path.cwd() / LOCAL_CONFIG_FILENAME)

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> Dict[str, Any]:
        return dict(self._data)


class PocketBaseSettings(BaseSettings):
    """Backend configuration sourced from the local config file, environment or .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="POCKETBASE_",
        env_ignore_empty=True,
        extra="ignore",
    )

    url: str = Field(DEFAULT_POCKETBASE_URL, description="Base URL of the PocketBase instance")
    timeout_seconds: float = Field(30.0, ge=1.0, description="HTTP client timeout (seconds)")
    retries: int = Field(
        0, ge=0, le=10, description="Retry attempts for transport failures (0 disables retries)"
    )
    hooks_dir: Optional[str] = Field(
        None, description="Directory holding pb_hooks scripts; defaults to <cwd>/pb_hooks"
    )
    auth_token: Optional[str] = Field(
        None, description="Optional token used to seed the initial auth session"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # The project file wins over the environment.
        return (
            init_settings,
            LocalConfigFileSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )


class ServerSettings(BaseSettings):
    """Transport configuration for the HTTP server and logging."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="SERVER_", extra="ignore")

    host: str = Field("127.0.0.1", description="Host interface for uvicorn")
    port: int = Field(8000, ge=1, le=65535, description="Port exposed by the HTTP transport")
    log_level: Literal["critical", "error", "warning", "info", "debug", "trace"] = Field(
        "info", description="Logging level for the server and the ASGI runtime"
    )


def _default_pocketbase_settings() -> PocketBaseSettings:
    return PocketBaseSettings()


def _default_server_settings() -> ServerSettings:
    return ServerSettings()


class AppSettings(BaseModel):
    """Aggregate configuration for the MCP server."""

    pocketbase: PocketBaseSettings = Field(default_factory=_default_pocketbase_settings)
    server: ServerSettings = Field(default_factory=_default_server_settings)


def resolve_base_url(settings: Optional[PocketBaseSettings] = None) -> str:
    """Resolve the PocketBase URL: local config file, then POCKETBASE_URL, then the default.

    Both entry points call this once at startup; it logs which source won.
    """

    settings = settings or PocketBaseSettings()
    url = settings.url
    if "url" not in settings.model_fields_set:
        source = "default"
    elif _read_local_config(Path.cwd() / LOCAL_CONFIG_FILENAME).get("url") == url:
        source = f"local config {LOCAL_CONFIG_FILENAME}"
    else:
        source = "POCKETBASE_URL"
    logger.info("PocketBase base URL resolved to %s (from %s)", url, source)
    return url
