from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from typing import Dict, Optional

from .exceptions import UnknownTemplateError

TEMPLATES_PACKAGE = "pocketbase_mcp.app.hook_templates"
TEMPLATE_FILE = "{name}.js.tmpl"
PLACEHOLDER = "{{name}}"


@dataclass(frozen=True)
class HookTemplate:
    """A packaged hook script and the rule for naming the file it is written to."""

    type: str
    filename: str
    default_name: str

    def target_filename(self, name: str) -> str:
        return self.filename.replace(PLACEHOLDER, name)


HOOK_TEMPLATES: Dict[str, HookTemplate] = {
    "record-validation": HookTemplate("record-validation", "{{name}}_validation.pb.js", "collection"),
    "record-auth": HookTemplate("record-auth", "{{name}}_auth.pb.js", "users"),
    "custom-route": HookTemplate("custom-route", "{{name}}_routes.pb.js", "custom"),
    "file-upload": HookTemplate("file-upload", "{{name}}_file_upload.pb.js", "collection"),
    "scheduled-task": HookTemplate("scheduled-task", "scheduled_tasks.pb.js", "scheduled"),
}


@lru_cache(maxsize=None)
def _read_template_source(template_type: str) -> str:
    filename = TEMPLATE_FILE.format(name=template_type)
    with (resources.files(TEMPLATES_PACKAGE) / filename).open("r", encoding="utf-8") as template_file:
        return template_file.read()


@dataclass(frozen=True)
class RenderedHook:
    filename: str
    content: str


def render_hook_template(template_type: str, name: Optional[str] = None) -> RenderedHook:
    """Fill the packaged template with a collection (or route group) name."""

    template = HOOK_TEMPLATES.get(template_type)
    if template is None:
        raise UnknownTemplateError(template_type)
    target = name or template.default_name
    source = _read_template_source(template_type)
    return RenderedHook(
        filename=template.target_filename(target),
        content=source.replace(PLACEHOLDER, target),
    )
