"""Plugin scaffolding utilities."""

from __future__ import annotations

import re
import shutil
from pathlib import Path

from buddian import __version__

TEMPLATE_FILES = {
    "plugin.json.tpl": "plugin.json",
    "main.py.tpl": "main.py",
}


def _sanitize_plugin_name(name: str) -> str:
    raw = (name or "").strip().lower()
    cleaned = re.sub(r"[^a-z0-9_-]+", "_", raw)
    cleaned = cleaned.strip("_-")
    return cleaned or "plugin"


def _class_name(plugin_id: str) -> str:
    parts = re.split(r"[_-]+", plugin_id)
    name = "".join(part.capitalize() for part in parts if part)
    if not name or name[0].isdigit():
        name = f"Plugin{name}"
    return f"{name}Plugin" if not name.endswith("Plugin") else name


def _render_template(template_path: Path, replacements: dict[str, str]) -> str:
    content = template_path.read_text(encoding="utf-8")
    for key, value in replacements.items():
        content = content.replace(f"{{{{{key}}}}}", value)
    return content


def scaffold_plugin(base_dir: Path, name: str, kind: str = "dynamic", overwrite: bool = False) -> Path:
    """Create a plugin scaffold under base_dir and return plugin path."""
    kind_normalized = (kind or "").strip().lower()
    if kind_normalized != "dynamic":
        raise ValueError("Only kind='dynamic' is currently supported")

    templates_dir = Path(__file__).parent / "templates" / kind_normalized
    if not templates_dir.exists():
        raise ValueError(f"Templates not found for kind '{kind_normalized}'")

    plugin_id = _sanitize_plugin_name(name)
    out = Path(base_dir).expanduser() / plugin_id
    if out.exists():
        if not overwrite:
            raise ValueError(f"Plugin directory already exists: {out}")
        for child in out.iterdir():
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()
    else:
        out.mkdir(parents=True, exist_ok=True)

    replacements = {
        "plugin_id": plugin_id,
        "plugin_name": plugin_id.replace("_", " ").replace("-", " ").title(),
        "command_name": plugin_id.replace("-", "_"),
        "class_name": _class_name(plugin_id),
        "description": f"{plugin_id} plugin",
        "buddian_version": __version__,
    }

    for template_name, output_name in TEMPLATE_FILES.items():
        rendered = _render_template(templates_dir / template_name, replacements)
        (out / output_name).write_text(rendered, encoding="utf-8")

    return out
