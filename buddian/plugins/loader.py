"""
Plugin discovery and loading.

Each immediate subdirectory of the plugin directory is a candidate plugin.
A candidate may carry a manifest (``plugin.json`` or ``plugin.yaml``) naming
its entry point; without one the loader looks for ``main.py`` then
``__init__.py``. The entry point module provides the plugin as a ``plugin``
attribute, a ``create_plugin()`` factory, or by being a plugin itself.
"""

import importlib.util
import json
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from buddian.plugins.errors import PluginLoadError

MANIFEST_FILES = ("plugin.json", "plugin.yaml", "plugin.yml")
DEFAULT_ENTRY_POINTS = ("main.py", "__init__.py")
REQUIRED_HOOKS = ("get_name", "get_version", "get_commands", "initialize", "on_event")


@dataclass
class PluginManifest:
    """Parsed plugin manifest."""
    id: str
    name: str
    version: str = "1.0.0"
    description: str = ""
    author: str = ""
    entry_point: str = "main.py"
    permissions: list[str] = field(default_factory=list)    # e.g., ["network.http", "storage.read"]
    dependencies: list[str] = field(default_factory=list)   # Python packages required

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PluginManifest":
        deps = data.get("dependencies", [])
        if isinstance(deps, dict):
            deps = list(deps)
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name") or data.get("id", "")),
            version=str(data.get("version", "1.0.0")),
            description=str(data.get("description", "")),
            author=str(data.get("author", "")),
            entry_point=str(data.get("entry_point") or data.get("entryPoint") or "main.py"),
            permissions=list(data.get("permissions", [])),
            dependencies=list(deps),
        )

    def validate(self) -> list[str]:
        """Validate manifest and return list of issues."""
        issues = []
        if not self.id:
            issues.append("Missing 'id' field")
        if not self.name:
            issues.append("Missing 'name' field")
        if Path(self.entry_point).is_absolute() or ".." in Path(self.entry_point).parts:
            issues.append("'entry_point' must stay inside the plugin directory")
        return issues


def resolve_plugin_directory(directory: str | Path, cwd: Path | None = None) -> Path:
    """Resolve the configured plugin directory against the working directory."""
    path = Path(directory).expanduser()
    if not path.is_absolute():
        path = (cwd or Path.cwd()) / path
    return path


def discover_plugin_dirs(root: Path) -> list[Path] | None:
    """
    List candidate plugin directories in deterministic (name) order.

    Returns None when the root does not exist, so callers can tell
    "no directory" from "empty directory".
    """
    if not root.is_dir():
        return None
    return sorted(
        (item for item in root.iterdir() if item.is_dir() and not item.name.startswith((".", "_"))),
        key=lambda p: p.name,
    )


def read_manifest(plugin_dir: Path) -> PluginManifest | None:
    """Read plugin.json / plugin.yaml if present. Raises PluginLoadError when malformed."""
    for filename in MANIFEST_FILES:
        manifest_file = plugin_dir / filename
        if not manifest_file.exists():
            continue
        try:
            with open(manifest_file, encoding="utf-8") as f:
                if filename.endswith(".json"):
                    payload = json.load(f)
                else:
                    payload = yaml.safe_load(f) or {}
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise PluginLoadError(f"Invalid {filename}: {e}", plugin_id=plugin_dir.name) from e
        if not isinstance(payload, dict):
            raise PluginLoadError(f"Invalid {filename}: expected a mapping", plugin_id=plugin_dir.name)

        manifest = PluginManifest.from_dict(payload)
        issues = manifest.validate()
        if issues:
            raise PluginLoadError(
                f"Manifest issues: {', '.join(issues)}",
                plugin_id=plugin_dir.name,
                context={"issues": issues},
            )
        return manifest
    return None


def find_entry_point(plugin_dir: Path, manifest: PluginManifest | None = None) -> Path:
    candidates = (manifest.entry_point,) if manifest else DEFAULT_ENTRY_POINTS
    for candidate in candidates:
        entry_file = plugin_dir / candidate
        if entry_file.is_file():
            return entry_file
    raise PluginLoadError(
        f"Entry point not found (tried {', '.join(candidates)})",
        plugin_id=plugin_dir.name,
    )


def _module_name(module_id: str) -> str:
    safe = re.sub(r"\W+", "_", module_id).strip("_") or "plugin"
    return f"buddian.plugins.ext.{safe}"


def load_plugin_module(module_id: str, file_path: Path) -> Any:
    """Dynamically load a Python module from a file path."""
    name = _module_name(module_id)
    spec = importlib.util.spec_from_file_location(
        name,
        str(file_path),
        submodule_search_locations=[str(file_path.parent)] if file_path.name == "__init__.py" else None,
    )
    if spec is None or spec.loader is None:
        raise PluginLoadError(f"Could not create module spec for {file_path}", plugin_id=module_id)

    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(spec.name, None)
        raise PluginLoadError(f"Failed to import {file_path.name}: {e}", plugin_id=module_id) from e
    return module


def resolve_plugin(module: Any) -> Any:
    """Pick the plugin object a module exports."""
    plugin = getattr(module, "plugin", None)
    if plugin is not None:
        return plugin
    factory = getattr(module, "create_plugin", None)
    if callable(factory):
        return factory()
    return module


def validate_plugin_shape(obj: Any, plugin_id: str = "") -> None:
    """Raise PluginLoadError unless obj exposes the plugin hooks."""
    missing = [hook for hook in REQUIRED_HOOKS if not callable(getattr(obj, hook, None))]
    if missing:
        raise PluginLoadError(
            f"Invalid plugin structure in {plugin_id or obj!r}: missing {', '.join(missing)}",
            plugin_id=plugin_id,
            context={"missing": missing},
        )


def load_plugin_from_dir(plugin_dir: Path) -> tuple[Any, PluginManifest | None]:
    """
    Load the plugin object from one candidate directory.

    Returns:
        The plugin object and its manifest (if any).

    Raises:
        PluginLoadError: manifest, entry point, import or contract problems.
    """
    manifest = read_manifest(plugin_dir)
    entry_file = find_entry_point(plugin_dir, manifest)
    module_id = manifest.id if manifest else plugin_dir.name
    module = load_plugin_module(module_id, entry_file)
    plugin = resolve_plugin(module)
    validate_plugin_shape(plugin, module_id)
    logger.debug(f"Resolved plugin object from {entry_file}")
    return plugin, manifest
