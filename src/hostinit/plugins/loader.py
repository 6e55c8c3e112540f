"""Plugin loaders: PluginLoader, FilesystemLoader, load_artifact, plugin.yaml I/O."""

from __future__ import annotations

import abc
import importlib.util
import inspect
import logging
import sys
import zipimport
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from hostinit.core.utils import atomic_write_text, expand_path, sha256_file

from .base import AliasedPlugin, Plugin
from .errors import (
    LoaderError,
    PluginError,
    PluginNotFound,
    PluginSignatureMismatch,
    PluginSymbolMissing,
)
from .models import ENTRY_POINT, METADATA_FILE, PluginMetadata

if TYPE_CHECKING:
    from types import ModuleType

    from hostinit.core.config import Config

logger = logging.getLogger(__name__)

PLUGINS_CONFIG_HEADER = "# hostinit plugin configuration\n"


class PluginLoader(abc.ABC):
    """Produces plugin instances. ``failures`` holds per-plugin errors from the last batch."""

    def __init__(self) -> None:
        self.failures: dict[str, PluginError] = {}

    @abc.abstractmethod
    def load_plugins(self) -> list[Plugin]: ...

    @abc.abstractmethod
    def load_plugin(self, name: str) -> Plugin: ...

    @abc.abstractmethod
    def list_available(self) -> list[PluginMetadata]: ...


# ── plugin.yaml ─────────────────────────────────────────────────────


def read_metadata(path: Path) -> PluginMetadata:
    """Parse a plugin.yaml file (or the plugin.yaml inside a directory)."""
    if path.is_dir():
        path = path / METADATA_FILE
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise LoaderError(f"cannot read {path}: {e}") from e
    if data is not None and not isinstance(data, dict):
        raise LoaderError(f"{path}: expected a mapping at the top level")
    return PluginMetadata.from_dict(data)


def dump_metadata(metadata: PluginMetadata) -> str:
    return yaml.safe_dump(metadata.to_dict(), sort_keys=False, default_flow_style=False)


def write_metadata(path: Path, metadata: PluginMetadata) -> None:
    if path.is_dir():
        path = path / METADATA_FILE
    atomic_write_text(path, dump_metadata(metadata))


# ── Artifacts ───────────────────────────────────────────────────────


def artifact_path(plugin_dir: Path, metadata: PluginMetadata | None = None) -> Path:
    """The artifact inside an installed plugin directory: ``<name>.zip``."""
    if metadata is not None and metadata.name:
        candidate = plugin_dir / f"{metadata.name}.zip"
        if candidate.exists():
            return candidate
    return plugin_dir / f"{plugin_dir.name}.zip"


def is_installed_dir(path: Path) -> bool:
    return (
        path.is_dir()
        and not path.name.startswith(".")
        and (path / METADATA_FILE).is_file()
        and any(path.glob("*.zip"))
    )


def _forget_module(module_name: str) -> None:
    for key in [k for k in sys.modules if k == module_name or k.startswith(module_name + ".")]:
        del sys.modules[key]


def _import_zip(path: Path, module_name: str) -> ModuleType:
    importer = zipimport.zipimporter(str(path))
    importer.invalidate_caches()
    spec = importer.find_spec(module_name)
    if spec is None:
        raise LoaderError(f"{path}: module {module_name!r} not found in artifact")
    return _exec_spec(spec, path)


def _import_file(path: Path, module_name: str) -> ModuleType:
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise LoaderError(f"{path}: not an importable Python file")
    return _exec_spec(spec, path)


def _exec_spec(spec, path: Path) -> ModuleType:
    _forget_module(spec.name)
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        _forget_module(spec.name)
        raise LoaderError(f"{path}: importing {spec.name} failed: {e}") from e
    return module


def plugin_from_module(module: ModuleType, source: str = "") -> Plugin:
    """Call the module's ``new_plugin()`` entry point and check what it returns."""
    where = source or module.__name__
    factory = getattr(module, ENTRY_POINT, None)
    if factory is None:
        raise PluginSymbolMissing(f"{where}: entry point {ENTRY_POINT}() not found")
    if not callable(factory):
        raise PluginSignatureMismatch(f"{where}: {ENTRY_POINT} is not callable")
    try:
        sig = inspect.signature(factory)
    except (TypeError, ValueError):
        sig = None
    if sig is not None:
        required = [
            p
            for p in sig.parameters.values()
            if p.default is p.empty and p.kind not in (p.VAR_POSITIONAL, p.VAR_KEYWORD)
        ]
        if required:
            raise PluginSignatureMismatch(
                f"{where}: {ENTRY_POINT}() must take no arguments, "
                f"takes {', '.join(p.name for p in required)}"
            )
    try:
        plugin = factory()
    except Exception as e:
        raise LoaderError(f"{where}: {ENTRY_POINT}() raised {type(e).__name__}: {e}") from e
    if not isinstance(plugin, Plugin):
        raise PluginSignatureMismatch(
            f"{where}: {ENTRY_POINT}() returned {type(plugin).__name__}, not a Plugin"
        )
    return plugin


def match_metadata(plugin: Plugin, metadata: PluginMetadata, where: str = "") -> Plugin:
    """Hold a plugin loaded from an installed directory to its plugin.yaml.

    A version or description that disagrees with the file is an error. A
    different name means the plugin was installed under another name, so it
    is served under that one.
    """
    for field in ("version", "description"):
        declared = getattr(metadata, field)
        actual = getattr(plugin, field)
        if declared and actual != declared:
            raise LoaderError(
                f"{where or metadata.name}: plugin {field} {actual!r} does not match "
                f"{METADATA_FILE} ({declared!r})",
                plugin_name=metadata.name,
            )
    if metadata.name and plugin.name != metadata.name:
        return AliasedPlugin(plugin, metadata.name)
    return plugin


def load_artifact(path: Path, entry_module: str = "") -> Plugin:
    """Load a plugin from a ``.py`` file, a ``.zip`` artifact, or an installed directory."""
    path = Path(path)
    if path.is_dir():
        if not (path / METADATA_FILE).is_file():
            raise LoaderError(f"{path}: no {METADATA_FILE}")
        metadata = read_metadata(path)
        plugin = load_artifact(artifact_path(path, metadata), entry_module or metadata.module_name)
        return match_metadata(plugin, metadata, str(path))
    if not path.is_file():
        raise PluginNotFound(path.stem, str(path.parent))
    if path.suffix == ".py":
        module = _import_file(path, entry_module or path.stem)
    elif path.suffix == ".zip":
        module = _import_zip(path, entry_module or path.stem.replace("-", "_"))
    else:
        raise LoaderError(f"{path}: unsupported plugin artifact (expected .py or .zip)")
    logger.debug("loaded module %s from %s", module.__name__, path)
    return plugin_from_module(module, str(path))


# ── plugins.yaml ────────────────────────────────────────────────────


def default_plugins_config(plugins_dir: Path, builtin_names: list[str]) -> dict[str, Any]:
    return {
        "plugins": {name: {"enabled": True, "builtin": name} for name in builtin_names},
        "search_paths": [str(plugins_dir)],
    }


class FilesystemLoader(PluginLoader):
    """Loads what plugins.yaml enables, then whatever is installed under the search paths."""

    def __init__(self, config: Config):
        super().__init__()
        self.config = config
        self.config_path = config.plugins_config_path
        self.plugins_dir = config.plugins_dir

    # plugins.yaml

    def read_config(self) -> dict[str, Any]:
        if not self.config_path.exists():
            data = self._default_config()
            self.write_config(data)
            logger.info("created default plugin configuration at %s", self.config_path)
            return data
        try:
            data = yaml.safe_load(self.config_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise LoaderError(f"cannot read {self.config_path}: {e}") from e
        if not isinstance(data, dict):
            raise LoaderError(f"{self.config_path}: expected a mapping at the top level")
        data["plugins"] = data.get("plugins") or {}
        data["search_paths"] = data.get("search_paths") or []
        return data

    def write_config(self, data: dict[str, Any]) -> None:
        atomic_write_text(
            self.config_path,
            PLUGINS_CONFIG_HEADER + yaml.safe_dump(data, sort_keys=False, default_flow_style=False),
        )

    def _default_config(self) -> dict[str, Any]:
        from .builtin import builtins

        names = sorted({p.name for p in builtins().values()})
        return default_plugins_config(self.plugins_dir, names)

    def set_enabled(self, name: str, enabled: bool) -> None:
        data = self.read_config()
        entry = data["plugins"].get(name)
        if not isinstance(entry, dict):
            entry = {}
        entry["enabled"] = enabled
        data["plugins"][name] = entry
        self.write_config(data)

    def remove_entry(self, name: str) -> bool:
        data = self.read_config()
        if data["plugins"].pop(name, None) is None:
            return False
        self.write_config(data)
        return True

    def search_paths(self, data: dict[str, Any] | None = None) -> list[Path]:
        data = data if data is not None else self.read_config()
        base = self.config_path.parent
        paths = [self.plugins_dir]
        for p in data.get("search_paths", []):
            path = expand_path(p, base)
            if path not in paths:
                paths.append(path)
        return paths

    # resolution

    def _resolve_entry(self, name: str, entry: dict[str, Any]) -> Plugin:
        if entry.get("builtin"):
            installed = self._find_installed(name)
            if installed is not None:
                logger.debug("installed plugin %s supersedes the built-in", name)
                return load_artifact(installed)
            from .builtin import find_builtin

            plugin = find_builtin(str(entry["builtin"]))
            if plugin is None:
                raise PluginNotFound(name, f"built-in plugins (as {entry['builtin']})")
            return plugin
        if entry.get("path"):
            path = expand_path(entry["path"], self.config_path.parent)
            return load_artifact(path, str(entry.get("entry_module", "")))
        remote = entry.get("remote")
        if isinstance(remote, dict) and remote.get("url"):
            return self._resolve_remote(name, remote)
        installed = self._find_installed(name)
        if installed is not None:
            return load_artifact(installed)
        raise PluginNotFound(name, str(self.config_path))

    def _resolve_remote(self, name: str, remote: dict[str, Any]) -> Plugin:
        plugin_dir = self._find_installed(name)
        if plugin_dir is None:
            raise PluginNotFound(
                name, f"{self.plugins_dir} (run `hostinit plugin install {remote['url']}`)"
            )
        expected = str(remote.get("checksum") or "")
        if expected:
            artifact = artifact_path(plugin_dir, read_metadata(plugin_dir))
            actual = sha256_file(artifact)
            if actual.lower() != expected.lower():
                raise LoaderError(
                    f"plugin {name}: checksum mismatch for {artifact} "
                    f"(expected {expected}, got {actual})",
                    plugin_name=name,
                )
        return load_artifact(plugin_dir)

    def _find_installed(self, name: str, data: dict[str, Any] | None = None) -> Path | None:
        for root in self.search_paths(data):
            candidate = root / name
            if is_installed_dir(candidate):
                return candidate
        return None

    def _scan(self, data: dict[str, Any]) -> list[Path]:
        found: list[Path] = []
        seen: set[Path] = set()
        for root in self.search_paths(data):
            if not root.is_dir():
                continue
            for child in sorted(root.iterdir()):
                if is_installed_dir(child) and child.resolve() not in seen:
                    seen.add(child.resolve())
                    found.append(child)
        return found

    def _initialize(self, plugin: Plugin, entry: dict[str, Any]) -> None:
        config = entry.get("config") or {}
        plugin.initialize(config)

    # PluginLoader

    def load_plugins(self) -> list[Plugin]:
        self.failures = {}
        data = self.read_config()
        entries: dict[str, Any] = data["plugins"]
        plugins: dict[str, Plugin] = {}

        for name, entry in entries.items():
            entry = entry if isinstance(entry, dict) else {}
            if not entry.get("enabled", True):
                continue
            try:
                plugin = self._resolve_entry(name, entry)
                self._initialize(plugin, entry)
            except PluginError as e:
                logger.warning("plugin %s: %s", name, e)
                self.failures[name] = e
                continue
            plugins[plugin.name] = plugin

        for plugin_dir in self._scan(data):
            name = plugin_dir.name
            if name in plugins or name in self.failures or name in entries:
                continue
            try:
                plugin = load_artifact(plugin_dir)
                self._initialize(plugin, {})
            except PluginError as e:
                logger.warning("plugin %s: %s", name, e)
                self.failures[name] = e
                continue
            plugins.setdefault(plugin.name, plugin)
        return list(plugins.values())

    def load_plugin(self, name: str) -> Plugin:
        data = self.read_config()
        entry = data["plugins"].get(name)
        if isinstance(entry, dict):
            plugin = self._resolve_entry(name, entry)
        else:
            entry = {}
            installed = self._find_installed(name, data)
            if installed is None:
                raise PluginNotFound(name, ", ".join(str(p) for p in self.search_paths(data)))
            plugin = load_artifact(installed)
        self._initialize(plugin, entry)
        return plugin

    def list_available(self) -> list[PluginMetadata]:
        data = self.read_config()
        result: dict[str, PluginMetadata] = {}
        for name, entry in data["plugins"].items():
            entry = entry if isinstance(entry, dict) else {}
            if entry.get("builtin"):
                from .builtin import find_builtin

                plugin = find_builtin(str(entry["builtin"]))
                if plugin is not None:
                    result[name] = plugin.get_metadata()
                    continue
            result[name] = PluginMetadata(name=name, source=str(entry.get("path", "")))
        for plugin_dir in self._scan(data):
            try:
                result[plugin_dir.name] = read_metadata(plugin_dir)
            except LoaderError as e:
                logger.warning("%s", e)
        return list(result.values())
