"""Built-in plugin table: register_builtin, init_builtins, teardown_builtins, BuiltinLoader."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .errors import PluginNotFound
from .loader import PluginLoader

if TYPE_CHECKING:
    from .base import Plugin
    from .models import PluginMetadata

logger = logging.getLogger(__name__)

_lock = threading.RLock()
_builtins: dict[str, Plugin] = {}  # import path -> plugin
_initialized = False


def register_builtin(import_path: str, plugin: Plugin) -> None:
    with _lock:
        if import_path in _builtins:
            logger.debug("replacing built-in %s", import_path)
        _builtins[import_path] = plugin


def builtins() -> dict[str, Plugin]:
    with _lock:
        return dict(_builtins)


def find_builtin(key: str) -> Plugin | None:
    """Look up by import path first, then by plugin name."""
    with _lock:
        if key in _builtins:
            return _builtins[key]
        for plugin in _builtins.values():
            if plugin.name == key:
                return plugin
    return None


def init_builtins() -> None:
    """Populate the table with the bundled service plugins. Safe to call twice."""
    global _initialized
    with _lock:
        if _initialized:
            return
        from hostinit.services import register_all

        register_all(register_builtin)
        _initialized = True
        logger.debug("registered %d built-in plugins", len(_builtins))


def teardown_builtins() -> None:
    global _initialized
    with _lock:
        _builtins.clear()
        _initialized = False


class BuiltinLoader(PluginLoader):
    """Loader over the process-wide built-in table."""

    def load_plugins(self) -> list[Plugin]:
        return list(builtins().values())

    def load_plugin(self, name: str) -> Plugin:
        plugin = find_builtin(name)
        if plugin is None:
            raise PluginNotFound(name, "built-in plugins")
        return plugin

    def list_available(self) -> list[PluginMetadata]:
        return [p.get_metadata() for p in builtins().values()]
