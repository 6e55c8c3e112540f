"""Bundled service plugins, registered into the built-in table by init_builtins()."""

from __future__ import annotations

from typing import Callable

from .docker import DockerPlugin
from .nginx import NginxPlugin
from .system import SystemPlugin

BUILTIN_PREFIX = "hostinit/services"


def register_all(register: Callable) -> None:
    for plugin in (SystemPlugin(), NginxPlugin(), DockerPlugin()):
        register(f"{BUILTIN_PREFIX}/{plugin.name}", plugin)


__all__ = ["DockerPlugin", "NginxPlugin", "SystemPlugin", "register_all"]
