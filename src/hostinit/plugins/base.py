"""The Plugin contract and a convenience base class for implementers."""

from __future__ import annotations

import abc
import logging
from typing import Any

from .errors import InitializationError
from .models import Command, Compatibility, Dependency, PluginMetadata

logger = logging.getLogger(__name__)


class Plugin(abc.ABC):
    """A capability module.

    Accessors must be pure and return the same value on every call.
    ``initialize`` runs once before any command handler; ``start``/``stop`` are
    idempotent and ``stop`` is safe to call even if ``start`` never ran.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str: ...

    @property
    @abc.abstractmethod
    def description(self) -> str: ...

    @property
    @abc.abstractmethod
    def version(self) -> str: ...

    @property
    @abc.abstractmethod
    def author(self) -> str: ...

    @abc.abstractmethod
    def initialize(self, config: dict[str, Any]) -> None:
        """Raise InitializationError if required configuration is missing or malformed."""

    @abc.abstractmethod
    def validate(self) -> None:
        """Plugin-specific self-check. Raising vetoes registration."""

    @abc.abstractmethod
    def get_commands(self) -> list[Command]: ...

    @abc.abstractmethod
    def dependencies(self) -> list[Dependency]: ...

    @abc.abstractmethod
    def compatibility(self) -> Compatibility: ...

    @abc.abstractmethod
    def get_metadata(self) -> PluginMetadata: ...

    @abc.abstractmethod
    def start(self, ctx: dict[str, Any] | None = None) -> None: ...

    @abc.abstractmethod
    def stop(self, ctx: dict[str, Any] | None = None) -> None: ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.version}>"


class BasePlugin(Plugin):
    """Plugin with the boilerplate filled in.

    Subclasses set the class attributes and implement ``get_commands``.
    ``required_config`` lists keys ``initialize`` insists on.
    """

    plugin_name = ""
    plugin_description = ""
    plugin_version = "0.0.0"
    plugin_author = ""
    license = ""
    repository = ""
    tags: tuple[str, ...] = ()
    required_config: tuple[str, ...] = ()

    def __init__(self) -> None:
        self.config: dict[str, Any] = {}
        self._initialized = False
        self._running = False

    @property
    def name(self) -> str:
        return self.plugin_name

    @property
    def description(self) -> str:
        return self.plugin_description

    @property
    def version(self) -> str:
        return self.plugin_version

    @property
    def author(self) -> str:
        return self.plugin_author

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def running(self) -> bool:
        return self._running

    def initialize(self, config: dict[str, Any]) -> None:
        if self._initialized:
            logger.debug("plugin %s already initialized", self.name)
            return
        if config is not None and not isinstance(config, dict):
            raise InitializationError(
                f"plugin {self.name}: configuration must be a mapping", plugin_name=self.name
            )
        config = dict(config or {})
        missing = [k for k in self.required_config if config.get(k) in (None, "")]
        if missing:
            raise InitializationError(
                f"plugin {self.name}: missing required configuration: {', '.join(missing)}",
                plugin_name=self.name,
            )
        self.config = config
        self._initialized = True

    def validate(self) -> None:
        return None

    def dependencies(self) -> list[Dependency]:
        return []

    def compatibility(self) -> Compatibility:
        return Compatibility()

    def get_metadata(self) -> PluginMetadata:
        return PluginMetadata(
            name=self.name,
            description=self.description,
            version=self.version,
            author=self.author,
            license=self.license,
            repository=self.repository,
            tags=list(self.tags),
            dependencies=self.dependencies(),
            compatibility=self.compatibility(),
        )

    def start(self, ctx: dict[str, Any] | None = None) -> None:
        self._running = True

    def stop(self, ctx: dict[str, Any] | None = None) -> None:
        self._running = False


class AliasedPlugin(Plugin):
    """Serves ``plugin`` under another name, e.g. one chosen at install time."""

    def __init__(self, plugin: Plugin, name: str):
        self.wrapped = plugin
        self._alias = name

    def __getattr__(self, attr: str) -> Any:
        return getattr(self.wrapped, attr)

    @property
    def name(self) -> str:
        return self._alias

    @property
    def description(self) -> str:
        return self.wrapped.description

    @property
    def version(self) -> str:
        return self.wrapped.version

    @property
    def author(self) -> str:
        return self.wrapped.author

    def initialize(self, config: dict[str, Any]) -> None:
        self.wrapped.initialize(config)

    def validate(self) -> None:
        self.wrapped.validate()

    def get_commands(self) -> list[Command]:
        return self.wrapped.get_commands()

    def dependencies(self) -> list[Dependency]:
        return self.wrapped.dependencies()

    def compatibility(self) -> Compatibility:
        return self.wrapped.compatibility()

    def get_metadata(self) -> PluginMetadata:
        metadata = self.wrapped.get_metadata()
        metadata.name = self._alias
        return metadata

    def start(self, ctx: dict[str, Any] | None = None) -> None:
        self.wrapped.start(ctx)

    def stop(self, ctx: dict[str, Any] | None = None) -> None:
        self.wrapped.stop(ctx)
