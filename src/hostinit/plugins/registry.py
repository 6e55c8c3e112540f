"""Plugin registry: checked registration, batch loading, lifecycle and lookup."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from hostinit import __version__

from .compatibility import CompatibilityChecker, check_dependencies, dependency_problem
from .errors import (
    CyclicDependency,
    IncompatibleEnvironment,
    LoaderError,
    PluginError,
    PluginNotFound,
    UnresolvedDependency,
    ValidationFailed,
)
from .graph import DependencyGraph
from .semver import Constraint, InvalidConstraint, InvalidVersion
from .validation import Validator

if TYPE_CHECKING:
    from .base import Plugin
    from .installer import GitInstaller, InstallOptions
    from .loader import PluginLoader
    from .models import Command, PluginMetadata

logger = logging.getLogger(__name__)


class RWLock:
    """Many readers or one writer. Not reentrant."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class LoadReport:
    loaded: list[str] = field(default_factory=list)
    failed: dict[str, PluginError] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def _safe_name(plugin: Plugin) -> str:
    try:
        return str(plugin.name)
    except Exception:
        return ""


def _broken_dependents(plugins: dict[str, Plugin], replacement: Plugin) -> list[str]:
    """Registered plugins whose constraint on ``replacement`` no longer holds."""
    warnings = []
    for other in plugins.values():
        if other.name == replacement.name:
            continue
        for dep in other.dependencies():
            if dep.name != replacement.name or not dep.version:
                continue
            try:
                ok = Constraint(dep.version).check(replacement.version)
            except (InvalidConstraint, InvalidVersion):
                ok = False
            if not ok:
                warnings.append(
                    f"plugin {other.name} requires {dep.name} {dep.version}, "
                    f"but {dep.name} {replacement.version} is now registered"
                )
    return warnings


class Registry:
    """Name -> plugin map guarded by a read/write lock.

    ``register`` is a bare upsert; ``add`` runs the validator, the
    compatibility checker and the dependency check first.
    """

    def __init__(
        self,
        loader: PluginLoader | None = None,
        validator: Validator | None = None,
        checker: CompatibilityChecker | None = None,
        installer: GitInstaller | None = None,
    ):
        self.loader = loader
        self.validator = validator or Validator()
        self.checker = checker or CompatibilityChecker(__version__)
        self.installer = installer
        self._plugins: dict[str, Plugin] = {}
        self._lock = RWLock()

    def set_loader(self, loader: PluginLoader) -> None:
        self.loader = loader

    # ── Registration ────────────────────────────────────────────────

    def _upsert(self, plugin: Plugin) -> list[str]:
        warnings = []
        if plugin.name in self._plugins:
            warnings = _broken_dependents(self._plugins, plugin)
            for w in warnings:
                logger.warning("%s", w)
        self._plugins[plugin.name] = plugin
        return warnings

    def register(self, plugin: Plugin) -> list[str]:
        """Insert or replace without checks. Returns warnings about broken dependents."""
        with self._lock.write():
            return self._upsert(plugin)

    def add(self, plugin: Plugin) -> list[str]:
        """Checked registration. Returns non-blocking warnings."""
        errors = self.validator.validate_plugin(plugin)
        if errors:
            raise ValidationFailed(errors, plugin_name=_safe_name(plugin))

        result = self.checker.check(plugin)
        if not result.compatible:
            raise IncompatibleEnvironment(plugin.name, result.errors, result.warnings)
        warnings = list(result.warnings)

        with self._lock.write():
            for dep in plugin.dependencies():
                if not dep.optional and dependency_problem(dep, self._plugins):
                    raise UnresolvedDependency(plugin.name, dep.name, dep.version)
            _, dep_warnings = check_dependencies(plugin, self._plugins)
            warnings.extend(dep_warnings)
            warnings.extend(self._upsert(plugin))
        for w in result.warnings + dep_warnings:
            logger.info("%s", w)
        return warnings

    def remove(self, name: str) -> bool:
        with self._lock.write():
            return self._plugins.pop(name, None) is not None

    def clear(self) -> None:
        with self._lock.write():
            self._plugins.clear()

    # ── Lookup ──────────────────────────────────────────────────────

    def get(self, name: str) -> Plugin | None:
        with self._lock.read():
            return self._plugins.get(name)

    def require(self, name: str) -> Plugin:
        plugin = self.get(name)
        if plugin is None:
            raise PluginNotFound(name, "registry")
        return plugin

    def get_all(self) -> list[Plugin]:
        with self._lock.read():
            return list(self._plugins.values())

    def names(self) -> list[str]:
        with self._lock.read():
            return sorted(self._plugins)

    def count(self) -> int:
        with self._lock.read():
            return len(self._plugins)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        return self.count()

    def get_commands(self) -> dict[str, list[Command]]:
        return {p.name: p.get_commands() for p in self.get_all()}

    # ── Loading ─────────────────────────────────────────────────────

    def load_all(self) -> LoadReport:
        """Load every plugin the loader offers, dependencies first.

        A failing plugin is recorded in the report and never stops the rest.
        """
        report = LoadReport()
        if self.loader is None:
            return report

        batch = {p.name: p for p in self.loader.load_plugins()}
        report.failed.update(self.loader.failures)

        graph = DependencyGraph()
        for plugin in batch.values():
            graph.add_plugin(plugin)
        for plugin in batch.values():
            for dep in plugin.dependencies():
                graph.add_dependency(plugin.name, dep.name, dep.version)

        for cycle in graph.find_cycles():
            err = CyclicDependency(cycle)
            for name in cycle:
                report.failed.setdefault(name, err)
        if report.failed:
            acyclic = DependencyGraph()
            for name, plugin in batch.items():
                if name not in report.failed:
                    acyclic.add_plugin(plugin)
            for name in acyclic.nodes:
                for dep in batch[name].dependencies():
                    acyclic.add_dependency(name, dep.name, dep.version)
            graph = acyclic

        for name in graph.get_load_order():
            try:
                report.warnings.extend(self.add(batch[name]))
            except PluginError as e:
                logger.warning("plugin %s not loaded: %s", name, e)
                report.failed[name] = e
            else:
                report.loaded.append(name)
        return report

    def load_plugin(self, name: str) -> Plugin:
        if self.loader is None:
            raise PluginNotFound(name, "registry (no loader configured)")
        plugin = self.loader.load_plugin(name)
        self.add(plugin)
        return plugin

    def load_order(self) -> list[str]:
        graph = DependencyGraph()
        plugins = self.get_all()
        for plugin in plugins:
            graph.add_plugin(plugin)
        for plugin in plugins:
            for dep in plugin.dependencies():
                graph.add_dependency(plugin.name, dep.name, dep.version)
        return graph.get_load_order()

    def validate_plugins(self, strict: bool = False) -> dict[str, list[str]]:
        """Problems per registered plugin; plugins without problems are omitted."""
        problems: dict[str, list[str]] = {}
        plugins = {p.name: p for p in self.get_all()}
        for name, plugin in plugins.items():
            found = [str(e) for e in self.validator.validate_plugin(plugin)]
            if strict:
                result = self.checker.check(plugin)
                found.extend(result.errors)
                found.extend(f"warning: {w}" for w in result.warnings)
                dep_errors, _ = check_dependencies(plugin, plugins)
                found.extend(dep_errors)
            if found:
                problems[name] = found
        return problems

    def install(self, repository: str, options: InstallOptions | None = None) -> PluginMetadata:
        """Install from a repository, then load the result like any other plugin."""
        if self.installer is None:
            raise PluginError("no installer configured")
        metadata = self.installer.install(repository, options)
        if self.loader is not None:
            plugin = self.load_plugin(metadata.name)
            if (plugin.name, plugin.version) != (metadata.name, metadata.version):
                raise LoaderError(
                    f"installed {metadata.name} {metadata.version} but loaded "
                    f"{plugin.name} {plugin.version}",
                    plugin_name=metadata.name,
                )
        return metadata

    # ── Lifecycle ───────────────────────────────────────────────────

    def _ordered(self) -> list[Plugin]:
        try:
            names = self.load_order()
        except CyclicDependency:
            names = self.names()
        return [p for p in (self.get(n) for n in names) if p is not None]

    def start_all(self, ctx: dict[str, Any] | None = None) -> None:
        for plugin in self._ordered():
            plugin.start(ctx)

    def stop_all(self, ctx: dict[str, Any] | None = None) -> None:
        for plugin in reversed(self._ordered()):
            try:
                plugin.stop(ctx)
            except Exception:
                logger.exception("plugin %s failed to stop", plugin.name)
