"""Dependency graph: cycle detection and load ordering."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import CyclicDependency, PluginNotFound

if TYPE_CHECKING:
    from .base import Plugin


@dataclass
class PluginNode:
    plugin: Plugin
    dependencies: dict[str, str] = field(default_factory=dict)  # name -> constraint
    dependents: list[str] = field(default_factory=list)


class DependencyGraph:
    """Plugins as nodes, declared dependencies as edges.

    Edges may point at names that are not nodes; those are ignored for
    ordering and cycle detection (a missing dependency is the registry's
    problem, not the graph's).
    """

    def __init__(self) -> None:
        self._nodes: dict[str, PluginNode] = {}
        self._dependents: dict[str, list[str]] = {}

    @property
    def nodes(self) -> dict[str, PluginNode]:
        return dict(self._nodes)

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def add_plugin(self, plugin: Plugin) -> PluginNode:
        node = PluginNode(plugin=plugin, dependents=list(self._dependents.get(plugin.name, [])))
        self._nodes[plugin.name] = node
        return node

    def add_dependency(self, plugin_name: str, dep_name: str, constraint: str = "") -> None:
        node = self._nodes.get(plugin_name)
        if node is None:
            raise PluginNotFound(plugin_name, "dependency graph")
        node.dependencies[dep_name] = constraint
        users = self._dependents.setdefault(dep_name, [])
        if plugin_name not in users:
            users.append(plugin_name)
        if dep_name in self._nodes and plugin_name not in self._nodes[dep_name].dependents:
            self._nodes[dep_name].dependents.append(plugin_name)

    def dependents(self, name: str) -> list[str]:
        return list(self._dependents.get(name, []))

    def find_cycles(self) -> list[list[str]]:
        """Every cycle reachable by depth-first search, each listed from its entry node."""
        visited: set[str] = set()
        on_stack: set[str] = set()
        cycles: list[list[str]] = []

        def visit(name: str, path: list[str]) -> None:
            visited.add(name)
            on_stack.add(name)
            path.append(name)
            for dep in sorted(self._nodes[name].dependencies):
                if dep not in self._nodes:
                    continue
                if dep not in visited:
                    visit(dep, path)
                elif dep in on_stack:
                    cycles.append(path[path.index(dep) :])
            path.pop()
            on_stack.discard(name)

        for name in sorted(self._nodes):
            if name not in visited:
                visit(name, [])
        return cycles

    def get_load_order(self) -> list[str]:
        """Names ordered so every dependency precedes its dependents."""
        cycles = self.find_cycles()
        if cycles:
            raise CyclicDependency(cycles[0])

        done: set[str] = set()
        order: list[str] = []

        def visit(name: str) -> None:
            if name in done:
                return
            done.add(name)
            for dep in sorted(self._nodes[name].dependencies):
                if dep in self._nodes:
                    visit(dep)
            order.append(name)

        for name in sorted(self._nodes):
            visit(name)
        return order


def resolve_dependencies(plugins: Iterable[Plugin]) -> DependencyGraph:
    """Build the graph for ``plugins``; raises CyclicDependency on the first cycle."""
    graph = DependencyGraph()
    plugins = list(plugins)
    for plugin in plugins:
        graph.add_plugin(plugin)
    for plugin in plugins:
        for dep in plugin.dependencies():
            graph.add_dependency(plugin.name, dep.name, dep.version)
    cycles = graph.find_cycles()
    if cycles:
        raise CyclicDependency(cycles[0])
    return graph
