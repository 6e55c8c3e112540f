"""Shared fixtures: sample plugins, a plugin source tree, a fake git provider."""

import shutil
import time
from pathlib import Path

import pytest

from hostinit.plugins import BasePlugin, Command, Compatibility, Dependency
from hostinit.plugins.builtin import teardown_builtins
from hostinit.plugins.git import GitError

WIDGET_YAML = """\
name: widget
description: Widget management
version: 1.2.0
author: acme
license: MIT
dependencies: []
"""

WIDGET_SOURCE = """\
from hostinit.plugins import BasePlugin, Command


class Widget(BasePlugin):
    plugin_name = "widget"
    plugin_description = "Widget management"
    plugin_version = "1.2.0"
    plugin_author = "acme"

    def get_commands(self):
        return [Command("spin", "Spin the widget", self.spin)]

    def spin(self, ctx, conn, args, flags):
        conn.run("widget spin")


def new_plugin():
    return Widget()
"""


DOCKER_YAML = """\
name: docker
description: Docker from the community
version: 9.0.0
author: acme
entry_module: docker_plus
"""

DOCKER_SOURCE = """\
from hostinit.plugins import BasePlugin, Command


class Docker(BasePlugin):
    plugin_name = "docker"
    plugin_description = "Docker from the community"
    plugin_version = "9.0.0"
    plugin_author = "acme"

    def get_commands(self):
        return [Command("swarm", "Join a swarm", self.swarm)]

    def swarm(self, ctx, conn, args, flags):
        conn.run("docker swarm join")


def new_plugin():
    return Docker()
"""


def _noop(ctx, conn, args, flags):
    return None


class SamplePlugin(BasePlugin):
    def __init__(
        self,
        name="sample",
        version="1.0.0",
        deps=(),
        compat=None,
        commands=None,
        description="A sample plugin",
        author="tester",
    ):
        super().__init__()
        self.plugin_name = name
        self.plugin_version = version
        self.plugin_description = description
        self.plugin_author = author
        self._deps = [d if isinstance(d, Dependency) else Dependency(*d) for d in deps]
        self._compat = compat or Compatibility()
        self._commands = commands
        self.events = []

    def get_commands(self):
        if self._commands is not None:
            return self._commands
        return [Command("run", "Run the sample", _noop)]

    def dependencies(self):
        return list(self._deps)

    def compatibility(self):
        return self._compat

    def start(self, ctx=None):
        super().start(ctx)
        self.events.append("start")

    def stop(self, ctx=None):
        super().stop(ctx)
        self.events.append("stop")


@pytest.fixture
def make_plugin():
    """Factory: ``make_plugin("nginx", deps=[("system", ">=1.0")])``."""
    return SamplePlugin


@pytest.fixture(autouse=True)
def _reset_builtins():
    teardown_builtins()
    yield
    teardown_builtins()


@pytest.fixture
def home(tmp_path, monkeypatch):
    """An isolated hostinit home directory."""
    path = tmp_path / "home"
    path.mkdir()
    monkeypatch.setenv("HOSTINIT_HOME", str(path))
    monkeypatch.delenv("HOSTINIT_LOG_LEVEL", raising=False)
    monkeypatch.delenv("HOSTINIT_INSTALL_TIMEOUT", raising=False)
    return path


def write_plugin_source(
    root: Path, yaml_text: str = WIDGET_YAML, source: str = WIDGET_SOURCE, module: str = "widget"
) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "plugin.yaml").write_text(yaml_text)
    (root / f"{module}.py").write_text(source)
    return root


@pytest.fixture
def plugin_source(tmp_path):
    """A checked-out widget plugin repository."""
    return write_plugin_source(tmp_path / "src" / "widget")


class FakeVCS:
    """Stands in for GitProvider: a clone copies ``source`` and tags are fixed."""

    def __init__(
        self,
        source: Path,
        tags=("v1.0.0", "v1.2.0"),
        branches=("main",),
        clone_delay: float = 0.0,
        fail_clone: bool = False,
    ):
        self.source = Path(source)
        self._tags = list(tags)
        self._branches = list(branches)
        self.clone_delay = clone_delay
        self.fail_clone = fail_clone
        self.calls = []

    def clone(self, url, target, branch="", timeout=None):
        self.calls.append(("clone", url, branch))
        if self.clone_delay:
            time.sleep(self.clone_delay)
        if self.fail_clone:
            raise GitError(f"git clone failed: repository {url} not found")
        shutil.copytree(self.source, target)
        (Path(target) / ".git").mkdir()

    def refresh(self, path, timeout=None):
        self.calls.append(("refresh", str(path)))

    def checkout(self, path, ref, timeout=None):
        self.calls.append(("checkout", ref))
        if ref not in self._tags and ref not in self._branches:
            raise GitError(f"pathspec '{ref}' did not match any file(s) known to git")

    def checkout_default(self, path, timeout=None):
        self.calls.append(("checkout_default",))

    def tags(self, path, timeout=None):
        return list(self._tags)

    def commit(self, path, timeout=None):
        return "0123456789abcdef0123456789abcdef01234567"

    def is_valid_repository(self, path):
        return (Path(path) / ".git").is_dir()


@pytest.fixture
def fake_vcs(plugin_source):
    return FakeVCS(plugin_source)
