"""Tests for the registry: checked registration, batch loading, lifecycle."""

import threading
from unittest.mock import MagicMock

import pytest

from hostinit.plugins import (
    Compatibility,
    CompatibilityChecker,
    CyclicDependency,
    Dependency,
    IncompatibleEnvironment,
    LoaderError,
    PluginLoader,
    PluginMetadata,
    PluginNotFound,
    Registry,
    UnresolvedDependency,
    ValidationFailed,
)
from hostinit.plugins.registry import RWLock

from conftest import SamplePlugin


class ListLoader(PluginLoader):
    """Serves a fixed batch of plugins, plus canned failures."""

    def __init__(self, plugins, failures=None):
        super().__init__()
        self.plugins = list(plugins)
        self.canned = dict(failures or {})

    def load_plugins(self):
        self.failures = dict(self.canned)
        return list(self.plugins)

    def load_plugin(self, name):
        for p in self.plugins:
            if p.name == name:
                return p
        raise PluginNotFound(name, "test loader")

    def list_available(self):
        return [p.get_metadata() for p in self.plugins]


@pytest.fixture
def registry():
    checker = CompatibilityChecker("1.0.0", runtime_version="3.12.0", os_name="linux", arch="amd64")
    return Registry(checker=checker)


class TestAdd:
    def test_add_and_lookup(self, registry, make_plugin):
        plugin = make_plugin("system")
        assert registry.add(plugin) == []
        assert registry.get("system") is plugin
        assert registry.require("system") is plugin
        assert "system" in registry
        assert len(registry) == registry.count() == 1

    def test_invalid_plugin_is_rejected(self, registry, make_plugin):
        with pytest.raises(ValidationFailed) as exc:
            registry.add(make_plugin("Bad Name", author=""))
        assert len(exc.value.errors) == 2
        assert "Bad Name" not in registry

    def test_incompatible_plugin_is_rejected(self, registry, make_plugin):
        plugin = make_plugin("winonly", compat=Compatibility(platforms=["windows/*"]))
        with pytest.raises(IncompatibleEnvironment) as exc:
            registry.add(plugin)
        assert "linux/amd64" in exc.value.errors[0]
        assert registry.count() == 0

    def test_runtime_mismatch_is_a_warning(self, registry, make_plugin):
        plugin = make_plugin("old", compat=Compatibility(runtime_version="3.8"))
        warnings = registry.add(plugin)
        assert len(warnings) == 1 and "3.8" in warnings[0]
        assert "old" in registry

    def test_missing_dependency(self, registry, make_plugin):
        with pytest.raises(UnresolvedDependency) as exc:
            registry.add(make_plugin("nginx", deps=[("system", ">=1.0.0")]))
        assert exc.value.dependency == "system"
        assert exc.value.constraint == ">=1.0.0"

    def test_unsatisfied_dependency_version(self, registry, make_plugin):
        registry.add(make_plugin("system", "1.0.0"))
        with pytest.raises(UnresolvedDependency):
            registry.add(make_plugin("nginx", deps=[("system", ">=2.0.0")]))

    def test_satisfied_dependency(self, registry, make_plugin):
        registry.add(make_plugin("system", "1.4.0"))
        assert registry.add(make_plugin("nginx", deps=[("system", "^1.0")])) == []

    def test_optional_dependency_warns(self, registry, make_plugin):
        plugin = make_plugin("nginx", deps=[Dependency("certbot", optional=True)])
        warnings = registry.add(plugin)
        assert "optional dependency certbot" in warnings[0]
        assert "nginx" in registry


class TestRegister:
    def test_upsert_replaces(self, registry, make_plugin):
        registry.register(make_plugin("system", "1.0.0"))
        registry.register(make_plugin("system", "1.1.0"))
        assert registry.require("system").version == "1.1.0"
        assert registry.count() == 1

    def test_replacement_warns_about_broken_dependents(self, registry, make_plugin):
        registry.add(make_plugin("system", "1.0.0"))
        registry.add(make_plugin("nginx", deps=[("system", "^1.0")]))
        warnings = registry.register(make_plugin("system", "2.0.0"))
        assert warnings == ["plugin nginx requires system ^1.0, but system 2.0.0 is now registered"]
        assert registry.require("system").version == "2.0.0"

    def test_register_skips_checks(self, registry, make_plugin):
        registry.register(make_plugin("nginx", deps=[("system", ">=1.0")]))
        assert "nginx" in registry


class TestLookup:
    def test_require_missing(self, registry):
        with pytest.raises(PluginNotFound):
            registry.require("ghost")

    def test_names_sorted(self, registry, make_plugin):
        for name in ("docker", "nginx", "apt"):
            registry.add(make_plugin(name))
        assert registry.names() == ["apt", "docker", "nginx"]

    def test_remove_and_clear(self, registry, make_plugin):
        registry.add(make_plugin("a"))
        registry.add(make_plugin("b"))
        assert registry.remove("a") is True
        assert registry.remove("a") is False
        registry.clear()
        assert registry.get_all() == []

    def test_get_commands(self, registry, make_plugin):
        registry.add(make_plugin("a"))
        assert [c.name for c in registry.get_commands()["a"]] == ["run"]


class TestLoadAll:
    def test_without_loader(self, registry):
        report = registry.load_all()
        assert report.ok and report.loaded == []

    def test_loads_dependencies_first(self, registry, make_plugin):
        plugins = [
            make_plugin("nginx", deps=[("system", ">=1.0")]),
            make_plugin("app", deps=[("nginx", "")]),
            make_plugin("system"),
        ]
        registry.set_loader(ListLoader(plugins))
        report = registry.load_all()
        assert report.ok
        assert report.loaded == ["system", "nginx", "app"]

    def test_cycle_members_fail_others_load(self, registry, make_plugin):
        plugins = [
            make_plugin("a", deps=[("b", "")]),
            make_plugin("b", deps=[("a", "")]),
            make_plugin("c"),
        ]
        registry.set_loader(ListLoader(plugins))
        report = registry.load_all()
        assert report.loaded == ["c"]
        assert set(report.failed) == {"a", "b"}
        assert isinstance(report.failed["a"], CyclicDependency)

    def test_one_failure_does_not_stop_the_rest(self, registry, make_plugin):
        plugins = [
            make_plugin("broken", version="nope"),
            make_plugin("needs-missing", deps=[("ghost", "")]),
            make_plugin("fine"),
        ]
        registry.set_loader(ListLoader(plugins))
        report = registry.load_all()
        assert report.loaded == ["fine"]
        assert isinstance(report.failed["broken"], ValidationFailed)
        assert isinstance(report.failed["needs-missing"], UnresolvedDependency)

    def test_dependent_of_failed_plugin_fails(self, registry, make_plugin):
        plugins = [
            make_plugin("system", compat=Compatibility(platforms=["windows/*"])),
            make_plugin("nginx", deps=[("system", "")]),
        ]
        registry.set_loader(ListLoader(plugins))
        report = registry.load_all()
        assert set(report.failed) == {"system", "nginx"}
        assert isinstance(report.failed["nginx"], UnresolvedDependency)

    def test_loader_failures_are_reported(self, registry, make_plugin):
        err = LoaderError("cannot read plugin.yaml", plugin_name="bad")
        registry.set_loader(ListLoader([make_plugin("ok")], failures={"bad": err}))
        report = registry.load_all()
        assert report.loaded == ["ok"]
        assert report.failed == {"bad": err}
        assert not report.ok

    def test_load_plugin(self, registry, make_plugin):
        registry.set_loader(ListLoader([make_plugin("solo")]))
        assert registry.load_plugin("solo").name == "solo"
        with pytest.raises(PluginNotFound):
            registry.load_plugin("ghost")


class TestValidatePlugins:
    def test_clean(self, registry, make_plugin):
        registry.add(make_plugin("a"))
        assert registry.validate_plugins(strict=True) == {}

    def test_strict_reports_warnings_and_dependencies(self, registry, make_plugin):
        registry.register(make_plugin("old", compat=Compatibility(runtime_version="3.8")))
        registry.register(make_plugin("nginx", deps=[("system", "")]))
        assert registry.validate_plugins() == {}
        problems = registry.validate_plugins(strict=True)
        assert problems["old"][0].startswith("warning: ")
        assert "requires dependency system" in problems["nginx"][0]

    def test_structural_problems(self, registry, make_plugin):
        registry.register(make_plugin("a", commands=[]))
        assert "NO_COMMANDS" in registry.validate_plugins()["a"][0]


class TestLifecycle:
    def test_start_and_stop_order(self, registry, make_plugin):
        events = []
        system = make_plugin("system")
        nginx = make_plugin("nginx", deps=[("system", "")])
        system.events = nginx.events = events
        registry.add(system)
        registry.add(nginx)

        registry.start_all({})
        registry.stop_all({})
        assert events == ["start", "start", "stop", "stop"]
        assert registry.load_order() == ["system", "nginx"]

    def test_stop_continues_after_failure(self, registry, make_plugin):
        a, b = make_plugin("a"), make_plugin("b")
        registry.add(a)
        registry.add(b)
        b.stop = MagicMock(side_effect=RuntimeError("stuck"))
        registry.stop_all()
        assert a.events == ["stop"]
        b.stop.assert_called_once()


class TestInstall:
    def test_install_loads_result(self, registry, make_plugin):
        installer = MagicMock()
        installer.install.return_value = PluginMetadata(name="widget", version="1.0.0")
        registry.installer = installer
        registry.set_loader(ListLoader([make_plugin("widget")]))

        meta = registry.install("example.com/acme/widget")
        assert meta.name == "widget"
        assert "widget" in registry
        installer.install.assert_called_once_with("example.com/acme/widget", None)

    def test_loaded_version_must_match_install(self, registry, make_plugin):
        installer = MagicMock()
        installer.install.return_value = PluginMetadata(name="widget", version="2.0.0")
        registry.installer = installer
        registry.set_loader(ListLoader([make_plugin("widget", "1.0.0")]))

        with pytest.raises(LoaderError, match="installed widget 2.0.0 but loaded widget 1.0.0"):
            registry.install("example.com/acme/widget")


class TestDependencyUpgrade:
    def test_old_dependency_rejected_then_new_one_loads_first(self, make_plugin):
        def fresh():
            checker = CompatibilityChecker(
                "1.0.0", runtime_version="3.12.0", os_name="linux", arch="amd64"
            )
            return Registry(checker=checker)

        a = make_plugin("a", deps=[("b", ">=2.0.0")])

        old = fresh()
        old.add(make_plugin("b", "1.5.0"))
        with pytest.raises(UnresolvedDependency) as exc:
            old.add(a)
        assert (exc.value.dependency, exc.value.constraint) == ("b", ">=2.0.0")
        assert "a" not in old

        new = fresh()
        new.add(make_plugin("b", "2.1.0"))
        assert new.add(a) == []
        assert new.load_order() == ["b", "a"]


class Nameless(SamplePlugin):
    @property
    def name(self):
        raise RuntimeError("no name yet")


class TestUnreadablePlugin:
    def test_failing_name_is_a_validation_error(self, registry):
        with pytest.raises(ValidationFailed) as exc:
            registry.add(Nameless())
        assert exc.value.plugin_name == ""
        assert registry.count() == 0


class TestRWLock:
    def test_readers_share(self):
        lock = RWLock()
        both_in = threading.Barrier(2, timeout=5)

        def reader():
            with lock.read():
                both_in.wait()

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        assert not both_in.broken

    def test_writer_waits_for_readers(self):
        lock = RWLock()
        reading, release = threading.Event(), threading.Event()
        order = []

        def reader():
            with lock.read():
                reading.set()
                release.wait(5)
                order.append("read done")

        def writer():
            with lock.write():
                order.append("write")

        r = threading.Thread(target=reader)
        r.start()
        reading.wait(5)
        w = threading.Thread(target=writer)
        w.start()
        w.join(0.1)
        assert order == []
        release.set()
        r.join(5)
        w.join(5)
        assert order == ["read done", "write"]

    def test_readers_wait_for_writer(self):
        lock = RWLock()
        writing, release = threading.Event(), threading.Event()
        order = []

        def writer():
            with lock.write():
                writing.set()
                release.wait(5)
                order.append("write done")

        def reader():
            with lock.read():
                order.append("read")

        w = threading.Thread(target=writer)
        w.start()
        writing.wait(5)
        r = threading.Thread(target=reader)
        r.start()
        r.join(0.1)
        assert order == []
        release.set()
        w.join(5)
        r.join(5)
        assert order == ["write done", "read"]
