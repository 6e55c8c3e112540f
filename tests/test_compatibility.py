"""Tests for the compatibility checker and dependency checks."""

from unittest.mock import patch

import pytest

from hostinit.plugins import Compatibility, CompatibilityChecker, Dependency, check_dependencies
from hostinit.plugins.compatibility import current_arch, dependency_problem


@pytest.fixture
def checker():
    return CompatibilityChecker("1.5.0", runtime_version="3.12.1", os_name="linux", arch="amd64")


def host(os_name, arch):
    return CompatibilityChecker("1.5.0", runtime_version="3.12.1", os_name=os_name, arch=arch)


class TestHostVersion:
    def test_no_constraints(self, checker):
        assert checker.check(Compatibility()).compatible

    def test_bare_minimum_means_at_least(self, checker):
        assert checker.check(Compatibility(min_host_version="1.0.0")).compatible
        result = checker.check(Compatibility(min_host_version="2.0.0"))
        assert not result.compatible
        assert "current version is 1.5.0" in result.errors[0]

    def test_minimum_as_constraint(self, checker):
        assert checker.check(Compatibility(min_host_version="^1.2")).compatible
        assert not checker.check(Compatibility(min_host_version="~1.4.0")).compatible

    def test_maximum_is_inclusive(self, checker):
        assert checker.check(Compatibility(max_host_version="1.5.0")).compatible
        assert not checker.check(Compatibility(max_host_version="1.4.9")).compatible

    def test_invalid_constraint_is_an_error(self, checker):
        result = checker.check(Compatibility(min_host_version=">=>1"))
        assert not result.compatible
        assert "invalid minimum version constraint" in result.errors[0]

    def test_invalid_current_version(self):
        checker = CompatibilityChecker("dev", os_name="linux", arch="amd64")
        result = checker.check(Compatibility(min_host_version="1.0.0"))
        assert not result.compatible


class TestPlatform:
    @pytest.mark.parametrize(
        "platforms", [["linux/amd64"], ["linux/*"], ["*/amd64"], ["*/*"], ["darwin/*", "linux/*"]]
    )
    def test_accepted(self, checker, platforms):
        assert checker.check(Compatibility(platforms=platforms)).compatible

    def test_rejected(self, checker):
        result = checker.check(Compatibility(platforms=["darwin/arm64", "windows/*"]))
        assert not result.compatible
        assert result.errors == [
            "plugin is not compatible with platform linux/amd64 "
            "(supports: darwin/arm64, windows/*)"
        ]

    def test_linux_only_plugin_on_apple_silicon(self, make_plugin):
        mac = host("darwin", "arm64")
        plugin = make_plugin("apt", compat=Compatibility(platforms=["linux/amd64"]))
        result = mac.check(plugin)
        assert not result.compatible
        assert "platform darwin/arm64" in result.errors[0]

    @pytest.mark.parametrize("extra", ["darwin/*", "*/arm64", "darwin/arm64", "*/*"])
    def test_widening_platforms_only_adds_hosts(self, extra):
        mac = host("darwin", "arm64")
        linux = host("linux", "amd64")
        narrow = Compatibility(platforms=["linux/amd64"])
        wide = Compatibility(platforms=["linux/amd64", extra])
        assert not mac.check(narrow).compatible
        assert mac.check(wide).compatible
        assert linux.check(narrow).compatible and linux.check(wide).compatible

    def test_arch_names_are_normalized(self):
        with patch("hostinit.plugins.compatibility.platform.machine", return_value="aarch64"):
            assert current_arch() == "arm64"


class TestRuntime:
    def test_prefix_match(self, checker):
        result = checker.check(Compatibility(runtime_version="3.12"))
        assert result.compatible and not result.warnings

    def test_mismatch_only_warns(self, checker):
        result = checker.check(Compatibility(runtime_version="3.11"))
        assert result.compatible
        assert "built for Python 3.11" in result.warnings[0]


class TestCheckPlugin:
    def test_accepts_plugin(self, checker, make_plugin):
        plugin = make_plugin(compat=Compatibility(platforms=["windows/*"]))
        assert not checker.check(plugin).compatible


class TestDependencies:
    def test_satisfied(self, make_plugin):
        system = make_plugin("system", "1.2.0")
        nginx = make_plugin("nginx", deps=[("system", ">=1.0.0")])
        assert check_dependencies(nginx, {"system": system}) == ([], [])

    def test_missing_required(self, make_plugin):
        nginx = make_plugin("nginx", deps=[("system", ">=1.0.0")])
        errors, warnings = check_dependencies(nginx, {})
        assert errors == [
            "plugin nginx requires dependency system >=1.0.0, "
            "none registered satisfies this (none registered)"
        ]
        assert warnings == []

    def test_wrong_version(self, make_plugin):
        system = make_plugin("system", "1.0.0")
        nginx = make_plugin("nginx", deps=[("system", ">=2.0.0")])
        errors, _ = check_dependencies(nginx, {"system": system})
        assert "system 1.0.0 is registered" in errors[0]

    def test_optional_only_warns(self, make_plugin):
        nginx = make_plugin("nginx", deps=[Dependency("certbot", optional=True)])
        errors, warnings = check_dependencies(nginx, {})
        assert errors == []
        assert warnings == [
            "plugin nginx: optional dependency certbot unavailable (none registered)"
        ]

    def test_any_version(self, make_plugin):
        assert dependency_problem(Dependency("system"), {"system": make_plugin("system")}) == ""

    def test_uncomparable_version(self, make_plugin):
        broken = make_plugin("system", version="latest")
        problem = dependency_problem(Dependency("system", ">=1.0"), {"system": broken})
        assert problem.startswith("cannot compare")
