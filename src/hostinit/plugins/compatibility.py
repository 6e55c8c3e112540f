"""Compatibility checks: host version, platform, runtime and dependency constraints."""

from __future__ import annotations

import platform
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .models import Compatibility, Dependency
from .semver import Constraint, InvalidConstraint, InvalidVersion, Version

if TYPE_CHECKING:
    from .base import Plugin

_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
}


def current_os() -> str:
    plat = sys.platform
    if plat.startswith("linux"):
        return "linux"
    if plat == "darwin":
        return "darwin"
    if plat in ("win32", "cygwin"):
        return "windows"
    if plat.startswith("freebsd"):
        return "freebsd"
    return plat


def current_arch() -> str:
    machine = platform.machine().lower()
    return _ARCH_NAMES.get(machine, machine)


def current_platform() -> str:
    return f"{current_os()}/{current_arch()}"


@dataclass
class CompatibilityResult:
    compatible: bool = True
    errors: list[str] = field(default_factory=list)  # blocking
    warnings: list[str] = field(default_factory=list)  # informational

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.compatible = False

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)


def _min_constraint(value: str) -> Constraint:
    """A bare version means "at least"; anything else is a full constraint."""
    try:
        Version.parse(value)
    except InvalidVersion:
        return Constraint(value)
    return Constraint(f">={value}")


class CompatibilityChecker:
    """Checks a plugin's declared requirements against the running environment."""

    def __init__(
        self,
        host_version: str,
        runtime_version: str | None = None,
        os_name: str | None = None,
        arch: str | None = None,
    ):
        self.host_version = host_version
        self.runtime_version = runtime_version or platform.python_version()
        self.os_name = os_name or current_os()
        self.arch = arch or current_arch()

    @property
    def platform(self) -> str:
        return f"{self.os_name}/{self.arch}"

    def check(self, target: Plugin | Compatibility) -> CompatibilityResult:
        compat = target if isinstance(target, Compatibility) else target.compatibility()
        result = CompatibilityResult()
        self._check_host_version(compat, result)
        self._check_platform(compat, result)
        self._check_runtime(compat, result)
        return result

    def _check_host_version(self, compat: Compatibility, result: CompatibilityResult) -> None:
        if not compat.min_host_version and not compat.max_host_version:
            return
        try:
            current = Version.parse(self.host_version)
        except InvalidVersion:
            result.add_error(f"invalid current hostinit version: {self.host_version!r}")
            return

        if compat.min_host_version:
            try:
                minimum = _min_constraint(compat.min_host_version)
            except InvalidConstraint as e:
                result.add_error(f"invalid minimum version constraint: {e}")
            else:
                if not minimum.check(current):
                    result.add_error(
                        f"plugin requires hostinit version {minimum}, "
                        f"but current version is {self.host_version}"
                    )

        if compat.max_host_version:
            try:
                maximum = Constraint(f"<={compat.max_host_version}")
            except InvalidConstraint as e:
                result.add_error(f"invalid maximum version constraint: {e}")
            else:
                if not maximum.check(current):
                    result.add_error(
                        f"plugin requires hostinit version <= {compat.max_host_version}, "
                        f"but current version is {self.host_version}"
                    )

    def _check_platform(self, compat: Compatibility, result: CompatibilityResult) -> None:
        if not compat.platforms:
            return
        accepted = {self.platform, f"{self.os_name}/*", f"*/{self.arch}", "*/*"}
        if not accepted.intersection(compat.platforms):
            result.add_error(
                f"plugin is not compatible with platform {self.platform} "
                f"(supports: {', '.join(compat.platforms)})"
            )

    def _check_runtime(self, compat: Compatibility, result: CompatibilityResult) -> None:
        wanted = compat.runtime_version.strip()
        if not wanted:
            return
        declared = wanted.split(".")
        running = self.runtime_version.split(".")
        if running[: len(declared)] != declared:
            result.add_warning(
                f"plugin was built for Python {wanted}, "
                f"but current Python version is {self.runtime_version}"
            )


def dependency_problem(dep: Dependency, available: Mapping[str, Plugin]) -> str:
    """Why ``dep`` is not satisfied by ``available``, or "" if it is."""
    other = available.get(dep.name)
    if other is None:
        return "none registered"
    if not dep.version:
        return ""
    try:
        ok = Constraint(dep.version).check(other.version)
    except (InvalidConstraint, InvalidVersion) as e:
        return f"cannot compare: {e}"
    return "" if ok else f"{dep.name} {other.version} is registered"


def check_dependencies(
    plugin: Plugin, available: Mapping[str, Plugin]
) -> tuple[list[str], list[str]]:
    """Check declared dependencies against ``available`` plugins.

    Returns ``(errors, warnings)``. Missing or unsatisfied required
    dependencies are errors; optional ones only warn.
    """
    errors: list[str] = []
    warnings: list[str] = []
    for dep in plugin.dependencies():
        wanted = f"{dep.name} {dep.version}".strip()
        problem = dependency_problem(dep, available)
        if not problem:
            continue
        if dep.optional:
            warnings.append(
                f"plugin {plugin.name}: optional dependency {wanted} unavailable ({problem})"
            )
        else:
            errors.append(
                f"plugin {plugin.name} requires dependency {wanted}, "
                f"none registered satisfies this ({problem})"
            )
    return errors, warnings
