"""Plugin error taxonomy: registry, loader and installer failures."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .validation import ValidationError


class PluginError(Exception):
    """Base class for every plugin-subsystem failure."""

    def __init__(self, message: str, plugin_name: str = ""):
        super().__init__(message)
        self.plugin_name = plugin_name


class PluginNotFound(PluginError):
    def __init__(self, name: str, where: str = ""):
        suffix = f" in {where}" if where else ""
        super().__init__(f"plugin '{name}' not found{suffix}", plugin_name=name)


class InitializationError(PluginError):
    """A plugin rejected its configuration in ``initialize``."""


class LoaderError(PluginError):
    """A loader could not produce a plugin from a resolvable source."""


class PluginSymbolMissing(LoaderError):
    pass


class PluginSignatureMismatch(LoaderError):
    pass


class IncompatibleEnvironment(PluginError):
    """Blocking incompatibilities, with the non-blocking warnings kept alongside."""

    def __init__(self, plugin_name: str, errors: list[str], warnings: list[str] | None = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(
            f"plugin {plugin_name} is incompatible with this environment: "
            + "; ".join(self.errors),
            plugin_name=plugin_name,
        )


class CyclicDependency(PluginError):
    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        path = " -> ".join(self.cycle + self.cycle[:1])
        super().__init__(
            f"circular dependency detected: {path}",
            plugin_name=self.cycle[0] if self.cycle else "",
        )


class UnresolvedDependency(PluginError):
    def __init__(self, plugin_name: str, dependency: str, constraint: str = ""):
        self.dependency = dependency
        self.constraint = constraint
        wanted = f"{dependency} {constraint}".strip()
        super().__init__(
            f"plugin {plugin_name} requires dependency {wanted}, "
            "none registered satisfies this",
            plugin_name=plugin_name,
        )


# ── Installer ───────────────────────────────────────────────────────


class InstallError(PluginError):
    """A failed installer step. ``step`` names the pipeline stage."""

    step = "install"

    def __init__(self, message: str, plugin_name: str = "", step: str | None = None):
        if step is not None:
            self.step = step
        super().__init__(f"{self.step}: {message}", plugin_name=plugin_name)


class InvalidRepositoryURL(InstallError):
    step = "parse"


class VersionNotFound(InstallError):
    step = "resolve"


class MetadataNotFound(InstallError):
    step = "discover"


class ValidationFailed(InstallError):
    """Carries every rule violation, never just the first."""

    step = "validate"

    def __init__(self, errors: list[ValidationError], plugin_name: str = ""):
        self.errors = list(errors)
        detail = "; ".join(str(e) for e in self.errors)
        who = f"plugin {plugin_name} " if plugin_name else ""
        super().__init__(f"{who}failed validation: {detail}", plugin_name=plugin_name)


class BuildFailed(InstallError):
    step = "build"


class InstallIOFailure(InstallError):
    step = "install"


class InstallTimeout(InstallError):
    pass
