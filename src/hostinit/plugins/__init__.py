"""Plugins: contract, registry, validation, compatibility, loading and git installation."""

from .base import AliasedPlugin, BasePlugin, Plugin
from .builder import BuildOptions, BuildResult, Builder, PythonBuilder, calculate_checksum
from .builtin import BuiltinLoader, init_builtins, register_builtin, teardown_builtins
from .compatibility import CompatibilityChecker, CompatibilityResult, check_dependencies
from .errors import (
    BuildFailed,
    CyclicDependency,
    IncompatibleEnvironment,
    InitializationError,
    InstallError,
    InstallIOFailure,
    InstallTimeout,
    InvalidRepositoryURL,
    LoaderError,
    MetadataNotFound,
    PluginError,
    PluginNotFound,
    PluginSignatureMismatch,
    PluginSymbolMissing,
    UnresolvedDependency,
    ValidationFailed,
    VersionNotFound,
)
from .git import GitError, GitProvider, GitTimeout
from .graph import DependencyGraph, PluginNode, resolve_dependencies
from .installer import (
    GitInstaller,
    InstallerConfig,
    InstallOptions,
    RepositoryInfo,
    parse_repository_url,
)
from .loader import FilesystemLoader, PluginLoader, load_artifact, read_metadata, write_metadata
from .models import (
    Argument,
    ArgumentType,
    BuildInfo,
    Command,
    Compatibility,
    Dependency,
    Flag,
    PluginMetadata,
    trust_level_for,
)
from .registry import LoadReport, Registry
from .validation import ValidationError, Validator

__all__ = [
    "Argument",
    "ArgumentType",
    "AliasedPlugin",
    "BasePlugin",
    "BuildFailed",
    "BuildInfo",
    "BuildOptions",
    "BuildResult",
    "Builder",
    "BuiltinLoader",
    "Command",
    "Compatibility",
    "CompatibilityChecker",
    "CompatibilityResult",
    "CyclicDependency",
    "Dependency",
    "DependencyGraph",
    "FilesystemLoader",
    "Flag",
    "GitError",
    "GitInstaller",
    "GitProvider",
    "GitTimeout",
    "IncompatibleEnvironment",
    "InitializationError",
    "InstallError",
    "InstallIOFailure",
    "InstallOptions",
    "InstallTimeout",
    "InstallerConfig",
    "InvalidRepositoryURL",
    "LoadReport",
    "LoaderError",
    "MetadataNotFound",
    "Plugin",
    "PluginError",
    "PluginLoader",
    "PluginMetadata",
    "PluginNode",
    "PluginNotFound",
    "PluginSignatureMismatch",
    "PluginSymbolMissing",
    "PythonBuilder",
    "Registry",
    "RepositoryInfo",
    "UnresolvedDependency",
    "ValidationError",
    "ValidationFailed",
    "Validator",
    "VersionNotFound",
    "calculate_checksum",
    "check_dependencies",
    "init_builtins",
    "load_artifact",
    "parse_repository_url",
    "read_metadata",
    "register_builtin",
    "resolve_dependencies",
    "teardown_builtins",
    "trust_level_for",
    "write_metadata",
]
