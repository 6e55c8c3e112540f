"""Structural validation of plugins and plugin metadata.

Every rule runs independently; the result lists all violations in rule order so
an operator can fix a plugin in one pass. Nothing here looks at the running
environment; that is the compatibility checker's job.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .models import TRUST_LEVELS, PluginMetadata
from .semver import Constraint, InvalidConstraint, InvalidVersion, Version

if TYPE_CHECKING:
    from .base import Plugin
    from .models import Command, Dependency

NAME_RE = re.compile(r"^[a-z0-9-]+$")
COMMAND_NAME_RE = re.compile(r"^[a-z][a-z0-9-]*$")
CHECKSUM_RE = re.compile(r"^[a-fA-F0-9]{64}$")
MAX_NAME_LEN = 50
MAX_DESCRIPTION_LEN = 500


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str
    code: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message} ({self.code})"


def _name_errors(name: str, field: str) -> list[ValidationError]:
    if not name:
        return [ValidationError(field, "plugin name cannot be empty", "EMPTY_NAME")]
    errors = []
    if not NAME_RE.match(name):
        errors.append(
            ValidationError(
                field,
                "plugin name must contain only lowercase letters, numbers, and hyphens",
                "INVALID_NAME_FORMAT",
            )
        )
    if len(name) > MAX_NAME_LEN:
        errors.append(
            ValidationError(
                field, f"plugin name cannot exceed {MAX_NAME_LEN} characters", "NAME_TOO_LONG"
            )
        )
    return errors


def _description_errors(description: str, field: str) -> list[ValidationError]:
    if not description:
        return [ValidationError(field, "plugin description cannot be empty", "EMPTY_DESCRIPTION")]
    if len(description) > MAX_DESCRIPTION_LEN:
        return [
            ValidationError(
                field,
                f"plugin description cannot exceed {MAX_DESCRIPTION_LEN} characters",
                "DESCRIPTION_TOO_LONG",
            )
        ]
    return []


def _version_errors(version: str, field: str) -> list[ValidationError]:
    if not version:
        return [ValidationError(field, "plugin version cannot be empty", "EMPTY_VERSION")]
    try:
        Version.parse(version)
    except InvalidVersion as e:
        return [ValidationError(field, str(e), "INVALID_SEMVER")]
    return []


def _dependency_errors(deps: list[Dependency], field: str) -> list[ValidationError]:
    errors = []
    for i, dep in enumerate(deps):
        if not dep.name:
            errors.append(
                ValidationError(
                    f"{field}[{i}].name", "dependency name cannot be empty", "EMPTY_DEPENDENCY_NAME"
                )
            )
            continue
        if dep.version:
            try:
                Constraint(dep.version)
            except InvalidConstraint as e:
                errors.append(
                    ValidationError(
                        f"{field}[{i}].version",
                        f"invalid version constraint for dependency {dep.name}: {e}",
                        "INVALID_DEPENDENCY_VERSION",
                    )
                )
    return errors


def _command_errors(commands: list[Command]) -> list[ValidationError]:
    if not commands:
        return [
            ValidationError("commands", "plugin must have at least one command", "NO_COMMANDS")
        ]
    errors = []
    seen: set[str] = set()
    for i, cmd in enumerate(commands):
        where = f"commands[{i}]"
        if not cmd.name:
            errors.append(
                ValidationError(f"{where}.name", "command name cannot be empty", "EMPTY_COMMAND_NAME")
            )
        else:
            if cmd.name in seen:
                errors.append(
                    ValidationError(
                        f"{where}.name",
                        f"duplicate command name: {cmd.name}",
                        "DUPLICATE_COMMAND_NAME",
                    )
                )
            seen.add(cmd.name)
            if not COMMAND_NAME_RE.match(cmd.name):
                errors.append(
                    ValidationError(
                        f"{where}.name",
                        "command name must start with a letter and contain only "
                        "lowercase letters, numbers, and hyphens",
                        "INVALID_COMMAND_NAME",
                    )
                )
        if not cmd.description:
            errors.append(
                ValidationError(
                    f"{where}.description",
                    "command description cannot be empty",
                    "EMPTY_COMMAND_DESCRIPTION",
                )
            )
        if cmd.handler is None or not callable(cmd.handler):
            errors.append(
                ValidationError(
                    f"{where}.handler", "command handler cannot be nil", "NIL_COMMAND_HANDLER"
                )
            )
    return errors


class Validator:
    """Applies the structural rules to live plugins and to bare metadata."""

    def validate_plugin(self, plugin: Plugin) -> list[ValidationError]:
        errors: list[ValidationError] = []

        def read(field, getter, default):
            try:
                return getter()
            except Exception as e:
                errors.append(
                    ValidationError(
                        field, f"accessor raised {type(e).__name__}: {e}", "ACCESSOR_FAILED"
                    )
                )
                return default

        name = read("name", lambda: plugin.name, "")
        description = read("description", lambda: plugin.description, "")
        author = read("author", lambda: plugin.author, "")
        version = read("version", lambda: plugin.version, "")
        deps = read("dependencies", plugin.dependencies, [])
        commands = read("commands", plugin.get_commands, [])

        errors.extend(_name_errors(name, "name"))
        errors.extend(_description_errors(description, "description"))
        if not author:
            errors.append(ValidationError("author", "plugin author cannot be empty", "EMPTY_AUTHOR"))
        errors.extend(_version_errors(version, "version"))
        errors.extend(_dependency_errors(deps, "dependencies"))
        errors.extend(_command_errors(commands))

        try:
            plugin.validate()
        except Exception as e:
            errors.append(
                ValidationError(
                    "plugin", f"plugin validation failed: {e}", "PLUGIN_VALIDATION_FAILED"
                )
            )
        return errors

    def validate_metadata(self, metadata: PluginMetadata) -> list[ValidationError]:
        errors: list[ValidationError] = []
        errors.extend(_name_errors(metadata.name, "metadata.name"))
        errors.extend(_description_errors(metadata.description, "metadata.description"))
        errors.extend(_version_errors(metadata.version, "metadata.version"))
        errors.extend(_dependency_errors(metadata.dependencies, "metadata.dependencies"))

        if metadata.checksum and not CHECKSUM_RE.match(metadata.checksum):
            errors.append(
                ValidationError(
                    "metadata.checksum", "checksum must be a valid SHA256 hash", "INVALID_CHECKSUM"
                )
            )
        if metadata.trust_level and metadata.trust_level not in TRUST_LEVELS:
            errors.append(
                ValidationError(
                    "metadata.trust_level",
                    f"trust level must be one of: {', '.join(TRUST_LEVELS)}",
                    "INVALID_TRUST_LEVEL",
                )
            )
        return errors


def validate_plugin(plugin: Plugin) -> list[ValidationError]:
    return Validator().validate_plugin(plugin)


def validate_metadata(metadata: PluginMetadata) -> list[ValidationError]:
    return Validator().validate_metadata(metadata)
