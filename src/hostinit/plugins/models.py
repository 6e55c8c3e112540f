"""Plugin data models: Command, Dependency, Compatibility, PluginMetadata."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field, fields
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from hostinit.ssh import Connection

    CommandHandler = Callable[[dict, Connection, list[str], dict[str, Any]], None]

METADATA_FILE = "plugin.yaml"
ENTRY_POINT = "new_plugin"

TRUST_OFFICIAL = "official"
TRUST_COMMUNITY = "community"
TRUST_VERIFIED = "verified"
TRUST_UNTRUSTED = "untrusted"
TRUST_LEVELS = (TRUST_OFFICIAL, TRUST_COMMUNITY, TRUST_VERIFIED, TRUST_UNTRUSTED)

# Repository prefixes that count as the project's own.
OFFICIAL_SOURCES = ("github.com/hostinit/",)


class ArgumentType(enum.Enum):
    STRING = "string"
    INT = "int"
    BOOL = "bool"
    SLICE = "slice"


@dataclass
class Argument:
    name: str
    description: str = ""
    required: bool = False
    type: ArgumentType = ArgumentType.STRING


@dataclass
class Flag:
    name: str
    description: str = ""
    shorthand: str = ""
    default: Any = None
    required: bool = False
    type: ArgumentType = ArgumentType.STRING


@dataclass
class Command:
    """A named action a plugin exposes: ``hostinit <target> <plugin> <command>``."""

    name: str
    description: str = ""
    handler: CommandHandler | None = None
    aliases: list[str] = field(default_factory=list)
    args: list[Argument] = field(default_factory=list)
    flags: list[Flag] = field(default_factory=list)

    def matches(self, name: str) -> bool:
        return name == self.name or name in self.aliases


@dataclass
class Dependency:
    name: str
    version: str = ""  # semver constraint, empty = any
    optional: bool = False
    tags: list[str] = field(default_factory=list)


@dataclass
class Compatibility:
    min_host_version: str = ""
    max_host_version: str = ""
    runtime_version: str = ""  # python version the plugin was built for
    platforms: list[str] = field(default_factory=list)  # "linux/amd64", "linux/*"
    tags: list[str] = field(default_factory=list)


@dataclass
class BuildInfo:
    runtime_version: str = ""
    build_time: str = ""
    git_commit: str = ""
    git_tag: str = ""
    build_flags: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)


@dataclass
class PluginMetadata:
    """The durable record written next to an installed plugin as plugin.yaml."""

    name: str = ""
    description: str = ""
    version: str = ""
    author: str = ""
    license: str = ""
    homepage: str = ""
    repository: str = ""
    tags: list[str] = field(default_factory=list)
    config: dict[str, Any] = field(default_factory=dict)
    entry_module: str = ""
    dependencies: list[Dependency] = field(default_factory=list)
    compatibility: Compatibility = field(default_factory=Compatibility)

    # installation
    install_path: str = ""
    installed_at: str = ""
    last_updated: str = ""
    checksum: str = ""
    source: str = ""
    build_info: BuildInfo = field(default_factory=BuildInfo)

    # validation
    validated: bool = False
    validation_errors: list[str] = field(default_factory=list)
    signature: str = ""
    trust_level: str = ""

    @property
    def module_name(self) -> str:
        return self.entry_module or self.name.replace("-", "_")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PluginMetadata:
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}

        deps = []
        for d in kwargs.pop("dependencies", None) or []:
            if isinstance(d, str):
                deps.append(Dependency(name=d))
            elif isinstance(d, dict):
                deps.append(_build(Dependency, d))
        kwargs["dependencies"] = deps

        compat = kwargs.pop("compatibility", None)
        kwargs["compatibility"] = (
            _build(Compatibility, compat) if isinstance(compat, dict) else Compatibility()
        )
        info = kwargs.pop("build_info", None)
        kwargs["build_info"] = _build(BuildInfo, info) if isinstance(info, dict) else BuildInfo()

        if isinstance(kwargs.get("author"), dict):
            kwargs["author"] = kwargs["author"].get("name", "")
        for key in ("name", "description", "version", "author", "checksum", "trust_level"):
            if key in kwargs:
                kwargs[key] = "" if kwargs[key] is None else str(kwargs[key])
        return cls(**kwargs)


def _build(cls, data: dict[str, Any]):
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def trust_level_for(metadata: PluginMetadata, official_sources=OFFICIAL_SOURCES) -> str:
    """Explicit trust level, else inferred from where the plugin came from."""
    if metadata.trust_level:
        return metadata.trust_level
    origin = metadata.source or metadata.repository
    if origin:
        bare = origin.split("://", 1)[-1]
        if "@" in bare.split("/", 1)[0]:
            # scp-style: git@host:owner/repo
            bare = bare.split("@", 1)[1].replace(":", "/", 1)
        if any(bare.startswith(prefix) for prefix in official_sources):
            return TRUST_OFFICIAL
        return TRUST_COMMUNITY
    return TRUST_UNTRUSTED
