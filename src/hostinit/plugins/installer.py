"""Git-based installer: fetch, resolve, discover, validate, build and install plugins.

Each install holds a file lock next to the repository's cache directory, so
two installs of the same repository serialize, across processes too, while
different repositories proceed in parallel. Files become visible in the install directory only
through a single rename of a fully populated staging directory.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from hostinit.core.utils import FileLock, LockTimeout, sha256_file, utc_now

from .builder import BuildOptions, BuildResult, Builder, PythonBuilder
from .errors import (
    BuildFailed,
    InstallError,
    InstallIOFailure,
    InstallTimeout,
    InvalidRepositoryURL,
    LoaderError,
    MetadataNotFound,
    PluginNotFound,
    ValidationFailed,
    VersionNotFound,
)
from .git import GitError, GitProvider, GitTimeout
from .loader import artifact_path, is_installed_dir, read_metadata, write_metadata
from .models import METADATA_FILE, OFFICIAL_SOURCES, PluginMetadata, trust_level_for
from .semver import is_valid_version
from .validation import Validator

if TYPE_CHECKING:
    from hostinit.core.config import Config

logger = logging.getLogger(__name__)

SCHEMES = ("https", "http", "ssh", "git", "git+ssh", "file")
INSECURE_SCHEMES = ("http", "git")

_SCP_RE = re.compile(r"^(?:(?P<user>[^@/:]+)@)?(?P<host>[^@/:]+):(?P<path>[^/].*)$")


# ── Repository references ───────────────────────────────────────────


@dataclass
class RepositoryInfo:
    url: str  # what gets cloned
    host: str
    owner: str
    repo: str
    protocol: str
    is_private: bool = False
    requested_version: str = ""

    @property
    def cache_key(self) -> str:
        return f"{self.owner.replace('/', '-')}-{self.repo}"

    @property
    def canonical(self) -> str:
        return "/".join(p for p in (self.host, self.owner, self.repo) if p)


def _split_at(text: str, tail: str) -> tuple[str, str]:
    """Split an ``@version`` suffix off ``tail`` (the part after the host)."""
    if "@" not in tail:
        return text, ""
    head, _, version = text.rpartition("@")
    return head, version


def split_version(reference: str) -> tuple[str, str]:
    """``"host/owner/repo@1.2.0"`` -> ``("host/owner/repo", "1.2.0")``."""
    text = reference.strip()
    if "://" in text:
        _, rest = text.split("://", 1)
        _, _, path = rest.partition("/")
        return _split_at(text, path)
    if _SCP_RE.match(text):
        _, _, path = text.partition(":")
        return _split_at(text, path)
    head, _, version = text.rpartition("@")
    if not head or ":" in head:
        return text, ""
    return head, version


def _strip_git(name: str) -> str:
    return name[: -len(".git")] if name.endswith(".git") else name


def _owner_repo(path: str, reference: str) -> tuple[str, str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2:
        raise InvalidRepositoryURL(
            f"repository path must include owner and repository name: {reference!r}"
        )
    repo = _strip_git(parts[-1])
    if not repo:
        raise InvalidRepositoryURL(f"empty repository name: {reference!r}")
    return "/".join(parts[:-1]), repo


def parse_repository_url(reference: str) -> RepositoryInfo:
    """Parse ``host/owner/repo``, ``scheme://host/owner/repo``,
    ``user@host:owner/repo`` or ``file:///path/owner/repo``, each optionally
    ending in ``.git`` and ``@version``."""
    if not isinstance(reference, str) or not reference.strip():
        raise InvalidRepositoryURL("repository URL cannot be empty")
    if any(c.isspace() for c in reference.strip()):
        raise InvalidRepositoryURL(f"repository URL contains whitespace: {reference!r}")

    text, version = split_version(reference)
    if not version and reference.strip().endswith("@"):
        raise InvalidRepositoryURL(f"empty version after '@': {reference!r}")

    if "://" in text:
        parts = urlsplit(text)
        scheme = parts.scheme.lower()
        if scheme not in SCHEMES:
            raise InvalidRepositoryURL(f"unsupported scheme {scheme!r} in {reference!r}")
        host = parts.netloc.rpartition("@")[2]
        if not host and scheme != "file":
            raise InvalidRepositoryURL(f"missing host in {reference!r}")
        owner, repo = _owner_repo(parts.path, reference)
        protocol = "ssh" if scheme == "git+ssh" else scheme
        url = text
    elif m := _SCP_RE.match(text):
        host = m.group("host")
        owner, repo = _owner_repo(m.group("path"), reference)
        protocol = "ssh"
        url = text
    else:
        segments = text.split("/")
        if len(segments) < 3 or not segments[0] or "." not in segments[0]:
            raise InvalidRepositoryURL(
                f"invalid repository reference {reference!r} (expected host/owner/repo)"
            )
        host = segments[0]
        owner, repo = _owner_repo("/".join(segments[1:]), reference)
        protocol = "https"
        url = f"https://{text}"

    return RepositoryInfo(
        url=url,
        host=host,
        owner=owner,
        repo=repo,
        protocol=protocol,
        is_private=protocol in ("ssh", "git"),
        requested_version=version,
    )


# ── Options ─────────────────────────────────────────────────────────


@dataclass
class InstallOptions:
    version: str = ""
    branch: str = ""
    commit: str = ""
    name: str = ""
    force: bool = False
    no_verify: bool = False
    build_options: BuildOptions = field(default_factory=BuildOptions)


@dataclass
class InstallerConfig:
    cache_dir: Path
    install_dir: Path
    timeout: float | None = 600.0  # seconds for the whole pipeline
    allow_insecure: bool = False
    official_sources: tuple[str, ...] = OFFICIAL_SOURCES

    @classmethod
    def from_config(cls, config: Config) -> InstallerConfig:
        return cls(
            cache_dir=config.cache_dir,
            install_dir=config.plugins_dir,
            timeout=config.install_timeout,
            official_sources=tuple(config.official_sources),
        )


class _Deadline:
    def __init__(self, timeout: float | None):
        self.timeout = timeout
        self.expires = time.monotonic() + timeout if timeout else None

    def remaining(self) -> float | None:
        if self.expires is None:
            return None
        return max(0.0, self.expires - time.monotonic())

    def check(self, step: str, plugin_name: str = "") -> None:
        if self.expires is not None and time.monotonic() >= self.expires:
            raise InstallTimeout(
                f"install exceeded {self.timeout:.0f}s", plugin_name=plugin_name, step=step
            )


# ── Installer ───────────────────────────────────────────────────────


class GitInstaller:
    def __init__(
        self,
        config: InstallerConfig,
        vcs: GitProvider | None = None,
        builders: list[Builder] | None = None,
        validator: Validator | None = None,
    ):
        self.config = config
        self.vcs = vcs or GitProvider()
        self.builders = builders if builders is not None else [PythonBuilder()]
        self.validator = validator or Validator()

    def lock_path(self, info: RepositoryInfo) -> Path:
        return self.config.cache_dir / f".{info.cache_key}.lock"

    def install(self, repository: str, options: InstallOptions | None = None) -> PluginMetadata:
        """Run the whole pipeline; raises an InstallError subclass naming the failed step."""
        options = options or InstallOptions()
        deadline = _Deadline(self.config.timeout)

        info = parse_repository_url(repository)
        if info.protocol in INSECURE_SCHEMES and not self.config.allow_insecure:
            raise InvalidRepositoryURL(
                f"refusing insecure {info.protocol}:// repository {info.url} "
                "(set allow_insecure to permit it)"
            )
        requested = options.version or options.branch or options.commit or info.requested_version
        cache_path = self.config.cache_dir / info.cache_key

        lock = FileLock(self.lock_path(info), timeout=deadline.remaining())
        try:
            lock.acquire()
        except LockTimeout as e:
            raise InstallTimeout(str(e), step="fetch") from e
        except OSError as e:
            raise InstallError(f"cannot lock {lock.path}: {e}", step="fetch") from e
        try:
            logger.info("installing %s%s", info.canonical, f"@{requested}" if requested else "")
            self._fetch(info, cache_path, options, deadline)
            deadline.check("fetch")

            tag = self._resolve(cache_path, requested, deadline)
            deadline.check("resolve")

            plugin_dir, metadata = self._discover(cache_path)
            deadline.check("discover", metadata.name)

            if not options.no_verify:
                errors = self.validator.validate_metadata(metadata)
                if errors:
                    raise ValidationFailed(errors, plugin_name=metadata.name)
            deadline.check("validate", metadata.name)

            name = options.name or metadata.name
            with tempfile.TemporaryDirectory(prefix="hostinit-build-") as tmp:
                result = self._build(plugin_dir, Path(tmp), name, options, deadline)
                deadline.check("build", name)

                current = self._current_install(name, result.checksum, info.url, options.force)
                if current is not None:
                    logger.info("plugin %s is already installed at this version", name)
                    return current

                final = self._finalize(result, name, info, tag, cache_path, options)
                self._install(name, result.artifact_path, final, deadline)
        finally:
            lock.release()
        logger.info("installed %s %s into %s", final.name, final.version, final.install_path)
        return final

    # ── Steps ───────────────────────────────────────────────────────

    def _fetch(
        self, info: RepositoryInfo, cache_path: Path, options: InstallOptions, deadline: _Deadline
    ) -> None:
        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            if cache_path.exists() and options.force:
                shutil.rmtree(cache_path)
            if cache_path.exists() and self.vcs.is_valid_repository(cache_path):
                self.vcs.refresh(cache_path, timeout=deadline.remaining())
            else:
                if cache_path.exists():
                    shutil.rmtree(cache_path)
                self.vcs.clone(
                    info.url, cache_path, branch=options.branch, timeout=deadline.remaining()
                )
        except GitTimeout as e:
            raise InstallTimeout(str(e), step="fetch") from e
        except (GitError, OSError) as e:
            raise InstallError(f"cannot fetch {info.url}: {e}", step="fetch") from e

    def _resolve(self, path: Path, requested: str, deadline: _Deadline) -> str:
        """Check out ``requested``; returns the matching tag, if any."""
        try:
            if not requested:
                self.vcs.checkout_default(path, timeout=deadline.remaining())
                return ""
            try:
                self.vcs.checkout(path, requested, timeout=deadline.remaining())
            except GitTimeout:
                raise
            except GitError as first:
                tag = self._matching_tag(path, requested, deadline)
                if tag is None:
                    raise VersionNotFound(f"version {requested} not found") from first
                self.vcs.checkout(path, tag, timeout=deadline.remaining())
                return tag
            tags = self.vcs.tags(path, timeout=deadline.remaining())
            return requested if requested in tags else ""
        except GitTimeout as e:
            raise InstallTimeout(str(e), step="resolve") from e
        except GitError as e:
            raise VersionNotFound(f"cannot check out {requested}: {e}") from e

    def _matching_tag(self, path: Path, requested: str, deadline: _Deadline) -> str | None:
        if not is_valid_version(requested):
            return None
        want = requested[1:] if requested.startswith("v") else requested
        for tag in self.vcs.tags(path, timeout=deadline.remaining()):
            if (tag[1:] if tag.startswith("v") else tag) == want:
                return tag
        return None

    def _discover(self, root: Path) -> tuple[Path, PluginMetadata]:
        if (root / METADATA_FILE).is_file():
            plugin_dir = root
        else:
            candidates = [
                d
                for d in sorted(root.iterdir())
                if d.is_dir() and not d.name.startswith(".") and (d / METADATA_FILE).is_file()
            ]
            if not candidates:
                raise MetadataNotFound(f"{METADATA_FILE} not found in repository")
            if len(candidates) > 1:
                names = ", ".join(d.name for d in candidates)
                raise MetadataNotFound(f"ambiguous: {METADATA_FILE} found in {names}")
            plugin_dir = candidates[0]
        try:
            return plugin_dir, read_metadata(plugin_dir)
        except LoaderError as e:
            raise MetadataNotFound(f"invalid {METADATA_FILE}: {e}") from e

    def _build(
        self,
        source: Path,
        output_dir: Path,
        name: str,
        options: InstallOptions,
        deadline: _Deadline,
    ) -> BuildResult:
        builder = next((b for b in self.builders if b.can_build(source)), None)
        if builder is None:
            raise BuildFailed(f"no suitable builder found for plugin at {source}", plugin_name=name)
        build_options = options.build_options
        if not build_options.output_name:
            build_options = BuildOptions(
                flags=list(build_options.flags),
                tags=list(build_options.tags),
                env=dict(build_options.env),
                output_name=name,
                runtime_version=build_options.runtime_version,
            )
        try:
            result = builder.build(source, output_dir, build_options, timeout=deadline.remaining())
        except TimeoutError as e:
            raise InstallTimeout(str(e), plugin_name=name, step="build") from e
        except BuildFailed:
            raise
        except Exception as e:
            raise BuildFailed(f"{builder.language} build failed: {e}", plugin_name=name) from e
        for w in result.warnings:
            logger.warning("build %s: %s", name, w)
        return result

    def _current_install(
        self, name: str, checksum: str, source: str, force: bool
    ) -> PluginMetadata | None:
        target = self.config.install_dir / name
        if force or not is_installed_dir(target):
            return None
        try:
            current = read_metadata(target)
            on_disk = sha256_file(artifact_path(target, current))
        except (LoaderError, OSError):
            return None
        if current.checksum == checksum == on_disk and current.source == source:
            return current
        return None

    def _finalize(
        self,
        result: BuildResult,
        name: str,
        info: RepositoryInfo,
        tag: str,
        cache_path: Path,
        options: InstallOptions,
    ) -> PluginMetadata:
        metadata = result.metadata
        now = utc_now()
        previous = self.installed(name)
        metadata.entry_module = metadata.module_name
        metadata.name = name
        metadata.install_path = str(self.config.install_dir / name / f"{name}.zip")
        metadata.installed_at = previous.installed_at if previous and previous.installed_at else now
        metadata.last_updated = now
        metadata.checksum = result.checksum
        metadata.source = info.url
        metadata.validated = not options.no_verify
        metadata.validation_errors = []
        metadata.trust_level = trust_level_for(metadata, self.config.official_sources)
        if not metadata.repository:
            metadata.repository = info.canonical
        try:
            metadata.build_info.git_commit = self.vcs.commit(cache_path)
        except GitError as e:
            logger.debug("no commit for %s: %s", cache_path, e)
        metadata.build_info.git_tag = tag
        return metadata

    def _install(
        self, name: str, artifact: Path, metadata: PluginMetadata, deadline: _Deadline
    ) -> None:
        root = self.config.install_dir
        target = root / name
        staging: Path | None = None
        aside: Path | None = None
        try:
            root.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(prefix=f".{name}-staging-", dir=root))
            shutil.copyfile(artifact, staging / f"{name}.zip")
            write_metadata(staging / METADATA_FILE, metadata)
            deadline.check("install", name)
            if target.exists():
                aside = root / f".{name}-old-{uuid.uuid4().hex[:8]}"
                os.rename(target, aside)
            os.rename(staging, target)
            staging = None
        except BaseException as e:
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)
            if aside is not None and not target.exists():
                os.rename(aside, target)
                aside = None
            if isinstance(e, Exception) and not isinstance(e, InstallError):
                raise InstallIOFailure(f"cannot install {name}: {e}", plugin_name=name) from e
            raise
        finally:
            if aside is not None and target.exists():
                shutil.rmtree(aside, ignore_errors=True)

    # ── Queries ─────────────────────────────────────────────────────

    def installed(self, name: str) -> PluginMetadata | None:
        target = self.config.install_dir / name
        if not is_installed_dir(target):
            return None
        try:
            return read_metadata(target)
        except LoaderError:
            return None

    def list_installed(self) -> list[PluginMetadata]:
        root = self.config.install_dir
        if not root.is_dir():
            return []
        found = []
        for child in sorted(root.iterdir()):
            if is_installed_dir(child):
                try:
                    found.append(read_metadata(child))
                except LoaderError as e:
                    logger.warning("%s", e)
        return found

    def uninstall(self, name: str) -> None:
        """Remove an installed plugin; the directory disappears in one rename."""
        target = self.config.install_dir / name
        if not target.is_dir() or name.startswith("."):
            raise PluginNotFound(name, str(self.config.install_dir))
        aside = self.config.install_dir / f".{name}-removed-{uuid.uuid4().hex[:8]}"
        try:
            os.rename(target, aside)
        except OSError as e:
            raise InstallIOFailure(
                f"cannot remove {target}: {e}", plugin_name=name, step="uninstall"
            ) from e
        shutil.rmtree(aside, ignore_errors=True)
        logger.info("uninstalled %s", name)
