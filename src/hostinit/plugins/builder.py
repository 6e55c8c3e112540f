"""Builders: turn a plugin source tree into an installable artifact."""

from __future__ import annotations

import abc
import fnmatch
import logging
import platform
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

from hostinit.core.utils import sha256_file, utc_now

from .errors import BuildFailed, LoaderError
from .loader import read_metadata
from .models import METADATA_FILE, BuildInfo, PluginMetadata

logger = logging.getLogger(__name__)

# Zip entries get fixed timestamps and modes so identical sources hash identically.
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
ZIP_FILE_MODE = 0o644 << 16
SKIP_DIRS = {"__pycache__", "tests", "test"}


@dataclass
class BuildOptions:
    flags: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    output_name: str = ""
    runtime_version: str = ""


@dataclass
class BuildResult:
    artifact_path: Path
    checksum: str
    metadata: PluginMetadata
    warnings: list[str] = field(default_factory=list)
    build_time: float = 0.0  # seconds


class Builder(abc.ABC):
    language = ""

    @abc.abstractmethod
    def can_build(self, source: Path) -> bool: ...

    @abc.abstractmethod
    def build(
        self,
        source: Path,
        output_dir: Path,
        options: BuildOptions | None = None,
        timeout: float | None = None,
    ) -> BuildResult: ...


def calculate_checksum(path: Path) -> str:
    return sha256_file(path)


def _entry_path(source: Path, module: str) -> Path | None:
    single = source / f"{module}.py"
    if single.is_file():
        return single
    package = source / module / "__init__.py"
    if package.is_file():
        return package
    return None


def _excluded(rel: str, patterns: list[str]) -> bool:
    return any(fnmatch.fnmatch(rel, p) or fnmatch.fnmatch(Path(rel).name, p) for p in patterns)


class PythonBuilder(Builder):
    """Packs a plugin's Python sources into ``<name>.zip`` for zipimport.

    The source tree holds ``plugin.yaml`` plus the entry module, either
    ``<entry_module>.py`` or an ``<entry_module>/`` package. Every ``.py``
    file is syntax-checked before it is packed.
    """

    language = "python"

    def can_build(self, source: Path) -> bool:
        if not (source / METADATA_FILE).is_file():
            return False
        try:
            metadata = read_metadata(source)
        except LoaderError:
            return False
        return _entry_path(source, metadata.module_name) is not None

    def build(
        self,
        source: Path,
        output_dir: Path,
        options: BuildOptions | None = None,
        timeout: float | None = None,
    ) -> BuildResult:
        options = options or BuildOptions()
        started = time.monotonic()
        try:
            metadata = read_metadata(source)
        except LoaderError as e:
            raise BuildFailed(str(e)) from e
        name = metadata.name
        if _entry_path(source, metadata.module_name) is None:
            raise BuildFailed(
                f"entry module {metadata.module_name!r} not found in {source}", plugin_name=name
            )

        warnings: list[str] = []
        excludes: list[str] = []
        for flag in options.flags:
            if flag.startswith("--exclude="):
                excludes.append(flag.split("=", 1)[1])
            else:
                warnings.append(f"ignoring unsupported build flag: {flag}")

        files: list[tuple[str, Path]] = []
        for path in sorted(source.rglob("*")):
            rel = path.relative_to(source)
            if any(part.startswith(".") or part in SKIP_DIRS for part in rel.parts):
                continue
            if not path.is_file() or rel.as_posix() == METADATA_FILE:
                continue
            if _excluded(rel.as_posix(), excludes):
                continue
            if path.suffix != ".py":
                warnings.append(f"skipped non-Python file: {rel.as_posix()}")
                continue
            files.append((rel.as_posix(), path))

        for rel, path in files:
            if timeout is not None and time.monotonic() - started > timeout:
                raise TimeoutError(f"build of {name} exceeded {timeout:.0f}s")
            try:
                compile(path.read_bytes(), rel, "exec", dont_inherit=True)
            except SyntaxError as e:
                raise BuildFailed(f"{rel}:{e.lineno}: {e.msg}", plugin_name=name) from e

        output_dir.mkdir(parents=True, exist_ok=True)
        artifact = output_dir / f"{options.output_name or name}.zip"
        try:
            with zipfile.ZipFile(artifact, "w", zipfile.ZIP_DEFLATED) as zf:
                for rel, path in files:
                    info = zipfile.ZipInfo(rel, date_time=ZIP_EPOCH)
                    info.external_attr = ZIP_FILE_MODE
                    info.compress_type = zipfile.ZIP_DEFLATED
                    zf.writestr(info, path.read_bytes())
        except OSError as e:
            raise BuildFailed(f"cannot write {artifact}: {e}", plugin_name=name) from e

        metadata.build_info = BuildInfo(
            runtime_version=options.runtime_version or platform.python_version(),
            build_time=utc_now(),
            build_flags=list(options.flags),
            dependencies=[d.name for d in metadata.dependencies],
        )
        for w in warnings:
            logger.info("build %s: %s", name, w)
        return BuildResult(
            artifact_path=artifact,
            checksum=calculate_checksum(artifact),
            metadata=metadata,
            warnings=warnings,
            build_time=time.monotonic() - started,
        )
