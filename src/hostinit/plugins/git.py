"""Git provider: clone, refresh, checkout and inspect repositories through the git CLI."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0


class GitError(Exception):
    """A git command failed or could not be run."""


class GitTimeout(GitError):
    pass


class GitProvider:
    """Thin wrapper over the ``git`` executable.

    Every method takes an optional ``timeout`` in seconds; expiry raises
    GitTimeout so callers can tell a slow remote from a bad one.
    """

    def __init__(self, executable: str = "git"):
        self.executable = executable

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def _run(self, args: list[str], cwd: Path | None = None, timeout: float | None = None) -> str:
        cmd = [self.executable, *args]
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                timeout=timeout if timeout is not None else DEFAULT_TIMEOUT,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            raise GitTimeout(f"git {args[0]} timed out after {e.timeout:.0f}s") from e
        except FileNotFoundError as e:
            raise GitError(f"git executable not found: {self.executable}") from e
        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            raise GitError(f"git {' '.join(args)} failed: {detail}")
        return result.stdout

    def clone(
        self,
        url: str,
        target: Path,
        branch: str = "",
        timeout: float | None = None,
    ) -> None:
        args = ["clone", "--quiet"]
        if branch:
            args += ["--branch", branch]
        args += [url, str(target)]
        logger.debug("cloning %s into %s", url, target)
        self._run(args, timeout=timeout)

    def refresh(self, path: Path, timeout: float | None = None) -> None:
        """Fetch branches and tags for an existing clone."""
        logger.debug("refreshing %s", path)
        self._run(["fetch", "--quiet", "--tags", "--force", "--prune", "origin"], path, timeout)

    def checkout(self, path: Path, ref: str, timeout: float | None = None) -> None:
        """Check out ``ref``; a branch is moved to its fetched remote head."""
        self._run(["checkout", "--quiet", "--force", ref], path, timeout)
        if self._has_ref(path, f"refs/remotes/origin/{ref}", timeout):
            self._run(["reset", "--quiet", "--hard", f"origin/{ref}"], path, timeout)

    def checkout_default(self, path: Path, timeout: float | None = None) -> None:
        """Move to the remote's default branch head."""
        if self._has_ref(path, "refs/remotes/origin/HEAD", timeout):
            self._run(["reset", "--quiet", "--hard", "origin/HEAD"], path, timeout)

    def _has_ref(self, path: Path, ref: str, timeout: float | None) -> bool:
        try:
            self._run(["rev-parse", "--verify", "--quiet", ref], path, timeout)
        except GitTimeout:
            raise
        except GitError:
            return False
        return True

    def tags(self, path: Path, timeout: float | None = None) -> list[str]:
        out = self._run(["tag", "--list"], path, timeout)
        return [line.strip() for line in out.splitlines() if line.strip()]

    def branches(self, path: Path, timeout: float | None = None) -> list[str]:
        out = self._run(["branch", "--all", "--format=%(refname:short)"], path, timeout)
        names: list[str] = []
        for line in out.splitlines():
            name = line.strip()
            if not name or name.endswith("/HEAD") or name == "origin":
                continue
            if name.startswith("origin/"):
                name = name[len("origin/") :]
            if name not in names:
                names.append(name)
        return names

    def commit(self, path: Path, timeout: float | None = None) -> str:
        return self._run(["rev-parse", "HEAD"], path, timeout).strip()

    def remote_url(self, path: Path, timeout: float | None = None) -> str:
        return self._run(["config", "--get", "remote.origin.url"], path, timeout).strip()

    def is_valid_repository(self, path: Path) -> bool:
        if not path.is_dir():
            return False
        try:
            self._run(["rev-parse", "--git-dir"], path, timeout=10)
        except GitError:
            return False
        return True
