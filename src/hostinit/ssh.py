"""Remote execution: the Connection protocol plugins talk to, and an ssh-CLI implementation."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_PORT = 22
DEFAULT_TIMEOUT = 300.0


class RemoteCommandError(Exception):
    """A remote command a plugin depends on did not succeed."""

    def __init__(self, message: str, result: Result | None = None):
        super().__init__(message)
        self.result = result


@dataclass
class Result:
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    def check(self, what: str) -> Result:
        if not self.success:
            detail = self.stderr.strip() or self.stdout.strip() or f"exit code {self.exit_code}"
            raise RemoteCommandError(f"{what} failed: {detail}", self)
        return self


@runtime_checkable
class Connection(Protocol):
    user: str
    host: str
    port: int

    def run(self, command: str, sudo: bool = False) -> Result: ...

    def run_interactive(self, command: str, sudo: bool = False) -> Result: ...

    def write_file(self, content: str, path: str, sudo: bool = False) -> Result: ...

    def file_exists(self, path: str) -> bool: ...

    def systemctl(self, action: str, service: str) -> Result: ...

    def install_package(self, *packages: str) -> Result: ...

    def close(self) -> None: ...


@dataclass
class SSHConfig:
    host: str
    user: str
    port: int = DEFAULT_PORT
    identity_file: str = ""
    timeout: float = DEFAULT_TIMEOUT
    options: list[str] = field(default_factory=list)

    @classmethod
    def from_target(cls, target: str, **kwargs) -> SSHConfig:
        """Parse ``user@host[:port]``."""
        user, sep, host_port = target.partition("@")
        if not sep or not user or not host_port:
            raise ValueError(f"invalid target {target!r}: expected user@host[:port]")
        host, _, port = host_port.partition(":")
        if not host:
            raise ValueError(f"invalid target {target!r}: missing host")
        if port:
            if not port.isdigit():
                raise ValueError(f"invalid port number in {target!r}")
            kwargs["port"] = int(port)
        return cls(host=host, user=user, **kwargs)


class SSHConnection:
    """Runs each command through the ``ssh`` executable in batch mode."""

    def __init__(self, config: SSHConfig):
        self.config = config
        self.user = config.user
        self.host = config.host
        self.port = config.port

    def _ssh_args(self, interactive: bool = False) -> list[str]:
        args = ["ssh", "-p", str(self.port)]
        args += ["-t"] if interactive else ["-o", "BatchMode=yes"]
        if self.config.identity_file:
            args += ["-i", self.config.identity_file]
        for opt in self.config.options:
            args += ["-o", opt]
        args.append(f"{self.user}@{self.host}")
        return args

    def run(self, command: str, sudo: bool = False, stdin: str | None = None) -> Result:
        remote = command
        if sudo and self.user != "root":
            remote = f"sudo -n sh -c {shlex.quote(command)}"
        logger.debug("%s@%s: %s", self.user, self.host, remote)
        try:
            proc = subprocess.run(
                [*self._ssh_args(), "--", remote],
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.config.timeout,
            )
        except subprocess.TimeoutExpired:
            timeout = self.config.timeout
            return Result(False, stderr=f"command timed out after {timeout:.0f}s", exit_code=-1)
        except FileNotFoundError:
            return Result(False, stderr="ssh executable not found", exit_code=-1)
        return Result(proc.returncode == 0, proc.stdout, proc.stderr, proc.returncode)

    def run_interactive(self, command: str, sudo: bool = False) -> Result:
        """Run on a remote TTY wired to the local terminal; output streams, nothing is captured.

        sudo may prompt for a password here.
        """
        remote = command
        if sudo and self.user != "root":
            remote = f"sudo sh -c {shlex.quote(command)}"
        logger.debug("%s@%s (tty): %s", self.user, self.host, remote)
        try:
            proc = subprocess.run([*self._ssh_args(interactive=True), "--", remote])
        except FileNotFoundError:
            return Result(False, stderr="ssh executable not found", exit_code=-1)
        return Result(proc.returncode == 0, exit_code=proc.returncode)

    def write_file(self, content: str, path: str, sudo: bool = False) -> Result:
        return self.run(f"cat > {shlex.quote(path)}", sudo=sudo, stdin=content)

    def file_exists(self, path: str) -> bool:
        return self.run(f"test -e {shlex.quote(path)}").success

    def systemctl(self, action: str, service: str) -> Result:
        return self.run(f"systemctl {action} {shlex.quote(service)}", sudo=True)

    def install_package(self, *packages: str) -> Result:
        names = " ".join(shlex.quote(p) for p in packages)
        return self.run(f"DEBIAN_FRONTEND=noninteractive apt-get install -y {names}", sudo=True)

    def close(self) -> None:
        return None


def connect(target: str, options: list[str] | None = None) -> SSHConnection:
    return SSHConnection(SSHConfig.from_target(target, options=list(options or [])))
