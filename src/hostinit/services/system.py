"""system - package updates and installs on Debian-family hosts."""

from __future__ import annotations

import shlex

from rich.console import Console

from hostinit.plugins.base import BasePlugin
from hostinit.plugins.models import Argument, ArgumentType, Command, Compatibility

console = Console()

APT = "DEBIAN_FRONTEND=noninteractive apt-get"


class SystemPlugin(BasePlugin):
    plugin_name = "system"
    plugin_description = "System management and upgrades"
    plugin_version = "1.0.0"
    plugin_author = "hostinit"
    license = "MIT"
    repository = "github.com/hostinit/hostinit"
    tags = ("system", "apt")

    def compatibility(self) -> Compatibility:
        return Compatibility(min_host_version="1.0.0", platforms=["linux/*", "darwin/*"])

    def get_commands(self) -> list[Command]:
        packages = [Argument("packages", "Package names", required=True, type=ArgumentType.SLICE)]
        return [
            Command("update", "Update package lists (apt update)", self.handle_update),
            Command("upgrade", "Upgrade installed packages (apt upgrade)", self.handle_upgrade),
            Command(
                "full-upgrade",
                "Perform full system upgrade (apt dist-upgrade)",
                self.handle_full_upgrade,
                aliases=["dist-upgrade"],
            ),
            Command("autoremove", "Remove unused packages", self.handle_autoremove),
            Command("install", "Install packages (apt install)", self.handle_install, args=packages),
            Command(
                "uninstall",
                "Uninstall packages (apt remove)",
                self.handle_uninstall,
                aliases=["remove"],
                args=packages,
            ),
        ]

    def _apt(self, conn, what: str, args: str) -> None:
        console.print(f"[dim]{what}...[/dim]")
        conn.run(f"{APT} {args}", sudo=True).check(what)
        console.print(f"[green]{what}: done[/green]")

    def handle_update(self, ctx, conn, args, flags):
        self._apt(conn, "Updating package lists", "update")

    def handle_upgrade(self, ctx, conn, args, flags):
        self._apt(conn, "Upgrading packages", "upgrade -y")

    def handle_full_upgrade(self, ctx, conn, args, flags):
        self._apt(conn, "Performing full system upgrade", "dist-upgrade -y")

    def handle_autoremove(self, ctx, conn, args, flags):
        self._apt(conn, "Removing unused packages", "autoremove -y")

    def handle_install(self, ctx, conn, args, flags):
        if not args:
            raise ValueError("usage: install <package> [package...]")
        self._apt(conn, f"Installing {' '.join(args)}", "install -y " + shlex.join(args))

    def handle_uninstall(self, ctx, conn, args, flags):
        if not args:
            raise ValueError("usage: uninstall <package> [package...]")
        self._apt(conn, f"Removing {' '.join(args)}", "remove -y " + shlex.join(args))
