"""docker - install Docker Engine and inspect containers."""

from __future__ import annotations

import shlex

from rich.console import Console

from hostinit.plugins.base import BasePlugin
from hostinit.plugins.models import Command, Compatibility, Flag

console = Console()

INSTALL_SCRIPT = "curl -fsSL https://get.docker.com | sh"


class DockerPlugin(BasePlugin):
    plugin_name = "docker"
    plugin_description = "Docker Engine installation and container management"
    plugin_version = "1.0.0"
    plugin_author = "hostinit"
    license = "MIT"
    repository = "github.com/hostinit/hostinit"
    tags = ("containers",)

    def compatibility(self) -> Compatibility:
        return Compatibility(min_host_version="1.0.0", platforms=["linux/*", "darwin/*"])

    def get_commands(self) -> list[Command]:
        return [
            Command(
                "install",
                "Install Docker Engine and the compose plugin",
                self.handle_install,
                flags=[Flag("user", "Add this user to the docker group")],
            ),
            Command("status", "Show docker service status", self.handle_status),
            Command("ps", "List running containers", self.handle_ps),
        ]

    def handle_install(self, ctx, conn, args, flags):
        if conn.run("command -v docker").success:
            console.print("[yellow]docker is already installed[/yellow]")
        else:
            console.print("[dim]Installing Docker...[/dim]")
            conn.run(INSTALL_SCRIPT, sudo=True).check("install docker")
        conn.systemctl("enable", "docker").check("enable docker")
        conn.systemctl("start", "docker").check("start docker")
        user = flags.get("user") or (conn.user if conn.user != "root" else "")
        if user:
            cmd = f"usermod -aG docker {shlex.quote(user)}"
            conn.run(cmd, sudo=True).check("add user to docker group")
        console.print("[green]docker installed and running[/green]")

    def handle_status(self, ctx, conn, args, flags):
        result = conn.run("systemctl status docker --no-pager").check("docker status")
        console.print(result.stdout, markup=False, highlight=False)

    def handle_ps(self, ctx, conn, args, flags):
        result = conn.run("docker ps", sudo=True).check("docker ps")
        console.print(result.stdout, markup=False, highlight=False)
