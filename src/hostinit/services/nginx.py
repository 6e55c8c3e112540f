"""nginx - install nginx and manage reverse-proxy sites."""

from __future__ import annotations

import re
import shlex

from rich.console import Console

from hostinit.plugins.base import BasePlugin
from hostinit.plugins.models import (
    Argument,
    ArgumentType,
    Command,
    Compatibility,
    Dependency,
    Flag,
)

console = Console()

DOMAIN_RE = re.compile(r"^(?=.{1,253}$)([a-zA-Z0-9-]{1,63}\.)+[a-zA-Z]{2,63}$")

SITE_TEMPLATE = """server {{
    listen 80;
    listen [::]:80;
    server_name {domain};

    location / {{
        proxy_pass http://localhost:{port};
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection 'upgrade';
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_cache_bypass $http_upgrade;
    }}

    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-Content-Type-Options "nosniff" always;
}}
"""


def site_config(domain: str, port: int = 3000) -> str:
    return SITE_TEMPLATE.format(domain=domain, port=port)


class NginxPlugin(BasePlugin):
    plugin_name = "nginx"
    plugin_description = "Nginx web server and reverse-proxy sites"
    plugin_version = "1.0.0"
    plugin_author = "hostinit"
    license = "MIT"
    repository = "github.com/hostinit/hostinit"
    tags = ("web", "proxy")

    def dependencies(self) -> list[Dependency]:
        return [Dependency("system", ">=1.0.0")]

    def compatibility(self) -> Compatibility:
        return Compatibility(min_host_version="1.0.0", platforms=["linux/*", "darwin/*"])

    def get_commands(self) -> list[Command]:
        domain = Argument("domain", "Site domain name", required=True)
        return [
            Command("install", "Install nginx and enable the service", self.handle_install),
            Command(
                "create-site",
                "Create and enable a reverse-proxy site",
                self.handle_create_site,
                args=[domain],
                flags=[
                    Flag("port", "Upstream port on localhost", default=3000, type=ArgumentType.INT)
                ],
            ),
            Command(
                "install-ssl",
                "Obtain a Let's Encrypt certificate for a site",
                self.handle_install_ssl,
                args=[domain],
                flags=[Flag("email", "Contact email for the certificate")],
            ),
            Command("reload", "Reload nginx configuration", self.handle_reload),
            Command("status", "Show nginx service status", self.handle_status),
        ]

    def handle_install(self, ctx, conn, args, flags):
        console.print("[dim]Installing nginx...[/dim]")
        conn.install_package("nginx").check("install nginx")
        conn.systemctl("enable", "nginx").check("enable nginx")
        conn.systemctl("start", "nginx").check("start nginx")
        console.print("[green]nginx installed and running[/green]")

    def _domain(self, args) -> str:
        if not args or not DOMAIN_RE.match(args[0]):
            raise ValueError("a valid domain name is required")
        return args[0]

    def handle_create_site(self, ctx, conn, args, flags):
        domain = self._domain(args)
        port = int(flags.get("port") or 3000)
        available = f"/etc/nginx/sites-available/{domain}"
        conn.write_file(site_config(domain, port), available, sudo=True).check("write site config")
        conn.run(f"ln -sf {available} /etc/nginx/sites-enabled/", sudo=True).check("enable site")
        conn.run("nginx -t", sudo=True).check("nginx config test")
        conn.systemctl("reload", "nginx").check("reload nginx")
        console.print(f"[green]site {domain} created and enabled[/green]")

    def handle_install_ssl(self, ctx, conn, args, flags):
        domain = self._domain(args)
        email = flags.get("email") or f"admin@{domain}"
        conn.install_package("certbot", "python3-certbot-nginx").check("install certbot")
        conn.run(
            f"certbot --nginx -d {domain} --non-interactive --agree-tos "
            f"--email {shlex.quote(email)}",
            sudo=True,
        ).check("obtain certificate")
        conn.systemctl("reload", "nginx").check("reload nginx")
        console.print(f"[green]SSL configured for {domain}[/green]")

    def handle_reload(self, ctx, conn, args, flags):
        conn.systemctl("reload", "nginx").check("reload nginx")
        console.print("[green]nginx configuration reloaded[/green]")

    def handle_status(self, ctx, conn, args, flags):
        result = conn.run("systemctl status nginx --no-pager").check("nginx status")
        console.print(result.stdout, markup=False, highlight=False)
