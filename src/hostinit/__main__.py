"""CLI entry point: plugin management and remote command dispatch."""

from __future__ import annotations

import sys
from typing import Any

import click
from rich.console import Console

from . import __version__
from .core.config import Config, load_config
from .core.logging import setup_logging
from .plugins import (
    ArgumentType,
    Command,
    CompatibilityChecker,
    FilesystemLoader,
    GitInstaller,
    InstallerConfig,
    InstallOptions,
    Plugin,
    PluginError,
    Registry,
    init_builtins,
)
from .plugins.builder import BuildOptions
from .ssh import RemoteCommandError, connect

console = Console()


# ── Wiring ──────────────────────────────────────────────────────────


def build_registry(config: Config) -> Registry:
    init_builtins()
    return Registry(
        loader=FilesystemLoader(config),
        checker=CompatibilityChecker(config.host_version),
        installer=GitInstaller(InstallerConfig.from_config(config)),
    )


def _load(registry: Registry, quiet: bool = True):
    report = registry.load_all()
    if not quiet:
        for name, err in sorted(report.failed.items()):
            console.print(f"[yellow]warning:[/yellow] plugin {name} not loaded: {err}")
    return report


def _fail(message: str) -> None:
    console.print(f"error: {message}", style="bold", markup=False)
    sys.exit(1)


# ── hostinit plugin ... ─────────────────────────────────────────────


@click.group(name="plugin")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def plugin_cli(ctx: click.Context, verbose: bool):
    """Manage hostinit plugins."""
    config = load_config(verbose=verbose)
    setup_logging(config.log_level, config.verbose)
    ctx.obj = {"config": config, "registry": build_registry(config)}


@plugin_cli.command("list")
@click.pass_obj
def plugin_list(obj: dict):
    """List plugins and whether they loaded."""
    registry: Registry = obj["registry"]
    report = _load(registry)
    loader: FilesystemLoader = registry.loader
    entries = loader.read_config()["plugins"]

    if not registry.count() and not report.failed and not entries:
        console.print("no plugins installed", style="dim")
        console.print("use `hostinit plugin install <repository>` to add one", style="dim")
        return
    for plugin in sorted(registry.get_all(), key=lambda p: p.name):
        console.print(
            f"  [bold]{plugin.name}[/bold]  v{plugin.version}  [green]on[/green]"
            f"  [dim]{plugin.description}[/dim]"
        )
    for name, entry in sorted(entries.items()):
        if isinstance(entry, dict) and not entry.get("enabled", True):
            console.print(f"  [bold]{name}[/bold]  [dim]off[/dim]")
    for name, err in sorted(report.failed.items()):
        console.print(f"  [bold]{name}[/bold]  [red]failed[/red]  [dim]{err}[/dim]")


@plugin_cli.command("info")
@click.argument("name")
@click.pass_obj
def plugin_info(obj: dict, name: str):
    """Show metadata and commands for a plugin."""
    registry: Registry = obj["registry"]
    report = _load(registry)
    plugin = registry.get(name)
    installed = registry.installer.installed(name)
    if plugin is None and installed is None:
        if name in report.failed:
            _fail(f"plugin {name} failed to load: {report.failed[name]}")
        _fail(f"plugin '{name}' not found")

    meta = installed or plugin.get_metadata()
    console.print(f"[bold]{meta.name}[/bold] v{meta.version}")
    if meta.description:
        console.print(f"  {meta.description}", style="dim")
    for label, value in (
        ("author", meta.author),
        ("license", meta.license),
        ("repository", meta.repository),
        ("source", meta.source),
        ("installed", meta.installed_at),
        ("checksum", meta.checksum),
        ("trust", meta.trust_level),
    ):
        if value:
            console.print(f"  {label}: {value}")
    for dep in meta.dependencies:
        optional = " (optional)" if dep.optional else ""
        console.print(f"  depends on: {dep.name} {dep.version}{optional}".rstrip())
    if plugin is not None:
        console.print("  commands:")
        for cmd in plugin.get_commands():
            aliases = f" ({', '.join(cmd.aliases)})" if cmd.aliases else ""
            console.print(f"    [bold]{cmd.name}[/bold]{aliases}  [dim]{cmd.description}[/dim]")
    elif name in report.failed:
        console.print(f"  [red]not loaded:[/red] {report.failed[name]}")


@plugin_cli.command("validate")
@click.option("--strict", is_flag=True, help="Also check compatibility and dependencies")
@click.pass_obj
def plugin_validate(obj: dict, strict: bool):
    """Validate every loaded plugin. Exits 1 on any problem."""
    registry: Registry = obj["registry"]
    report = _load(registry)
    problems = registry.validate_plugins(strict=strict)
    for name, err in sorted(report.failed.items()):
        problems.setdefault(name, []).append(str(err))
    if not problems:
        console.print(f"[green]{registry.count()} plugin(s) valid[/green]")
        return
    for name, found in sorted(problems.items()):
        console.print(f"  [bold]{name}[/bold]")
        for p in found:
            console.print(f"    [red]error:[/red] {p}")
    sys.exit(1)


@plugin_cli.command("install")
@click.argument("repository")
@click.option("--name", default="", help="Install under a different name")
@click.option("--version", "version", default="", help="Tag or semantic version")
@click.option("--branch", default="", help="Branch to install")
@click.option("--commit", default="", help="Commit to install")
@click.option("--force", is_flag=True, help="Re-fetch and reinstall")
@click.option("--no-verify", is_flag=True, help="Skip metadata validation")
@click.option("--exclude", multiple=True, help="Glob of source files to leave out (repeatable)")
@click.pass_obj
def plugin_install(
    obj: dict, repository: str, name, version, branch, commit, force, no_verify, exclude
):
    """Install a plugin from a git repository (host/owner/repo[@version])."""
    registry: Registry = obj["registry"]
    _load(registry)
    options = InstallOptions(
        version=version,
        branch=branch,
        commit=commit,
        name=name,
        force=force,
        no_verify=no_verify,
        build_options=BuildOptions(flags=[f"--exclude={g}" for g in exclude]),
    )
    with console.status(f"installing {repository}..."):
        try:
            meta = registry.installer.install(repository, options)
        except PluginError as e:
            _fail(str(e))
    console.print(f"installed [bold]{meta.name}[/bold] v{meta.version} ({meta.trust_level})")
    console.print(f"  {meta.install_path}", style="dim")
    try:
        registry.load_plugin(meta.name)
    except PluginError as e:
        console.print(f"[yellow]warning:[/yellow] installed but not loadable: {e}")


@plugin_cli.command("uninstall")
@click.argument("name")
@click.pass_obj
def plugin_uninstall(obj: dict, name: str):
    """Remove an installed plugin."""
    registry: Registry = obj["registry"]
    try:
        registry.installer.uninstall(name)
    except PluginError as e:
        _fail(str(e))
    entry = registry.loader.read_config()["plugins"].get(name)
    if isinstance(entry, dict) and entry.get("builtin"):
        console.print(f"built-in [bold]{name}[/bold] is active again", style="dim")
    else:
        registry.loader.remove_entry(name)
    registry.remove(name)
    console.print(f"uninstalled [bold]{name}[/bold]")


@plugin_cli.command("load")
@click.argument("name")
@click.pass_obj
def plugin_load(obj: dict, name: str):
    """Load a single plugin, even a disabled one, and report the result."""
    registry: Registry = obj["registry"]
    _load(registry)
    try:
        plugin = registry.load_plugin(name)
    except PluginError as e:
        _fail(str(e))
    console.print(f"loaded [bold]{plugin.name}[/bold] v{plugin.version}")


@plugin_cli.command("reload")
@click.pass_obj
def plugin_reload(obj: dict):
    """Drop every registered plugin and load them again from plugins.yaml."""
    registry: Registry = obj["registry"]
    registry.clear()
    report = _load(registry, quiet=False)
    console.print(f"{len(report.loaded)} plugin(s) loaded")
    if report.failed:
        sys.exit(1)


@plugin_cli.command("enable")
@click.argument("name")
@click.pass_obj
def plugin_enable(obj: dict, name: str):
    """Enable a plugin in plugins.yaml."""
    obj["registry"].loader.set_enabled(name, True)
    console.print(f"enabled [bold]{name}[/bold]")


@plugin_cli.command("disable")
@click.argument("name")
@click.pass_obj
def plugin_disable(obj: dict, name: str):
    """Disable a plugin without removing it."""
    obj["registry"].loader.set_enabled(name, False)
    console.print(f"disabled [bold]{name}[/bold]")


@plugin_cli.command("order")
@click.pass_obj
def plugin_order(obj: dict):
    """Print the dependency-respecting load order."""
    registry: Registry = obj["registry"]
    _load(registry, quiet=False)
    try:
        order = registry.load_order()
    except PluginError as e:
        _fail(str(e))
    for i, name in enumerate(order, 1):
        console.print(f"  {i}. {name}")


# ── hostinit <user@host> <plugin> <command> ─────────────────────────


def _convert(value: str, kind: ArgumentType) -> Any:
    if kind is ArgumentType.INT:
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"expected an integer, got {value!r}") from None
    if kind is ArgumentType.BOOL:
        return value.lower() in ("1", "true", "yes", "on")
    if kind is ArgumentType.SLICE:
        return [v for v in value.split(",") if v]
    return value


def parse_command_args(command: Command, tokens: list[str]) -> tuple[list[str], dict[str, Any]]:
    """Split tokens into positional args and ``--flag=value`` flags, applying flag defaults."""
    declared = {}
    for flag in command.flags:
        declared[flag.name] = flag
        if flag.shorthand:
            declared[flag.shorthand] = flag
    args: list[str] = []
    flags: dict[str, Any] = {f.name: f.default for f in command.flags if f.default is not None}
    i = 0
    while i < len(tokens):
        token = tokens[i]
        i += 1
        if token == "--":
            args.extend(tokens[i:])
            break
        if not token.startswith("-") or token == "-":
            args.append(token)
            continue
        key, sep, value = token.lstrip("-").partition("=")
        flag = declared.get(key)
        name = flag.name if flag else key
        kind = flag.type if flag else ArgumentType.STRING
        if not sep:
            if kind is ArgumentType.BOOL or flag is None and (
                i >= len(tokens) or tokens[i].startswith("-")
            ):
                flags[name] = True
                continue
            if i >= len(tokens):
                raise ValueError(f"flag --{name} needs a value")
            value = tokens[i]
            i += 1
        flags[name] = _convert(value, kind)

    missing = [f"--{f.name}" for f in command.flags if f.required and f.name not in flags]
    if missing:
        raise ValueError(f"missing required flag(s): {', '.join(missing)}")
    required = [a for a in command.args if a.required]
    if len(args) < len(required):
        names = " ".join(f"<{a.name}>" for a in required)
        raise ValueError(f"usage: {command.name} {names}")
    return args, flags


def _find_command(plugin: Plugin, name: str) -> Command | None:
    return next((c for c in plugin.get_commands() if c.matches(name)), None)


def _print_usage(registry: Registry) -> None:
    console.print("usage: hostinit <user@host> <plugin> <command> [args...] [--flag=value]")
    console.print("       hostinit plugin <list|info|validate|install|uninstall|load|reload|...>")
    commands = registry.get_commands()
    if commands:
        console.print()
    for name in sorted(commands):
        console.print(f"  [bold]{name}[/bold]")
        for cmd in commands[name]:
            console.print(f"    {cmd.name:<16} [dim]{cmd.description}[/dim]")


@click.command(context_settings={"ignore_unknown_options": True, "allow_extra_args": True})
@click.argument("target", required=False, default=None)
@click.argument("plugin_name", required=False, default=None)
@click.argument("command_name", required=False, default=None)
@click.argument("extra", nargs=-1, type=click.UNPROCESSED)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(__version__, prog_name="hostinit")
def _click_main(
    target: str | None,
    plugin_name: str | None,
    command_name: str | None,
    extra: tuple[str, ...],
    verbose: bool,
):
    """hostinit: configure servers over ssh with plugins."""
    config = load_config(verbose=verbose)
    setup_logging(config.log_level, config.verbose)
    registry = build_registry(config)
    _load(registry, quiet=not config.verbose)

    if not target or not plugin_name:
        _print_usage(registry)
        return
    plugin = registry.get(plugin_name)
    if plugin is None:
        _fail(f"unknown plugin '{plugin_name}' (see `hostinit plugin list`)")
    if not command_name:
        for cmd in plugin.get_commands():
            console.print(f"  [bold]{cmd.name}[/bold]  [dim]{cmd.description}[/dim]")
        return
    command = _find_command(plugin, command_name)
    if command is None:
        _fail(f"plugin {plugin_name} has no command '{command_name}'")

    try:
        args, flags = parse_command_args(command, list(extra))
        conn = connect(target, config.ssh_options)
    except ValueError as e:
        _fail(str(e))

    ctx = {"config": config, "registry": registry, "target": target}
    try:
        plugin.start(ctx)
        command.handler(ctx, conn, args, flags)
    except (PluginError, RemoteCommandError, ValueError) as e:
        _fail(str(e))
    finally:
        plugin.stop(ctx)
        conn.close()


def main():
    """Entry point. Routes `hostinit plugin ...` to the plugin group before click parses."""
    if len(sys.argv) > 1 and sys.argv[1] == "plugin":
        plugin_cli(args=sys.argv[2:], prog_name="hostinit plugin")
        return
    _click_main()


if __name__ == "__main__":
    main()
