"""Tests for the CLI: plugin management and remote command dispatch."""

import sys
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from hostinit.__main__ import _click_main, main, parse_command_args, plugin_cli
from hostinit.plugins import Argument, ArgumentType, Command, Flag
from hostinit.ssh import Result, SSHConnection

from conftest import DOCKER_SOURCE, DOCKER_YAML, FakeVCS, write_plugin_source


@pytest.fixture
def runner(home):
    return CliRunner()


@pytest.fixture
def conn():
    conn = MagicMock(spec=SSHConnection)
    conn.user = "deploy"
    for method in ("run", "write_file", "systemctl", "install_package"):
        getattr(conn, method).return_value = Result(True)
    with patch("hostinit.__main__.connect", return_value=conn) as connect:
        conn.connect = connect
        yield conn


class TestPluginCommands:
    def test_list_builtins(self, runner):
        result = runner.invoke(plugin_cli, ["list"])
        assert result.exit_code == 0, result.output
        for name in ("system", "nginx", "docker"):
            assert name in result.output

    def test_disable_then_enable(self, runner, home):
        assert runner.invoke(plugin_cli, ["disable", "docker"]).exit_code == 0
        assert "enabled: false" in (home / "plugins.yaml").read_text()
        result = runner.invoke(plugin_cli, ["list"])
        assert "off" in result.output

        assert runner.invoke(plugin_cli, ["enable", "docker"]).exit_code == 0
        assert "enabled: true" in (home / "plugins.yaml").read_text()

    def test_info(self, runner):
        result = runner.invoke(plugin_cli, ["info", "nginx"])
        assert result.exit_code == 0, result.output
        assert "depends on: system >=1.0.0" in result.output
        assert "create-site" in result.output

    def test_info_unknown(self, runner):
        result = runner.invoke(plugin_cli, ["info", "ghost"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_validate(self, runner):
        result = runner.invoke(plugin_cli, ["validate"])
        assert result.exit_code == 0, result.output
        assert "3 plugin(s) valid" in result.output

    def test_validate_fails_on_broken_plugin(self, runner, home):
        (home / "plugins.yaml").write_text(
            "plugins:\n  ghost:\n    path: /nowhere/ghost.py\n"
        )
        result = runner.invoke(plugin_cli, ["validate"])
        assert result.exit_code == 1
        assert "ghost" in result.output

    def test_order(self, runner):
        result = runner.invoke(plugin_cli, ["order"])
        assert result.exit_code == 0
        assert result.output.index("system") < result.output.index("nginx")

    def test_install_and_uninstall(self, runner, home, fake_vcs):
        with patch("hostinit.plugins.installer.GitProvider", return_value=fake_vcs):
            result = runner.invoke(plugin_cli, ["install", "example.com/acme/widget@1.2.0"])
        assert result.exit_code == 0, result.output
        assert "installed widget v1.2.0 (community)" in result.output
        assert (home / "plugins" / "widget" / "widget.zip").is_file()

        listed = runner.invoke(plugin_cli, ["list"])
        assert "widget" in listed.output

        result = runner.invoke(plugin_cli, ["uninstall", "widget"])
        assert result.exit_code == 0, result.output
        assert not (home / "plugins" / "widget").exists()

    def test_install_failure(self, runner, fake_vcs):
        with patch("hostinit.plugins.installer.GitProvider", return_value=fake_vcs):
            result = runner.invoke(plugin_cli, ["install", "example.com/acme/widget@9.9.9"])
        assert result.exit_code == 1
        assert "resolve: version 9.9.9 not found" in result.output

    def test_uninstall_missing(self, runner):
        result = runner.invoke(plugin_cli, ["uninstall", "ghost"])
        assert result.exit_code == 1

    def test_load_disabled_plugin(self, runner):
        assert runner.invoke(plugin_cli, ["disable", "docker"]).exit_code == 0
        result = runner.invoke(plugin_cli, ["load", "docker"])
        assert result.exit_code == 0, result.output
        assert "loaded docker v1.0.0" in result.output

    def test_load_unknown(self, runner):
        result = runner.invoke(plugin_cli, ["load", "ghost"])
        assert result.exit_code == 1
        assert "ghost" in result.output

    def test_reload(self, runner):
        result = runner.invoke(plugin_cli, ["reload"])
        assert result.exit_code == 0, result.output
        assert "3 plugin(s) loaded" in result.output

    def test_reload_reports_failures(self, runner, home):
        (home / "plugins.yaml").write_text(
            "plugins:\n  system:\n    builtin: system\n  ghost:\n    path: /nowhere/ghost.py\n"
        )
        result = runner.invoke(plugin_cli, ["reload"])
        assert result.exit_code == 1
        assert "1 plugin(s) loaded" in result.output
        assert "ghost" in result.output

    def test_uninstalling_an_override_restores_the_builtin(self, runner, home, tmp_path):
        source = write_plugin_source(tmp_path / "docker", DOCKER_YAML, DOCKER_SOURCE, "docker_plus")
        with patch("hostinit.plugins.installer.GitProvider", return_value=FakeVCS(source)):
            result = runner.invoke(plugin_cli, ["install", "example.com/acme/docker"])
        assert result.exit_code == 0, result.output
        assert "loaded docker v9.0.0" in runner.invoke(plugin_cli, ["load", "docker"]).output

        result = runner.invoke(plugin_cli, ["uninstall", "docker"])
        assert result.exit_code == 0, result.output
        assert "builtin: docker" in (home / "plugins.yaml").read_text()
        assert "loaded docker v1.0.0" in runner.invoke(plugin_cli, ["load", "docker"]).output


class TestDispatch:
    def test_usage_without_arguments(self, runner):
        result = runner.invoke(_click_main, [])
        assert result.exit_code == 0
        assert "usage: hostinit <user@host>" in result.output
        assert "full-upgrade" in result.output

    def test_runs_command(self, runner, conn):
        result = runner.invoke(_click_main, ["deploy@web1", "system", "update"])
        assert result.exit_code == 0, result.output
        conn.connect.assert_called_once_with("deploy@web1", [])
        conn.run.assert_called_once_with(
            "DEBIAN_FRONTEND=noninteractive apt-get update", sudo=True
        )
        conn.close.assert_called_once()

    def test_flags_are_parsed(self, runner, conn):
        result = runner.invoke(
            _click_main, ["deploy@web1", "nginx", "create-site", "app.example.com", "--port=8080"]
        )
        assert result.exit_code == 0, result.output
        content, path = conn.write_file.call_args.args
        assert "localhost:8080" in content

    def test_lists_plugin_commands(self, runner, conn):
        result = runner.invoke(_click_main, ["deploy@web1", "docker"])
        assert result.exit_code == 0
        assert "install" in result.output and "ps" in result.output

    def test_unknown_plugin(self, runner, conn):
        result = runner.invoke(_click_main, ["deploy@web1", "ghost", "go"])
        assert result.exit_code == 1
        assert "unknown plugin 'ghost'" in result.output

    def test_unknown_command(self, runner, conn):
        result = runner.invoke(_click_main, ["deploy@web1", "system", "explode"])
        assert result.exit_code == 1
        assert "no command 'explode'" in result.output

    def test_remote_failure(self, runner, conn):
        conn.run.return_value = Result(False, stderr="E: could not get lock", exit_code=100)
        result = runner.invoke(_click_main, ["deploy@web1", "system", "upgrade"])
        assert result.exit_code == 1
        assert "could not get lock" in result.output
        conn.close.assert_called_once()

    def test_missing_required_argument(self, runner, conn):
        result = runner.invoke(_click_main, ["deploy@web1", "system", "install"])
        assert result.exit_code == 1
        assert "usage: install <packages>" in result.output
        conn.connect.assert_not_called()

    def test_bad_target(self, runner):
        result = runner.invoke(_click_main, ["web1", "system", "update"])
        assert result.exit_code == 1
        assert "expected user@host" in result.output


class TestParseCommandArgs:
    def make(self):
        return Command(
            "deploy",
            "Deploy",
            args=[Argument("app", required=True)],
            flags=[
                Flag("port", type=ArgumentType.INT, default=3000),
                Flag("force", shorthand="f", type=ArgumentType.BOOL),
                Flag("tags", type=ArgumentType.SLICE),
                Flag("email"),
            ],
        )

    def test_defaults(self):
        assert parse_command_args(self.make(), ["web"]) == (["web"], {"port": 3000})

    def test_typed_flags(self):
        args, flags = parse_command_args(
            self.make(), ["web", "--port=8080", "-f", "--tags=a,b", "--email", "ops@example.com"]
        )
        assert args == ["web"]
        assert flags == {
            "port": 8080,
            "force": True,
            "tags": ["a", "b"],
            "email": "ops@example.com",
        }

    def test_double_dash_ends_flags(self):
        args, _ = parse_command_args(self.make(), ["web", "--", "--not-a-flag"])
        assert args == ["web", "--not-a-flag"]

    def test_bad_integer(self):
        with pytest.raises(ValueError, match="expected an integer"):
            parse_command_args(self.make(), ["web", "--port=http"])

    def test_missing_value(self):
        with pytest.raises(ValueError, match="needs a value"):
            parse_command_args(self.make(), ["web", "--email"])

    def test_missing_required_flag(self):
        cmd = Command("x", "X", flags=[Flag("token", required=True)])
        with pytest.raises(ValueError, match="--token"):
            parse_command_args(cmd, [])

    def test_missing_required_argument(self):
        with pytest.raises(ValueError, match="usage: deploy <app>"):
            parse_command_args(self.make(), [])


class TestMain:
    def test_intercepts_plugin_subcommand(self, home, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["hostinit", "plugin", "list"])
        with pytest.raises(SystemExit) as exc:
            main()
        assert exc.value.code == 0
        assert "nginx" in capsys.readouterr().out
