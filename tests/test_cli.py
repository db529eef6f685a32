"""
Tests for the command-line interface (runtime_switch/cli.py).
"""

import json
import os
from unittest.mock import patch

import pytest
import yaml

from runtime_switch.cli import EXIT_FAILURE, EXIT_OK, EXIT_PRECONDITION, build_parser, main
from runtime_switch.families import JAVA, NODE
from runtime_switch.package_managers import CommandResult, ScoopPackageManager


@pytest.fixture
def cli_env(scoop_tree, tmp_path, monkeypatch):
    """Config file pointing at the scoop tree, with a YAML environment store."""
    env_file = tmp_path / "environment.yml"
    config_file = tmp_path / "config.yml"
    config_file.write_text(yaml.safe_dump({
        "version": 1,
        "scoop": {"root": str(scoop_tree.root), "global_root": str(scoop_tree.global_root)},
        "preferences": {"env_store": "file", "env_file": str(env_file)},
    }))
    monkeypatch.chdir(tmp_path)

    with patch.dict(os.environ), \
            patch("runtime_switch.config.CONFIG_LOCATIONS", []), \
            patch("runtime_switch.discovery.conventional_roots", return_value=[]):
        yield {"config": str(config_file), "env_file": env_file, "tree": scoop_tree}


def _run(cli_env, *argv):
    return main(["--config", cli_env["config"], *argv])


def _env_data(cli_env):
    return yaml.safe_load(cli_env["env_file"].read_text())


def _inputs(monkeypatch, *answers):
    answers = iter(answers)

    def fake_input(prompt=""):
        try:
            return next(answers)
        except StopIteration:
            raise EOFError
    monkeypatch.setattr("builtins.input", fake_input)


def _manifest_missing(self, *args):
    return CommandResult(command=("scoop", *args), exit_code=0, stdout=f"Couldn't find manifest for '{args[-1]}'.")


class TestParser:

    def test_subcommands(self):
        args = build_parser().parse_args(["--json", "install", "java", "21"])
        assert args.json is True
        assert args.family == "java"
        assert args.version == "21"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestStatus:
    """Tests for status and list."""

    def test_status_json(self, cli_env, capsys):
        cli_env["tree"].install(NODE, "nodejs20")
        cli_env["tree"].shim(NODE, "nodejs20")

        assert _run(cli_env, "--json", "status", "node") == EXIT_OK

        data = json.loads(capsys.readouterr().out)
        assert data[0]["family"] == "node"
        assert data[0]["active"]["identifier"] == "nodejs20"

    def test_status_table(self, cli_env, capsys):
        cli_env["tree"].install(JAVA, "openjdk21")

        assert _run(cli_env, "status") == EXIT_OK

        out = capsys.readouterr().out
        assert out.splitlines()[0] == "state|family|variant|path"
        assert "openjdk21" in out

    def test_list(self, cli_env, capsys):
        cli_env["tree"].install(NODE, "nodejs18")
        assert _run(cli_env, "list", "nodejs") == EXIT_OK
        assert "nodejs18" in capsys.readouterr().out

    def test_list_warns_when_scoop_disagrees(self, cli_env, capsys):
        cli_env["tree"].install(NODE, "nodejs20")

        def scoop_list(self, *args):
            return CommandResult(command=("scoop", *args), exit_code=0,
                                 stdout="nodejs16 16.20.2 versions 2024-01-01 10:00:00\n")

        with patch.object(ScoopPackageManager, "run", autospec=True, side_effect=scoop_list):
            assert _run(cli_env, "list", "node") == EXIT_OK

        assert "Scoop lists nodejs16 16.20.2" in capsys.readouterr().err

    def test_unknown_family(self, cli_env, capsys):
        assert _run(cli_env, "list", "ruby") == EXIT_PRECONDITION
        assert "Unknown runtime family" in capsys.readouterr().err


class TestMutations:
    """Tests for install, switch and uninstall commands."""

    def test_scoop_missing(self, cli_env, capsys):
        with patch("runtime_switch.package_managers.shutil.which", return_value=None):
            assert _run(cli_env, "install", "php", "8.2") == EXIT_PRECONDITION
        assert "Scoop is not installed" in capsys.readouterr().err

    def test_exhaustion_exit_code(self, cli_env, capsys):
        """Test no installable candidate exits non-zero and echoes the input."""
        with patch.object(ScoopPackageManager, "ensure_available"), \
                patch.object(ScoopPackageManager, "run", autospec=True, side_effect=_manifest_missing):
            assert _run(cli_env, "--json", "install", "java", "8") == EXIT_FAILURE

        captured = capsys.readouterr()
        data = json.loads(captured.out)
        assert data["state"] == "no_candidate_succeeded"
        assert [a["identifier"] for a in data["attempts"]] == ["openjdk8", "temurin8-jdk", "ojdkbuild8", "zulujdk8"]
        assert "instead of '8'" in captured.err

    def test_install_success_updates_environment(self, cli_env, capsys):
        tree = cli_env["tree"]

        def fake_run(self, *args):
            if args[0] == "install":
                tree.install(NODE, args[1])
                tree.shim(NODE, args[1])
            return CommandResult(command=("scoop", *args), exit_code=0, stdout="done")

        with patch.object(ScoopPackageManager, "ensure_available"), \
                patch.object(ScoopPackageManager, "run", autospec=True, side_effect=fake_run):
            assert _run(cli_env, "install", "node", "20") == EXIT_OK

        assert "Installed nodejs20" in capsys.readouterr().out
        assert _env_data(cli_env)["user"]["PATH"].split(os.pathsep)[0] == str(tree.shims_dir())

    def test_switch_failure_exit_code(self, cli_env):
        cli_env["tree"].install(NODE, "nodejs20")

        def failing_reset(self, *args):
            return CommandResult(command=("scoop", *args), exit_code=1, stderr="reset failed")

        with patch.object(ScoopPackageManager, "ensure_available"), \
                patch.object(ScoopPackageManager, "run", autospec=True, side_effect=failing_reset):
            assert _run(cli_env, "switch", "node", "20") == EXIT_FAILURE

        assert cli_env["tree"].current_dir("nodejs20").is_dir()

    def test_uninstall_without_target(self, cli_env, capsys):
        assert _run(cli_env, "uninstall", "php") == EXIT_FAILURE
        assert "specify which version" in capsys.readouterr().err

    def test_uninstall_resolves_version(self, cli_env):
        cli_env["tree"].install(JAVA, "temurin17-jdk")
        calls = []

        def fake_run(self, *args):
            calls.append(args)
            return CommandResult(command=("scoop", *args), exit_code=0)

        with patch.object(ScoopPackageManager, "ensure_available"), \
                patch.object(ScoopPackageManager, "run", autospec=True, side_effect=fake_run):
            _run(cli_env, "uninstall", "java", "17")

        assert ("uninstall", "temurin17-jdk") in calls


class TestRefresh:

    def test_refresh_json(self, cli_env, capsys):
        cli_env["env_file"].write_text(yaml.safe_dump({"user": {"PATH": "/user/bin"}, "machine": {"PATH": "/machine/bin"}}))

        assert _run(cli_env, "--json", "refresh") == EXIT_OK

        data = json.loads(capsys.readouterr().out)
        assert data["path"] == ["/user/bin", "/machine/bin"]
        assert data["JAVA_HOME"] is None
        assert os.environ["PATH"] == os.pathsep.join(["/user/bin", "/machine/bin"])


class TestJavaHome:
    """Tests for the JAVA_HOME setup flow."""

    def test_explicit_path(self, cli_env):
        home = cli_env["tree"].install(JAVA, "openjdk21")
        assert _run(cli_env, "java-home", str(home)) == EXIT_OK
        assert _env_data(cli_env)["user"]["JAVA_HOME"] == str(home)

    def test_invalid_path_rejected(self, cli_env, tmp_path, capsys):
        assert _run(cli_env, "java-home", str(tmp_path / "nope")) == EXIT_FAILURE
        assert "--force" in capsys.readouterr().err

    def test_invalid_path_forced(self, cli_env, tmp_path):
        target = str(tmp_path / "custom")
        assert _run(cli_env, "java-home", target, "--force") == EXIT_OK
        assert _env_data(cli_env)["user"]["JAVA_HOME"] == target

    def test_pick_from_scan(self, cli_env, monkeypatch, capsys):
        home = cli_env["tree"].install(JAVA, "openjdk17")
        _inputs(monkeypatch, "1")

        assert _run(cli_env, "java-home") == EXIT_OK

        assert "openjdk17 (scoop)" in capsys.readouterr().out
        assert _env_data(cli_env)["user"]["JAVA_HOME"] == str(home)

    def test_free_text_when_nothing_found(self, cli_env, monkeypatch, tmp_path):
        jdk = tmp_path / "manual-jdk"
        (jdk / "bin").mkdir(parents=True)
        (jdk / "bin" / "java").write_text("")
        _inputs(monkeypatch, str(jdk))

        assert _run(cli_env, "java-home") == EXIT_OK
        assert _env_data(cli_env)["user"]["JAVA_HOME"] == str(jdk)

    def test_invalid_free_text_declined(self, cli_env, monkeypatch, tmp_path):
        _inputs(monkeypatch, str(tmp_path / "nope"), "n")

        assert _run(cli_env, "java-home") == EXIT_OK
        assert not cli_env["env_file"].exists()


class TestMenu:
    """Tests for the interactive menu."""

    def test_exit_immediately(self, cli_env, monkeypatch):
        _inputs(monkeypatch, "0")
        assert _run(cli_env, "menu") == EXIT_OK

    def test_end_of_input_exits(self, cli_env, monkeypatch):
        _inputs(monkeypatch)
        assert _run(cli_env, "menu", "node") == EXIT_OK

    def test_show_installed(self, cli_env, monkeypatch, capsys):
        cli_env["tree"].install(NODE, "nodejs18")
        _inputs(monkeypatch, "4", "1", "0")

        assert _run(cli_env, "menu") == EXIT_OK

        out = capsys.readouterr().out
        assert "== Node.js (active: none) ==" in out
        assert "nodejs18" in out

    def test_exhaustion_reported_and_menu_continues(self, cli_env, monkeypatch, capsys):
        _inputs(monkeypatch, "2", "99", "0")

        with patch.object(ScoopPackageManager, "ensure_available"), \
                patch.object(ScoopPackageManager, "run", autospec=True, side_effect=_manifest_missing):
            assert _run(cli_env, "menu", "php") == EXIT_OK

        assert "instead of '99'" in capsys.readouterr().err

    def test_java_menu_offers_home(self, cli_env, monkeypatch, capsys):
        _inputs(monkeypatch, "0")
        _run(cli_env, "menu", "java")
        assert "5) Set JAVA_HOME" in capsys.readouterr().out


class TestConfigErrors:

    def test_missing_config_file(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "absent.yml"), "status"]) == EXIT_PRECONDITION
        assert "Could not load config" in capsys.readouterr().err
