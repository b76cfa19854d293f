"""Tests for command selection and the main entry point."""

from __future__ import annotations

import pytest

import cargo_updater
from cargo_updater import main, parse_arguments, resolve_command, version_line

QUIET = ["--no-log-file", "--no-rich-console"]


class TestResolveCommand:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("update", "update"),
            ("upgrade", "update"),
            ("-u", "update"),
            ("--update", "update"),
            ("outdated", "outdated"),
            ("--list", "outdated"),
            ("show", "outdated"),
            ("o", "outdated"),
            ("-l", "outdated"),
            ("version", "version"),
            ("-v", "version"),
            ("--help", "help"),
            ("frobnicate", "help"),
            ("", "help"),
        ],
    )
    def test_aliases(self, raw: str, expected: str) -> None:
        assert resolve_command(raw) == expected


class TestParseArguments:
    def test_last_word_wins(self) -> None:
        _, _, raw = parse_arguments(["updater", "--list"])
        assert raw == "--list"

    def test_bare_subcommand_name(self) -> None:
        _, _, raw = parse_arguments(["upgrade"])
        assert resolve_command(raw) == "update"

    def test_no_arguments_means_help(self) -> None:
        _, _, raw = parse_arguments([])
        assert resolve_command(raw) == "help"

    def test_options_are_not_commands(self) -> None:
        _, args, raw = parse_arguments(["--log-level", "debug", "o"])
        assert raw == "o"
        assert args.log_level == "DEBUG"

    def test_defaults(self) -> None:
        _, args, _ = parse_arguments(["update"])
        assert args.cargo == "cargo"
        assert args.self_name == "cargo-updater"
        assert args.dev_mode is None
        assert args.exclude == []
        assert args.log_to_file is True
        assert args.rich_console is True

    def test_execution_options(self) -> None:
        _, args, raw = parse_arguments(
            ["update", "--dev-mode", "--cargo", "/usr/local/bin/cargo", "--exclude", "bat", "rg"]
        )
        assert raw == "update"
        assert args.dev_mode is True
        assert args.cargo == "/usr/local/bin/cargo"
        assert args.exclude == ["bat", "rg"]


class TestMain:
    def test_version(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert capsys.readouterr().out.strip() == version_line()

    def test_help(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["nonsense"])
        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert out.startswith(version_line())
        assert "--update, --upgrade" in out

    def test_outdated_listing(self, fake_cargo, capsys) -> None:
        fake_cargo.installed = "bat v0.24.0:\n    bat\n"
        fake_cargo.search = {"bat": 'bat = "0.25.0"    # cat clone\n'}
        with pytest.raises(SystemExit) as exc_info:
            main(["outdated", *QUIET])
        assert exc_info.value.code == 0
        assert "📦 bat: v0.24.0 -> v0.25.0" in capsys.readouterr().out

    def test_update_failure_sets_exit_code(self, fake_cargo, popen) -> None:
        fake_cargo.installed = "bat v0.24.0:\n"
        fake_cargo.search = {"bat": 'bat = "0.25.0"\n'}
        popen.script("bat", ["error: failed to compile `bat`"], return_code=1)
        with pytest.raises(SystemExit) as exc_info:
            main(["update", *QUIET])
        assert exc_info.value.code == 1
        assert popen.started == [["cargo", "install", "bat", "--locked"]]

    def test_nothing_to_update(self, fake_cargo, popen) -> None:
        fake_cargo.installed = "bat v0.25.0:\n"
        fake_cargo.search = {"bat": 'bat = "0.25.0"\n'}
        with pytest.raises(SystemExit) as exc_info:
            main(["-u", *QUIET])
        assert exc_info.value.code == 0
        assert popen.started == []

    def test_missing_cargo_is_fatal(self, monkeypatch) -> None:
        def missing(*args, **kwargs):
            raise FileNotFoundError(2, "No such file or directory", "cargo")

        monkeypatch.setattr(cargo_updater.subprocess, "run", missing)
        with pytest.raises(SystemExit) as exc_info:
            main(["update", *QUIET])
        assert exc_info.value.code == 1
