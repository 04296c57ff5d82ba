"""
Unit tests for the command-line entry point.
"""
from pathlib import Path

import pytest

from hypobot import __version__
from hypobot.__main__ import find_config_file, load_config, main, parse_args


class TestParseArgs:
    """Tests for parse_args()."""

    def test_defaults(self):
        args = parse_args([])
        assert args.command is None
        assert args.dry_run is None
        assert args.config is None

    def test_dry_run_and_live(self):
        assert parse_args(["--dry-run"]).dry_run is True
        assert parse_args(["--live"]).dry_run is False

    def test_dry_run_and_live_exclusive(self):
        with pytest.raises(SystemExit):
            parse_args(["--dry-run", "--live"])

    def test_cycle_command(self):
        args = parse_args(
            ["--live", "cycle", "--prompt-file", "p.txt", "--cycle", "7", "--bankroll", "112.5", "--live-cycle"]
        )
        assert args.command == "cycle"
        assert args.prompt_file == Path("p.txt")
        assert args.cycle == 7
        assert args.bankroll == 112.5
        assert args.live_cycle is True

    def test_cycle_needs_prompt_file(self):
        with pytest.raises(SystemExit):
            parse_args(["cycle"])


class TestConfigDiscovery:
    """Tests for find_config_file() and load_config()."""

    def test_specified_path_wins(self, tmp_path):
        path = tmp_path / "mine.toml"
        path.write_text("")
        assert find_config_file(path) == path

    def test_search_paths(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert find_config_file(None) is None

        (tmp_path / "hypobot.toml").write_text("")
        assert find_config_file(None) == Path("hypobot.toml")

    def test_log_level_flag_overrides(self, tmp_path):
        path = tmp_path / "c.toml"
        path.write_text('[hypobot]\nlog_level = "INFO"\n')

        config = load_config(parse_args(["--config", str(path), "--log-level", "DEBUG"]))

        assert config.get("hypobot.log_level") == "DEBUG"


class TestMain:
    """Tests for main()."""

    def test_version(self, capsys):
        assert main(["version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_reconcile_once(self, tmp_path, capsys):
        path = tmp_path / "c.toml"
        path.write_text(
            f'[hypobot]\nlog_level = "ERROR"\n\n[database]\npath = "{tmp_path / "bets.db"}"\n'
        )

        assert main(["--config", str(path), "reconcile"]) == 0

        out = capsys.readouterr().out
        assert '"checked": 0' in out
        assert "No pending bets" in out
