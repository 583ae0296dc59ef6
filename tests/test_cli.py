"""Tests for linksweep.cli module."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import FIXTURES

# Keep CLI imports from loading a developer's .env
with patch("dotenv.load_dotenv"):
    from linksweep import cli
    from linksweep.cli import (
        _build_check_options,
        _parse_args,
        _parse_headers,
        _parse_status_codes,
        _split_skip,
        main,
    )

from linksweep.options import ConfigError, UrlRewriteExpression

RELATIVE = str(FIXTURES / "relative")
LOCAL_SITE = str(FIXTURES / "local_site")


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """No stray linksweep.config.json or LINKSWEEP_* variables."""
    monkeypatch.chdir(tmp_path)
    for var in ("LINKSWEEP_CONCURRENCY", "LINKSWEEP_TIMEOUT", "LINKSWEEP_USER_AGENT"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


class TestParseArgs:
    def test_flags_default_to_none(self):
        args = _parse_args(["https://example.com"])
        assert args.locations == ["https://example.com"]
        assert args.recurse is None
        assert args.concurrency is None
        assert args.verbose is False

    def test_repeatable_flags(self):
        args = _parse_args(
            ["a", "b", "-s", "x", "--skip", "y", "--status-code", "403:skip"]
        )
        assert args.locations == ["a", "b"]
        assert args.skip == ["x", "y"]
        assert args.status_code == ["403:skip"]

    def test_invalid_redirect_mode_exits(self):
        with pytest.raises(SystemExit):
            _parse_args(["a", "--redirects", "sometimes"])

    def test_retry_no_header_flags(self):
        args = _parse_args(
            ["a", "--retry-no-header", "--retry-no-header-count", "3", "--retry-no-header-delay", "1500"]
        )
        assert args.retry_no_header is True
        assert args.retry_no_header_count == 3
        assert args.retry_no_header_delay == 1500.0


class TestSettingParsers:
    def test_split_skip(self):
        assert _split_skip(["a,b c", "d"]) == ["a", "b", "c", "d"]
        assert _split_skip("one two") == ["one", "two"]

    def test_status_codes(self):
        assert _parse_status_codes(["403:Skip", "5xx:warn"]) == {"403": "skip", "5xx": "warn"}
        assert _parse_status_codes({404: "ok"}) == {"404": "ok"}

    def test_status_code_without_action(self):
        with pytest.raises(ConfigError):
            _parse_status_codes(["403"])

    def test_headers(self):
        assert _parse_headers(["Authorization: Bearer a:b"]) == {"Authorization": "Bearer a:b"}
        assert _parse_headers({"X-Test": 1}) == {"X-Test": "1"}

    def test_header_without_colon(self):
        with pytest.raises(ConfigError):
            _parse_headers(["nonsense"])


class TestBuildCheckOptions:
    def test_settings_map_to_options(self):
        options = _build_check_options(
            ["https://example.com"],
            {
                "recurse": True,
                "concurrency": 5,
                "skip": ["a, b"],
                "status_code": ["404:warn"],
                "header": ["X-A: 1"],
                "url_rewrite_search": "http://",
                "url_rewrite_replace": "https://",
            },
        )
        assert options.paths == ["https://example.com"]
        assert options.recurse is True
        assert options.concurrency == 5
        assert options.links_to_skip == ["a", "b"]
        assert options.status_codes == {"404": "warn"}
        assert options.extra_headers == {"X-A": "1"}
        assert options.url_rewrite_expressions == [
            UrlRewriteExpression("http://", "https://")
        ]

    def test_rewrite_search_requires_replace(self):
        with pytest.raises(ConfigError):
            _build_check_options(["x"], {"url_rewrite_search": "a"})


class TestMain:
    def test_passing_run_prints_summary(self, capsys):
        assert main([RELATIVE, "--recurse"]) == 0
        out = capsys.readouterr().out
        assert "Successfully scanned 4 links" in out

    def test_broken_links_exit_with_one(self, capsys):
        assert main([LOCAL_SITE, "--recurse"]) == 1
        out = capsys.readouterr().out
        assert "ERROR: Detected 1 broken links." in out
        assert "[404]" in out

    def test_json_output(self, capsys):
        assert main([RELATIVE, "--recurse", "--format", "json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["passed"] is True
        assert len(data["links"]) == 4
        assert "failure_details" not in data["links"][0]

    def test_csv_output(self, capsys):
        assert main([RELATIVE, "--format", "csv"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "url,status,state,parent,element_metadata,failure_details"
        assert len(lines) == 5

    def test_config_file_supplies_settings(self, capsys, tmp_path: Path):
        config = tmp_path / "linksweep.config.json"
        config.write_text(json.dumps({"recurse": True, "format": "json"}))

        assert main([RELATIVE]) == 0
        data = json.loads(capsys.readouterr().out)
        assert len(data["links"]) == 4

    def test_explicit_missing_config_file(self):
        assert main([RELATIVE, "--config", "nope.json"]) == 1

    def test_silent_and_verbosity_conflict(self):
        assert main([RELATIVE, "--silent", "--verbosity", "info"]) == 1

    def test_invalid_format(self):
        assert main([RELATIVE, "--format", "yaml"]) == 1

    def test_rewrite_search_without_replace(self):
        assert main([RELATIVE, "--url-rewrite-search", "x"]) == 1

    def test_silent_shows_only_broken(self, capsys):
        assert main([LOCAL_SITE, "--recurse", "--silent"]) == 1
        out = capsys.readouterr().out
        assert "[404]" in out
        assert "[200]" not in out
        assert "[SKP]" not in out

    def test_keyboard_interrupt(self, monkeypatch: pytest.MonkeyPatch):
        def interrupted(coro):
            coro.close()
            raise KeyboardInterrupt

        monkeypatch.setattr(cli.asyncio, "run", interrupted)
        assert main([RELATIVE]) == 130


class TestLoadConfig:
    def test_local_env_found(self, tmp_path: Path):
        (tmp_path / ".env").write_text("LINKSWEEP_CONCURRENCY=3")

        with patch("linksweep.cli.Path.cwd", return_value=tmp_path):
            with patch("linksweep.cli.load_dotenv") as mock_load:
                cli._load_config()
                mock_load.assert_called_once_with(tmp_path / ".env")

    def test_config_dir_env(self, tmp_path: Path):
        config_dir = tmp_path / ".config" / "linksweep"
        config_dir.mkdir(parents=True)
        (config_dir / ".env").write_text("LINKSWEEP_TIMEOUT=1000")

        with patch("linksweep.cli.Path.cwd", return_value=tmp_path / "elsewhere"):
            with patch("linksweep.cli.CONFIG_ENV_FILE", config_dir / ".env"):
                with patch("linksweep.cli.load_dotenv") as mock_load:
                    cli._load_config()
                    mock_load.assert_called_once_with(config_dir / ".env")
