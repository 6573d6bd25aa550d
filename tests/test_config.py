"""Tests for configuration loading."""

from pathlib import Path
from unittest.mock import patch

import pytest

from convoport.config import Config, expand_env_var, expand_path, load_config


class TestExpandEnvVar:
    """Tests for ${VAR} expansion."""

    def test_expands_set_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONVOPORT_TEST_KEY", "secret")
        assert expand_env_var("${CONVOPORT_TEST_KEY}") == "secret"

    def test_unset_variable_stays_literal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CONVOPORT_MISSING", raising=False)
        assert expand_env_var("${CONVOPORT_MISSING}") == "${CONVOPORT_MISSING}"

    def test_plain_value_untouched(self) -> None:
        assert expand_env_var("plain") == "plain"


class TestExpandPath:
    def test_expands_home(self) -> None:
        assert expand_path("~/x") == Path.home() / "x"


class TestLoadConfig:
    """Tests for load_config()."""

    def test_missing_file_returns_defaults(self, tmp_path: Path) -> None:
        """A missing config file should yield default values."""
        config = load_config(tmp_path / "nope.yaml")
        assert isinstance(config, Config)
        assert config.rate_limit.requests_per_minute == 30
        assert config.retry.max_attempts == 3
        assert config.retry.base_delay_seconds == 2.0
        assert config.sync.checkpoint_every == 5
        assert config.sync.quality_threshold == 50
        assert config.sources == {}

    def test_no_config_found_in_search_paths(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        with patch.object(Path, "home", return_value=tmp_path), patch.object(
            Path, "exists", lambda self: False
        ):
            config = load_config()
        assert config.notion.database_id == ""

    def test_loads_yaml_values(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Values from YAML should override defaults."""
        monkeypatch.setenv("CONVOPORT_NOTION_KEY", "secret_abc")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            f"""
state_db: {tmp_path}/state.db
notion:
  api_key: ${{CONVOPORT_NOTION_KEY}}
  database_id: db123
rate_limit:
  requests_per_minute: 10
sync:
  item_delay_seconds: 0
  checkpoint_every: 2
sources:
  local_export:
    export_dir: {tmp_path}/exports
  grok:
    enabled: false
"""
        )

        config = load_config(config_file)

        assert config.state_db == tmp_path / "state.db"
        assert config.notion.api_key == "secret_abc"
        assert config.notion.database_id == "db123"
        assert config.rate_limit.requests_per_minute == 10
        assert config.rate_limit.max_queue_seconds == 300.0
        assert config.sync.item_delay_seconds == 0
        assert config.sync.checkpoint_every == 2
        assert config.sync.failure_log_size == 50
        assert config.sources["local_export"].export_dir == tmp_path / "exports"
        assert config.sources["local_export"].enabled is True
        assert config.sources["grok"].enabled is False

    def test_unexpanded_api_key_is_blank(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """An api_key referencing an unset variable should be treated as missing."""
        monkeypatch.delenv("NOTION_API_KEY", raising=False)
        config_file = tmp_path / "config.yaml"
        config_file.write_text("notion:\n  database_id: abc\n")

        config = load_config(config_file)

        assert config.notion.api_key == ""

    def test_unexpanded_cookie_is_dropped(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """A cookie referencing an unset variable must not count as a session."""
        monkeypatch.delenv("GROK_SSO_COOKIE", raising=False)
        monkeypatch.setenv("GROK_SSO_RW", "rw-value")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "sources:\n"
            "  grok:\n"
            "    cookies:\n"
            "      sso: ${GROK_SSO_COOKIE}\n"
            "      sso-rw: ${GROK_SSO_RW}\n"
        )

        config = load_config(config_file)

        assert config.sources["grok"].cookies == {"sso-rw": "rw-value"}
