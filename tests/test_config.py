"""Tests for config loading and validation."""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest

from agent_tracking.config import (
	DB_PATH_ENV,
	DatabaseConfig,
	TrackingConfig,
	load_config,
	validate_config,
)


@pytest.fixture(autouse=True)
def _no_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.delenv(DB_PATH_ENV, raising=False)


@pytest.fixture()
def full_config(tmp_path: Path) -> Path:
	toml = tmp_path / "agent-tracking.toml"
	toml.write_text("""\
[database]
path = "data/issues.db"
busy_timeout_ms = 250

[queries]
lookback_days = 7
session_limit = 25
duration_limit = 100

[logging]
level = "debug"
json = true

[tracing]
enabled = true
exporter = "otlp"
service_name = "tracker"
otlp_endpoint = "http://collector:4317"
""")
	return toml


@pytest.fixture()
def minimal_config(tmp_path: Path) -> Path:
	toml = tmp_path / "agent-tracking.toml"
	toml.write_text("""\
[database]
path = "beads.db"
""")
	return toml


class TestLoadConfig:
	def test_full(self, full_config: Path) -> None:
		cfg = load_config(full_config)
		assert cfg.database.path == "data/issues.db"
		assert cfg.database.busy_timeout_ms == 250
		assert cfg.queries.lookback_days == 7
		assert cfg.queries.session_limit == 25
		assert cfg.queries.duration_limit == 100
		assert cfg.logging.level == "DEBUG"
		assert cfg.logging.json is True
		assert cfg.tracing.enabled is True
		assert cfg.tracing.exporter == "otlp"
		assert cfg.tracing.service_name == "tracker"
		assert cfg.tracing.otlp_endpoint == "http://collector:4317"

	def test_minimal_uses_defaults(self, minimal_config: Path) -> None:
		cfg = load_config(minimal_config)
		assert cfg.database.path == "beads.db"
		assert cfg.database.busy_timeout_ms == 5000
		assert cfg.queries.lookback_days == 30
		assert cfg.queries.session_limit == 10
		assert cfg.queries.duration_limit == 50
		assert cfg.logging.level == "INFO"
		assert cfg.tracing.enabled is False

	def test_missing_file(self, tmp_path: Path) -> None:
		with pytest.raises(FileNotFoundError):
			load_config(tmp_path / "nope.toml")

	def test_invalid_toml(self, tmp_path: Path) -> None:
		bad = tmp_path / "agent-tracking.toml"
		bad.write_text("[database\npath = ")
		with pytest.raises(tomllib.TOMLDecodeError):
			load_config(bad)

	def test_env_overrides_path(self, minimal_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
		monkeypatch.setenv(DB_PATH_ENV, "/tmp/other.db")
		assert load_config(minimal_config).database.path == "/tmp/other.db"

	def test_empty_env_ignored(self, minimal_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
		monkeypatch.setenv(DB_PATH_ENV, "")
		assert load_config(minimal_config).database.path == "beads.db"


class TestResolvedPath:
	def test_relative_anchored_at_base(self, tmp_path: Path) -> None:
		assert DatabaseConfig(path="a/b.db").resolved_path(tmp_path) == tmp_path / "a" / "b.db"

	def test_absolute_unchanged(self, tmp_path: Path) -> None:
		assert DatabaseConfig(path="/var/db/x.db").resolved_path(tmp_path) == Path("/var/db/x.db")

	def test_home_expanded(self) -> None:
		assert not str(DatabaseConfig(path="~/x.db").resolved_path()).startswith("~")


class TestValidateConfig:
	def test_defaults_are_clean(self) -> None:
		assert validate_config(TrackingConfig()) == []

	def test_loaded_full_config_is_clean(self, full_config: Path) -> None:
		assert validate_config(load_config(full_config)) == []

	def test_empty_path(self) -> None:
		cfg = TrackingConfig()
		cfg.database.path = "  "
		assert ("error", "database.path must not be empty") in validate_config(cfg)

	def test_negative_values(self) -> None:
		cfg = TrackingConfig()
		cfg.database.busy_timeout_ms = -1
		cfg.queries.lookback_days = -1
		cfg.queries.session_limit = -1
		cfg.queries.duration_limit = -1
		errors = [msg for lvl, msg in validate_config(cfg) if lvl == "error"]
		assert len(errors) == 4

	def test_zero_lookback_is_warning(self) -> None:
		cfg = TrackingConfig()
		cfg.queries.lookback_days = 0
		issues = validate_config(cfg)
		assert [lvl for lvl, _ in issues] == ["warning"]

	def test_bad_log_level(self) -> None:
		cfg = TrackingConfig()
		cfg.logging.level = "LOUD"
		assert any("logging.level" in msg for _, msg in validate_config(cfg))

	def test_bad_exporter(self) -> None:
		cfg = TrackingConfig()
		cfg.tracing.exporter = "jaeger"
		assert any("tracing.exporter" in msg for _, msg in validate_config(cfg))

	def test_otlp_without_endpoint(self) -> None:
		cfg = TrackingConfig()
		cfg.tracing.enabled = True
		cfg.tracing.exporter = "otlp"
		cfg.tracing.otlp_endpoint = ""
		assert any("otlp_endpoint" in msg for _, msg in validate_config(cfg))
