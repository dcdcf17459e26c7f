"""TOML configuration loader for agent-tracking."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agent_tracking.constants import DEFAULT_LIMITS

DB_PATH_ENV = "AGENT_TRACKING_DB"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_EXPORTERS = ("console", "otlp")


@dataclass
class DatabaseConfig:
	"""Location of the issue-tracker SQLite database the tables live in."""

	path: str = ".beads/beads.db"
	busy_timeout_ms: int = 5000

	def resolved_path(self, base: Path | None = None) -> Path:
		"""Expand ``~`` and anchor relative paths at ``base`` (the config file's directory)."""
		p = Path(os.path.expanduser(self.path))
		if base is not None and not p.is_absolute():
			return base / p
		return p


@dataclass
class QueryConfig:
	"""Defaults for CLI listings and statistics windows."""

	lookback_days: int = 30
	session_limit: int = DEFAULT_LIMITS["sessions_by_agent"]
	duration_limit: int = DEFAULT_LIMITS["session_durations"]


@dataclass
class LoggingConfig:
	level: str = "INFO"
	json: bool = False


@dataclass
class TracingConfig:
	"""OpenTelemetry tracing settings."""

	enabled: bool = False
	service_name: str = "agent-tracking"
	exporter: str = "console"  # console | otlp
	otlp_endpoint: str = "http://localhost:4317"


@dataclass
class TrackingConfig:
	"""Top-level agent-tracking configuration."""

	database: DatabaseConfig = field(default_factory=DatabaseConfig)
	queries: QueryConfig = field(default_factory=QueryConfig)
	logging: LoggingConfig = field(default_factory=LoggingConfig)
	tracing: TracingConfig = field(default_factory=TracingConfig)


def _build_database(data: dict[str, Any]) -> DatabaseConfig:
	dc = DatabaseConfig()
	if "path" in data:
		dc.path = str(data["path"])
	if "busy_timeout_ms" in data:
		dc.busy_timeout_ms = int(data["busy_timeout_ms"])
	return dc


def _build_queries(data: dict[str, Any]) -> QueryConfig:
	qc = QueryConfig()
	if "lookback_days" in data:
		qc.lookback_days = int(data["lookback_days"])
	if "session_limit" in data:
		qc.session_limit = int(data["session_limit"])
	if "duration_limit" in data:
		qc.duration_limit = int(data["duration_limit"])
	return qc


def _build_logging(data: dict[str, Any]) -> LoggingConfig:
	lc = LoggingConfig()
	if "level" in data:
		lc.level = str(data["level"]).upper()
	if "json" in data:
		lc.json = bool(data["json"])
	return lc


def _build_tracing(data: dict[str, Any]) -> TracingConfig:
	tc = TracingConfig()
	if "enabled" in data:
		tc.enabled = bool(data["enabled"])
	if "service_name" in data:
		tc.service_name = str(data["service_name"])
	if "exporter" in data:
		tc.exporter = str(data["exporter"])
	if "otlp_endpoint" in data:
		tc.otlp_endpoint = str(data["otlp_endpoint"])
	return tc


def apply_env_overrides(config: TrackingConfig) -> TrackingConfig:
	"""Let ``AGENT_TRACKING_DB`` point the tooling at a different database."""
	env_path = os.environ.get(DB_PATH_ENV, "")
	if env_path:
		config.database.path = env_path
	return config


def load_config(path: str | Path) -> TrackingConfig:
	"""Load an agent-tracking.toml config file.

	Args:
		path: Path to the TOML config file.

	Returns:
		Parsed TrackingConfig.

	Raises:
		FileNotFoundError: If config file doesn't exist.
		tomllib.TOMLDecodeError: If config is invalid TOML.
	"""
	config_path = Path(path)
	if not config_path.exists():
		raise FileNotFoundError(f"Config file not found: {config_path}")

	with open(config_path, "rb") as f:
		data = tomllib.load(f)

	tc = TrackingConfig()
	if "database" in data:
		tc.database = _build_database(data["database"])
	if "queries" in data:
		tc.queries = _build_queries(data["queries"])
	if "logging" in data:
		tc.logging = _build_logging(data["logging"])
	if "tracing" in data:
		tc.tracing = _build_tracing(data["tracing"])
	return apply_env_overrides(tc)


def validate_config(config: TrackingConfig) -> list[tuple[str, str]]:
	"""Perform semantic validation of a loaded TrackingConfig.

	Returns a list of (level, message) tuples where level is 'error' or 'warning'.
	"""
	issues: list[tuple[str, str]] = []

	if not config.database.path.strip():
		issues.append(("error", "database.path must not be empty"))
	if config.database.busy_timeout_ms < 0:
		issues.append(("error", f"database.busy_timeout_ms is negative: {config.database.busy_timeout_ms}"))

	q = config.queries
	if q.lookback_days < 0:
		issues.append(("error", f"queries.lookback_days is negative: {q.lookback_days}"))
	elif q.lookback_days == 0:
		issues.append(("warning", "queries.lookback_days is zero; stats will only cover sessions started now"))
	if q.session_limit < 0:
		issues.append(("error", f"queries.session_limit is negative: {q.session_limit}"))
	if q.duration_limit < 0:
		issues.append(("error", f"queries.duration_limit is negative: {q.duration_limit}"))

	if config.logging.level.upper() not in _LOG_LEVELS:
		issues.append(("error", f"logging.level is not a log level: {config.logging.level}"))

	if config.tracing.exporter not in _EXPORTERS:
		issues.append(("error", f"tracing.exporter must be one of {', '.join(_EXPORTERS)}: {config.tracing.exporter}"))
	elif config.tracing.enabled and config.tracing.exporter == "otlp" and not config.tracing.otlp_endpoint:
		issues.append(("error", "tracing.otlp_endpoint must be set for the otlp exporter"))

	if issues:
		logging.getLogger(__name__).debug("Config validation found %d issue(s)", len(issues))
	return issues
