"""Schema for the agent-tracking extension tables.

The tables live alongside the issue tracker's own tables in the same SQLite
database. Every name carries the ``agent_`` prefix so nothing collides with
the tracker core, and every statement is ``IF NOT EXISTS`` so
:func:`initialize` can run on each startup.
"""

from __future__ import annotations

import logging
import sqlite3

from agent_tracking.constants import EXTENSION_VERSION, SCHEMA_VERSION
from agent_tracking.errors import InitializationError, StorageError, ValidationError
from agent_tracking.tracing import traced

logger = logging.getLogger(__name__)

TABLES: tuple[str, ...] = ("agent_sessions", "agent_issue_work", "agent_skill_usage")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS agent_sessions (
	session_id TEXT PRIMARY KEY,
	agent_name TEXT NOT NULL,
	workspace_path TEXT NOT NULL,
	started_at TEXT NOT NULL,
	ended_at TEXT,
	exit_reason TEXT,
	issues_claimed TEXT DEFAULT '[]',
	skills_used TEXT DEFAULT '[]',
	model_tier TEXT,
	context_tokens INTEGER DEFAULT 0,
	created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_agent_sessions_agent ON agent_sessions(agent_name);
CREATE INDEX IF NOT EXISTS idx_agent_sessions_started ON agent_sessions(started_at);

CREATE TABLE IF NOT EXISTS agent_issue_work (
	work_id TEXT PRIMARY KEY,
	issue_id TEXT NOT NULL,
	session_id TEXT NOT NULL,
	agent_name TEXT NOT NULL,
	started_at TEXT NOT NULL,
	ended_at TEXT,
	status_changes TEXT DEFAULT '[]',
	decision_rationale TEXT,
	work_notes TEXT,
	completed BOOLEAN DEFAULT 0,
	FOREIGN KEY (session_id) REFERENCES agent_sessions(session_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_agent_work_issue ON agent_issue_work(issue_id);
CREATE INDEX IF NOT EXISTS idx_agent_work_session ON agent_issue_work(session_id);

CREATE TABLE IF NOT EXISTS agent_skill_usage (
	usage_id TEXT PRIMARY KEY,
	session_id TEXT NOT NULL,
	skill_name TEXT NOT NULL,
	loaded_at TEXT NOT NULL,
	used_for_issue_id TEXT,
	context_added INTEGER DEFAULT 0,
	FOREIGN KEY (session_id) REFERENCES agent_sessions(session_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_agent_skill_session ON agent_skill_usage(session_id);
"""


@traced("initialize")
def initialize(conn: sqlite3.Connection | None) -> None:
	"""Create the tracking tables and indexes if they are missing.

	Also turns on foreign-key enforcement for ``conn`` so work and skill rows
	cascade away with their session. Safe to call repeatedly.

	Raises:
		InitializationError: If ``conn`` is None or SQLite rejects the schema.
	"""
	if conn is None:
		raise InitializationError("database connection is required")
	try:
		conn.execute("PRAGMA foreign_keys=ON")
		conn.executescript(SCHEMA_SQL)
	except sqlite3.Error as exc:
		logger.warning("Agent tracking schema creation failed: %s", exc)
		raise InitializationError(f"failed to create agent tracking schema: {exc}") from exc
	logger.debug("Agent tracking schema ready (schema v%d)", SCHEMA_VERSION)


def table_exists(conn: sqlite3.Connection | None, table_name: str) -> bool:
	"""Return True if ``table_name`` exists in the database behind ``conn``."""
	if conn is None:
		raise ValidationError("database connection is required")
	if not table_name:
		raise ValidationError("table name is required")
	try:
		row = conn.execute(
			"SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name=?",
			(table_name,),
		).fetchone()
	except sqlite3.Error as exc:
		raise StorageError(f"failed to check table existence: {exc}") from exc
	return row[0] > 0


def version() -> str:
	"""Release version of the tracking extension."""
	return EXTENSION_VERSION


def schema_version() -> int:
	"""Schema revision, for gating future migrations."""
	return SCHEMA_VERSION
