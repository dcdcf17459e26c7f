"""SQLite record store for agent sessions, issue work and skill usage."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Sequence, TypeVar

from agent_tracking.constants import DEFAULT_LIMITS, EXIT_REASONS
from agent_tracking.errors import NotFoundError, StorageError, ValidationError
from agent_tracking.models import (
	Session,
	SkillUsage,
	Work,
	decode_string_list,
	encode_string_list,
	format_time,
	new_id,
	parse_optional_time,
	parse_time,
	utc_now,
)
from agent_tracking.tracing import traced

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SESSION_COLUMNS = """session_id, agent_name, workspace_path, started_at, ended_at,
	exit_reason, issues_claimed, skills_used, model_tier, context_tokens, created_at"""

_WORK_COLUMNS = """work_id, issue_id, session_id, agent_name, started_at, ended_at,
	status_changes, decision_rationale, work_notes, completed"""

_USAGE_COLUMNS = "usage_id, session_id, skill_name, loaded_at, used_for_issue_id, context_added"


def _require(value: str, label: str) -> None:
	if not value:
		raise ValidationError(f"{label} is required")


class TrackingDB:
	"""CRUD access to the agent tracking tables.

	The connection belongs to the caller: this class never opens, closes or
	configures it beyond running statements. Each write is a single
	statement committed on its own.

	That commit is issued on the shared connection, so it also commits any
	statements the caller left pending there, and a failed write rolls them
	back. Finish or roll back your own transaction before calling a write
	method.
	"""

	def __init__(
		self,
		conn: sqlite3.Connection | None,
		clock: Callable[[], datetime] = utc_now,
	) -> None:
		if conn is None:
			raise ValidationError("database connection is required")
		self.conn = conn
		self._clock = clock

	def _now(self) -> str:
		return format_time(self._clock())

	def _write(self, action: str, sql: str, params: Sequence[Any]) -> int:
		"""Execute and commit one statement, returning the affected row count.

		A rejected statement rolls back the implicit transaction so the
		connection does not keep holding the write lock.
		"""
		try:
			cur = self.conn.execute(sql, params)
			self.conn.commit()
		except sqlite3.Error as exc:
			logger.warning("Failed to %s, rolling back: %s", action, exc)
			self._rollback()
			raise StorageError(f"failed to {action}: {exc}") from exc
		return cur.rowcount

	def _rollback(self) -> None:
		try:
			self.conn.rollback()
		except sqlite3.Error as exc:
			# Closed or broken connection: nothing left to release.
			logger.debug("Rollback failed: %s", exc)

	def _update_one(self, action: str, kind: str, ident: str, sql: str, params: Sequence[Any]) -> None:
		if self._write(action, sql, params) == 0:
			raise NotFoundError(f"{kind} not found: {ident}")

	def _select(
		self,
		action: str,
		sql: str,
		params: Sequence[Any],
		convert: Callable[[sqlite3.Row], T],
	) -> list[T]:
		try:
			cur = self.conn.cursor()
			cur.row_factory = sqlite3.Row
			rows = cur.execute(sql, params).fetchall()
		except sqlite3.Error as exc:
			logger.warning("Failed to %s: %s", action, exc)
			raise StorageError(f"failed to {action}: {exc}") from exc
		try:
			return [convert(r) for r in rows]
		except ValueError as exc:
			raise StorageError(f"failed to {action}: malformed timestamp: {exc}") from exc

	# -- Sessions --

	@traced("start_session")
	def start_session(self, agent_name: str, workspace_path: str, model_tier: str = "") -> str:
		"""Open a new session and return its identifier."""
		_require(agent_name, "agent name")
		_require(workspace_path, "workspace path")

		session_id = new_id()
		now = self._now()
		self._write(
			"create session",
			"""INSERT INTO agent_sessions
			(session_id, agent_name, workspace_path, started_at, model_tier, created_at)
			VALUES (?, ?, ?, ?, ?, ?)""",
			(session_id, agent_name, workspace_path, now, model_tier or None, now),
		)
		logger.info(
			"Started session %s for %s in %s", session_id, agent_name, workspace_path,
			extra={"session_id": session_id, "agent_name": agent_name},
		)
		return session_id

	@traced("end_session")
	def end_session(self, session_id: str, exit_reason: str = "") -> None:
		"""Stamp the session's end time and exit reason.

		Calling it again on an ended session re-stamps both values.
		"""
		_require(session_id, "session ID")
		if exit_reason and exit_reason not in EXIT_REASONS:
			logger.debug("Non-standard exit reason %r for session %s", exit_reason, session_id)

		self._update_one(
			"end session", "session", session_id,
			"UPDATE agent_sessions SET ended_at = ?, exit_reason = ? WHERE session_id = ?",
			(self._now(), exit_reason or None, session_id),
		)
		logger.info(
			"Ended session %s (%s)", session_id, exit_reason or "no reason",
			extra={"session_id": session_id},
		)

	@traced("get_session")
	def get_session(self, session_id: str) -> Session:
		_require(session_id, "session ID")
		rows = self._select(
			"get session",
			f"SELECT {_SESSION_COLUMNS} FROM agent_sessions WHERE session_id = ?",
			(session_id,),
			self._row_to_session,
		)
		if not rows:
			raise NotFoundError(f"session not found: {session_id}")
		return rows[0]

	@traced("update_session_issues")
	def update_session_issues(self, session_id: str, issues: Sequence[str]) -> None:
		"""Replace the session's claimed-issue list with ``issues``."""
		_require(session_id, "session ID")
		self._update_one(
			"update session issues", "session", session_id,
			"UPDATE agent_sessions SET issues_claimed = ? WHERE session_id = ?",
			(encode_string_list(issues), session_id),
		)

	@traced("update_session_skills")
	def update_session_skills(self, session_id: str, skills: Sequence[str]) -> None:
		"""Replace the session's skills-used list with ``skills``."""
		_require(session_id, "session ID")
		self._update_one(
			"update session skills", "session", session_id,
			"UPDATE agent_sessions SET skills_used = ? WHERE session_id = ?",
			(encode_string_list(skills), session_id),
		)

	@traced("update_session_tokens")
	def update_session_tokens(self, session_id: str, tokens: int) -> None:
		"""Overwrite the session's context token count."""
		_require(session_id, "session ID")
		self._update_one(
			"update session tokens", "session", session_id,
			"UPDATE agent_sessions SET context_tokens = ? WHERE session_id = ?",
			(int(tokens), session_id),
		)

	@traced("list_active_sessions")
	def list_active_sessions(self) -> list[Session]:
		"""Sessions without an end time, most recently started first."""
		return self._select(
			"list active sessions",
			f"""SELECT {_SESSION_COLUMNS} FROM agent_sessions
			WHERE ended_at IS NULL
			ORDER BY started_at DESC, rowid DESC""",
			(),
			self._row_to_session,
		)

	@traced("list_sessions_by_agent")
	def list_sessions_by_agent(self, agent_name: str, limit: int = 10) -> list[Session]:
		"""Most recent sessions for ``agent_name``. ``limit <= 0`` means the default of 10."""
		_require(agent_name, "agent name")
		if limit <= 0:
			limit = DEFAULT_LIMITS["sessions_by_agent"]
		return self._select(
			"list sessions by agent",
			f"""SELECT {_SESSION_COLUMNS} FROM agent_sessions
			WHERE agent_name = ?
			ORDER BY started_at DESC, rowid DESC
			LIMIT ?""",
			(agent_name, limit),
			self._row_to_session,
		)

	@staticmethod
	def _row_to_session(row: sqlite3.Row) -> Session:
		return Session(
			session_id=row["session_id"],
			agent_name=row["agent_name"],
			workspace_path=row["workspace_path"],
			started_at=parse_time(row["started_at"]),
			ended_at=parse_optional_time(row["ended_at"]),
			exit_reason=row["exit_reason"] or "",
			issues_claimed=decode_string_list(row["issues_claimed"], "issues_claimed"),
			skills_used=decode_string_list(row["skills_used"], "skills_used"),
			model_tier=row["model_tier"] or "",
			context_tokens=row["context_tokens"] or 0,
			created_at=parse_optional_time(row["created_at"]) or parse_time(row["started_at"]),
		)

	# -- Issue work --

	@traced("record_work")
	def record_work(self, session_id: str, issue_id: str, agent_name: str, rationale: str = "") -> str:
		"""Record that ``agent_name`` started on ``issue_id``; returns the work ID."""
		_require(session_id, "session ID")
		_require(issue_id, "issue ID")
		_require(agent_name, "agent name")

		work_id = new_id()
		self._write(
			"record work",
			"""INSERT INTO agent_issue_work
			(work_id, issue_id, session_id, agent_name, started_at, decision_rationale)
			VALUES (?, ?, ?, ?, ?, ?)""",
			(work_id, issue_id, session_id, agent_name, self._now(), rationale or None),
		)
		logger.debug(
			"Recorded work %s on %s", work_id, issue_id,
			extra={"work_id": work_id, "session_id": session_id, "issue_id": issue_id},
		)
		return work_id

	@traced("complete_work")
	def complete_work(self, work_id: str, notes: str = "") -> None:
		"""Mark a work entry completed, stamping its end time and notes."""
		_require(work_id, "work ID")
		self._update_one(
			"complete work", "work", work_id,
			"UPDATE agent_issue_work SET ended_at = ?, work_notes = ?, completed = 1 WHERE work_id = ?",
			(self._now(), notes or None, work_id),
		)
		logger.debug("Completed work %s", work_id, extra={"work_id": work_id})

	@traced("get_work")
	def get_work(self, work_id: str) -> Work:
		_require(work_id, "work ID")
		rows = self._select(
			"get work",
			f"SELECT {_WORK_COLUMNS} FROM agent_issue_work WHERE work_id = ?",
			(work_id,),
			self._row_to_work,
		)
		if not rows:
			raise NotFoundError(f"work not found: {work_id}")
		return rows[0]

	@traced("list_work_by_issue")
	def list_work_by_issue(self, issue_id: str) -> list[Work]:
		"""All work on an issue, most recent first."""
		_require(issue_id, "issue ID")
		return self._select(
			"list work by issue",
			f"""SELECT {_WORK_COLUMNS} FROM agent_issue_work
			WHERE issue_id = ?
			ORDER BY started_at DESC, rowid DESC""",
			(issue_id,),
			self._row_to_work,
		)

	@traced("list_work_by_session")
	def list_work_by_session(self, session_id: str) -> list[Work]:
		"""All work in a session, in the order it was started."""
		_require(session_id, "session ID")
		return self._select(
			"list work by session",
			f"""SELECT {_WORK_COLUMNS} FROM agent_issue_work
			WHERE session_id = ?
			ORDER BY started_at ASC, rowid ASC""",
			(session_id,),
			self._row_to_work,
		)

	@staticmethod
	def _row_to_work(row: sqlite3.Row) -> Work:
		return Work(
			work_id=row["work_id"],
			issue_id=row["issue_id"],
			session_id=row["session_id"],
			agent_name=row["agent_name"],
			started_at=parse_time(row["started_at"]),
			ended_at=parse_optional_time(row["ended_at"]),
			status_changes=decode_string_list(row["status_changes"], "status_changes"),
			decision_rationale=row["decision_rationale"] or "",
			work_notes=row["work_notes"] or "",
			completed=bool(row["completed"]),
		)

	# -- Skill usage --

	@traced("record_skill_usage")
	def record_skill_usage(
		self,
		session_id: str,
		skill_name: str,
		issue_id: str = "",
		context_added: int = 0,
	) -> str:
		"""Append a skill-load record and return its usage ID.

		Repeated loads of the same skill in one session are all kept.
		"""
		_require(session_id, "session ID")
		_require(skill_name, "skill name")

		usage_id = new_id()
		self._write(
			"record skill usage",
			f"INSERT INTO agent_skill_usage ({_USAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
			(usage_id, session_id, skill_name, self._now(), issue_id or None, int(context_added)),
		)
		logger.debug(
			"Skill %s loaded in session %s (+%d context)", skill_name, session_id, context_added,
			extra={"session_id": session_id, "skill_name": skill_name},
		)
		return usage_id

	@traced("list_skill_usage")
	def list_skill_usage(self, session_id: str) -> list[SkillUsage]:
		"""Skill loads for a session, oldest first."""
		_require(session_id, "session ID")
		return self._select(
			"list skill usage",
			f"""SELECT {_USAGE_COLUMNS} FROM agent_skill_usage
			WHERE session_id = ?
			ORDER BY loaded_at ASC, rowid ASC""",
			(session_id,),
			self._row_to_skill_usage,
		)

	@staticmethod
	def _row_to_skill_usage(row: sqlite3.Row) -> SkillUsage:
		return SkillUsage(
			usage_id=row["usage_id"],
			session_id=row["session_id"],
			skill_name=row["skill_name"],
			loaded_at=parse_time(row["loaded_at"]),
			used_for_issue_id=row["used_for_issue_id"] or "",
			context_added=row["context_added"] or 0,
		)
