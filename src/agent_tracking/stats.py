"""Read-only aggregate statistics over the agent tracking tables.

All figures are computed in SQL straight from the three tables. Durations
are JULIANDAY differences scaled to seconds. Open sessions and open work
are measured up to the ``clock`` passed to :class:`TrackingStats`, bound as
a query parameter; SQLite's own ``'now'`` is never consulted.

Windowed queries take an inclusive ``since`` lower bound and compare it as
JULIANDAY, so second-precision ``...:SSZ`` rows written by other tools sort
correctly against this package's microsecond text. ``since=None`` covers all
recorded history.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence

from agent_tracking.constants import DEFAULT_LIMITS, SECONDS_PER_DAY, TOP_N
from agent_tracking.errors import StorageError, ValidationError
from agent_tracking.models import format_time, parse_time, utc_now
from agent_tracking.tracing import traced

logger = logging.getLogger(__name__)

# Earliest instant SQLite date functions accept; the "all history" bound.
ALL_HISTORY = "0000-01-01T00:00:00Z"


def _seconds(value: float | None) -> timedelta:
	# SQLite date math resolves milliseconds; finer digits are float noise.
	return timedelta(seconds=round(value or 0.0, 3))


def _time_or_none(value: datetime | None) -> str | None:
	return format_time(value) if value is not None else None


@dataclass
class SkillCount:
	skill_name: str = ""
	count: int = 0

	def to_dict(self) -> dict[str, Any]:
		return {"skill_name": self.skill_name, "count": self.count}


@dataclass
class AgentCount:
	agent_name: str = ""
	count: int = 0

	def to_dict(self) -> dict[str, Any]:
		return {"agent_name": self.agent_name, "count": self.count}


@dataclass
class AgentWork:
	"""One agent's share of the work on an issue."""

	agent_name: str = ""
	work_sessions: int = 0
	total_time: timedelta = field(default_factory=timedelta)
	completed: int = 0

	def to_dict(self) -> dict[str, Any]:
		return {
			"agent_name": self.agent_name,
			"work_sessions": self.work_sessions,
			"total_time": self.total_time.total_seconds(),
			"completed": self.completed,
		}


@dataclass
class AgentStats:
	"""Aggregate activity of one agent since a point in time."""

	agent_name: str = ""
	total_sessions: int = 0
	active_sessions: int = 0
	total_issues: int = 0
	completed_issues: int = 0
	total_skill_uses: int = 0
	avg_session_time: timedelta = field(default_factory=timedelta)
	total_tokens: int = 0
	most_used_skills: list[SkillCount] = field(default_factory=list)
	since: datetime | None = None

	@property
	def completion_rate(self) -> float:
		"""Fraction of touched issues that were completed."""
		if self.total_issues == 0:
			return 0.0
		return self.completed_issues / self.total_issues

	def to_dict(self) -> dict[str, Any]:
		return {
			"agent_name": self.agent_name,
			"total_sessions": self.total_sessions,
			"active_sessions": self.active_sessions,
			"total_issues": self.total_issues,
			"completed_issues": self.completed_issues,
			"completion_rate": round(self.completion_rate, 3),
			"total_skill_uses": self.total_skill_uses,
			"avg_session_time": self.avg_session_time.total_seconds(),
			"total_tokens": self.total_tokens,
			"most_used_skills": [s.to_dict() for s in self.most_used_skills],
			"since": _time_or_none(self.since),
		}


@dataclass
class IssueStats:
	"""Everything recorded about the work on one issue."""

	issue_id: str = ""
	total_work_sessions: int = 0
	total_agents: int = 0
	total_time: timedelta = field(default_factory=timedelta)
	is_completed: bool = False
	agent_breakdown: list[AgentWork] = field(default_factory=list)

	def to_dict(self) -> dict[str, Any]:
		return {
			"issue_id": self.issue_id,
			"total_work_sessions": self.total_work_sessions,
			"total_agents": self.total_agents,
			"total_time": self.total_time.total_seconds(),
			"is_completed": self.is_completed,
			"agent_breakdown": [a.to_dict() for a in self.agent_breakdown],
		}


@dataclass
class SkillStats:
	"""How often, by whom and at what context cost a skill was loaded."""

	skill_name: str = ""
	total_uses: int = 0
	unique_sessions: int = 0
	unique_agents: int = 0
	total_context: int = 0
	avg_context: float = 0.0
	top_agents: list[AgentCount] = field(default_factory=list)
	since: datetime | None = None

	def to_dict(self) -> dict[str, Any]:
		return {
			"skill_name": self.skill_name,
			"total_uses": self.total_uses,
			"unique_sessions": self.unique_sessions,
			"unique_agents": self.unique_agents,
			"total_context": self.total_context,
			"avg_context": round(self.avg_context, 2),
			"top_agents": [a.to_dict() for a in self.top_agents],
			"since": _time_or_none(self.since),
		}


@dataclass
class OverallStats:
	total_sessions: int = 0
	active_sessions: int = 0
	unique_agents: int = 0
	total_issues: int = 0
	completed_issues: int = 0
	unique_skills: int = 0
	total_tokens: int = 0
	top_agents: list[AgentCount] = field(default_factory=list)
	since: datetime | None = None

	def to_dict(self) -> dict[str, Any]:
		return {
			"total_sessions": self.total_sessions,
			"active_sessions": self.active_sessions,
			"unique_agents": self.unique_agents,
			"total_issues": self.total_issues,
			"completed_issues": self.completed_issues,
			"unique_skills": self.unique_skills,
			"total_tokens": self.total_tokens,
			"top_agents": [a.to_dict() for a in self.top_agents],
			"since": _time_or_none(self.since),
		}


@dataclass
class SessionDuration:
	session_id: str = ""
	agent_name: str = ""
	started_at: datetime | None = None
	duration: timedelta = field(default_factory=timedelta)
	is_completed: bool = False

	def to_dict(self) -> dict[str, Any]:
		return {
			"session_id": self.session_id,
			"agent_name": self.agent_name,
			"started_at": _time_or_none(self.started_at),
			"duration": self.duration.total_seconds(),
			"is_completed": self.is_completed,
		}


class TrackingStats:
	"""Statistics queries against a caller-owned SQLite connection."""

	def __init__(
		self,
		conn: sqlite3.Connection | None,
		clock: Callable[[], datetime] = utc_now,
	) -> None:
		if conn is None:
			raise ValidationError("database connection is required")
		self.conn = conn
		self._clock = clock

	def _query(self, action: str, sql: str, params: Sequence[Any]) -> list[sqlite3.Row]:
		try:
			cur = self.conn.cursor()
			cur.row_factory = sqlite3.Row
			return cur.execute(sql, params).fetchall()
		except sqlite3.Error as exc:
			logger.warning("Failed to get %s: %s", action, exc)
			raise StorageError(f"failed to get {action}: {exc}") from exc

	def _query_one(self, action: str, sql: str, params: Sequence[Any]) -> sqlite3.Row:
		# Aggregates without GROUP BY always produce exactly one row.
		return self._query(action, sql, params)[0]

	@staticmethod
	def _since_text(since: datetime | None) -> str:
		return format_time(since) if since is not None else ALL_HISTORY

	@traced("get_agent_stats")
	def get_agent_stats(self, agent_name: str, since: datetime | None = None) -> AgentStats:
		"""Sessions, issues, tokens and skills for one agent since ``since``.

		The average session time only covers sessions that have ended; open
		sessions are left out of it entirely.
		"""
		if not agent_name:
			raise ValidationError("agent name is required")

		stats = AgentStats(agent_name=agent_name, since=since)
		since_text = self._since_text(since)

		row = self._query_one(
			"session counts",
			"""SELECT
				COUNT(*) AS total,
				COALESCE(SUM(CASE WHEN ended_at IS NULL THEN 1 ELSE 0 END), 0) AS active,
				COALESCE(SUM(context_tokens), 0) AS tokens
			FROM agent_sessions
			WHERE agent_name = ? AND JULIANDAY(started_at) >= JULIANDAY(?)""",
			(agent_name, since_text),
		)
		stats.total_sessions = int(row["total"])
		stats.active_sessions = int(row["active"])
		stats.total_tokens = int(row["tokens"])

		row = self._query_one(
			"average session time",
			f"""SELECT AVG(JULIANDAY(ended_at) - JULIANDAY(started_at)) * {SECONDS_PER_DAY} AS avg_seconds
			FROM agent_sessions
			WHERE agent_name = ? AND JULIANDAY(started_at) >= JULIANDAY(?) AND ended_at IS NOT NULL""",
			(agent_name, since_text),
		)
		stats.avg_session_time = _seconds(row["avg_seconds"])

		row = self._query_one(
			"issue counts",
			"""SELECT
				COUNT(DISTINCT w.issue_id) AS total,
				COUNT(DISTINCT CASE WHEN w.completed = 1 THEN w.issue_id END) AS completed
			FROM agent_issue_work w
			JOIN agent_sessions s ON w.session_id = s.session_id
			WHERE w.agent_name = ? AND JULIANDAY(s.started_at) >= JULIANDAY(?)""",
			(agent_name, since_text),
		)
		stats.total_issues = int(row["total"])
		stats.completed_issues = int(row["completed"])

		row = self._query_one(
			"skill usage count",
			"""SELECT COUNT(*) AS uses
			FROM agent_skill_usage u
			JOIN agent_sessions s ON u.session_id = s.session_id
			WHERE s.agent_name = ? AND JULIANDAY(s.started_at) >= JULIANDAY(?)""",
			(agent_name, since_text),
		)
		stats.total_skill_uses = int(row["uses"])

		rows = self._query(
			"most used skills",
			"""SELECT u.skill_name, COUNT(*) AS cnt
			FROM agent_skill_usage u
			JOIN agent_sessions s ON u.session_id = s.session_id
			WHERE s.agent_name = ? AND JULIANDAY(s.started_at) >= JULIANDAY(?)
			GROUP BY u.skill_name
			ORDER BY cnt DESC, u.skill_name ASC
			LIMIT ?""",
			(agent_name, since_text, TOP_N),
		)
		stats.most_used_skills = [SkillCount(r["skill_name"], int(r["cnt"])) for r in rows]
		return stats

	@traced("get_issue_stats")
	def get_issue_stats(self, issue_id: str) -> IssueStats:
		"""Work volume, agents and time spent on one issue, over all history.

		Work that is still open counts the time elapsed so far. The issue is
		completed when any of its work rows is.
		"""
		if not issue_id:
			raise ValidationError("issue ID is required")

		stats = IssueStats(issue_id=issue_id)
		now_text = format_time(self._clock())

		row = self._query_one(
			"issue counts",
			f"""SELECT
				COUNT(*) AS total_work,
				COUNT(DISTINCT agent_name) AS agents,
				COALESCE(MAX(completed), 0) AS is_completed,
				SUM(JULIANDAY(COALESCE(ended_at, ?)) - JULIANDAY(started_at)) * {SECONDS_PER_DAY} AS total_seconds
			FROM agent_issue_work
			WHERE issue_id = ?""",
			(now_text, issue_id),
		)
		stats.total_work_sessions = int(row["total_work"])
		stats.total_agents = int(row["agents"])
		stats.is_completed = bool(row["is_completed"])
		stats.total_time = _seconds(row["total_seconds"])

		rows = self._query(
			"agent breakdown",
			f"""SELECT
				agent_name,
				COUNT(*) AS work_sessions,
				SUM(JULIANDAY(COALESCE(ended_at, ?)) - JULIANDAY(started_at)) * {SECONDS_PER_DAY} AS total_seconds,
				COALESCE(SUM(completed), 0) AS completed_count
			FROM agent_issue_work
			WHERE issue_id = ?
			GROUP BY agent_name
			ORDER BY work_sessions DESC, agent_name ASC""",
			(now_text, issue_id),
		)
		stats.agent_breakdown = [
			AgentWork(
				agent_name=r["agent_name"],
				work_sessions=int(r["work_sessions"]),
				total_time=_seconds(r["total_seconds"]),
				completed=int(r["completed_count"]),
			)
			for r in rows
		]
		return stats

	@traced("get_skill_stats")
	def get_skill_stats(self, skill_name: str, since: datetime | None = None) -> SkillStats:
		"""Usage of one skill loaded at or after ``since``."""
		if not skill_name:
			raise ValidationError("skill name is required")

		stats = SkillStats(skill_name=skill_name, since=since)
		since_text = self._since_text(since)

		row = self._query_one(
			"skill usage counts",
			"""SELECT
				COUNT(*) AS total,
				COUNT(DISTINCT u.session_id) AS sessions,
				COUNT(DISTINCT s.agent_name) AS agents,
				COALESCE(SUM(u.context_added), 0) AS total_context,
				AVG(u.context_added) AS avg_context
			FROM agent_skill_usage u
			JOIN agent_sessions s ON u.session_id = s.session_id
			WHERE u.skill_name = ? AND JULIANDAY(u.loaded_at) >= JULIANDAY(?)""",
			(skill_name, since_text),
		)
		stats.total_uses = int(row["total"])
		stats.unique_sessions = int(row["sessions"])
		stats.unique_agents = int(row["agents"])
		stats.total_context = int(row["total_context"])
		stats.avg_context = float(row["avg_context"] or 0.0)

		rows = self._query(
			"top agents",
			"""SELECT s.agent_name, COUNT(*) AS cnt
			FROM agent_skill_usage u
			JOIN agent_sessions s ON u.session_id = s.session_id
			WHERE u.skill_name = ? AND JULIANDAY(u.loaded_at) >= JULIANDAY(?)
			GROUP BY s.agent_name
			ORDER BY cnt DESC, s.agent_name ASC
			LIMIT ?""",
			(skill_name, since_text, TOP_N),
		)
		stats.top_agents = [AgentCount(r["agent_name"], int(r["cnt"])) for r in rows]
		return stats

	@traced("get_overall_stats")
	def get_overall_stats(self, since: datetime | None = None) -> OverallStats:
		"""Totals across every agent since ``since``."""
		stats = OverallStats(since=since)
		since_text = self._since_text(since)

		row = self._query_one(
			"session counts",
			"""SELECT
				COUNT(*) AS total,
				COALESCE(SUM(CASE WHEN ended_at IS NULL THEN 1 ELSE 0 END), 0) AS active,
				COUNT(DISTINCT agent_name) AS agents,
				COALESCE(SUM(context_tokens), 0) AS tokens
			FROM agent_sessions
			WHERE JULIANDAY(started_at) >= JULIANDAY(?)""",
			(since_text,),
		)
		stats.total_sessions = int(row["total"])
		stats.active_sessions = int(row["active"])
		stats.unique_agents = int(row["agents"])
		stats.total_tokens = int(row["tokens"])

		row = self._query_one(
			"issue counts",
			"""SELECT
				COUNT(DISTINCT w.issue_id) AS total,
				COUNT(DISTINCT CASE WHEN w.completed = 1 THEN w.issue_id END) AS completed
			FROM agent_issue_work w
			JOIN agent_sessions s ON w.session_id = s.session_id
			WHERE JULIANDAY(s.started_at) >= JULIANDAY(?)""",
			(since_text,),
		)
		stats.total_issues = int(row["total"])
		stats.completed_issues = int(row["completed"])

		row = self._query_one(
			"skill count",
			"""SELECT COUNT(DISTINCT skill_name) AS skills FROM agent_skill_usage
			WHERE JULIANDAY(loaded_at) >= JULIANDAY(?)""",
			(since_text,),
		)
		stats.unique_skills = int(row["skills"])

		rows = self._query(
			"top agents",
			"""SELECT agent_name, COUNT(*) AS cnt
			FROM agent_sessions
			WHERE JULIANDAY(started_at) >= JULIANDAY(?)
			GROUP BY agent_name
			ORDER BY cnt DESC, agent_name ASC
			LIMIT ?""",
			(since_text, TOP_N),
		)
		stats.top_agents = [AgentCount(r["agent_name"], int(r["cnt"])) for r in rows]
		return stats

	@traced("get_session_durations")
	def get_session_durations(
		self,
		agent_name: str = "",
		since: datetime | None = None,
		limit: int = 50,
	) -> list[SessionDuration]:
		"""Per-session durations, most recent first.

		An empty ``agent_name`` covers all agents; ``limit <= 0`` means 50.
		Open sessions report the time elapsed so far.
		"""
		if limit <= 0:
			limit = DEFAULT_LIMITS["session_durations"]

		where = "JULIANDAY(started_at) >= JULIANDAY(?)"
		params: list[Any] = [format_time(self._clock()), self._since_text(since)]
		if agent_name:
			where = "agent_name = ? AND " + where
			params.insert(1, agent_name)
		params.append(limit)

		rows = self._query(
			"session durations",
			f"""SELECT
				session_id,
				agent_name,
				started_at,
				(JULIANDAY(COALESCE(ended_at, ?)) - JULIANDAY(started_at)) * {SECONDS_PER_DAY} AS duration_seconds,
				ended_at IS NOT NULL AS is_completed
			FROM agent_sessions
			WHERE {where}
			ORDER BY started_at DESC, rowid DESC
			LIMIT ?""",
			params,
		)
		try:
			return [
				SessionDuration(
					session_id=r["session_id"],
					agent_name=r["agent_name"],
					started_at=parse_time(r["started_at"]),
					duration=_seconds(r["duration_seconds"]),
					is_completed=bool(r["is_completed"]),
				)
				for r in rows
			]
		except ValueError as exc:
			raise StorageError(f"failed to get session durations: malformed timestamp: {exc}") from exc
