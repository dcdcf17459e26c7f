"""Tests for TrackingStats aggregate queries."""

from __future__ import annotations

import sqlite3
from datetime import timedelta

import pytest

from agent_tracking.db import TrackingDB
from agent_tracking.errors import StorageError, ValidationError
from agent_tracking.stats import AgentStats, TrackingStats


class TestConstruction:
	def test_requires_connection(self) -> None:
		with pytest.raises(ValidationError):
			TrackingStats(None)

	def test_missing_tables(self) -> None:
		c = sqlite3.connect(":memory:")
		with pytest.raises(StorageError):
			TrackingStats(c).get_overall_stats()
		c.close()


class TestAgentStats:
	def test_no_activity(self, stats: TrackingStats) -> None:
		s = stats.get_agent_stats("ghost")
		assert s.agent_name == "ghost"
		assert s.total_sessions == 0
		assert s.active_sessions == 0
		assert s.total_issues == 0
		assert s.avg_session_time == timedelta(0)
		assert s.most_used_skills == []
		assert s.completion_rate == 0.0

	def test_requires_name(self, stats: TrackingStats) -> None:
		with pytest.raises(ValidationError):
			stats.get_agent_stats("")

	def test_average_excludes_open_sessions(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		s1 = db.start_session("a", "/w")
		clock.advance(60)
		db.end_session(s1, "completed")
		db.start_session("a", "/w")
		clock.advance(3600)

		s = stats.get_agent_stats("a")
		assert s.total_sessions == 2
		assert s.active_sessions == 1
		assert s.avg_session_time == timedelta(seconds=60)

	def test_average_over_ended_sessions(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		for seconds in (30, 90):
			sid = db.start_session("a", "/w")
			clock.advance(seconds)
			db.end_session(sid, "completed")
		assert stats.get_agent_stats("a").avg_session_time == timedelta(seconds=60)

	def test_tokens_summed(self, db: TrackingDB, stats: TrackingStats) -> None:
		for tokens in (1000, 2500):
			sid = db.start_session("a", "/w")
			db.update_session_tokens(sid, tokens)
		db.update_session_tokens(db.start_session("b", "/w"), 99)
		assert stats.get_agent_stats("a").total_tokens == 3500

	def test_issue_completion_counts_distinct_issues(self, db: TrackingDB, stats: TrackingStats) -> None:
		sid = db.start_session("a", "/w")
		done = db.record_work(sid, "agents-1", "a")
		db.complete_work(done, "")
		db.record_work(sid, "agents-1", "a")
		db.record_work(sid, "agents-2", "a")

		s = stats.get_agent_stats("a")
		assert s.total_issues == 2
		assert s.completed_issues == 1
		assert s.completion_rate == pytest.approx(0.5)

	def test_top_skills_capped_and_ordered(self, db: TrackingDB, stats: TrackingStats) -> None:
		sid = db.start_session("a", "/w")
		counts = {"alpha": 1, "bravo": 4, "charlie": 2, "delta": 2, "echo": 3, "foxtrot": 1}
		for name, n in counts.items():
			for _ in range(n):
				db.record_skill_usage(sid, name)

		s = stats.get_agent_stats("a")
		assert s.total_skill_uses == sum(counts.values())
		assert [(k.skill_name, k.count) for k in s.most_used_skills] == [
			("bravo", 4), ("echo", 3), ("charlie", 2), ("delta", 2), ("alpha", 1),
		]

	def test_since_window_is_inclusive(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		db.start_session("a", "/w")
		boundary = clock.advance(100)
		db.start_session("a", "/w")
		clock.advance(100)
		db.start_session("a", "/w")

		assert stats.get_agent_stats("a").total_sessions == 3
		assert stats.get_agent_stats("a", since=boundary).total_sessions == 2
		assert stats.get_agent_stats("a", since=boundary + timedelta(seconds=1)).total_sessions == 1

	def test_since_handles_second_precision_rows(
		self, conn: sqlite3.Connection, stats: TrackingStats, clock,
	) -> None:
		conn.execute(
			"""INSERT INTO agent_sessions (session_id, agent_name, workspace_path, started_at)
			VALUES ('legacy', 'a', '/w', '2026-03-01T09:00:00Z')"""
		)
		conn.commit()

		assert stats.get_agent_stats("a").total_sessions == 1
		assert stats.get_agent_stats("a", since=clock.now).total_sessions == 1
		assert stats.get_agent_stats("a", since=clock.now + timedelta(milliseconds=500)).total_sessions == 0
		assert stats.get_overall_stats(since=clock.now + timedelta(milliseconds=500)).total_sessions == 0
		assert stats.get_session_durations("a", since=clock.now + timedelta(milliseconds=500)) == []

	def test_since_filters_issues_by_session_start(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		old = db.start_session("a", "/w")
		db.record_work(old, "old-issue", "a")
		cutoff = clock.advance(10)
		new = db.start_session("a", "/w")
		db.record_work(new, "new-issue", "a")
		db.record_skill_usage(old, "late-load")

		s = stats.get_agent_stats("a", since=cutoff)
		assert s.total_issues == 1
		assert s.total_skill_uses == 0
		assert s.since == cutoff

	def test_to_dict(self) -> None:
		s = AgentStats(agent_name="a", total_issues=4, completed_issues=1, avg_session_time=timedelta(seconds=1.5))
		data = s.to_dict()
		assert data["completion_rate"] == 0.25
		assert data["avg_session_time"] == 1.5
		assert data["since"] is None


class TestIssueStats:
	def test_unknown_issue(self, stats: TrackingStats) -> None:
		s = stats.get_issue_stats("agents-999")
		assert s.total_work_sessions == 0
		assert s.total_agents == 0
		assert s.total_time == timedelta(0)
		assert s.is_completed is False
		assert s.agent_breakdown == []

	def test_requires_id(self, stats: TrackingStats) -> None:
		with pytest.raises(ValidationError):
			stats.get_issue_stats("")

	def test_completed_when_any_work_completed(self, db: TrackingDB, stats: TrackingStats) -> None:
		sid = db.start_session("a", "/w")
		db.record_work(sid, "agents-1", "a")
		done = db.record_work(sid, "agents-1", "a")
		db.record_work(sid, "agents-1", "a")
		db.complete_work(done, "")
		assert stats.get_issue_stats("agents-1").is_completed is True

	def test_open_work_counts_to_now(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		s1 = db.start_session("a", "/w")
		s2 = db.start_session("b", "/w")
		w1 = db.record_work(s1, "agents-5", "a")
		clock.advance(30)
		db.complete_work(w1, "")
		db.record_work(s2, "agents-5", "b")
		clock.advance(70)

		s = stats.get_issue_stats("agents-5")
		assert s.total_work_sessions == 2
		assert s.total_agents == 2
		assert s.total_time == timedelta(seconds=100)
		by_agent = {a.agent_name: a for a in s.agent_breakdown}
		assert by_agent["a"].total_time == timedelta(seconds=30)
		assert by_agent["a"].completed == 1
		assert by_agent["b"].total_time == timedelta(seconds=70)
		assert by_agent["b"].completed == 0

	def test_breakdown_ordered_by_work_count(self, db: TrackingDB, stats: TrackingStats) -> None:
		sid = db.start_session("x", "/w")
		for agent, n in (("beta", 1), ("alpha", 1), ("gamma", 3)):
			for _ in range(n):
				db.record_work(sid, "agents-9", agent)
		names = [a.agent_name for a in stats.get_issue_stats("agents-9").agent_breakdown]
		assert names == ["gamma", "alpha", "beta"]

	def test_breakdown_sums_to_totals(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		sid = db.start_session("x", "/w")
		for agent in ("a", "b", "a"):
			wid = db.record_work(sid, "agents-3", agent)
			clock.advance(20)
			db.complete_work(wid, "")
		s = stats.get_issue_stats("agents-3")
		assert sum(a.work_sessions for a in s.agent_breakdown) == s.total_work_sessions
		assert sum((a.total_time for a in s.agent_breakdown), timedelta(0)) == s.total_time
		assert s.total_time == timedelta(seconds=60)

	def test_to_dict(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		sid = db.start_session("a", "/w")
		wid = db.record_work(sid, "agents-1", "a")
		clock.advance(2)
		db.complete_work(wid, "")
		data = stats.get_issue_stats("agents-1").to_dict()
		assert data["total_time"] == 2.0
		assert data["is_completed"] is True
		assert data["agent_breakdown"] == [
			{"agent_name": "a", "work_sessions": 1, "total_time": 2.0, "completed": 1},
		]


class TestSkillStats:
	def test_requires_name(self, stats: TrackingStats) -> None:
		with pytest.raises(ValidationError):
			stats.get_skill_stats("")

	def test_unused_skill(self, stats: TrackingStats) -> None:
		s = stats.get_skill_stats("never")
		assert s.total_uses == 0
		assert s.avg_context == 0.0
		assert s.top_agents == []

	def test_usage_aggregates(self, db: TrackingDB, stats: TrackingStats) -> None:
		a1 = db.start_session("a", "/w")
		a2 = db.start_session("a", "/w")
		b1 = db.start_session("b", "/w")
		db.record_skill_usage(a1, "testing", "", 100)
		db.record_skill_usage(a1, "testing", "", 300)
		db.record_skill_usage(a2, "testing", "", 200)
		db.record_skill_usage(b1, "testing", "", 400)
		db.record_skill_usage(b1, "other", "", 9999)

		s = stats.get_skill_stats("testing")
		assert s.total_uses == 4
		assert s.unique_sessions == 3
		assert s.unique_agents == 2
		assert s.total_context == 1000
		assert s.avg_context == pytest.approx(250.0)
		assert [(x.agent_name, x.count) for x in s.top_agents] == [("a", 3), ("b", 1)]

	def test_since_filters_on_load_time(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		sid = db.start_session("a", "/w")
		db.record_skill_usage(sid, "testing", "", 10)
		cutoff = clock.advance(60)
		db.record_skill_usage(sid, "testing", "", 20)

		s = stats.get_skill_stats("testing", since=cutoff)
		assert s.total_uses == 1
		assert s.total_context == 20


class TestOverallStats:
	def test_empty(self, stats: TrackingStats) -> None:
		s = stats.get_overall_stats()
		assert s.total_sessions == 0
		assert s.unique_agents == 0
		assert s.top_agents == []

	def test_totals(self, db: TrackingDB, stats: TrackingStats) -> None:
		a1 = db.start_session("a", "/w")
		a2 = db.start_session("a", "/w")
		b1 = db.start_session("b", "/w")
		db.end_session(a1, "completed")
		db.update_session_tokens(a2, 500)
		db.update_session_tokens(b1, 250)
		w = db.record_work(a1, "agents-1", "a")
		db.complete_work(w, "")
		db.record_work(b1, "agents-2", "b")
		db.record_skill_usage(a2, "testing")
		db.record_skill_usage(b1, "testing")
		db.record_skill_usage(b1, "git-workflow")

		s = stats.get_overall_stats()
		assert s.total_sessions == 3
		assert s.active_sessions == 2
		assert s.unique_agents == 2
		assert s.total_issues == 2
		assert s.completed_issues == 1
		assert s.unique_skills == 2
		assert s.total_tokens == 750
		assert [(x.agent_name, x.count) for x in s.top_agents] == [("a", 2), ("b", 1)]

	def test_since(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		db.start_session("a", "/w")
		cutoff = clock.advance(5)
		db.start_session("b", "/w")
		s = stats.get_overall_stats(since=cutoff)
		assert s.total_sessions == 1
		assert s.unique_agents == 1


class TestSessionDurations:
	def test_open_and_closed(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		done = db.start_session("a", "/w")
		clock.advance(40)
		db.end_session(done, "completed")
		clock.advance(10)
		running = db.start_session("a", "/w")
		clock.advance(25)

		result = stats.get_session_durations("a")
		assert [d.session_id for d in result] == [running, done]
		assert result[0].duration == timedelta(seconds=25)
		assert result[0].is_completed is False
		assert result[1].duration == timedelta(seconds=40)
		assert result[1].is_completed is True
		assert all(d.duration >= timedelta(0) for d in result)

	def test_all_agents_when_name_empty(self, db: TrackingDB, stats: TrackingStats) -> None:
		db.start_session("a", "/w")
		db.start_session("b", "/w")
		assert {d.agent_name for d in stats.get_session_durations()} == {"a", "b"}
		assert {d.agent_name for d in stats.get_session_durations("b")} == {"b"}

	@pytest.mark.parametrize("limit,expected", [(3, 3), (0, 50), (-1, 50)])
	def test_limit(self, db: TrackingDB, stats: TrackingStats, clock, limit: int, expected: int) -> None:
		for _ in range(55):
			db.start_session("a", "/w")
			clock.advance(1)
		assert len(stats.get_session_durations("a", limit=limit)) == expected

	def test_since(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		db.start_session("a", "/w")
		cutoff = clock.advance(30)
		recent = db.start_session("a", "/w")
		result = stats.get_session_durations("a", since=cutoff)
		assert [d.session_id for d in result] == [recent]

	def test_to_dict(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		sid = db.start_session("a", "/w")
		clock.advance(1.25)
		data = stats.get_session_durations()[0].to_dict()
		assert data["session_id"] == sid
		assert data["duration"] == 1.25
		assert data["started_at"].endswith("Z")


class TestEndToEnd:
	def test_single_agent_workflow(self, db: TrackingDB, stats: TrackingStats, clock) -> None:
		sid = db.start_session("orchestrator", "/home/user/project", "sonnet")
		wid = db.record_work(sid, "agents-42", "orchestrator", "Assigned based on backend expertise")
		clock.advance(120)
		db.record_skill_usage(sid, "dependency-thinking", "agents-42", 500)
		db.update_session_tokens(sid, 15000)
		clock.advance(60)
		db.complete_work(wid, "Created User model with validation")
		db.end_session(sid, "completed")

		agent = stats.get_agent_stats("orchestrator")
		assert agent.total_sessions == 1
		assert agent.completed_issues == 1
		assert agent.total_tokens == 15000
		assert agent.avg_session_time == timedelta(minutes=3)
		assert agent.most_used_skills[0].skill_name == "dependency-thinking"

		issue = stats.get_issue_stats("agents-42")
		assert issue.is_completed is True
		assert issue.total_agents == 1
		assert issue.total_time == timedelta(minutes=3)
