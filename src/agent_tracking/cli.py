"""CLI interface for agent-tracking."""

from __future__ import annotations

import argparse
import json
import logging
import sqlite3
import sys
import tomllib
from contextlib import closing
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from agent_tracking import schema
from agent_tracking.config import TrackingConfig, apply_env_overrides, load_config, validate_config
from agent_tracking.db import TrackingDB
from agent_tracking.errors import AgentTrackingError
from agent_tracking.logs import setup_logging_from_config
from agent_tracking.models import format_time, utc_now
from agent_tracking.stats import TrackingStats
from agent_tracking.tracing import configure_tracing

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "agent-tracking.toml"

INIT_TEMPLATE = """\
[database]
path = "{db_path}"
busy_timeout_ms = 5000

[queries]
lookback_days = 30
session_limit = 10
duration_limit = 50

[logging]
level = "INFO"
json = false

[tracing]
enabled = false
exporter = "console"
service_name = "agent-tracking"
"""


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="agent-tracking",
		description="Agent session, issue work and skill usage tracking for the issue database",
	)
	sub = parser.add_subparsers(dest="command")

	# agent-tracking init
	init_cmd = sub.add_parser("init", help="Write a starter agent-tracking.toml")
	init_cmd.add_argument("path", nargs="?", default=".")

	# agent-tracking version
	sub.add_parser("version", help="Show extension and schema versions")

	# agent-tracking setup
	setup = sub.add_parser("setup", help="Create the tracking tables in the database")
	setup.add_argument("--config", default=DEFAULT_CONFIG, help="Config file path")

	# agent-tracking sessions
	sessions = sub.add_parser("sessions", help="List active sessions, or an agent's sessions")
	sessions.add_argument("--config", default=DEFAULT_CONFIG, help="Config file path")
	sessions.add_argument("--agent", default="", help="Show this agent's recent sessions instead")
	sessions.add_argument("--limit", type=int, default=None, help="Max sessions for --agent")
	sessions.add_argument("--json", action="store_true", dest="json_output", help="JSON output")

	# agent-tracking session
	session = sub.add_parser("session", help="Show one session with its work and skill usage")
	session.add_argument("session_id")
	session.add_argument("--config", default=DEFAULT_CONFIG, help="Config file path")
	session.add_argument("--json", action="store_true", dest="json_output", help="JSON output")

	# agent-tracking work
	work = sub.add_parser("work", help="List work entries for an issue or a session")
	work.add_argument("--config", default=DEFAULT_CONFIG, help="Config file path")
	target = work.add_mutually_exclusive_group(required=True)
	target.add_argument("--issue", default="", help="Issue ID")
	target.add_argument("--session", default="", help="Session ID")
	work.add_argument("--json", action="store_true", dest="json_output", help="JSON output")

	# agent-tracking stats {agent,issue,skill,overall}
	stats = sub.add_parser("stats", help="Show aggregate statistics")
	stats_sub = stats.add_subparsers(dest="stats_kind", required=True)
	for kind, arg_help in (("agent", "Agent name"), ("issue", "Issue ID"), ("skill", "Skill name"), ("overall", None)):
		p = stats_sub.add_parser(kind, help=f"Statistics for {'all agents' if arg_help is None else 'one ' + kind}")
		if arg_help is not None:
			p.add_argument("name", help=arg_help)
		p.add_argument("--config", default=DEFAULT_CONFIG, help="Config file path")
		p.add_argument("--json", action="store_true", dest="json_output", help="JSON output")
		if kind != "issue":
			_add_window_args(p)

	# agent-tracking durations
	durations = sub.add_parser("durations", help="Show session durations, most recent first")
	durations.add_argument("--config", default=DEFAULT_CONFIG, help="Config file path")
	durations.add_argument("--agent", default="", help="Only this agent's sessions")
	durations.add_argument("--limit", type=int, default=None, help="Max sessions")
	durations.add_argument("--json", action="store_true", dest="json_output", help="JSON output")
	_add_window_args(durations)

	# agent-tracking validate-config
	vc = sub.add_parser("validate-config", help="Validate config file semantically")
	vc.add_argument("--config", default=DEFAULT_CONFIG, help="Config file path")

	return parser


def _add_window_args(p: argparse.ArgumentParser) -> None:
	window = p.add_mutually_exclusive_group()
	window.add_argument("--days", type=int, default=None, help="Look back N days (default from config)")
	window.add_argument("--all-time", action="store_true", help="Include all recorded history")


def _load(config_path: str) -> TrackingConfig:
	"""Load the config file, falling back to defaults when it does not exist."""
	if Path(config_path).exists():
		return load_config(config_path)
	return apply_env_overrides(TrackingConfig())


def _db_path(args: argparse.Namespace, config: TrackingConfig) -> Path:
	return config.database.resolved_path(Path(args.config).parent)


def _connect(path: Path, config: TrackingConfig) -> sqlite3.Connection:
	conn = sqlite3.connect(str(path), timeout=config.database.busy_timeout_ms / 1000)
	schema.initialize(conn)
	return conn


def _since(args: argparse.Namespace, config: TrackingConfig) -> datetime | None:
	if args.all_time:
		return None
	days = args.days if args.days is not None else config.queries.lookback_days
	return utc_now() - timedelta(days=days)


def _fmt_duration(value: timedelta) -> str:
	total = int(value.total_seconds())
	hours, rem = divmod(total, 3600)
	minutes, seconds = divmod(rem, 60)
	if hours:
		return f"{hours}h {minutes:02d}m {seconds:02d}s"
	if minutes:
		return f"{minutes}m {seconds:02d}s"
	return f"{seconds}s"


def _print_json(data: Any) -> None:
	print(json.dumps(data, indent=2))


def _with_db(fn: Callable[[argparse.Namespace, TrackingConfig, sqlite3.Connection], int]) -> Callable[..., int]:
	"""Open the configured database around a read command; exit 1 if it is missing."""

	def handler(args: argparse.Namespace, config: TrackingConfig) -> int:
		db_path = _db_path(args, config)
		if not db_path.exists():
			print(f"No database found at {db_path}. Run 'agent-tracking setup' first.")
			return 1
		with closing(_connect(db_path, config)) as conn:
			return fn(args, config, conn)

	handler.__doc__ = fn.__doc__
	return handler


def cmd_init(args: argparse.Namespace, config: TrackingConfig) -> int:
	"""Write a starter agent-tracking.toml."""
	target = Path(args.path).resolve()
	config_path = target / DEFAULT_CONFIG

	if config_path.exists():
		print(f"Config already exists: {config_path}")
		return 1

	config_path.write_text(INIT_TEMPLATE.format(db_path=config.database.path))
	print(f"Created {config_path}")
	return 0


def cmd_version(args: argparse.Namespace, config: TrackingConfig) -> int:
	"""Show extension and schema versions."""
	print(f"agent-tracking {schema.version()} (schema v{schema.schema_version()})")
	return 0


def cmd_setup(args: argparse.Namespace, config: TrackingConfig) -> int:
	"""Create the tracking tables, creating the database file if needed."""
	db_path = _db_path(args, config)
	db_path.parent.mkdir(parents=True, exist_ok=True)
	with closing(_connect(db_path, config)) as conn:
		missing = [t for t in schema.TABLES if not schema.table_exists(conn, t)]
	if missing:
		print(f"Tables missing after setup: {', '.join(missing)}")
		return 1
	print(f"Agent tracking tables ready in {db_path}")
	print(f"agent-tracking {schema.version()} (schema v{schema.schema_version()})")
	return 0


@_with_db
def cmd_sessions(args: argparse.Namespace, config: TrackingConfig, conn: sqlite3.Connection) -> int:
	"""List active sessions, or the recent sessions of one agent."""
	db = TrackingDB(conn)
	if args.agent:
		limit = args.limit if args.limit is not None else config.queries.session_limit
		sessions = db.list_sessions_by_agent(args.agent, limit)
	else:
		sessions = db.list_active_sessions()

	if args.json_output:
		_print_json([s.to_dict() for s in sessions])
		return 0
	if not sessions:
		print("No sessions found.")
		return 0

	now = utc_now()
	print(f"\n{'Session':<38} {'Agent':<28} {'Started':<20} {'Duration':>12} {'Exit':<12}")
	print("-" * 114)
	for s in sessions:
		started = s.started_at.strftime("%Y-%m-%d %H:%M:%S")
		exit_reason = s.exit_reason or ("active" if s.is_active else "-")
		print(
			f"{s.session_id:<38} {s.agent_name[:28]:<28} {started:<20} "
			f"{_fmt_duration(s.duration(now)):>12} {exit_reason:<12}"
		)
	return 0


@_with_db
def cmd_session(args: argparse.Namespace, config: TrackingConfig, conn: sqlite3.Connection) -> int:
	"""Show a session with its work entries and skill loads."""
	db = TrackingDB(conn)
	session = db.get_session(args.session_id)
	work = db.list_work_by_session(session.session_id)
	usage = db.list_skill_usage(session.session_id)

	if args.json_output:
		data = session.to_dict()
		data["work"] = [w.to_dict() for w in work]
		data["skill_usage"] = [u.to_dict() for u in usage]
		_print_json(data)
		return 0

	print(f"Session:   {session.session_id}")
	print(f"Agent:     {session.agent_name} ({session.model_tier or 'unknown tier'})")
	print(f"Workspace: {session.workspace_path}")
	print(f"Started:   {format_time(session.started_at)}")
	if session.ended_at is not None:
		print(f"Ended:     {format_time(session.ended_at)} ({session.exit_reason or 'no reason'})")
	else:
		print("Ended:     (active)")
	print(f"Duration:  {_fmt_duration(session.duration())}")
	print(f"Tokens:    {session.context_tokens}")
	if session.issues_claimed:
		print(f"Issues:    {', '.join(session.issues_claimed)}")
	if session.skills_used:
		print(f"Skills:    {', '.join(session.skills_used)}")

	if work:
		print(f"\nWork ({len(work)}):")
		for w in work:
			mark = "+" if w.completed else "~"
			print(f"  [{mark}] {w.issue_id} {_fmt_duration(w.duration())}")
			if w.decision_rationale:
				print(f"      why: {w.decision_rationale[:100]}")
			if w.work_notes:
				print(f"      notes: {w.work_notes[:100]}")
	if usage:
		print(f"\nSkill loads ({len(usage)}):")
		for u in usage:
			issue = f" for {u.used_for_issue_id}" if u.used_for_issue_id else ""
			print(f"  {u.skill_name}{issue} (+{u.context_added} context)")
	return 0


@_with_db
def cmd_work(args: argparse.Namespace, config: TrackingConfig, conn: sqlite3.Connection) -> int:
	"""List work entries for an issue (newest first) or a session (in order)."""
	db = TrackingDB(conn)
	entries = db.list_work_by_issue(args.issue) if args.issue else db.list_work_by_session(args.session)

	if args.json_output:
		_print_json([w.to_dict() for w in entries])
		return 0
	if not entries:
		print("No work found.")
		return 0
	for w in entries:
		mark = "+" if w.completed else "~"
		print(f"[{mark}] {w.work_id} | {w.issue_id} | {w.agent_name} | {_fmt_duration(w.duration())}")
	return 0


@_with_db
def cmd_stats(args: argparse.Namespace, config: TrackingConfig, conn: sqlite3.Connection) -> int:
	"""Show agent, issue, skill or overall statistics."""
	engine = TrackingStats(conn)
	kind = args.stats_kind

	if kind == "agent":
		agent = engine.get_agent_stats(args.name, _since(args, config))
		if args.json_output:
			_print_json(agent.to_dict())
			return 0
		print(f"Agent: {agent.agent_name}")
		print(f"Sessions: {agent.total_sessions} ({agent.active_sessions} active)")
		print(f"Avg session: {_fmt_duration(agent.avg_session_time)}")
		print(f"Issues: {agent.completed_issues}/{agent.total_issues} completed ({agent.completion_rate:.0%})")
		print(f"Tokens: {agent.total_tokens}")
		print(f"Skill loads: {agent.total_skill_uses}")
		for sc in agent.most_used_skills:
			print(f"  {sc.skill_name}: {sc.count}")
		return 0

	if kind == "issue":
		issue = engine.get_issue_stats(args.name)
		if args.json_output:
			_print_json(issue.to_dict())
			return 0
		print(f"Issue: {issue.issue_id} ({'completed' if issue.is_completed else 'open'})")
		print(f"Work sessions: {issue.total_work_sessions} by {issue.total_agents} agent(s)")
		print(f"Total time: {_fmt_duration(issue.total_time)}")
		for aw in issue.agent_breakdown:
			print(f"  {aw.agent_name}: {aw.work_sessions} session(s), {_fmt_duration(aw.total_time)}, {aw.completed} completed")
		return 0

	if kind == "skill":
		skill = engine.get_skill_stats(args.name, _since(args, config))
		if args.json_output:
			_print_json(skill.to_dict())
			return 0
		print(f"Skill: {skill.skill_name}")
		print(f"Uses: {skill.total_uses} in {skill.unique_sessions} session(s) by {skill.unique_agents} agent(s)")
		print(f"Context: {skill.total_context} total, {skill.avg_context:.1f} avg")
		for ac in skill.top_agents:
			print(f"  {ac.agent_name}: {ac.count}")
		return 0

	overall = engine.get_overall_stats(_since(args, config))
	if args.json_output:
		_print_json(overall.to_dict())
		return 0
	print(f"Sessions: {overall.total_sessions} ({overall.active_sessions} active)")
	print(f"Agents: {overall.unique_agents}")
	print(f"Issues: {overall.completed_issues}/{overall.total_issues} completed")
	print(f"Skills: {overall.unique_skills}")
	print(f"Tokens: {overall.total_tokens}")
	for ac in overall.top_agents:
		print(f"  {ac.agent_name}: {ac.count} session(s)")
	return 0


@_with_db
def cmd_durations(args: argparse.Namespace, config: TrackingConfig, conn: sqlite3.Connection) -> int:
	"""Show session durations, most recent first."""
	limit = args.limit if args.limit is not None else config.queries.duration_limit
	rows = TrackingStats(conn).get_session_durations(args.agent, _since(args, config), limit)

	if args.json_output:
		_print_json([r.to_dict() for r in rows])
		return 0
	if not rows:
		print("No sessions found.")
		return 0
	for r in rows:
		status = "done" if r.is_completed else "open"
		started = r.started_at.strftime("%Y-%m-%d %H:%M") if r.started_at else "-"
		print(f"{started}  {r.agent_name[:28]:<28} {_fmt_duration(r.duration):>12}  {status}")
	return 0


def cmd_validate_config(args: argparse.Namespace, config: TrackingConfig) -> int:
	"""Validate config file semantically."""
	issues = validate_config(config)

	errors = [(lvl, msg) for lvl, msg in issues if lvl == "error"]
	warnings = [(lvl, msg) for lvl, msg in issues if lvl == "warning"]

	for level, msg in issues:
		print(f"[{level.upper()}] {msg}")

	if not issues:
		print("Config OK")

	print(f"\n{len(errors)} error(s), {len(warnings)} warning(s)")
	return 1 if errors else 0


COMMANDS: dict[str, Callable[[argparse.Namespace, TrackingConfig], int]] = {
	"init": cmd_init,
	"version": cmd_version,
	"setup": cmd_setup,
	"sessions": cmd_sessions,
	"session": cmd_session,
	"work": cmd_work,
	"stats": cmd_stats,
	"durations": cmd_durations,
	"validate-config": cmd_validate_config,
}


def main(argv: list[str] | None = None) -> int:
	parser = build_parser()
	args = parser.parse_args(argv)

	if args.command is None:
		parser.print_help()
		return 0

	try:
		config = _load(getattr(args, "config", DEFAULT_CONFIG))
	except tomllib.TOMLDecodeError as e:
		print(f"Error: invalid config: {e}")
		return 1

	setup_logging_from_config(config.logging)
	try:
		configure_tracing(config.tracing)
	except (RuntimeError, ValueError) as e:
		print(f"Error: {e}")
		return 1

	handler = COMMANDS.get(args.command)
	if handler is None:
		print(f"Unknown command: {args.command}")
		return 1

	try:
		return handler(args, config)
	except AgentTrackingError as e:
		logger.debug("Command %s failed", args.command, exc_info=True)
		print(f"Error: {e.message}")
		return 1


if __name__ == "__main__":
	sys.exit(main())
