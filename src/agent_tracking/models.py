"""Data models for agent sessions, issue work and skill usage."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable
from uuid import uuid4

from pydantic import TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

# Fixed-width RFC 3339 UTC text: lexical order equals chronological order.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_STRING_LIST = TypeAdapter(list[str])


def utc_now() -> datetime:
	return datetime.now(timezone.utc)


def new_id() -> str:
	return str(uuid4())


def format_time(value: datetime) -> str:
	"""Render a datetime as storage text. Naive values are taken to be UTC."""
	if value.tzinfo is None:
		value = value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_time(text: str) -> datetime:
	"""Parse stored timestamp text into an aware UTC datetime.

	Accepts any ISO 8601 form, including SQLite's ``YYYY-MM-DD HH:MM:SS``.

	Raises:
		ValueError: If the text is not a timestamp.
	"""
	value = datetime.fromisoformat(text)
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


def parse_optional_time(text: str | None) -> datetime | None:
	if not text:
		return None
	return parse_time(text)


def encode_string_list(values: Iterable[str]) -> str:
	return json.dumps(list(values))


def decode_string_list(raw: str | None, column: str = "list") -> list[str]:
	"""Decode a JSON array-of-string column.

	Anything that is not a JSON array of strings decodes to an empty list;
	the malformed value is logged and otherwise dropped.
	"""
	if raw is None or raw == "":
		return []
	try:
		return _STRING_LIST.validate_json(raw)
	except ValidationError as exc:
		logger.warning("Ignoring malformed %s value %r: %s", column, raw, exc.errors()[0]["msg"])
		return []


def _time_or_none(value: datetime | None) -> str | None:
	return format_time(value) if value is not None else None


@dataclass
class Session:
	"""One period of an agent operating in a workspace."""

	session_id: str = field(default_factory=new_id)
	agent_name: str = ""
	workspace_path: str = ""
	started_at: datetime = field(default_factory=utc_now)
	ended_at: datetime | None = None
	exit_reason: str = ""  # completed/interrupted/error/timeout
	issues_claimed: list[str] = field(default_factory=list)
	skills_used: list[str] = field(default_factory=list)
	model_tier: str = ""
	context_tokens: int = 0
	created_at: datetime = field(default_factory=utc_now)

	@property
	def is_active(self) -> bool:
		return self.ended_at is None

	def duration(self, now: datetime | None = None) -> timedelta:
		"""Elapsed time, measured to ``now`` while the session is still open."""
		end = self.ended_at or now or utc_now()
		return end - self.started_at

	def to_dict(self) -> dict[str, Any]:
		return {
			"session_id": self.session_id,
			"agent_name": self.agent_name,
			"workspace_path": self.workspace_path,
			"started_at": format_time(self.started_at),
			"ended_at": _time_or_none(self.ended_at),
			"exit_reason": self.exit_reason,
			"issues_claimed": list(self.issues_claimed),
			"skills_used": list(self.skills_used),
			"model_tier": self.model_tier,
			"context_tokens": self.context_tokens,
			"created_at": format_time(self.created_at),
		}


@dataclass
class Work:
	"""One agent's engagement with one issue inside a session."""

	work_id: str = field(default_factory=new_id)
	issue_id: str = ""
	session_id: str = ""
	agent_name: str = ""
	started_at: datetime = field(default_factory=utc_now)
	ended_at: datetime | None = None
	status_changes: list[str] = field(default_factory=list)
	decision_rationale: str = ""
	work_notes: str = ""
	completed: bool = False

	def duration(self, now: datetime | None = None) -> timedelta:
		end = self.ended_at or now or utc_now()
		return end - self.started_at

	def to_dict(self) -> dict[str, Any]:
		return {
			"work_id": self.work_id,
			"issue_id": self.issue_id,
			"session_id": self.session_id,
			"agent_name": self.agent_name,
			"started_at": format_time(self.started_at),
			"ended_at": _time_or_none(self.ended_at),
			"status_changes": list(self.status_changes),
			"decision_rationale": self.decision_rationale,
			"work_notes": self.work_notes,
			"completed": self.completed,
		}


@dataclass
class SkillUsage:
	"""A skill module loaded by an agent during a session. Append-only."""

	usage_id: str = field(default_factory=new_id)
	session_id: str = ""
	skill_name: str = ""
	loaded_at: datetime = field(default_factory=utc_now)
	used_for_issue_id: str = ""
	context_added: int = 0

	def to_dict(self) -> dict[str, Any]:
		return {
			"usage_id": self.usage_id,
			"session_id": self.session_id,
			"skill_name": self.skill_name,
			"loaded_at": format_time(self.loaded_at),
			"used_for_issue_id": self.used_for_issue_id,
			"context_added": self.context_added,
		}
