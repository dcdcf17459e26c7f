"""Logging setup for agent-tracking tools."""

from __future__ import annotations

import json
import logging
from typing import IO

from agent_tracking.config import LoggingConfig

# Record attributes the store attaches via ``extra=``; surfaced as JSON keys.
CONTEXT_FIELDS: tuple[str, ...] = ("session_id", "work_id", "agent_name", "issue_id", "skill_name")


def setup_logging(level: str = "INFO", json_format: bool = False, stream: IO[str] | None = None) -> None:
	"""Configure the ``agent_tracking`` logger once.

	Args:
		level: Log level (DEBUG, INFO, WARNING, ERROR).
		json_format: If True, emit structured JSON log lines.
		stream: Destination; stderr when omitted.
	"""
	root = logging.getLogger("agent_tracking")
	root.setLevel(getattr(logging, level.upper(), logging.INFO))

	if root.handlers:
		return

	handler = logging.StreamHandler(stream)
	if json_format:
		handler.setFormatter(_JsonFormatter())
	else:
		handler.setFormatter(logging.Formatter(
			"%(asctime)s [%(levelname)s] %(name)s: %(message)s",
			datefmt="%Y-%m-%d %H:%M:%S",
		))
	root.addHandler(handler)


def setup_logging_from_config(config: LoggingConfig, stream: IO[str] | None = None) -> None:
	setup_logging(level=config.level, json_format=config.json, stream=stream)


class _JsonFormatter(logging.Formatter):
	"""Emit log records as JSON lines, including any tracking context."""

	def format(self, record: logging.LogRecord) -> str:
		data: dict[str, object] = {
			"ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
			"level": record.levelname,
			"logger": record.name,
			"msg": record.getMessage(),
		}
		for key in CONTEXT_FIELDS:
			value = getattr(record, key, None)
			if value:
				data[key] = value
		if record.exc_info and record.exc_info[1]:
			data["exception"] = f"{type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
		return json.dumps(data)
