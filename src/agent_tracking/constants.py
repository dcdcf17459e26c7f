"""Versions, default limits and vocabularies shared across the package."""

from __future__ import annotations

# Extension release and on-disk schema revision (reserved for migration gating)
EXTENSION_VERSION = "1.0.0"
SCHEMA_VERSION = 1

# Fallbacks applied when a caller passes limit <= 0
DEFAULT_LIMITS: dict[str, int] = {
	"sessions_by_agent": 10,
	"session_durations": 50,
}

# Size of the "top skills" / "top agents" rankings in statistics
TOP_N = 5

# Conventional session exit reasons; end_session accepts any text
EXIT_REASONS: tuple[str, ...] = ("completed", "interrupted", "error", "timeout")

SECONDS_PER_DAY = 86400
