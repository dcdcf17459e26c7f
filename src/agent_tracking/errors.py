"""Exception hierarchy for agent-tracking operations."""

from __future__ import annotations


class AgentTrackingError(Exception):
	"""Base class for every error raised by the tracking layer.

	Attributes:
		message: Human-readable error message.
		code: Stable error code for callers that branch on error kind.
	"""

	def __init__(self, message: str, code: str) -> None:
		self.message = message
		self.code = code
		super().__init__(message)


class ValidationError(AgentTrackingError):
	"""Missing connection or required identifier/name argument.

	Always a caller bug; never worth retrying.
	"""

	def __init__(self, message: str) -> None:
		super().__init__(message, "VALIDATION_ERROR")


class NotFoundError(AgentTrackingError):
	"""The targeted session or work row does not exist."""

	def __init__(self, message: str) -> None:
		super().__init__(message, "NOT_FOUND")


class StorageError(AgentTrackingError):
	"""SQLite rejected a statement. The original error is chained as __cause__."""

	def __init__(self, message: str) -> None:
		super().__init__(message, "STORAGE_ERROR")


class InitializationError(AgentTrackingError):
	"""Schema creation failed or no connection was supplied."""

	def __init__(self, message: str) -> None:
		super().__init__(message, "INITIALIZATION_ERROR")
