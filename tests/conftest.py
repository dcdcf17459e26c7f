"""Shared pytest fixtures for agent-tracking tests."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest

from agent_tracking.db import TrackingDB
from agent_tracking.schema import initialize
from agent_tracking.stats import TrackingStats

T0 = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
	"""Deterministic clock; call it for "now", advance it explicitly."""

	def __init__(self, start: datetime = T0) -> None:
		self.now = start

	def __call__(self) -> datetime:
		return self.now

	def advance(self, seconds: float) -> datetime:
		self.now += timedelta(seconds=seconds)
		return self.now


@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
	"""In-memory SQLite connection with the tracking schema initialized."""
	c = sqlite3.connect(":memory:")
	initialize(c)
	yield c
	c.close()


@pytest.fixture()
def clock() -> FakeClock:
	return FakeClock()


@pytest.fixture()
def db(conn: sqlite3.Connection, clock: FakeClock) -> TrackingDB:
	return TrackingDB(conn, clock=clock)


@pytest.fixture()
def stats(conn: sqlite3.Connection, clock: FakeClock) -> TrackingStats:
	return TrackingStats(conn, clock=clock)
