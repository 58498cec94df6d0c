"""Shared fixtures: in-memory database and a controllable clock."""

import sqlite3
import pytest
from datetime import datetime, timedelta
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from attention_rescue.data.database import SCHEMA_SQL
from attention_rescue.data.repository import Repository

# Tuesday 10:00 (weekday 2 with Sunday = 0), inside work hours
START = datetime(2024, 3, 5, 10, 0)


class FakeClock:
    """Callable clock; tests move time forward explicitly."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def conn():
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA_SQL)
    conn.commit()
    return conn


@pytest.fixture
def repo(conn):
    return Repository(conn)


@pytest.fixture
def clock():
    return FakeClock()
