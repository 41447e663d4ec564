"""End-to-end live queries against an in-memory SQLite database."""

import asyncio
from datetime import datetime, timezone

import pytest

from live_analytics.core.client import LiveClient
from live_analytics.core.database import SQLiteExecutor
from live_analytics.core.sites import DatabaseSiteResolver
from live_analytics.exceptions import UnknownSiteError
from live_analytics.models import LiveCounters

NOW = datetime(2024, 1, 17, 15, 30, tzinfo=timezone.utc)

A = "aaaaaaaaaaaaaaaa"
B = "bbbbbbbbbbbbbbbb"
C = "cccccccccccccccc"
D = "dddddddddddddddd"
E = "eeeeeeeeeeeeeeee"
F = "ffffffffffffffff"

SCHEMA = """
CREATE TABLE site (idsite INTEGER PRIMARY KEY, timezone TEXT);
CREATE TABLE log_visit (
    idvisit INTEGER PRIMARY KEY,
    idsite INTEGER NOT NULL,
    idvisitor BLOB NOT NULL,
    visit_last_action_time TEXT NOT NULL,
    visitor_count_visits INTEGER DEFAULT 1,
    location_country TEXT
);
CREATE TABLE log_link_visit_action (
    idlink_va INTEGER PRIMARY KEY,
    idsite INTEGER NOT NULL,
    idvisit INTEGER NOT NULL,
    server_time TEXT NOT NULL,
    url TEXT
);
CREATE TABLE log_conversion (
    idvisit INTEGER NOT NULL,
    idsite INTEGER NOT NULL,
    idgoal INTEGER NOT NULL,
    server_time TEXT NOT NULL,
    revenue REAL
);
"""

# (idvisit, idsite, visitor, last action, country)
VISITS = [
    (1, 1, A, "2024-01-17 15:20:00", "fr"),
    (2, 1, B, "2024-01-17 14:00:00", "de"),
    (3, 1, A, "2024-01-17 15:25:00", "fr"),
    (4, 2, C, "2024-01-17 15:28:00", "fr"),
    (5, 1, D, "2024-01-15 10:00:00", "fr"),
    (6, 1, E, "2024-01-17 15:29:00", "it"),
    (7, 1, F, "2024-01-16 13:59:59", "fr"),
]

# (idvisit, idsite, server_time, url)
ACTIONS = [
    (1, 1, "2024-01-17 15:10:00", "/"),
    (1, 1, "2024-01-17 15:20:00", "/pricing"),
    (2, 1, "2024-01-17 14:00:00", "/"),
    (3, 1, "2024-01-17 15:25:00", "/docs"),
    (4, 2, "2024-01-17 15:28:00", "/"),
    (6, 1, "2024-01-17 15:29:00", "/"),
]

# (idvisit, idsite, idgoal, server_time)
CONVERSIONS = [
    (1, 1, 1, "2024-01-17 15:21:00"),
    (1, 1, 2, "2024-01-17 15:21:00"),
    (4, 2, 1, "2024-01-17 15:28:00"),
]


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


@pytest.fixture
def executor():
    executor = SQLiteExecutor()
    connection = executor.connection
    connection.executescript(SCHEMA)
    connection.execute("INSERT INTO site VALUES (1, 'UTC'), (2, 'Europe/Paris')")
    connection.executemany(
        "INSERT INTO log_visit (idvisit, idsite, idvisitor, visit_last_action_time, location_country)"
        " VALUES (?, ?, ?, ?, ?)",
        [(v[0], v[1], bytes.fromhex(v[2]), v[3], v[4]) for v in VISITS],
    )
    connection.executemany(
        "INSERT INTO log_link_visit_action (idvisit, idsite, server_time, url) VALUES (?, ?, ?, ?)",
        ACTIONS,
    )
    connection.executemany(
        "INSERT INTO log_conversion (idvisit, idsite, idgoal, server_time) VALUES (?, ?, ?, ?)",
        CONVERSIONS,
    )
    yield executor
    executor.close()


@pytest.fixture
def client(executor):
    return LiveClient(
        executor=executor,
        site_resolver=DatabaseSiteResolver(executor),
        clock=lambda: NOW,
    )


def _ids(rows):
    return [row["idvisit"] for row in rows]


class TestCounters:
    """Counters over real tables."""

    def test_last_30_minutes(self, client):
        result = run_async(client.query_counters(1, 30))
        assert result == [LiveCounters(visits=3, actions=4, visitors=2, visits_converted=2)]

    def test_segment_filters_every_table(self, client):
        result = run_async(client.query_counters(1, 120, "countryCode==de"))
        assert result == [LiveCounters(visits=1, actions=1, visitors=1, visits_converted=0)]

    def test_zero_minutes(self, client):
        assert run_async(client.query_counters(1, 0)) == [LiveCounters()]


class TestVisitLog:
    """Visit log queries over real tables."""

    def test_default_window(self, client):
        """Last 24 hours, newest first, this site only."""
        rows = run_async(client.query_log_visits(1))
        assert _ids(rows) == [6, 3, 1, 2]

    def test_goal_segment_lists_visit_once(self, client):
        """A visit with two conversions appears once."""
        rows = run_async(client.query_log_visits(1, segment="visitConvertedGoalId>=1"))
        assert _ids(rows) == [1]

    def test_limit(self, client):
        rows = run_async(client.query_log_visits(1, count_visitors_to_fetch=2))
        assert _ids(rows) == [6, 3]

    def test_limit_ascending(self, client):
        rows = run_async(client.query_log_visits(1, count_visitors_to_fetch=2, filter_sort_order="asc"))
        assert _ids(rows) == [5, 7]

    def test_visitor(self, client):
        rows = run_async(client.query_log_visits(1, visitor_id=A))
        assert _ids(rows) == [3, 1]
        assert all(row["idvisitor"] == bytes.fromhex(A) for row in rows)

    def test_min_timestamp(self, client):
        min_timestamp = int(datetime(2024, 1, 17, 15, 22, tzinfo=timezone.utc).timestamp())
        rows = run_async(client.query_log_visits(1, count_visitors_to_fetch=10, min_timestamp=min_timestamp))
        assert _ids(rows) == [6, 3]

    def test_week(self, client):
        rows = run_async(client.query_log_visits(1, period="week", date="2024-01-15"))
        assert _ids(rows) == [6, 3, 1, 2, 7, 5]

    def test_never_reads_other_sites(self, client):
        rows = run_async(client.query_log_visits(1, period="range", date="2024-01-01,2024-01-31"))
        assert 4 not in _ids(rows)
        assert {row["idsite"] for row in rows} == {1}


class TestAdjacentVisitor:
    """Next/previous visitor over real tables."""

    def test_next_is_earlier_visitor(self, client):
        result = run_async(client.query_adjacent_visitor_id(1, A, "2024-01-17 15:25:00", direction="next"))
        assert result == B

    def test_prev_is_later_visitor(self, client):
        result = run_async(client.query_adjacent_visitor_id(1, A, "2024-01-17 15:25:00", direction="prev"))
        assert result == E

    def test_outside_one_day_ignored(self, client):
        """F acted one second more than a day before B."""
        result = run_async(client.query_adjacent_visitor_id(1, B, "2024-01-17 14:00:00", direction="next"))
        assert result == ""

    def test_never_returns_same_visitor(self, client):
        result = run_async(client.query_adjacent_visitor_id(1, E, "2024-01-17 15:29:00", direction="prev"))
        assert result == ""


class TestSiteResolver:
    def test_timezone_from_site_table(self, executor):
        resolver = DatabaseSiteResolver(executor)
        assert run_async(resolver.get_timezone(2)) == "Europe/Paris"

    def test_unknown_site(self, executor):
        resolver = DatabaseSiteResolver(executor)
        with pytest.raises(UnknownSiteError):
            run_async(resolver.get_timezone(99))
