"""Tests for live query construction.

These tests verify SQL is generated correctly without
actually executing against a database.
"""

from datetime import datetime, timezone

import pytest

from live_analytics.core.queries import LiveQueryBuilder, normalize_sort_order
from live_analytics.core.sites import SiteScope
from live_analytics.exceptions import InvalidPeriodError, LiveQueryError

NOW = datetime(2024, 1, 17, 15, 30, tzinfo=timezone.utc)
VISITOR = "0123456789abcdef"


def _visits_query(builder=None, **overrides):
    params = dict(
        id_site=1,
        period=None,
        date=None,
        segment="",
        count_visitors_to_fetch=None,
        visitor_id=None,
        min_timestamp=None,
        filter_sort_order=None,
        timezone_name="UTC",
        now=NOW,
    )
    params.update(overrides)
    return (builder or LiveQueryBuilder()).build_visits_query(**params)


class TestVisitsQuery:
    """Visit log WHERE chain and bind list."""

    def test_default_window_is_last_24_hours(self):
        """No period, date, visitor or count means yesterdaySameTime."""
        query = _visits_query()
        assert "log_visit.idsite IN (?)" in query.sql
        assert query.bind == [1, "2024-01-16 15:30:00"]

    def test_visitor_filter(self):
        """A visitor ID adds an exact match and disables the default window."""
        query = _visits_query(visitor_id=VISITOR)
        assert "log_visit.idvisitor = ?" in query.sql
        assert query.bind == [1, bytes.fromhex(VISITOR)]

    def test_malformed_visitor_ignored(self):
        """A visitor ID that isn't hex is dropped, not an error."""
        query = _visits_query(visitor_id="nothex")
        assert "idvisitor" not in query.sql
        assert query.bind == [1]

    def test_min_timestamp(self):
        query = _visits_query(count_visitors_to_fetch=10, min_timestamp=1704067200)
        assert "log_visit.visit_last_action_time > ?" in query.sql
        assert query.bind == [1, "2024-01-01 00:00:00"]

    @pytest.mark.parametrize("value", [99999999999999, 10**21])
    def test_min_timestamp_out_of_range(self, value):
        """A timestamp past the calendar is rejected, naming the value."""
        with pytest.raises(InvalidPeriodError, match=str(value)):
            _visits_query(count_visitors_to_fetch=10, min_timestamp=value)

    def test_week_bounds(self):
        query = _visits_query(period="week", date="2024-01-10")
        assert query.bind == [1, "2024-01-08 00:00:00", "2024-01-15 00:00:00"]
        assert "log_visit.visit_last_action_time <= ?" in query.sql

    def test_last_has_no_end_bound(self):
        query = _visits_query(period="day", date="last30")
        assert "<= ?" not in query.sql
        assert len(query.bind) == 2

    def test_period_without_date_uses_default_window(self):
        query = _visits_query(period="day")
        assert query.bind == [1, "2024-01-16 15:30:00"]

    def test_count_without_period_has_no_time_filter(self):
        query = _visits_query(count_visitors_to_fetch=10)
        assert query.bind == [1]
        assert "LIMIT 10" in query.sql

    def test_zero_count_is_unlimited(self):
        query = _visits_query(period="day", date="yesterday", count_visitors_to_fetch=0)
        assert "LIMIT" not in query.sql

    def test_groups_by_visit(self):
        """Outer query collapses duplicate rows and re-sorts."""
        query = _visits_query()
        assert "GROUP BY sub.idvisit" in query.sql
        assert query.sql.endswith("ORDER BY sub.visit_last_action_time DESC")
        assert "ORDER BY log_visit.idsite, log_visit.visit_last_action_time DESC" in query.sql

    def test_ascending(self):
        query = _visits_query(filter_sort_order="AsC")
        assert query.sql.endswith("ORDER BY sub.visit_last_action_time ASC")

    def test_invalid_date_raises(self):
        with pytest.raises(InvalidPeriodError, match="someday"):
            _visits_query(period="day", date="someday")

    def test_placeholders_match_binds_with_segment(self):
        query = _visits_query(
            period="week", date="2024-01-10", visitor_id=VISITOR,
            min_timestamp=1704067200, segment="countryCode==fr,visitConvertedGoalId==2",
        )
        assert query.sql.count("?") == len(query.bind)
        assert query.bind[-2:] == ["fr", 2]


class TestSortOrder:
    @pytest.mark.parametrize("value,expected", [
        ("asc", "ASC"), ("ASC", "ASC"), ("desc", "DESC"),
        ("bogus", "DESC"), (None, "DESC"), ("", "DESC"),
    ])
    def test_normalize(self, value, expected):
        assert normalize_sort_order(value) == expected


class TestSiteScope:
    """Site predicate and expansion hooks."""

    def test_hook_expands_sites(self):
        scope = SiteScope()
        scope.register(lambda id_sites: id_sites + [7, 1])
        query = _visits_query(LiveQueryBuilder(site_scope=scope))
        assert "log_visit.idsite IN (?, ?)" in query.sql
        assert query.bind[:2] == [1, 7]

    def test_hooks_chain_in_order(self):
        scope = SiteScope()
        scope.register(lambda id_sites: id_sites + [2])
        scope.register(lambda id_sites: [i * 10 for i in id_sites])
        assert scope.expand(1) == [10, 20]

    def test_unregister(self):
        scope = SiteScope()
        hook = scope.register(lambda id_sites: id_sites + [2])
        scope.unregister(hook)
        assert scope.expand(1) == [1]

    def test_empty_scope_rejected(self):
        """The site predicate can never be dropped."""
        scope = SiteScope()
        scope.register(lambda id_sites: [])
        with pytest.raises(LiveQueryError):
            scope.where_clause(1)


class TestCounterQueries:
    """Counters over the three log tables."""

    def test_tables_and_cutoff(self):
        queries = LiveQueryBuilder().build_counter_queries(1, 30, "", NOW)
        assert set(queries) == {"visits", "actions", "conversions"}
        assert "COUNT(DISTINCT log_visit.idvisitor) AS visitors" in queries["visits"].sql
        assert "log_link_visit_action.idsite IN (?)" in queries["actions"].sql
        assert "log_link_visit_action.server_time >= ?" in queries["actions"].sql
        assert "log_conversion.server_time >= ?" in queries["conversions"].sql
        for query in queries.values():
            assert query.bind == [1, "2024-01-17 15:00:00"]

    def test_segment_applies_to_every_table(self):
        queries = LiveQueryBuilder().build_counter_queries(1, 30, "countryCode==fr", NOW)
        for query in queries.values():
            assert query.bind == [1, "2024-01-17 15:00:00", "fr"]
            assert query.sql.count("?") == 3
        assert "log_visit.idvisit = log_conversion.idvisit" in queries["conversions"].sql


class TestAdjacentVisitorQuery:
    """Next/previous visitor lookup."""

    def test_next(self):
        query = LiveQueryBuilder().build_adjacent_visitor_query(
            1, VISITOR, "2024-01-17 12:00:00", "", "next"
        )
        assert query.bind == [
            1, bytes.fromhex(VISITOR),
            "2024-01-16 12:00:00", "2024-01-18 12:00:00",
            "2024-01-17 12:00:00",
        ]
        assert "log_visit.idvisitor <> ?" in query.sql
        assert "ORDER BY MAX(log_visit.visit_last_action_time) DESC" in query.sql
        assert "WHERE sub.visit_last_action_time <= ?" in query.sql
        assert query.sql.endswith("LIMIT 1")

    def test_previous(self):
        query = LiveQueryBuilder().build_adjacent_visitor_query(
            1, VISITOR, datetime(2024, 1, 17, 12, 0), "", "prev"
        )
        assert "ORDER BY MAX(log_visit.visit_last_action_time) ASC" in query.sql
        assert "WHERE sub.visit_last_action_time >= ?" in query.sql
        assert query.bind[-1] == "2024-01-17 12:00:00"

    def test_segment_binds_before_reference(self):
        query = LiveQueryBuilder().build_adjacent_visitor_query(
            1, VISITOR, "2024-01-17 12:00:00", "countryCode==fr", "next"
        )
        assert query.bind[-2:] == ["fr", "2024-01-17 12:00:00"]
        assert query.sql.count("?") == len(query.bind)

    def test_invalid_direction(self):
        with pytest.raises(ValueError):
            LiveQueryBuilder().build_adjacent_visitor_query(1, VISITOR, "2024-01-17 12:00:00", "", "sideways")

    def test_invalid_time(self):
        with pytest.raises(InvalidPeriodError):
            LiveQueryBuilder().build_adjacent_visitor_query(1, VISITOR, "yesterday-ish", "", "next")
