"""
SQL construction for live visit queries.

The builder is pure: the current time and the site timezone are passed in,
and every statement comes back as a CompiledQuery without touching the
database. Every WHERE clause starts with the site predicate; time bounds
and caller filters are AND'd after it, and the segment last.
"""
import logging
from datetime import datetime, timedelta, timezone

from ..exceptions import InvalidPeriodError
from ..models import CompiledQuery, VisitorDirection
from ..periods import DATETIME_FORMAT, resolve_time_range
from ..segments import (
    ACTION_TABLE,
    CONVERSION_TABLE,
    VISIT_TABLE,
    Segment,
    SegmentFactory,
)
from ..visitor_id import decode_visitor_id
from .sites import SiteScope

logger = logging.getLogger(__name__)

# Adjacent visitors are searched within this distance of the reference time
ADJACENT_WINDOW = timedelta(days=1)


def to_int(value) -> int:
    """Coerce an optional numeric parameter, treating None and "" as 0."""
    if value is None or value == "":
        return 0
    return int(value)


def _utc_string(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.strftime(DATETIME_FORMAT)


def normalize_sort_order(filter_sort_order: str | None) -> str:
    """Return "ASC" only when explicitly asked for, "DESC" otherwise."""
    if str(filter_sort_order or "").lower() == "asc":
        return "ASC"
    return "DESC"


def parse_action_time(value: str | datetime) -> datetime:
    """Parse a stored "YYYY-MM-DD HH:MM:SS" timestamp (or pass a datetime through)."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    try:
        return datetime.strptime(value, DATETIME_FORMAT)
    except (TypeError, ValueError):
        raise InvalidPeriodError(f"Invalid date '{value}'") from None


class LiveQueryBuilder:
    """Builds the SQL for the live visit log, counters and visitor navigation."""

    def __init__(
        self,
        segment_factory: SegmentFactory = Segment,
        site_scope: SiteScope | None = None,
    ):
        self.segment_factory = segment_factory
        self.site_scope = site_scope or SiteScope()

    # =========================================================================
    # VISIT LOG
    # =========================================================================

    @staticmethod
    def effective_period(
        period: str | None,
        date: str | None,
        visitor_id: str | None = None,
        count_visitors_to_fetch: int | None = None,
    ) -> tuple[str | None, str | None]:
        """Apply the default live window.

        With no period or date, no visitor and no fetch count, the log
        covers the last 24 hours ("day" / "yesterdaySameTime").
        """
        if (
            (not period or not date)
            and not visitor_id
            and not to_int(count_visitors_to_fetch)
        ):
            return "day", "yesterdaySameTime"
        return period, date

    def build_visits_query(
        self,
        id_site: int,
        period: str | None,
        date: str | None,
        segment: str | None,
        count_visitors_to_fetch: int | None,
        visitor_id: str | None,
        min_timestamp: int | None,
        filter_sort_order: str | None,
        timezone_name: str | None,
        now: datetime,
    ) -> CompiledQuery:
        """Build the visit log query.

        The inner query selects visits in index order (site, last action
        time) with the segment applied and the limit enforced. The outer
        query groups by idvisit so a visit matched through several rows
        (e.g. two goal conversions) appears once, then re-sorts since
        grouping may disturb the order.
        """
        site_clause, site_bind = self.site_scope.where_clause(id_site, VISIT_TABLE)
        where = [site_clause]
        where_bind = list(site_bind)

        raw_visitor_id = decode_visitor_id(visitor_id)
        if raw_visitor_id is not None:
            where.append("log_visit.idvisitor = ?")
            where_bind.append(raw_visitor_id)

        min_timestamp = to_int(min_timestamp)
        if min_timestamp:
            try:
                min_time = datetime.fromtimestamp(min_timestamp, tz=timezone.utc)
            except (ValueError, OverflowError, OSError):
                raise InvalidPeriodError(f"Invalid minimum timestamp '{min_timestamp}'") from None
            where.append("log_visit.visit_last_action_time > ?")
            where_bind.append(_utc_string(min_time))

        period, date = self.effective_period(period, date, visitor_id, count_visitors_to_fetch)
        if period and date:
            time_range = resolve_time_range(period, date, timezone_name, now)
            where.append("log_visit.visit_last_action_time >= ?")
            where_bind.append(time_range.start_utc)
            if time_range.end_utc is not None:
                where.append("log_visit.visit_last_action_time <= ?")
                where_bind.append(time_range.end_utc)

        sort_order = normalize_sort_order(filter_sort_order)
        count = to_int(count_visitors_to_fetch)
        limit = count if count >= 1 else 0

        segment_query = self.segment_factory(segment or "", id_site)
        sub_query = segment_query.get_select_query(
            "log_visit.*",
            VISIT_TABLE,
            "\n\tAND ".join(where),
            where_bind,
            order_by=f"log_visit.idsite, log_visit.visit_last_action_time {sort_order}",
            limit=limit,
        )

        sql = (
            "SELECT sub.* FROM (\n"
            f"{sub_query.sql}\n"
            ") AS sub\n"
            "GROUP BY sub.idvisit\n"
            f"ORDER BY sub.visit_last_action_time {sort_order}"
        )
        logger.debug(f"Visit log query for site {id_site} with {len(sub_query.bind)} binds")
        return CompiledQuery(sql=sql, bind=sub_query.bind)

    # =========================================================================
    # COUNTERS
    # =========================================================================

    def build_counter_queries(
        self,
        id_site: int,
        last_minutes: int,
        segment: str | None,
        now: datetime,
    ) -> dict[str, CompiledQuery]:
        """Build the visits, actions and conversions aggregates.

        Returns a dict keyed "visits", "actions" and "conversions". Each
        query is independent and applies the same segment.
        """
        cutoff = _utc_string(now - timedelta(minutes=last_minutes))
        segment_query = self.segment_factory(segment or "", id_site)

        queries = {}
        for name, table, time_column, select in (
            ("visits", VISIT_TABLE, "visit_last_action_time",
             "COUNT(*) AS visits, COUNT(DISTINCT log_visit.idvisitor) AS visitors"),
            ("actions", ACTION_TABLE, "server_time", "COUNT(*) AS actions"),
            ("conversions", CONVERSION_TABLE, "server_time", "COUNT(*) AS conversions"),
        ):
            site_clause, site_bind = self.site_scope.where_clause(id_site, table)
            queries[name] = segment_query.get_select_query(
                select,
                table,
                f"{site_clause} AND {table}.{time_column} >= ?",
                list(site_bind) + [cutoff],
            )
        return queries

    # =========================================================================
    # ADJACENT VISITORS
    # =========================================================================

    def build_adjacent_visitor_query(
        self,
        id_site: int,
        visitor_id: str,
        visit_last_action_time: str | datetime,
        segment: str | None,
        direction: VisitorDirection | str,
    ) -> CompiledQuery:
        """Build the query for the visitor next to visitor_id by last action time.

        Each candidate visitor is reduced to their latest action within a
        day either side of the reference time. Only then can the result be
        compared to the reference, so the aggregate runs in a subquery and
        the boundary filter on its output.
        """
        direction = VisitorDirection(direction)
        if direction is VisitorDirection.NEXT:
            condition = "sub.visit_last_action_time <= ?"
            order_dir = "DESC"
        else:
            condition = "sub.visit_last_action_time >= ?"
            order_dir = "ASC"

        reference = parse_action_time(visit_last_action_time)
        reference_string = reference.strftime(DATETIME_FORMAT)

        where = (
            "log_visit.idsite = ? AND log_visit.idvisitor <> ?"
            " AND log_visit.visit_last_action_time >= ?"
            " AND log_visit.visit_last_action_time <= ?"
        )
        where_bind = [
            int(id_site),
            decode_visitor_id(visitor_id) or b"",
            (reference - ADJACENT_WINDOW).strftime(DATETIME_FORMAT),
            (reference + ADJACENT_WINDOW).strftime(DATETIME_FORMAT),
        ]

        segment_query = self.segment_factory(segment or "", id_site)
        inner = segment_query.get_select_query(
            "log_visit.idvisitor, MAX(log_visit.visit_last_action_time) AS visit_last_action_time",
            VISIT_TABLE,
            where,
            where_bind,
            order_by=f"MAX(log_visit.visit_last_action_time) {order_dir}",
            group_by="log_visit.idvisitor",
        )

        sql = (
            "SELECT sub.idvisitor, sub.visit_last_action_time FROM (\n"
            f"{inner.sql}\n"
            ") AS sub\n"
            f"WHERE {condition}\n"
            f"ORDER BY sub.visit_last_action_time {order_dir}\n"
            "LIMIT 1"
        )
        return CompiledQuery(sql=sql, bind=inner.bind + [reference_string])
