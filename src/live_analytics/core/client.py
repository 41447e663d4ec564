"""
Client for live visit queries.

Resolves what the builder needs (site timezone, current time), runs the
compiled statements through an executor and shapes the results.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from ..models import CompiledQuery, LiveCounters, VisitorDirection
from ..visitor_id import encode_visitor_id
from .database import QueryExecutor
from .queries import LiveQueryBuilder, to_int
from .sites import SiteResolver, StaticSiteResolver

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LiveClient:
    """Client for querying the live visit log."""

    def __init__(
        self,
        executor: QueryExecutor,
        site_resolver: SiteResolver | None = None,
        builder: LiveQueryBuilder | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.executor = executor
        self.site_resolver = site_resolver or StaticSiteResolver()
        self.builder = builder or LiveQueryBuilder()
        self.clock = clock

    # =========================================================================
    # VISIT LOG
    # =========================================================================

    async def build_log_visits_query(
        self,
        id_site: int,
        period: str | None = None,
        date: str | None = None,
        segment: str | None = "",
        count_visitors_to_fetch: int | None = None,
        visitor_id: str | None = None,
        min_timestamp: int | None = None,
        filter_sort_order: str | None = None,
    ) -> CompiledQuery:
        """Build the visit log query without running it."""
        effective_period, effective_date = self.builder.effective_period(
            period, date, visitor_id, count_visitors_to_fetch
        )
        timezone_name = None
        if effective_period and effective_date:
            timezone_name = await self.site_resolver.get_timezone(id_site)

        return self.builder.build_visits_query(
            id_site=id_site,
            period=period,
            date=date,
            segment=segment,
            count_visitors_to_fetch=count_visitors_to_fetch,
            visitor_id=visitor_id,
            min_timestamp=min_timestamp,
            filter_sort_order=filter_sort_order,
            timezone_name=timezone_name,
            now=self.clock(),
        )

    async def query_log_visits(
        self,
        id_site: int,
        period: str | None = None,
        date: str | None = None,
        segment: str | None = "",
        count_visitors_to_fetch: int | None = None,
        visitor_id: str | None = None,
        min_timestamp: int | None = None,
        filter_sort_order: str | None = None,
    ) -> list[dict[str, Any]]:
        """Get raw visit rows, newest first unless filter_sort_order is "asc".

        Args:
            id_site: Site to read visits for
            period: Period kind (day, week, month, year, range)
            date: Date expression for the period
            segment: Segment definition to filter visits by
            count_visitors_to_fetch: Maximum number of visits (0/None for no limit)
            visitor_id: Hex visitor ID to restrict the log to (ignored if malformed)
            min_timestamp: Only visits whose last action is after this unix time
            filter_sort_order: "asc" for oldest first

        Raises:
            InvalidPeriodError: If period or date cannot be resolved
            SegmentError: If the segment cannot be compiled
            QueryExecutionError: If the database query fails
        """
        query = await self.build_log_visits_query(
            id_site, period, date, segment, count_visitors_to_fetch,
            visitor_id, min_timestamp, filter_sort_order,
        )
        return await self.executor.fetch_all(query.sql, query.bind)

    # =========================================================================
    # COUNTERS
    # =========================================================================

    async def query_counters(
        self,
        id_site: int,
        last_minutes: int | None,
        segment: str | None = "",
    ) -> list[LiveCounters]:
        """Get visit, action, visitor and conversion counts for the last N minutes.

        Returns a single-element list. No query runs when last_minutes is
        empty or zero; the counters are simply zero.
        """
        minutes = to_int(last_minutes)
        if minutes <= 0:
            return [LiveCounters()]

        queries = self.builder.build_counter_queries(id_site, minutes, segment, self.clock())

        # The three aggregates are independent
        visits, actions, conversions = await asyncio.gather(
            self.executor.fetch_all(queries["visits"].sql, queries["visits"].bind),
            self.executor.fetch_one(queries["actions"].sql, queries["actions"].bind),
            self.executor.fetch_one(queries["conversions"].sql, queries["conversions"].bind),
        )

        visit_data = visits[0] if visits else {}
        return [
            LiveCounters(
                visits=visit_data.get("visits") or 0,
                visitors=visit_data.get("visitors") or 0,
                actions=actions or 0,
                visits_converted=conversions or 0,
            )
        ]

    # =========================================================================
    # ADJACENT VISITORS
    # =========================================================================

    async def query_adjacent_visitor_id(
        self,
        id_site: int,
        visitor_id: str,
        visit_last_action_time: str | datetime,
        segment: str | None = "",
        direction: VisitorDirection | str = VisitorDirection.NEXT,
    ) -> str:
        """Get the hex ID of the visitor adjacent to visitor_id.

        "next" looks at visitors whose latest action is at or before the
        reference time (the next row in a newest-first log), "prev" at or
        after it. Only visitors active within a day of the reference time
        are considered.

        Returns:
            Hex visitor ID, or "" if there is none
        """
        query = self.builder.build_adjacent_visitor_query(
            id_site, visitor_id, visit_last_action_time, segment, direction
        )
        value = await self.executor.fetch_one(query.sql, query.bind)
        if isinstance(value, str):
            return value.lower()
        return encode_visitor_id(value)
