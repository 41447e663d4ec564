"""
Segment compilation for live queries.

A segment is a caller-defined boolean filter over visit attributes:

    countryCode==fr;visitCount>=2,referrerType==search

Conditions separated by "," are OR'd and groups separated by ";" are AND'd,
with OR binding tighter. Values are URL-encoded, so literal separators are
written as %2C and %3B.

The compiled segment is AND'd after the query's own WHERE clause, so the
site and time predicates keep leading the statement and every value travels
as a bind parameter. Conditions on a table other than the one being queried
become correlated EXISTS subqueries on idvisit and never multiply rows.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Protocol
from urllib.parse import unquote

from .exceptions import SegmentError
from .models import CompiledQuery
from .visitor_id import decode_visitor_id

logger = logging.getLogger(__name__)

VISIT_TABLE = "log_visit"
ACTION_TABLE = "log_link_visit_action"
CONVERSION_TABLE = "log_conversion"

LIKE_ESCAPE = "!"

_CONDITION_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)(==|!=|<=|>=|=@|!@|=\^|=\$|<|>)(.*)$", re.DOTALL)


@dataclass(frozen=True)
class Dimension:
    """
    A segmentable attribute.

    Attributes:
        name: Name used in segment definitions (e.g., "countryCode")
        table: Log table holding the column
        column: Column name
        value_type: How values are bound: text, int, float or visitor_id
    """
    name: str
    table: str
    column: str
    value_type: str = "text"


DIMENSIONS: dict[str, Dimension] = {
    d.name: d
    for d in (
        # Visit
        Dimension("visitId", VISIT_TABLE, "idvisit", "int"),
        Dimension("visitorId", VISIT_TABLE, "idvisitor", "visitor_id"),
        Dimension("visitCount", VISIT_TABLE, "visitor_count_visits", "int"),
        Dimension("visitDuration", VISIT_TABLE, "visit_total_time", "int"),
        Dimension("actions", VISIT_TABLE, "visit_total_actions", "int"),
        Dimension("visitConverted", VISIT_TABLE, "visit_goal_converted", "int"),
        Dimension("visitorType", VISIT_TABLE, "visitor_returning", "int"),
        # Referrer
        Dimension("referrerType", VISIT_TABLE, "referer_type"),
        Dimension("referrerName", VISIT_TABLE, "referer_name"),
        Dimension("referrerUrl", VISIT_TABLE, "referer_url"),
        # Location
        Dimension("countryCode", VISIT_TABLE, "location_country"),
        Dimension("regionCode", VISIT_TABLE, "location_region"),
        Dimension("city", VISIT_TABLE, "location_city"),
        # Technology
        Dimension("browserCode", VISIT_TABLE, "config_browser_name"),
        Dimension("operatingSystemCode", VISIT_TABLE, "config_os"),
        Dimension("deviceType", VISIT_TABLE, "config_device_type"),
        # Actions
        Dimension("pageUrl", ACTION_TABLE, "url"),
        Dimension("pageTitle", ACTION_TABLE, "page_title"),
        # Goals
        Dimension("visitConvertedGoalId", CONVERSION_TABLE, "idgoal", "int"),
        Dimension("revenue", CONVERSION_TABLE, "revenue", "float"),
    )
}


def _escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )


@dataclass(frozen=True)
class Condition:
    """A single "dimension OP value" comparison."""
    dimension: Dimension
    operator: str
    value: str

    @property
    def column(self) -> str:
        return f"{self.dimension.table}.{self.dimension.column}"

    def bind_value(self):
        """Convert the raw value to the dimension's bind type."""
        value_type = self.dimension.value_type
        try:
            if value_type == "int":
                return int(self.value)
            if value_type == "float":
                return float(self.value)
        except ValueError:
            raise SegmentError(
                f"Segment value '{self.value}' is not a valid {value_type} for '{self.dimension.name}'"
            ) from None
        if value_type == "visitor_id":
            raw = decode_visitor_id(self.value)
            if raw is None:
                raise SegmentError(f"Segment value '{self.value}' is not a valid visitor id")
            return raw
        return self.value

    def _compare(self) -> tuple[str, list]:
        column = self.column
        op = self.operator

        if op in ("=@", "!@", "=^", "=$"):
            escaped = _escape_like(self.value)
            pattern = {
                "=@": f"%{escaped}%",
                "!@": f"%{escaped}%",
                "=^": f"{escaped}%",
                "=$": f"%{escaped}",
            }[op]
            if op == "!@":
                return f"({column} IS NULL OR {column} NOT LIKE ? ESCAPE '{LIKE_ESCAPE}')", [pattern]
            return f"{column} LIKE ? ESCAPE '{LIKE_ESCAPE}'", [pattern]

        if self.value == "" and op in ("==", "!="):
            if op == "==":
                return f"({column} IS NULL OR {column} = '')", []
            return f"({column} IS NOT NULL AND {column} <> '')", []

        if op == "==":
            return f"{column} = ?", [self.bind_value()]
        if op == "!=":
            return f"({column} IS NULL OR {column} <> ?)", [self.bind_value()]
        return f"{column} {op} ?", [self.bind_value()]

    def to_sql(self, from_table: str) -> tuple[str, list]:
        """Compile to a predicate usable in a query over from_table."""
        sql, bind = self._compare()
        table = self.dimension.table
        if table != from_table:
            sql = (
                f"EXISTS (SELECT 1 FROM {table} "
                f"WHERE {table}.idvisit = {from_table}.idvisit AND {sql})"
            )
        return sql, bind


def parse_condition(raw: str, dimensions: dict[str, Dimension] | None = None) -> Condition:
    """Parse one "dimension OP value" condition."""
    dimensions = DIMENSIONS if dimensions is None else dimensions
    match = _CONDITION_RE.match(raw.strip())
    if not match:
        raise SegmentError(f"Invalid segment condition '{raw}'")

    name, operator, value = match.groups()
    dimension = dimensions.get(name)
    if dimension is None:
        raise SegmentError(f"Unknown segment dimension '{name}'")

    return Condition(dimension=dimension, operator=operator, value=unquote(value))


def parse_segment(definition: str | None, dimensions: dict[str, Dimension] | None = None) -> list[list[Condition]]:
    """Parse a segment definition into AND'd groups of OR'd conditions."""
    if not definition or not definition.strip():
        return []
    return [
        [parse_condition(raw, dimensions) for raw in group.split(",")]
        for group in definition.split(";")
    ]


class SegmentQuery(Protocol):
    """What the live query builder needs from a compiled segment."""

    def get_select_query(
        self,
        select: str,
        from_table: str,
        where: str = "",
        bind: list | None = None,
        order_by: str = "",
        group_by: str = "",
        limit: int = 0,
    ) -> CompiledQuery:
        ...


SegmentFactory = Callable[[str, int], SegmentQuery]


class Segment:
    """A segment definition scoped to one site."""

    def __init__(self, definition: str | None, id_site: int, dimensions: dict[str, Dimension] | None = None):
        self.definition = definition or ""
        self.id_site = id_site
        self.groups = parse_segment(self.definition, dimensions)

    def is_empty(self) -> bool:
        return not self.groups

    def get_predicate(self, from_table: str) -> tuple[str, list]:
        """Compile the segment to (sql, bind) for a query over from_table."""
        and_parts = []
        bind = []
        for group in self.groups:
            or_parts = []
            for condition in group:
                sql, params = condition.to_sql(from_table)
                or_parts.append(sql)
                bind.extend(params)
            and_parts.append("(" + " OR ".join(or_parts) + ")")
        return " AND ".join(and_parts), bind

    def get_select_query(
        self,
        select: str,
        from_table: str,
        where: str = "",
        bind: list | None = None,
        order_by: str = "",
        group_by: str = "",
        limit: int = 0,
    ) -> CompiledQuery:
        """Build a SELECT with this segment AND'd onto the WHERE clause.

        Binds for the base WHERE come first, followed by the segment's own,
        matching the order their placeholders appear in.
        """
        where_parts = []
        all_bind = list(bind or [])

        if where:
            where_parts.append(f"({where})")

        if not self.is_empty():
            segment_sql, segment_bind = self.get_predicate(from_table)
            where_parts.append(f"({segment_sql})")
            all_bind.extend(segment_bind)

        sql = f"SELECT {select}\nFROM {from_table}"
        if where_parts:
            sql += "\nWHERE " + "\n\tAND ".join(where_parts)
        if group_by:
            sql += f"\nGROUP BY {group_by}"
        if order_by:
            sql += f"\nORDER BY {order_by}"
        if limit:
            sql += f"\nLIMIT {int(limit)}"

        return CompiledQuery(sql=sql, bind=all_bind)
