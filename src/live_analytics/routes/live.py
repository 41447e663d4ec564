"""
JSON routes for the live visit log.

Thin adapter between HTTP query parameters and LiveClient. Authentication
is left to the application mounting the router.
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from ..core.client import LiveClient
from ..exceptions import LiveQueryError, QueryExecutionError, UnknownSiteError

logger = logging.getLogger(__name__)


def _http_error(error: Exception) -> HTTPException:
    """Map a live query failure to an HTTP error."""
    if isinstance(error, UnknownSiteError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, QueryExecutionError):
        logger.error(f"Live query failed: {error}")
        return HTTPException(status_code=502, detail="Database query failed")
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))
    logger.error(f"Live query failed: {error}")
    return HTTPException(status_code=500, detail=str(error))


def _jsonable_row(row: dict[str, Any]) -> dict[str, Any]:
    """Hex-encode binary columns (idvisitor, config_id, ...)."""
    return {
        k: v.hex() if isinstance(v, (bytes, bytearray)) else v
        for k, v in row.items()
    }


def create_live_router(client: LiveClient) -> APIRouter:
    """Create the live API router.

    Args:
        client: LiveClient used to answer requests

    Returns:
        APIRouter with /counters, /visits and /visitors/{visitor_id}/adjacent
    """
    router = APIRouter()

    @router.get("/counters")
    async def counters(
        id_site: int = Query(..., alias="idSite"),
        last_minutes: int = Query(0, alias="lastMinutes"),
        segment: str = "",
    ):
        """Visit, action, visitor and conversion counts for the last N minutes."""
        try:
            data = await client.query_counters(id_site, last_minutes, segment)
        except LiveQueryError as e:
            raise _http_error(e) from e
        return [c.model_dump(by_alias=True) for c in data]

    @router.get("/visits")
    async def visits(
        id_site: int = Query(..., alias="idSite"),
        period: str | None = None,
        date: str | None = None,
        segment: str = "",
        filter_limit: int | None = None,
        visitor_id: str | None = Query(None, alias="visitorId"),
        min_timestamp: int | None = Query(None, alias="minTimestamp"),
        filter_sort_order: str | None = None,
    ):
        """Raw visit rows for the requested window."""
        try:
            rows = await client.query_log_visits(
                id_site,
                period=period,
                date=date,
                segment=segment,
                count_visitors_to_fetch=filter_limit,
                visitor_id=visitor_id,
                min_timestamp=min_timestamp,
                filter_sort_order=filter_sort_order,
            )
        except LiveQueryError as e:
            raise _http_error(e) from e
        return [_jsonable_row(row) for row in rows]

    @router.get("/visitors/{visitor_id}/adjacent")
    async def adjacent_visitor(
        visitor_id: str,
        id_site: int = Query(..., alias="idSite"),
        visit_last_action_time: str = Query(..., alias="visitLastActionTime"),
        segment: str = "",
        direction: str = "next",
    ):
        """Hex ID of the next or previous visitor by last action time."""
        try:
            adjacent = await client.query_adjacent_visitor_id(
                id_site, visitor_id, visit_last_action_time, segment, direction
            )
        except (LiveQueryError, ValueError) as e:
            raise _http_error(e) from e
        return {"visitorId": adjacent}

    return router
