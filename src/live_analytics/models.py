"""
Pydantic models for live query results.
"""
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class VisitorDirection(str, Enum):
    """Which neighbour to fetch in an adjacent visitor lookup."""

    NEXT = "next"
    PREVIOUS = "prev"


class CompiledQuery(BaseModel):
    """A SQL statement with its positional bind parameters.

    The bind list lines up one-to-one with the ``?`` placeholders in sql.
    """
    sql: str
    bind: list[Any] = []


class LiveCounters(BaseModel):
    """Visit, action, visitor and conversion counts over a trailing window."""
    model_config = ConfigDict(populate_by_name=True)

    visits: int = 0
    actions: int = 0
    visitors: int = 0
    visits_converted: int = Field(0, alias="visitsConverted")
