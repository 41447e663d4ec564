"""
Core live query module.

Contains the query builder, collaborators and client for the live visit log.
"""

from .client import LiveClient
from .database import D1Executor, QueryExecutor, SQLiteExecutor
from .queries import LiveQueryBuilder
from .sites import DatabaseSiteResolver, SiteResolver, SiteScope, StaticSiteResolver

__all__ = [
    "LiveClient", "LiveQueryBuilder",
    "QueryExecutor", "D1Executor", "SQLiteExecutor",
    "SiteResolver", "StaticSiteResolver", "DatabaseSiteResolver", "SiteScope",
]
