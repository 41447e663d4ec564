"""
Live visit queries for near-real-time analytics.

Usage:
    from live_analytics import LiveConfig, setup_live

    live = setup_live(LiveConfig(
        d1_database_id="your-d1-id",
        cf_account_id="your-account-id",
        cf_api_token="your-api-token",
        site_timezones={1: "Europe/Paris"},
    ))

    counters = await live.client.query_counters(1, last_minutes=30)
    visits = await live.client.query_log_visits(1, period="day", date="today")

    # Optional JSON routes
    app.include_router(live.router, prefix="/live")
"""

from .config import LiveConfig
from .core import (
    D1Executor,
    DatabaseSiteResolver,
    LiveClient,
    LiveQueryBuilder,
    QueryExecutor,
    SiteScope,
    SQLiteExecutor,
    StaticSiteResolver,
)
from .exceptions import (
    InvalidPeriodError,
    InvalidTimezoneError,
    LiveQueryError,
    QueryExecutionError,
    SegmentError,
    UnknownSiteError,
)
from .models import CompiledQuery, LiveCounters, VisitorDirection
from .routes import create_live_router
from .segments import Segment

__version__ = "0.1.0"
__all__ = [
    "setup_live", "Live", "LiveConfig",
    "LiveClient", "LiveQueryBuilder", "Segment", "SiteScope",
    "D1Executor", "SQLiteExecutor", "StaticSiteResolver", "DatabaseSiteResolver",
    "CompiledQuery", "LiveCounters", "VisitorDirection",
    "LiveQueryError", "InvalidPeriodError", "InvalidTimezoneError",
    "SegmentError", "UnknownSiteError", "QueryExecutionError",
]


class Live:
    """Wired-up live query components for one database."""

    def __init__(self, config: LiveConfig, executor: QueryExecutor | None = None):
        self.config = config
        self.executor = executor or D1Executor(
            d1_database_id=config.d1_database_id,
            cf_account_id=config.cf_account_id,
            cf_api_token=config.cf_api_token,
            timeout=config.query_timeout_seconds,
        )
        if config.lookup_site_timezones:
            self.site_resolver = DatabaseSiteResolver(self.executor, config.default_timezone)
        else:
            self.site_resolver = StaticSiteResolver(config.site_timezones, config.default_timezone)
        self.site_scope = SiteScope()
        self.client = LiveClient(
            executor=self.executor,
            site_resolver=self.site_resolver,
            builder=LiveQueryBuilder(site_scope=self.site_scope),
        )
        self.router = create_live_router(self.client)


def setup_live(config: LiveConfig, executor: QueryExecutor | None = None) -> Live:
    """
    Set up live queries.

    Args:
        config: Live configuration (D1 credentials, site timezones)
        executor: Optional executor to use instead of D1 (e.g., SQLiteExecutor)

    Returns:
        Live instance with client, site_scope and router
    """
    return Live(config, executor=executor)
