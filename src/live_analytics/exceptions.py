"""
Errors raised by live queries.

Every failure derives from LiveQueryError so callers can catch the whole
family at a request boundary. Input problems also derive from ValueError.
"""


class LiveQueryError(Exception):
    """Base class for live query failures."""
    pass


class InvalidPeriodError(LiveQueryError, ValueError):
    """Raised when a period kind or date expression cannot be resolved."""
    pass


class InvalidTimezoneError(LiveQueryError, ValueError):
    """Raised when a site timezone name is not recognised."""
    pass


class SegmentError(LiveQueryError, ValueError):
    """Raised when a segment definition cannot be compiled."""
    pass


class UnknownSiteError(LiveQueryError, LookupError):
    """Raised when a site has no record to resolve its timezone from."""
    pass


class QueryExecutionError(LiveQueryError):
    """Raised when the database rejects or fails a query.

    Attributes:
        sql: The statement that failed
    """

    def __init__(self, message: str, sql: str | None = None):
        super().__init__(message)
        self.sql = sql
