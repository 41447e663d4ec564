"""
Configuration for live analytics queries.
"""
import logging
from dataclasses import dataclass, field

from .periods import get_timezone

logger = logging.getLogger(__name__)


@dataclass
class LiveConfig:
    """Configuration for a live query instance."""

    # Required
    d1_database_id: str
    cf_account_id: str
    cf_api_token: str

    # Timezones
    default_timezone: str = "UTC"  # Used for sites without a known timezone
    site_timezones: dict[int, str] = field(default_factory=dict)
    lookup_site_timezones: bool = False  # Read timezones from the site table instead

    # Performance
    query_timeout_seconds: float = 30.0

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_timezones()
        if self.query_timeout_seconds <= 0:
            raise ValueError(
                f"query_timeout_seconds must be positive. Got {self.query_timeout_seconds}."
            )

    def _validate_timezones(self) -> None:
        """Check every configured timezone resolves.

        Raises:
            InvalidTimezoneError: If a timezone name is unknown
        """
        get_timezone(self.default_timezone)
        for id_site, name in self.site_timezones.items():
            get_timezone(name)
            logger.debug(f"Site {id_site}: timezone {name}")

