"""
Site lookups and site scoping for live queries.
"""
import logging
from typing import Callable, Protocol

from ..exceptions import LiveQueryError, UnknownSiteError

logger = logging.getLogger(__name__)

SiteIdHook = Callable[[list[int]], list[int]]


class SiteResolver(Protocol):
    """Resolves a site ID to the site's timezone name."""

    async def get_timezone(self, id_site: int) -> str:
        ...


class StaticSiteResolver:
    """Site timezones from configuration, with a fallback zone."""

    def __init__(self, timezones: dict[int, str] | None = None, default_timezone: str = "UTC"):
        self.timezones = dict(timezones or {})
        self.default_timezone = default_timezone

    async def get_timezone(self, id_site: int) -> str:
        return self.timezones.get(int(id_site), self.default_timezone)


class DatabaseSiteResolver:
    """Site timezones read from the site table."""

    def __init__(self, executor, default_timezone: str = "UTC"):
        self.executor = executor
        self.default_timezone = default_timezone

    async def get_timezone(self, id_site: int) -> str:
        rows = await self.executor.fetch_all(
            "SELECT timezone FROM site WHERE idsite = ?",
            [int(id_site)],
        )
        if not rows:
            raise UnknownSiteError(f"Site {id_site} not found")
        return rows[0].get("timezone") or self.default_timezone


class SiteScope:
    """Site IDs a live query may read.

    Hooks can widen the set before the WHERE clause is built, e.g. so a
    roll-up site also covers its child sites:

        scope = SiteScope()

        @scope.register
        def include_children(id_sites):
            return id_sites + children_of(id_sites)

    Hooks run in registration order, each receiving the previous result.
    """

    def __init__(self):
        self._hooks: list[SiteIdHook] = []

    def register(self, hook: SiteIdHook) -> SiteIdHook:
        self._hooks.append(hook)
        return hook

    def unregister(self, hook: SiteIdHook) -> None:
        self._hooks.remove(hook)

    def expand(self, id_site: int) -> list[int]:
        """Return the ordered, de-duplicated site IDs for id_site.

        Raises:
            LiveQueryError: If the hooks leave no site at all
        """
        id_sites = [int(id_site)]
        for hook in self._hooks:
            id_sites = [int(i) for i in hook(list(id_sites))]

        id_sites = list(dict.fromkeys(id_sites))
        if not id_sites:
            raise LiveQueryError(f"Site scope for site {id_site} is empty")
        if id_sites != [int(id_site)]:
            logger.debug(f"Site {id_site} expanded to {id_sites}")
        return id_sites

    def where_clause(self, id_site: int, table: str = "log_visit") -> tuple[str, list[int]]:
        """Build the "table.idsite IN (...)" predicate and its binds."""
        id_sites = self.expand(id_site)
        placeholders = ", ".join("?" for _ in id_sites)
        return f"{table}.idsite IN ({placeholders})", id_sites
