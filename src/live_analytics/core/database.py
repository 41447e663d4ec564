"""
Database executors for live queries.

Both executors take SQL with positional "?" placeholders and a bind list;
user data is never interpolated into statements.
"""
import logging
import sqlite3
from typing import Any, Protocol

import httpx

from ..exceptions import QueryExecutionError

logger = logging.getLogger(__name__)


class QueryExecutor(Protocol):
    """Runs read-only queries."""

    async def fetch_all(self, sql: str, bind: list | None = None) -> list[dict]:
        ...

    async def fetch_one(self, sql: str, bind: list | None = None) -> Any:
        ...


def _first_value(rows: list[dict]) -> Any:
    if not rows:
        return None
    return next(iter(rows[0].values()), None)


def _encode_param(value: Any) -> Any:
    # BLOB parameters travel as arrays of byte values
    if isinstance(value, (bytes, bytearray)):
        return list(value)
    return value


def _decode_value(value: Any) -> Any:
    if isinstance(value, list) and value and all(isinstance(v, int) and 0 <= v < 256 for v in value):
        return bytes(value)
    return value


class D1Executor:
    """Executor for the Cloudflare D1 HTTP query API."""

    def __init__(
        self,
        d1_database_id: str,
        cf_account_id: str,
        cf_api_token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.database_id = d1_database_id
        self.account_id = cf_account_id
        self.api_token = cf_api_token
        self.timeout = timeout
        self.transport = transport
        self.base_url = f"https://api.cloudflare.com/client/v4/accounts/{cf_account_id}/d1/database/{d1_database_id}"

    async def fetch_all(self, sql: str, bind: list | None = None) -> list[dict]:
        """Execute a SQL query against D1."""
        params = [_encode_param(v) for v in bind or []]
        logger.debug(f"D1 query with {len(params)} params: {sql}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/query",
                    headers={
                        "Authorization": f"Bearer {self.api_token}",
                        "Content-Type": "application/json",
                    },
                    json={"sql": sql, "params": params},
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise QueryExecutionError(f"D1 query failed: {e}", sql=sql) from e

        if not data.get("success"):
            logger.warning(f"D1 reported failure: {data.get('errors')}")
            raise QueryExecutionError(f"D1 query failed: {data.get('errors')}", sql=sql)

        results = data.get("result", [])
        if results and len(results) > 0:
            rows = results[0].get("results", [])
            return [{k: _decode_value(v) for k, v in row.items()} for row in rows]
        return []

    async def fetch_one(self, sql: str, bind: list | None = None) -> Any:
        """Execute a query and return the first column of the first row."""
        return _first_value(await self.fetch_all(sql, bind))


class SQLiteExecutor:
    """Executor over a local SQLite database."""

    def __init__(self, database: str | sqlite3.Connection = ":memory:"):
        if isinstance(database, sqlite3.Connection):
            self.connection = database
        else:
            self.connection = sqlite3.connect(database)
        self.connection.row_factory = sqlite3.Row

    async def fetch_all(self, sql: str, bind: list | None = None) -> list[dict]:
        logger.debug(f"SQLite query with {len(bind or [])} params: {sql}")
        try:
            rows = self.connection.execute(sql, list(bind or [])).fetchall()
        except sqlite3.Error as e:
            raise QueryExecutionError(f"SQLite query failed: {e}", sql=sql) from e
        return [dict(row) for row in rows]

    async def fetch_one(self, sql: str, bind: list | None = None) -> Any:
        return _first_value(await self.fetch_all(sql, bind))

    def close(self) -> None:
        self.connection.close()
