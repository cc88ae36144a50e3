"""Async ClickHouse database adapter.

Provides ``AsyncClickHouseAdapter``, an async implementation of the
``DatabaseClient`` protocol using SQLAlchemy's async engine with the
``clickhouse-sqlalchemy`` dialect and the ``asynch`` native-protocol driver.

Usage:
    from clickhouse_dump.adapters.clickhouse import AsyncClickHouseAdapter

    adapter = AsyncClickHouseAdapter("clickhouse://default@localhost:9000/default")

    rows = await adapter.query("SHOW DATABASES")
    await adapter.close()
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from clickhouse_dump.exceptions import QueryError, ServerConnectionError


def create_async_engine_pooled(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine with connection pooling.

    Default pool settings:

    - ``pool_size=1``: One connection for sequential runs; callers running
      a worker pool pass ``pool_size=workers``.
    - ``max_overflow=0``: Never open more connections than workers.
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.

    Args:
        database_url: ClickHouse connection URL with ``clickhouse+asynch://``
            scheme.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.
    """
    # Append connect_timeout if not already in URL
    if "connect_timeout" not in database_url:
        separator = "&" if "?" in database_url else "?"
        database_url = f"{database_url}{separator}connect_timeout=5"

    defaults: dict[str, Any] = {
        "pool_size": 1,
        "max_overflow": 0,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(database_url, **merged)


def normalize_url(database_url: str) -> str:
    """Rewrite ``clickhouse://`` and ``clickhouse+native://`` to ``clickhouse+asynch://``."""
    for scheme in ("clickhouse://", "clickhouse+native://"):
        if database_url.startswith(scheme):
            return "clickhouse+asynch://" + database_url[len(scheme):]
    return database_url


class AsyncClickHouseAdapter:
    """Async ClickHouse implementation of the ``DatabaseClient`` protocol.

    Statement failures surface as ``QueryError``; lost or refused
    connections surface as ``ServerConnectionError``.  The pooled engine is
    shared by every worker of a run.

    Args:
        database_url: ClickHouse connection URL.  Accepts ``clickhouse://``,
            ``clickhouse+native://`` or ``clickhouse+asynch://`` schemes.
        **engine_kwargs: Additional keyword arguments forwarded to
            ``create_async_engine_pooled`` (e.g. ``pool_size``).

    Example:
        adapter = AsyncClickHouseAdapter(
            "clickhouse://default@localhost:9000/default",
            pool_size=4,
        )
        await adapter.execute("CREATE DATABASE shop_restored")
        await adapter.close()
    """

    def __init__(self, database_url: str, **engine_kwargs: Any) -> None:
        self._url: str = normalize_url(database_url)
        self._engine: AsyncEngine = create_async_engine_pooled(self._url, **engine_kwargs)

    # ------------------------------------------------------------------
    # Query Methods
    # ------------------------------------------------------------------

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a row-returning statement and return rows as dicts."""
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text(sql), params or {})
                col_names = list(result.keys())
                rows = result.fetchall()
                return [dict(zip(col_names, row)) for row in rows]
        except DBAPIError as e:
            raise self._translate(sql, e) from e
        except OSError as e:
            raise ServerConnectionError(f"Connection to server failed: {e}") from e

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table using raw SQL with named parameters."""
        params: dict[str, Any] = {}
        if filters:
            conditions: list[str] = []
            for i, (k, v) in enumerate(filters.items()):
                param_name = f"p_{i}"
                conditions.append(f"{k} = :{param_name}")
                params[param_name] = v
            where_clause = " WHERE " + " AND ".join(conditions)
        else:
            where_clause = ""

        order_clause = f" ORDER BY {order_by}" if order_by else ""

        return await self.query(
            f"SELECT {columns} FROM {table}{where_clause}{order_clause}", params
        )

    async def execute(self, sql: str) -> None:
        """Execute a DDL statement verbatim.

        Uses ``exec_driver_sql`` so that colons inside replayed definitions
        (defaults, codecs, TTL expressions) are never parsed as bind
        parameters.
        """
        try:
            async with self._engine.begin() as conn:
                await conn.exec_driver_sql(sql)
        except DBAPIError as e:
            raise self._translate(sql, e) from e
        except OSError as e:
            raise ServerConnectionError(f"Connection to server failed: {e}") from e

    async def close(self) -> None:
        """Close the async engine and dispose of the connection pool."""
        if self._engine:
            await self._engine.dispose()

    # ------------------------------------------------------------------
    # Connection Test
    # ------------------------------------------------------------------

    async def test_connection(self) -> bool:
        """Test server connection health.

        Runs ``SELECT 1`` via the async engine.

        Returns:
            ``True`` if the server answers.

        Raises:
            ServerConnectionError: If the server cannot be reached.
        """
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar() == 1
        except (DBAPIError, OSError) as e:
            raise ServerConnectionError(f"Cannot connect to {self._safe_url()}: {e}") from e

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _translate(self, sql: str, error: DBAPIError) -> Exception:
        if error.connection_invalidated:
            return ServerConnectionError(f"Connection to server lost: {error.orig or error}")
        return QueryError(sql, str(error.orig or error))

    def _safe_url(self) -> str:
        """Connection URL with the password masked, for log and error text."""
        return self._engine.url.render_as_string(hide_password=True)
