"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that the backup and restore
orchestrators talk to.  All methods are ``async def``.

Usage:
    from clickhouse_dump.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.query("SHOW DATABASES")
        parts = await client.select("system.parts", "DISTINCT partition, table",
                                    filters={"database": "shop"})
        await client.execute("CREATE DATABASE shop_restored")
        await client.close()
"""

from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Database client interface used by the orchestrators.

    Implementations raise ``QueryError`` when the server rejects a
    statement and ``ServerConnectionError`` when the connection itself is
    lost.  Callers decide which of those abort a run.
    """

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a statement that returns rows.

        Args:
            sql: SQL text.  Named parameters use ``:name`` placeholders.
            params: Optional dict of named parameters.

        Returns:
            List of dicts, one per row.  Empty list if no rows.

        Example:
            rows = await client.query("SHOW DATABASES")
            names = [r["name"] for r in rows]
        """
        ...

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name, optionally qualified (``system.parts``).
            columns: Column expression (e.g., ``"DISTINCT partition, table"``).
            filters: Optional dict of field=value filters (all must match via AND).
            order_by: Optional ORDER BY expression.

        Returns:
            List of dicts, one per row.  Empty list if no matches.
        """
        ...

    async def execute(self, sql: str) -> None:
        """Execute a DDL statement verbatim (no parameter parsing).

        Used for CREATE DATABASE, CREATE TABLE, ALTER TABLE ... FREEZE /
        ATTACH PARTITION and replayed metadata definitions.

        Args:
            sql: Raw SQL statement to execute.
        """
        ...

    async def close(self) -> None:
        """Close the connection and release pooled resources."""
        ...
