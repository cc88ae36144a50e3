"""Partition discovery against the live server.

Usage:
    from clickhouse_dump.backup.catalog import list_databases, list_partitions

    for database in await list_databases(adapter):
        refs = await list_partitions(adapter, database)
"""

import logging

from clickhouse_dump.adapters.base import DatabaseClient
from clickhouse_dump.backup.models import PartitionRef

logger = logging.getLogger(__name__)

# Databases owned by the server itself; never part of an "all databases" backup
INTERNAL_DATABASES = frozenset({"system", "INFORMATION_SCHEMA", "information_schema"})

# Tables starting with this marker are internal (e.g. ".inner.<view>")
RESERVED_TABLE_PREFIX = "."


async def list_databases(adapter: DatabaseClient, include_internal: bool = False) -> list[str]:
    """List databases on the server via ``SHOW DATABASES``.

    Args:
        adapter: Database adapter.
        include_internal: Keep ``system`` and the information-schema
            databases in the result.

    Returns:
        Database names in server order.

    Raises:
        QueryError: If the server rejects the query.
    """
    rows = await adapter.query("SHOW DATABASES")
    names = [row["name"] for row in rows]
    if include_internal:
        return names
    return [name for name in names if name not in INTERNAL_DATABASES]


async def list_partitions(adapter: DatabaseClient, database: str) -> list[PartitionRef]:
    """List active partitions of every user table in ``database``.

    Queries ``system.parts`` for distinct partitions of active
    (non-superseded) parts.  Tables whose name starts with ``.`` are
    dropped from the result.

    Args:
        adapter: Database adapter.
        database: Database to inspect.

    Returns:
        ``PartitionRef`` list ordered by table then partition.

    Raises:
        QueryError: If the server rejects the query.  The caller decides
            whether to skip the database or abort.
    """
    rows = await adapter.select(
        "system.parts",
        "DISTINCT partition, table, database",
        filters={"active": 1, "database": database},
        order_by="table, partition",
    )

    refs: list[PartitionRef] = []
    for row in rows:
        if row["table"].startswith(RESERVED_TABLE_PREFIX):
            continue
        logger.info(
            "found %s partition of %s table in %s database",
            row["partition"], row["table"], row["database"],
        )
        refs.append(
            PartitionRef(
                database=row["database"],
                table=row["table"],
                partition_id=str(row["partition"]),
            )
        )
    return refs
