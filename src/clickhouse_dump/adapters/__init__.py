"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and the async ClickHouse adapter.

Usage:
    from clickhouse_dump.adapters import DatabaseClient, AsyncClickHouseAdapter
"""

from clickhouse_dump.adapters.base import DatabaseClient
from clickhouse_dump.adapters.clickhouse import AsyncClickHouseAdapter

__all__ = [
    "DatabaseClient",
    "AsyncClickHouseAdapter",
]
