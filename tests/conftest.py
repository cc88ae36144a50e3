"""Shared fixtures: a fake adapter and small on-disk server/backup trees."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

ORDERS_SQL = (
    "CREATE TABLE orders\n"
    "(\n"
    "    `id` UInt64,\n"
    "    `created` Date,\n"
    "    `note` String DEFAULT 'ATTACH later'\n"
    ")\n"
    "ENGINE = MergeTree\n"
    "PARTITION BY toYYYYMM(created)\n"
    "ORDER BY id\n"
)

CUSTOMERS_SQL = (
    "CREATE TABLE customers\n"
    "(\n"
    "    `id` UInt64,\n"
    "    `joined` Date\n"
    ")\n"
    "ENGINE = MergeTree\n"
    "PARTITION BY toYYYYMM(joined)\n"
    "ORDER BY id\n"
)

ORDERS_MV_SQL = (
    "CREATE MATERIALIZED VIEW orders_mv\n"
    "ENGINE = SummingMergeTree\n"
    "ORDER BY created\n"
    "AS SELECT created, count() AS orders\n"
    "FROM shop.orders\n"
    "GROUP BY created\n"
)


def make_adapter(
    partitions: list[dict] | None = None,
    databases: list[str] | None = None,
) -> AsyncMock:
    """Create an AsyncMock adapter with predictable catalog answers.

    Args:
        partitions: Rows returned by ``select`` (``system.parts``).
        databases: Names returned by ``query("SHOW DATABASES")``.
    """
    adapter = AsyncMock()
    adapter.select = AsyncMock(return_value=partitions or [])
    adapter.query = AsyncMock(return_value=[{"name": name} for name in (databases or [])])
    adapter.execute = AsyncMock(return_value=None)
    adapter.close = AsyncMock()
    return adapter


def write_part(directory: Path, name: str, payload: bytes = b"data") -> Path:
    """Create a fake data part directory with a couple of files."""
    part = directory / name
    part.mkdir(parents=True, exist_ok=True)
    (part / "data.bin").write_bytes(payload)
    (part / "checksums.txt").write_text("checksums")
    return part


@pytest.fixture
def shop_backup(tmp_path: Path) -> Path:
    """Backup tree of a ``shop`` database with two tables and a view.

    ::

        partitions/shop/orders/{202401_1_1_0, 202401_2_2_0, 202402_3_3_0}
        partitions/shop/customers/202401_1_1_0
        metadata/shop/{customers,orders,orders_mv}.sql
    """
    root = tmp_path / "backup"
    orders = root / "partitions" / "shop" / "orders"
    for name in ("202401_1_1_0", "202401_2_2_0", "202402_3_3_0"):
        write_part(orders, name)
    write_part(root / "partitions" / "shop" / "customers", "202401_1_1_0")

    metadata = root / "metadata" / "shop"
    metadata.mkdir(parents=True)
    (metadata / "orders.sql").write_text(ORDERS_SQL)
    (metadata / "customers.sql").write_text(CUSTOMERS_SQL)
    (metadata / "orders_mv.sql").write_text(ORDERS_MV_SQL)
    return root


@pytest.fixture
def server_dir(tmp_path: Path) -> Path:
    """Server data directory after ``FREEZE ... WITH NAME 'backup'`` of shop.orders."""
    root = tmp_path / "clickhouse"
    frozen = root / "shadow" / "backup" / "data" / "shop" / "orders"
    write_part(frozen, "202401_1_1_0")
    write_part(frozen, "202402_2_2_0")

    metadata = root / "metadata" / "shop"
    metadata.mkdir(parents=True)
    (metadata / "orders.sql").write_text(ORDERS_SQL.replace("CREATE TABLE", "ATTACH TABLE", 1))
    (metadata / "customers.sql").write_text(CUSTOMERS_SQL.replace("CREATE TABLE", "ATTACH TABLE", 1))
    (metadata / "%2Einner%2Eorders_mv.sql").write_text("ATTACH TABLE `.inner.orders_mv` (...)")
    (metadata / "orders_mv.sql").write_text(
        ORDERS_MV_SQL.replace("CREATE MATERIALIZED VIEW", "ATTACH MATERIALIZED VIEW", 1)
    )
    (root / "data" / "shop").mkdir(parents=True)
    return root
