"""Models for partitions, metadata objects, backup trees and run summaries.

Usage:
    from clickhouse_dump.backup.models import BackupTree, PartitionRef

    tree = BackupTree(root="/tmp/bk")
    tree.table_partitions_dir("shop", "orders")
    # PosixPath('/tmp/bk/partitions/shop/orders')

    ref = PartitionRef(database="shop", table="orders", partition_id="202401")
    ref.qualified_table
    # 'shop.orders'
"""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class PartitionRef(BaseModel):
    """One logical partition inside one table."""

    model_config = ConfigDict(frozen=True)

    database: str
    table: str
    partition_id: str

    @property
    def qualified_table(self) -> str:
        return f"{self.database}.{self.table}"


class ObjectKind(str, Enum):
    """What a metadata file describes, derived from its leading keywords."""

    TABLE = "table"
    VIEW = "view"
    OTHER = "other"


class MetadataObject(BaseModel):
    """One schema object's create statement read from a backup tree."""

    file_name: str
    object_name: str
    kind: ObjectKind
    definition: str


class BackupTree(BaseModel):
    """On-disk layout of a backup rooted at ``root``.

    ::

        <root>/partitions/<database>/<table>/<partition-dir>/...
        <root>/metadata/<database>/<object>.sql
        <root>/manifest.json
    """

    root: Path

    @property
    def manifest_path(self) -> Path:
        return self.root / "manifest.json"

    def partitions_dir(self, database: str) -> Path:
        return self.root / "partitions" / database

    def table_partitions_dir(self, database: str, table: str) -> Path:
        return self.partitions_dir(database) / table

    def metadata_dir(self, database: str) -> Path:
        return self.root / "metadata" / database

    def metadata_file(self, database: str, object_name: str) -> Path:
        return self.metadata_dir(database) / f"{object_name}.sql"


# ============================================================================
# Per-item results
# ============================================================================


class ItemFailure(BaseModel):
    """A recoverable failure of one partition, table or object."""

    kind: Literal["query", "copy", "ordering", "timeout"]
    item: str  # e.g. "shop.orders", "shop.orders:202401", "orders_mv.sql"
    error: str


class CopyReport(BaseModel):
    """Per-entry outcome of a FileTree operation."""

    copied: int = 0
    failures: list[ItemFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def merge(self, other: "CopyReport") -> "CopyReport":
        """Fold another report into this one and return self."""
        self.copied += other.copied
        self.failures.extend(other.failures)
        return self


# ============================================================================
# Run summaries
# ============================================================================


class BackupSummary(BaseModel):
    """Result of a backup run.

    Attributes:
        dry_run: True if freezes were only reported, not sent.
        databases: Databases processed, in order.
        partitions_found: Active partitions discovered by the catalog.
        partitions_frozen: Partitions whose FREEZE succeeded.
        partitions_failed: Partitions whose FREEZE failed.
        tables_copied: Tables whose frozen data was copied without error.
        tables_incomplete: ``db.table`` names whose freeze or copy failed or
            was cut short.
        metadata_copied: Databases whose metadata directory was copied.
        statements: FREEZE statements that would run (dry run only).
        failures: Every recoverable failure, in the order encountered.
    """

    dry_run: bool = False
    databases: list[str] = Field(default_factory=list)
    partitions_found: int = 0
    partitions_frozen: int = 0
    partitions_failed: int = 0
    tables_copied: int = 0
    tables_incomplete: list[str] = Field(default_factory=list)
    metadata_copied: int = 0
    statements: list[str] = Field(default_factory=list)
    failures: list[ItemFailure] = Field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def format_report(self) -> str:
        """Format the failures as a human-readable report."""
        if not self.failures:
            return "Backup completed without failures"

        lines = [f"Backup completed with {self.failure_count} failures:"]
        for failure in self.failures:
            lines.append(f"  - [{failure.kind}] {failure.item}: {failure.error}")
        if self.tables_incomplete:
            lines.append(f"\n  Incomplete tables: {', '.join(self.tables_incomplete)}")
        return "\n".join(lines)


class RestoreSummary(BaseModel):
    """Result of a restore run.

    Attributes:
        database: Database read from the backup tree.
        target_database: Database created on the server.
        dry_run: True if statements were only collected, not executed.
        tables_created / tables_failed: CREATE TABLE outcomes.
        tables_skipped: Tables not attached because their CREATE failed.
        partitions_attached / partitions_failed: ATTACH PARTITION outcomes.
        objects_created / objects_failed: View and other object outcomes.
        statements: Statements that would run, in order (dry run only).
        failures: Every recoverable failure, in the order encountered.
    """

    database: str
    target_database: str
    dry_run: bool = False
    tables_created: int = 0
    tables_failed: int = 0
    tables_skipped: int = 0
    partitions_attached: int = 0
    partitions_failed: int = 0
    objects_created: int = 0
    objects_failed: int = 0
    statements: list[str] = Field(default_factory=list)
    failures: list[ItemFailure] = Field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def format_report(self) -> str:
        """Format the failures as a human-readable report."""
        if not self.failures:
            return f"Restore of {self.target_database} completed without failures"

        lines = [f"Restore of {self.target_database} completed with {self.failure_count} failures:"]
        for failure in self.failures:
            lines.append(f"  - [{failure.kind}] {failure.item}: {failure.error}")
        return "\n".join(lines)
