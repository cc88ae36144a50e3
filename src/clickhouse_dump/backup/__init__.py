"""Partition-level backup and restore.

Backup freezes partitions on the server and copies the frozen parts and the
database metadata into a backup tree.  Restore replays the metadata into a
(possibly renamed) database and attaches the copied partitions.

Usage:
    from clickhouse_dump.backup import run_backup, restore_database, validate_backup
    from clickhouse_dump.backup import BackupTree, PartitionRef
"""

from clickhouse_dump.backup.classifier import classify, read_metadata_dir
from clickhouse_dump.backup.locator import derive_partition_id, locate_partitions
from clickhouse_dump.backup.manifest import read_manifest, validate_backup, write_manifest
from clickhouse_dump.backup.models import (
    BackupSummary,
    BackupTree,
    CopyReport,
    ItemFailure,
    MetadataObject,
    ObjectKind,
    PartitionRef,
    RestoreSummary,
)
from clickhouse_dump.backup.restore import RestoreOrchestrator, restore_database
from clickhouse_dump.backup.snapshot import SnapshotWriter, backup_database, run_backup

__all__ = [
    # Models
    "BackupSummary",
    "BackupTree",
    "CopyReport",
    "ItemFailure",
    "MetadataObject",
    "ObjectKind",
    "PartitionRef",
    "RestoreSummary",
    # Backup
    "SnapshotWriter",
    "backup_database",
    "run_backup",
    "write_manifest",
    "read_manifest",
    "validate_backup",
    # Restore
    "classify",
    "read_metadata_dir",
    "derive_partition_id",
    "locate_partitions",
    "RestoreOrchestrator",
    "restore_database",
]
