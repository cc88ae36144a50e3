"""Backup manifest and offline validation of a backup tree.

Every non-dry-run backup writes ``manifest.json`` at the tree root:

    {
        "metadata": {
            "created_at": "2024-06-01T03:00:00.123456",
            "backup_type": "partition-freeze",
            "version": "1.0",
            "freeze_label": "backup"
        },
        "databases": ["shop"],
        "partitions_frozen": 12,
        "tables_copied": 3,
        "tables_incomplete": [],
        "failure_count": 0
    }

Usage:
    from clickhouse_dump.backup.manifest import validate_backup

    report = validate_backup("/backups/2024-06-01")
    if report["errors"]:
        raise ValueError("Backup is invalid")
"""

from datetime import datetime
from pathlib import Path
import json
from typing import Any

from clickhouse_dump.backup.classifier import METADATA_SUFFIX
from clickhouse_dump.backup.models import BackupSummary, BackupTree

MANIFEST_VERSION = "1.0"
BACKUP_TYPE = "partition-freeze"


def write_manifest(tree: BackupTree, summary: BackupSummary, label: str = "backup") -> Path:
    """Write ``manifest.json`` describing a backup run.

    Returns:
        Path of the written manifest.
    """
    manifest: dict[str, Any] = {
        "metadata": {
            "created_at": datetime.now().isoformat(),
            "backup_type": BACKUP_TYPE,
            "version": MANIFEST_VERSION,
            "freeze_label": label,
        },
        "databases": summary.databases,
        "partitions_frozen": summary.partitions_frozen,
        "partitions_failed": summary.partitions_failed,
        "tables_copied": summary.tables_copied,
        "tables_incomplete": summary.tables_incomplete,
        "failure_count": summary.failure_count,
    }

    tree.root.mkdir(parents=True, exist_ok=True)
    with open(tree.manifest_path, "w") as f:
        json.dump(manifest, f, indent=2)

    return tree.manifest_path


def read_manifest(tree: BackupTree) -> dict | None:
    """Load ``manifest.json``, or None if the tree has none.

    Raises:
        json.JSONDecodeError: If the manifest is not valid JSON.
    """
    try:
        with open(tree.manifest_path, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        return None


def validate_backup(backup_path: str | Path, database: str | None = None) -> dict:
    """Validate a backup tree's layout.

    Checks that the tree has a ``metadata`` directory, that every backed-up
    table directory under ``partitions/<db>`` has a matching
    ``metadata/<db>/<table>.sql`` file, and that the manifest (if any) is
    readable and reports no incomplete tables.

    This function is **sync** -- it only reads the local tree with no
    database I/O.

    Args:
        backup_path: Backup tree root.
        database: Only check this database; all databases when None.

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str]),
        and ``warnings`` (list[str]).
    """
    errors: list[str] = []
    warnings: list[str] = []
    tree = BackupTree(root=Path(backup_path))

    if not tree.root.is_dir():
        errors.append(f"Backup directory not found: {tree.root}")
        return {"valid": False, "errors": errors, "warnings": warnings}

    try:
        manifest = read_manifest(tree)
    except json.JSONDecodeError as e:
        errors.append(f"Invalid manifest JSON: {e}")
        manifest = None
    else:
        if manifest is None:
            warnings.append("No manifest.json (backup made by an older tool or interrupted)")
        else:
            version = manifest.get("metadata", {}).get("version")
            if version != MANIFEST_VERSION:
                errors.append(
                    f"Unsupported manifest version '{version}' (expected '{MANIFEST_VERSION}')"
                )
            for table in manifest.get("tables_incomplete", []):
                warnings.append(f"Table {table} was not copied completely")

    metadata_root = tree.root / "metadata"
    if not metadata_root.is_dir():
        errors.append(f"Missing metadata directory: {metadata_root}")
        return {"valid": False, "errors": errors, "warnings": warnings}

    if database is not None:
        databases = [database]
        if not tree.metadata_dir(database).is_dir():
            errors.append(f"Database {database} not in backup")
            return {"valid": False, "errors": errors, "warnings": warnings}
    else:
        databases = sorted(p.name for p in metadata_root.iterdir() if p.is_dir())

    for db in databases:
        sql_files = [p for p in tree.metadata_dir(db).iterdir() if p.name.endswith(METADATA_SUFFIX)]
        if not sql_files:
            warnings.append(f"Database {db} has no metadata files")

        partitions_dir = tree.partitions_dir(db)
        if not partitions_dir.is_dir():
            continue
        for table_dir in sorted(partitions_dir.iterdir()):
            if not table_dir.is_dir():
                continue
            if not tree.metadata_file(db, table_dir.name).is_file():
                errors.append(f"{db}.{table_dir.name} has partitions but no metadata file")
            elif not any(p.is_dir() for p in table_dir.iterdir()):
                warnings.append(f"{db}.{table_dir.name} has no partition directories")

    valid = len(errors) == 0
    return {"valid": valid, "errors": errors, "warnings": warnings}
