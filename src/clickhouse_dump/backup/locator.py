"""Find backed-up partitions of a table and stage them for attachment.

A table's backup directory holds one subdirectory per data part, named the
way the server names parts (``202401_1_1_0``).  Each part is copied into the
server's ``detached`` directory for the target table, where a later
``ATTACH PARTITION`` picks it up.

Usage:
    from clickhouse_dump.backup.locator import locate_partitions

    refs = locate_partitions(tree, "shop", "orders", Path("/var/lib/clickhouse"))
    for ref in refs:
        ...  # ALTER TABLE shop.orders ATTACH PARTITION '<ref.partition_id>'
"""

import logging
from pathlib import Path
from typing import Literal

from clickhouse_dump.backup.filetree import copy_directory
from clickhouse_dump.backup.models import BackupTree, PartitionRef

logger = logging.getLogger(__name__)

DETACHED_DIR = "detached"
PARTITION_ID_LENGTH = 6
PART_NAME_DELIMITER = "_"

PartitionIdMode = Literal["prefix", "delimited"]


def derive_partition_id(dir_name: str, mode: PartitionIdMode = "prefix") -> str:
    """Derive a partition id from a part directory name.

    Args:
        dir_name: Part directory name, e.g. ``202401_1_1_0``.
        mode: ``"prefix"`` takes the first six characters (monthly
            ``YYYYMM`` partitioning).  ``"delimited"`` takes the text before
            the first ``_``, which is the partition id for any key.

    Returns:
        Partition id string.
    """
    if mode == "delimited":
        return dir_name.split(PART_NAME_DELIMITER, 1)[0]

    partition_id = dir_name[:PARTITION_ID_LENGTH]
    delimited = dir_name.split(PART_NAME_DELIMITER, 1)[0]
    if delimited != partition_id:
        logger.warning(
            "part %s: six-character partition id %r differs from %r; "
            "set partition_id_mode = \"delimited\" for non-monthly keys",
            dir_name, partition_id, delimited,
        )
    return partition_id


def locate_partitions(
    tree: BackupTree,
    database: str,
    table: str,
    data_dir: Path,
    target_database: str | None = None,
    copy: bool = True,
    id_mode: PartitionIdMode = "prefix",
) -> list[PartitionRef]:
    """Scan a table's backed-up parts and copy them to ``detached``.

    Args:
        tree: Backup tree to read from.
        database: Database name inside the backup tree.
        table: Table name.
        data_dir: Server data directory (``/var/lib/clickhouse``).
        target_database: Database the parts are staged for; defaults to
            ``database``.
        copy: When False only scan, nothing is written.
        id_mode: Passed to ``derive_partition_id``.

    Returns:
        One ``PartitionRef`` per distinct partition id, in discovery order,
        with ``database`` set to the target database.  A missing or
        unreadable table directory yields an empty list.
    """
    target_database = target_database or database
    source_dir = tree.table_partitions_dir(database, table)
    detached_dir = data_dir / "data" / target_database / table / DETACHED_DIR

    try:
        entries = sorted(source_dir.iterdir(), key=lambda p: p.name)
    except OSError as e:
        logger.warning("no partitions for %s.%s: %s", database, table, e)
        return []

    refs: list[PartitionRef] = []
    seen: set[str] = set()

    for entry in entries:
        if not entry.is_dir() or entry.name == DETACHED_DIR:
            continue

        if copy:
            report = copy_directory(entry, detached_dir / entry.name)
            if not report.ok:
                for failure in report.failures:
                    logger.error("can't copy part %s: %s: %s", entry.name, failure.item, failure.error)
                continue
            logger.debug("copied part %s to %s", entry.name, detached_dir)

        partition_id = derive_partition_id(entry.name, id_mode)
        if partition_id in seen:
            continue
        seen.add(partition_id)
        refs.append(PartitionRef(database=target_database, table=table, partition_id=partition_id))

    return refs
