"""Freeze partitions on the server and copy the result into a backup tree.

``ALTER TABLE ... FREEZE PARTITION ... WITH NAME '<label>'`` makes the server
hard-link the partition's parts under ``<data_dir>/shadow/<label>/``.  The
hard links are then copied, together with the database's metadata
directory, into a self-contained backup tree (see ``BackupTree``).

Usage:
    from clickhouse_dump.backup.snapshot import run_backup

    summary = await run_backup(
        adapter,
        source_root=Path("/var/lib/clickhouse"),
        dest_root=Path("/backups/2024-06-01"),
        database="shop",
        workers=4,
    )
    if summary.failure_count:
        print(summary.format_report())
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import TypeVar

from clickhouse_dump.adapters.base import DatabaseClient
from clickhouse_dump.backup.catalog import list_databases, list_partitions
from clickhouse_dump.backup.filetree import (
    INNER_TABLE_PREFIX,
    check_directories_exist,
    copy_directory,
    ensure_directories,
    remove_tree,
    replace_leading_keyword,
)
from clickhouse_dump.backup.manifest import write_manifest
from clickhouse_dump.backup.models import (
    BackupSummary,
    BackupTree,
    CopyReport,
    ItemFailure,
    PartitionRef,
)
from clickhouse_dump.exceptions import CopyError, QueryError

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "backup"

T = TypeVar("T")
R = TypeVar("R")


async def run_pool(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    workers: int = 1,
) -> list[R]:
    """Run ``worker`` over ``items`` with at most ``workers`` in flight.

    Results come back in input order.  With ``workers == 1`` items are
    processed strictly one after another.  Workers handle recoverable
    errors themselves; the first exception that escapes one cancels every
    other worker, running or queued, and is re-raised as is.
    """
    semaphore = asyncio.Semaphore(max(1, workers))

    async def bounded(item: T) -> R:
        async with semaphore:
            return await worker(item)

    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(bounded(item)) for item in items]
    except ExceptionGroup as e:
        raise e.exceptions[0]

    return [task.result() for task in tasks]


class SnapshotWriter:
    """Freeze partitions and copy frozen data into a backup tree.

    Args:
        adapter: Database adapter used for FREEZE statements.
        data_dir: Server data directory; staging lives under
            ``<data_dir>/shadow/<label>``.
        dry_run: Only log and return FREEZE statements, never send them.
        label: Freeze name (``WITH NAME``), also the staging directory name.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        data_dir: Path,
        dry_run: bool = False,
        label: str = DEFAULT_LABEL,
    ):
        self.adapter = adapter
        self.data_dir = Path(data_dir)
        self.dry_run = dry_run
        self.label = label

    @property
    def staging_dir(self) -> Path:
        return self.data_dir / "shadow" / self.label

    def freeze_statement(self, ref: PartitionRef) -> str:
        return (
            f"ALTER TABLE {ref.qualified_table} "
            f"FREEZE PARTITION '{ref.partition_id}' WITH NAME '{self.label}'"
        )

    async def freeze(self, ref: PartitionRef) -> str:
        """Freeze one partition.

        Returns:
            The FREEZE statement (executed unless dry run).

        Raises:
            QueryError: If the server rejects the statement.
        """
        statement = self.freeze_statement(ref)
        logger.info("%s;", statement)
        if not self.dry_run:
            await self.adapter.execute(statement)
        return statement

    def materialize_table(self, ref: PartitionRef, source_root: Path, dest_root: Path) -> CopyReport:
        """Copy the frozen data of ``ref``'s table into the backup tree.

        Copies ``<source_root>/shadow/<label>/data/<db>/<table>`` into
        ``<dest_root>/partitions/<db>/<table>``.  Blocking; run it in a
        thread from async code.
        """
        tree = BackupTree(root=dest_root)
        report = CopyReport()
        try:
            ensure_directories([tree.partitions_dir(ref.database), tree.metadata_dir(ref.database)])
        except CopyError as e:
            report.failures.append(ItemFailure(kind="copy", item=e.path, error=e.message))
            return report

        frozen_dir = source_root / "shadow" / self.label / "data" / ref.database / ref.table
        logger.debug("copy %s to %s", frozen_dir, tree.table_partitions_dir(ref.database, ref.table))
        return report.merge(
            copy_directory(frozen_dir, tree.table_partitions_dir(ref.database, ref.table))
        )

    def materialize_metadata(self, database: str, source_root: Path, dest_root: Path) -> CopyReport:
        """Copy ``database``'s metadata files and turn ATTACH into CREATE.

        View inner-table files are skipped.  Only a statement-leading
        ``ATTACH`` keyword in ``.sql`` files is rewritten.
        """
        tree = BackupTree(root=dest_root)
        metadata_dir = tree.metadata_dir(database)
        report = copy_directory(
            source_root / "metadata" / database,
            metadata_dir,
            exclude_prefixes=(INNER_TABLE_PREFIX,),
        )
        if metadata_dir.is_dir():
            report.merge(replace_leading_keyword(metadata_dir, "ATTACH", "CREATE"))
        return report

    def materialize(self, ref: PartitionRef, source_root: Path, dest_root: Path) -> CopyReport:
        """Copy one table's frozen data and its database's metadata."""
        report = self.materialize_table(ref, source_root, dest_root)
        return report.merge(self.materialize_metadata(ref.database, source_root, dest_root))


# ============================================================================
# Backup drivers
# ============================================================================


async def backup_database(
    writer: SnapshotWriter,
    database: str,
    source_root: Path,
    dest_root: Path,
    workers: int = 1,
    summary: BackupSummary | None = None,
) -> BackupSummary:
    """Back up every partitioned table of one database.

    Phases:
        1. List active partitions.
        2. Freeze them (worker pool over partitions); each failure is
           recorded, its table is listed as incomplete, and the rest
           continue.
        3. Copy each table with at least one frozen partition (worker pool
           over tables, copies run in threads).
        4. Copy the metadata directory once.

    In dry-run mode only phases 1 and 2 run, and phase 2 just collects the
    statements.

    Args:
        writer: Configured ``SnapshotWriter``.
        database: Database to back up.
        source_root: Server data directory to copy from.
        dest_root: Backup tree root.
        workers: Maximum concurrent freezes/copies.
        summary: Summary to add to (a fresh one is created if omitted).

    Returns:
        The updated ``BackupSummary``.

    Raises:
        QueryError: If the partition list cannot be read.
    """
    if summary is None:
        summary = BackupSummary(dry_run=writer.dry_run)
    summary.databases.append(database)

    refs = await list_partitions(writer.adapter, database)
    summary.partitions_found += len(refs)
    if not refs:
        logger.info("no active partitions in %s database", database)

    # Tables missing at least one partition stay incomplete whatever the copy does
    freeze_failed: set[str] = set()

    async def freeze_one(ref: PartitionRef) -> PartitionRef | None:
        try:
            statement = await writer.freeze(ref)
        except QueryError as e:
            logger.error("can't freeze partition %s of %s: %s", ref.partition_id, ref.qualified_table, e.message)
            summary.partitions_failed += 1
            summary.failures.append(
                ItemFailure(kind="query", item=f"{ref.qualified_table}:{ref.partition_id}", error=e.message)
            )
            freeze_failed.add(ref.qualified_table)
            if ref.qualified_table not in summary.tables_incomplete:
                summary.tables_incomplete.append(ref.qualified_table)
            return None
        if writer.dry_run:
            summary.statements.append(statement)
        else:
            summary.partitions_frozen += 1
        return ref

    frozen = [ref for ref in await run_pool(refs, freeze_one, workers) if ref is not None]
    if writer.dry_run:
        return summary

    # One representative ref per table, in table order
    tables: dict[str, PartitionRef] = {}
    for ref in frozen:
        tables.setdefault(ref.table, ref)

    # Listed as incomplete until the copy succeeds
    summary.tables_incomplete.extend(
        ref.qualified_table for ref in tables.values() if ref.qualified_table not in freeze_failed
    )

    async def copy_one(ref: PartitionRef) -> None:
        report = await asyncio.to_thread(writer.materialize_table, ref, source_root, dest_root)
        if report.ok:
            summary.tables_copied += 1
            if ref.qualified_table not in freeze_failed:
                summary.tables_incomplete.remove(ref.qualified_table)
            logger.info("copied %s files of %s", report.copied, ref.qualified_table)
            return
        for failure in report.failures:
            logger.error("can't copy %s: %s: %s", ref.qualified_table, failure.item, failure.error)
        summary.failures.extend(report.failures)

    await run_pool(tables.values(), copy_one, workers)

    report = await asyncio.to_thread(writer.materialize_metadata, database, source_root, dest_root)
    if report.ok:
        summary.metadata_copied += 1
    else:
        for failure in report.failures:
            logger.error("can't copy metadata of %s: %s: %s", database, failure.item, failure.error)
        summary.failures.extend(report.failures)

    return summary


def cleanup_staging(writer: SnapshotWriter) -> bool:
    """Remove the freeze staging directory.

    Returns:
        True if removed (or already absent), False on failure.
    """
    logger.info("clean up %s", writer.staging_dir)
    try:
        remove_tree(writer.staging_dir)
    except CopyError as e:
        logger.error("can't clean up %s: %s", e.path, e.message)
        return False
    return True


async def run_backup(
    adapter: DatabaseClient,
    source_root: Path,
    dest_root: Path,
    database: str | None = None,
    dry_run: bool = False,
    cleanup: bool = True,
    workers: int = 1,
    label: str = DEFAULT_LABEL,
    timeout: float | None = None,
) -> BackupSummary:
    """Back up one database, or every user database when ``database`` is None.

    Writes ``manifest.json`` into ``dest_root`` (not in dry-run mode).  The
    staging directory is removed afterwards only when ``cleanup`` is set,
    the run is not a dry run and no copy failed, so a retry can reuse it.

    Args:
        adapter: Database adapter.
        source_root: Server data directory (``/var/lib/clickhouse``).
        dest_root: Existing directory to write the backup tree into.
        database: Database to back up; all user databases when None.
        dry_run: Only list partitions and collect FREEZE statements.
        cleanup: Remove the staging directory after a clean run.
        workers: Maximum concurrent freezes/copies.
        label: Freeze name and staging directory name.
        timeout: Deadline in seconds for the whole run.  On expiry the
            run stops, a ``timeout`` failure is recorded and unfinished
            tables stay listed as incomplete.

    Raises:
        ConfigError: If ``source_root`` or ``dest_root`` does not exist.
        QueryError: If the database list cannot be read.
    """
    source_root = Path(source_root)
    dest_root = Path(dest_root)
    check_directories_exist(source_root, dest_root)

    writer = SnapshotWriter(adapter, source_root, dry_run=dry_run, label=label)
    summary = BackupSummary(dry_run=dry_run)

    if writer.staging_dir.exists() and any(writer.staging_dir.iterdir()):
        logger.warning("staging directory %s is not empty; its contents may be copied", writer.staging_dir)

    try:
        async with asyncio.timeout(timeout):
            databases = [database] if database else await list_databases(adapter)
            for name in databases:
                try:
                    await backup_database(writer, name, source_root, dest_root, workers, summary)
                except QueryError as e:
                    logger.error("can't get partition list of %s: %s", name, e.message)
                    summary.failures.append(ItemFailure(kind="query", item=name, error=e.message))
    except TimeoutError:
        logger.error("backup timed out after %ss", timeout)
        summary.failures.append(
            ItemFailure(kind="timeout", item=str(dest_root), error=f"timed out after {timeout}s")
        )
    finally:
        if not dry_run:
            write_manifest(BackupTree(root=dest_root), summary, label=label)

    copy_failed = any(failure.kind in ("copy", "timeout") for failure in summary.failures)
    if cleanup and not dry_run:
        if copy_failed:
            logger.warning("copy failures; keeping %s for retry", writer.staging_dir)
        elif not cleanup_staging(writer):
            summary.failures.append(
                ItemFailure(kind="copy", item=str(writer.staging_dir), error="cleanup failed")
            )

    return summary
