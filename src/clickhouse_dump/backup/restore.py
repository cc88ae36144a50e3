"""Replay a backup tree into a ClickHouse server.

Restore runs in fixed phases so that no partition is ever attached to a
table that does not exist and no view is created before its tables:

    CREATING_DATABASE -> REPLAYING_TABLES -> ATTACHING_PARTITIONS
        -> REPLAYING_OTHER_OBJECTS -> DONE

Only ``CREATE DATABASE`` and a lost connection are fatal.  Every other
statement that fails is recorded in the ``RestoreSummary`` and the run
moves on.

Usage:
    from clickhouse_dump.backup.restore import restore_database

    summary = await restore_database(
        adapter,
        backup_root=Path("/backups/2024-06-01"),
        database="shop",
        data_dir=Path("/var/lib/clickhouse"),
        target_database="shop_restored",
    )
    print(summary.format_report())
"""

import asyncio
import json
import logging
import re
from enum import Enum
from pathlib import Path

from clickhouse_dump.adapters.base import DatabaseClient
from clickhouse_dump.backup.classifier import read_metadata_dir
from clickhouse_dump.backup.filetree import check_directories_exist
from clickhouse_dump.backup.locator import PartitionIdMode, locate_partitions
from clickhouse_dump.backup.manifest import read_manifest
from clickhouse_dump.backup.models import (
    BackupTree,
    ItemFailure,
    MetadataObject,
    ObjectKind,
    RestoreSummary,
)
from clickhouse_dump.backup.snapshot import run_pool
from clickhouse_dump.exceptions import ConfigError, OrderingPreconditionError, QueryError

logger = logging.getLogger(__name__)

CREATE_TABLE_PREFIX = "CREATE TABLE "


class RestorePhase(str, Enum):
    CREATING_DATABASE = "creating_database"
    REPLAYING_TABLES = "replaying_tables"
    ATTACHING_PARTITIONS = "attaching_partitions"
    REPLAYING_OTHER_OBJECTS = "replaying_other_objects"
    DONE = "done"


# ============================================================================
# Statement rewriting
# ============================================================================


def qualify_table_definition(definition: str, target_database: str) -> str:
    """Qualify the table name of a ``CREATE TABLE`` statement.

    Only the leading ``CREATE TABLE `` is rewritten; the rest of the
    definition is left alone.
    """
    return definition.replace(CREATE_TABLE_PREFIX, f"{CREATE_TABLE_PREFIX}{target_database}.", 1)


def qualify_object_definition(
    definition: str,
    object_name: str,
    target_database: str,
    source_database: str | None = None,
) -> str:
    """Qualify a view or other object's create statement.

    Every standalone, not yet qualified occurrence of ``object_name``
    becomes ``<target_database>.<object_name>``.  When ``source_database``
    differs from the target, ``<source_database>.`` qualifiers are moved to
    the target first.

    Example:
        qualify_object_definition(
            "CREATE MATERIALIZED VIEW orders_mv AS SELECT * FROM shop.orders",
            "orders_mv", "shop_restored", "shop",
        )
        # 'CREATE MATERIALIZED VIEW shop_restored.orders_mv AS SELECT * FROM shop_restored.orders'
    """
    if source_database and source_database != target_database:
        source_pattern = re.compile(rf"(?<![\w.]){re.escape(source_database)}\.")
        definition = source_pattern.sub(f"{target_database}.", definition)

    name_pattern = re.compile(rf"(?<![\w.]){re.escape(object_name)}(?!\w)")
    return name_pattern.sub(f"{target_database}.{object_name}", definition)


# ============================================================================
# Orchestrator
# ============================================================================


class RestoreOrchestrator:
    """Restore one database of a backup tree.

    Args:
        adapter: Database adapter.
        backup_root: Backup tree root.
        database: Database name inside the backup tree.
        data_dir: Server data directory; parts are staged under
            ``<data_dir>/data/<target>/<table>/detached``.
        target_database: Database to create; defaults to ``database``.
        dry_run: Collect statements without executing or copying anything.
        workers: Maximum tables attached concurrently.
        id_mode: Partition id derivation, see ``derive_partition_id``.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        backup_root: Path,
        database: str,
        data_dir: Path,
        target_database: str | None = None,
        dry_run: bool = False,
        workers: int = 1,
        id_mode: PartitionIdMode = "prefix",
    ):
        if not database:
            raise ConfigError("please set database for restore")

        self.adapter = adapter
        self.tree = BackupTree(root=Path(backup_root))
        self.database = database
        self.data_dir = Path(data_dir)
        self.target_database = target_database or database
        self.dry_run = dry_run
        self.workers = workers
        self.id_mode = id_mode

        self.phase = RestorePhase.CREATING_DATABASE
        self.summary = RestoreSummary(
            database=database,
            target_database=self.target_database,
            dry_run=dry_run,
        )
        self._created_tables: set[str] = set()

    def check_preconditions(self) -> None:
        """Verify inputs before anything is changed.

        Raises:
            ConfigError: If the backup tree has no metadata for the
                database or the server data directory is missing.
        """
        metadata_dir = self.tree.metadata_dir(self.database)
        if not metadata_dir.is_dir():
            raise ConfigError(f"{metadata_dir} not found")

        if not self.dry_run:
            check_directories_exist(self.data_dir)

        try:
            manifest = read_manifest(self.tree)
        except json.JSONDecodeError as e:
            logger.warning("can't read manifest: %s", e)
            manifest = None
        if manifest is not None:
            prefix = f"{self.database}."
            for table in manifest.get("tables_incomplete", []):
                if table.startswith(prefix):
                    logger.warning("table %s was not backed up completely", table)

    async def run(self) -> RestoreSummary:
        """Run every phase and return the summary.

        Raises:
            ConfigError: If a precondition fails or the metadata directory
                cannot be listed (nothing was changed).
            QueryError: If ``CREATE DATABASE`` fails.
        """
        self.check_preconditions()
        metadata_dir = self.tree.metadata_dir(self.database)
        try:
            objects, failures = read_metadata_dir(metadata_dir)
        except OSError as e:
            raise ConfigError(f"can't read {metadata_dir}: {e.strerror or e}") from e
        self.summary.failures.extend(failures)

        await self._create_database()

        tables = [obj for obj in objects if obj.kind == ObjectKind.TABLE]
        views = [obj for obj in objects if obj.kind == ObjectKind.VIEW]
        others = [obj for obj in objects if obj.kind == ObjectKind.OTHER]

        self.phase = RestorePhase.REPLAYING_TABLES
        for table in tables:
            await self._replay_table(table)

        self.phase = RestorePhase.ATTACHING_PARTITIONS
        await run_pool(tables, self._attach_or_skip, self.workers)

        self.phase = RestorePhase.REPLAYING_OTHER_OBJECTS
        for obj in views + others:
            await self._replay_object(obj)

        self.phase = RestorePhase.DONE
        return self.summary

    async def _run_statement(self, statement: str) -> None:
        logger.info("%s", statement)
        if self.dry_run:
            self.summary.statements.append(statement)
            return
        await self.adapter.execute(statement)

    async def _create_database(self) -> None:
        logger.info("try to create database %s", self.target_database)
        try:
            await self._run_statement(f"CREATE DATABASE {self.target_database}")
        except QueryError as e:
            logger.error("failed to create database %s: %s", self.target_database, e.message)
            raise

    async def _replay_table(self, table: MetadataObject) -> None:
        logger.info("try to apply metadata from file %s", table.file_name)
        statement = qualify_table_definition(table.definition, self.target_database)
        try:
            await self._run_statement(statement)
        except QueryError as e:
            logger.error("can't apply metadata file %s: %s", table.file_name, e.message)
            self.summary.tables_failed += 1
            self.summary.failures.append(
                ItemFailure(kind="query", item=table.file_name, error=e.message)
            )
            return
        self.summary.tables_created += 1
        self._created_tables.add(table.object_name)

    async def _attach_or_skip(self, table: MetadataObject) -> None:
        try:
            await self._attach_partitions(table)
        except OrderingPreconditionError as e:
            logger.warning("%s", e)
            self.summary.tables_skipped += 1
            self.summary.failures.append(
                ItemFailure(
                    kind="ordering",
                    item=f"{self.target_database}.{table.object_name}",
                    error=str(e),
                )
            )

    async def _attach_partitions(self, table: MetadataObject) -> None:
        """Stage and attach every backed-up partition of one table.

        Raises:
            OrderingPreconditionError: If the table was not created.
        """
        qualified = f"{self.target_database}.{table.object_name}"
        if table.object_name not in self._created_tables:
            raise OrderingPreconditionError(
                f"table {qualified} was not created, partitions not attached"
            )

        logger.info("try to attach partitions for %s", qualified)
        refs = await asyncio.to_thread(
            locate_partitions,
            self.tree,
            self.database,
            table.object_name,
            self.data_dir,
            self.target_database,
            not self.dry_run,
            self.id_mode,
        )

        for ref in refs:
            statement = f"ALTER TABLE {ref.qualified_table} ATTACH PARTITION '{ref.partition_id}'"
            try:
                await self._run_statement(statement)
            except QueryError as e:
                logger.error(
                    "can't attach partition %s to %s table in %s database: %s",
                    ref.partition_id, ref.table, ref.database, e.message,
                )
                self.summary.partitions_failed += 1
                self.summary.failures.append(
                    ItemFailure(kind="query", item=f"{qualified}:{ref.partition_id}", error=e.message)
                )
                continue
            self.summary.partitions_attached += 1

    async def _replay_object(self, obj: MetadataObject) -> None:
        logger.info("try to apply metadata from file %s", obj.file_name)
        statement = qualify_object_definition(
            obj.definition,
            obj.object_name,
            self.target_database,
            source_database=self.database,
        )
        try:
            await self._run_statement(statement)
        except QueryError as e:
            logger.error("can't apply metadata file %s: %s", obj.file_name, e.message)
            self.summary.objects_failed += 1
            self.summary.failures.append(
                ItemFailure(kind="query", item=obj.file_name, error=e.message)
            )
            return
        self.summary.objects_created += 1


async def restore_database(
    adapter: DatabaseClient,
    backup_root: Path,
    database: str,
    data_dir: Path,
    target_database: str | None = None,
    dry_run: bool = False,
    workers: int = 1,
    id_mode: PartitionIdMode = "prefix",
    timeout: float | None = None,
) -> RestoreSummary:
    """Restore ``database`` from a backup tree into ``target_database``.

    See ``RestoreOrchestrator`` for the arguments.  With ``timeout`` set,
    the run stops at the deadline and a ``timeout`` failure is recorded;
    the summary reflects the work done so far.

    Raises:
        ConfigError: If a precondition fails (nothing was changed).
        QueryError: If ``CREATE DATABASE`` fails.
    """
    orchestrator = RestoreOrchestrator(
        adapter,
        backup_root,
        database,
        data_dir,
        target_database=target_database,
        dry_run=dry_run,
        workers=workers,
        id_mode=id_mode,
    )
    try:
        async with asyncio.timeout(timeout):
            return await orchestrator.run()
    except TimeoutError:
        logger.error("restore timed out after %ss during %s", timeout, orchestrator.phase.value)
        orchestrator.summary.failures.append(
            ItemFailure(
                kind="timeout",
                item=orchestrator.target_database,
                error=f"timed out after {timeout}s during {orchestrator.phase.value}",
            )
        )
        return orchestrator.summary
