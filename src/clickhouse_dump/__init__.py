"""clickhouse-dump: partition freeze/copy backup and replay restore for ClickHouse.

Freezes active partitions through the server, copies the frozen parts and
the database metadata into a portable backup tree, and replays that tree
into a (possibly renamed) database.

Usage:
    from clickhouse_dump import connect, load_dump_config, select_profile
    from clickhouse_dump import run_backup, restore_database, validate_backup
"""

__version__ = "0.1.0"

# Adapters
from clickhouse_dump.adapters.base import DatabaseClient
from clickhouse_dump.adapters.clickhouse import AsyncClickHouseAdapter

# Config
from clickhouse_dump.config.loader import load_dump_config
from clickhouse_dump.config.models import BackupSettings, DumpConfig, ServerProfile

# Factory
from clickhouse_dump.factory import (
    connect,
    get_adapter,
    resolve_url,
    select_profile,
)

# Errors
from clickhouse_dump.exceptions import (
    ConfigError,
    CopyError,
    DumpError,
    ProfileNotFoundError,
    QueryError,
    ServerConnectionError,
)

# Backup and restore
from clickhouse_dump.backup import (
    BackupSummary,
    BackupTree,
    RestoreSummary,
    restore_database,
    run_backup,
    validate_backup,
)

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncClickHouseAdapter",
    # Config
    "load_dump_config",
    "BackupSettings",
    "DumpConfig",
    "ServerProfile",
    # Factory
    "connect",
    "get_adapter",
    "resolve_url",
    "select_profile",
    # Errors
    "DumpError",
    "ConfigError",
    "ProfileNotFoundError",
    "ServerConnectionError",
    "QueryError",
    "CopyError",
    # Backup and restore
    "BackupSummary",
    "BackupTree",
    "RestoreSummary",
    "run_backup",
    "restore_database",
    "validate_backup",
]
