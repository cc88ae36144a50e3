"""Pydantic models for server profiles and backup settings."""

from typing import Literal

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class ServerProfile(BaseModel):
    """ClickHouse server profile from clickhouse-dump.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    data_dir: str = "/var/lib/clickhouse"  # Server data directory (freeze staging, metadata)


class BackupSettings(BaseModel):
    """Run settings shared by backup and restore."""

    freeze_label: str = "backup"
    workers: int = Field(default=1, ge=1)
    cleanup: bool = True
    partition_id_mode: Literal["prefix", "delimited"] = "prefix"


class DumpConfig(BaseModel):
    """Complete configuration from clickhouse-dump.toml."""

    profiles: dict[str, ServerProfile] = Field(default_factory=dict)
    backup: BackupSettings = Field(default_factory=BackupSettings)
