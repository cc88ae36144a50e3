"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from clickhouse_dump.config import load_dump_config, ServerProfile, DumpConfig
"""

from clickhouse_dump.config.loader import load_dump_config
from clickhouse_dump.config.models import BackupSettings, DumpConfig, ServerProfile

__all__ = ["load_dump_config", "BackupSettings", "DumpConfig", "ServerProfile"]
