"""TOML configuration loader for clickhouse-dump."""

import tomllib
from pathlib import Path

from clickhouse_dump.config.models import BackupSettings, DumpConfig, ServerProfile

CONFIG_FILE_NAME = "clickhouse-dump.toml"


def load_dump_config(config_path: str | Path | None = None) -> DumpConfig:
    """Load server profiles and backup settings from a TOML file.

    Args:
        config_path: Path to the config file (default:
            ``clickhouse-dump.toml`` in the current working directory).

    Returns:
        DumpConfig with all profiles and backup settings.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        tomllib.TOMLDecodeError: If the file is not valid TOML.
        pydantic.ValidationError: If a profile or setting has the wrong type.
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILE_NAME
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config not found: {config_path}\n"
            f"Create {CONFIG_FILE_NAME} with a [profiles.<name>] section, "
            f"or pass --host/--port."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = ServerProfile(**profile_data)

    return DumpConfig(
        profiles=profiles,
        backup=BackupSettings(**data.get("backup", {})),
    )
