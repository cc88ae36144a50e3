"""Server adapter factory.

Resolves which ClickHouse server to talk to and builds the shared adapter
for a run.  Resolution order:

1. Explicit ``host``/``port`` (CLI ``-H``/``-p``)
2. Explicit profile name (CLI ``--profile``)
3. ``<PREFIX>CLICKHOUSE_DUMP_PROFILE`` environment variable
4. ``127.0.0.1:9000`` with default settings
"""

import logging
import os
from urllib.parse import quote

from clickhouse_dump.adapters.clickhouse import AsyncClickHouseAdapter
from clickhouse_dump.config.models import DumpConfig, ServerProfile
from clickhouse_dump.exceptions import ProfileNotFoundError, ServerConnectionError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9000
PROFILE_ENV_VAR = "CLICKHOUSE_DUMP_PROFILE"


# ============================================================================
# Profile Resolution
# ============================================================================


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from the environment.

    Args:
        env_prefix: Prefix for the environment variable
            (e.g. ``"PROD_"`` reads ``PROD_CLICKHOUSE_DUMP_PROFILE``).

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If the variable is not set
    """
    env_var = f"{env_prefix}{PROFILE_ENV_VAR}"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    raise ProfileNotFoundError(
        f"No server profile configured.\n"
        f"Run: {env_var}=<name> clickhouse-dump ... or pass --profile/--host"
    )


def select_profile(
    config: DumpConfig | None,
    profile_name: str | None = None,
    host: str | None = None,
    port: int | None = None,
    env_prefix: str = "",
) -> tuple[str, ServerProfile]:
    """Pick the server profile for this run.

    Args:
        config: Loaded configuration, or ``None`` when no config file exists.
        profile_name: Explicit profile name.
        host: Explicit server host; overrides any profile.
        port: Explicit native-protocol port; overrides any profile.
        env_prefix: Prefix for the profile environment variable.

    Returns:
        Tuple of (profile_name, ServerProfile)

    Raises:
        ProfileNotFoundError: If a named profile is not in the config.
    """
    if host is not None or port is not None:
        url = build_url(host or DEFAULT_HOST, port or DEFAULT_PORT)
        return "command-line", ServerProfile(url=url)

    if profile_name is None:
        try:
            profile_name = get_active_profile_name(env_prefix=env_prefix)
        except ProfileNotFoundError:
            logger.debug("No profile selected, using %s:%s", DEFAULT_HOST, DEFAULT_PORT)
            return "default", ServerProfile(url=build_url(DEFAULT_HOST, DEFAULT_PORT))

    profiles = config.profiles if config is not None else {}
    if profile_name not in profiles:
        available = ", ".join(profiles.keys()) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found. Available: {available}"
        )

    return profile_name, profiles[profile_name]


# ============================================================================
# Connection URLs
# ============================================================================


def build_url(host: str, port: int, user: str = "default", database: str = "default") -> str:
    """Build a native-protocol connection URL from host and port."""
    return f"clickhouse://{quote(user, safe='')}@{host}:{port}/{database}"


def resolve_url(profile: ServerProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Server profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Adapter Factory
# ============================================================================


def get_adapter(profile: ServerProfile, workers: int = 1) -> AsyncClickHouseAdapter:
    """Create an adapter for the profile with one pooled connection per worker.

    Args:
        profile: Server profile to connect to.
        workers: Number of concurrent workers sharing the adapter.

    Returns:
        ``AsyncClickHouseAdapter`` (not yet connected).
    """
    return AsyncClickHouseAdapter(resolve_url(profile), pool_size=max(1, workers))


async def connect(profile: ServerProfile, workers: int = 1) -> AsyncClickHouseAdapter:
    """Create an adapter and verify the server answers.

    Args:
        profile: Server profile to connect to.
        workers: Number of concurrent workers sharing the adapter.

    Returns:
        Connected ``AsyncClickHouseAdapter``.

    Raises:
        ServerConnectionError: If the server cannot be reached.  The
            adapter is closed before raising.
    """
    adapter = get_adapter(profile, workers=workers)
    try:
        await adapter.test_connection()
    except ServerConnectionError:
        await adapter.close()
        raise
    return adapter
