"""Configuration settings using Pydantic Settings.

Usage:
    from world_manager.config import WorldManagerSettings

    # Load from environment variables (WORLD_MANAGER_*) and .env
    settings = WorldManagerSettings()

    # Or override with explicit values
    settings = WorldManagerSettings(database_url="sqlite:///:memory:")
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from world_manager.models.world import Environment

SQLITE_PREFIX = "sqlite:///"


class WorldManagerSettings(BaseSettings):
    """Configuration for the world manager.

    Attributes:
        database_url: Record store location, ``sqlite:///<path>`` or a bare path.
        blob_root: Directory backing the local blob store.
        seeds_dir: Default directory for exported seed bundles.
        backups_dir: Default directory for environment backups.
        default_environment: Environment used when a command doesn't name one.
        default_ttl_hours: Idle time before an auto-cleanup world is deactivated,
            unless the world sets ``cleanup_after_hours``.
        log_level: Root log level for the CLI and API.

    Environment Variables:
        WORLD_MANAGER_DATABASE_URL
        WORLD_MANAGER_BLOB_ROOT
        WORLD_MANAGER_SEEDS_DIR
        WORLD_MANAGER_BACKUPS_DIR
        WORLD_MANAGER_DEFAULT_ENVIRONMENT
        WORLD_MANAGER_DEFAULT_TTL_HOURS
        WORLD_MANAGER_LOG_LEVEL
    """

    model_config = SettingsConfigDict(
        env_prefix="WORLD_MANAGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = "sqlite:///worlds.db"
    blob_root: Path = Path("blobs")
    seeds_dir: Path = Path("seeds")
    backups_dir: Path = Path("backups")
    default_environment: Environment = Environment.LOCAL
    default_ttl_hours: int = 24
    log_level: str = "INFO"

    @property
    def database_path(self) -> str:
        """Filesystem path (or ``:memory:``) for the SQLite record store."""
        if self.database_url.startswith(SQLITE_PREFIX):
            return self.database_url[len(SQLITE_PREFIX):]
        return self.database_url
