"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings


class CouchDbSettings(BaseModel):
    """Connection settings for one CouchDB instance.

    Frozen so a single instance can be shared across concurrent backups.
    Accepts camelCase keys (``useTls``) as sent by the frontend.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    host: str
    port: int = 5984
    use_tls: bool = False
    username: str = ""
    password: str = ""
    database: str


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "TasmotaScope Backup"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- CouchDB ---
    couchdb_host: str | None = None
    couchdb_port: int = 5984
    couchdb_secure: bool = False  # accepts 1/true
    couchdb_user: str = ""
    couchdb_password: str = ""
    couchdb_database: str | None = None

    # --- Auto-backup ---
    auto_backup_interval_seconds: int = 24 * 60 * 60
    auto_backup_initial_delay_seconds: int = 60
    auto_backup_max_concurrent: int = 5

    # --- CORS ---
    cors_origins: list[str] = ["*"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def couchdb(self) -> CouchDbSettings | None:
        """Return the CouchDB settings, or None unless host and database are set."""
        if not self.couchdb_host or not self.couchdb_database:
            return None
        return CouchDbSettings(
            host=self.couchdb_host,
            port=self.couchdb_port,
            use_tls=self.couchdb_secure,
            username=self.couchdb_user,
            password=self.couchdb_password,
            database=self.couchdb_database,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Runtime override set through PUT /api/config/couchdb; lost on restart
_couchdb_override: CouchDbSettings | None = None


def set_couchdb_override(settings: CouchDbSettings | None) -> None:
    global _couchdb_override
    _couchdb_override = settings


def get_couchdb_settings() -> CouchDbSettings | None:
    """Active CouchDB settings: the runtime override first, then the environment."""
    return _couchdb_override or get_settings().couchdb()
