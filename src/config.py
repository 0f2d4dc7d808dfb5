"""Settings for mediafetch, read from the environment (and .env) with pydantic-settings.

Credentials are SecretStr so they never reach a log line in clear text.
"""

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
ENVIRONMENTS = ("development", "production")


class Settings(BaseSettings):
    """Process settings.

    Only AllDebrid is required to run. The Usenet fallback is enabled when
    both the Newznab indexer and NZBGet are configured.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Remote cache service (AllDebrid)
    alldebrid_api_key: SecretStr | None = Field(
        default=None,
        description="AllDebrid API key",
    )

    alldebrid_agent: str = Field(
        default="mediafetch",
        description="Agent name sent with every AllDebrid request",
    )

    # Optional: Newznab indexer
    newznab_host: str | None = Field(
        default=None,
        description="Newznab indexer host (e.g., api.nzbgeek.info)",
    )

    newznab_api_key: SecretStr | None = Field(
        default=None,
        description="Newznab indexer API key",
    )

    # Optional: NZBGet downloader
    nzbget_url: str | None = Field(
        default=None,
        description="NZBGet JSON-RPC base URL (e.g., http://localhost:6789)",
    )

    nzbget_user: str | None = Field(
        default=None,
        description="NZBGet control username",
    )

    nzbget_password: SecretStr | None = Field(
        default=None,
        description="NZBGet control password",
    )

    nzbget_category: str = Field(
        default="mediafetch",
        description="Category assigned to appended NZBs",
    )

    # Search filtering
    blacklist_file: str = Field(
        default="data/blacklist.txt",
        description="Path to the release-title blacklist (one word per line)",
    )

    blacklist_ttl: int = Field(
        default=300,
        description="Blacklist cache TTL in seconds",
        ge=0,
    )

    hash_cache_ttl: int = Field(
        default=3600,
        description="TTL for resolved provider info hashes in seconds",
        ge=0,
    )

    # Persistence
    database_path: str = Field(
        default="data/mediafetch.db",
        description="Path to the SQLite database",
    )

    # Batch processing
    max_workers: int = Field(
        default=3,
        description="Maximum items processed concurrently per run",
        ge=1,
        le=32,
    )

    request_timeout: float = Field(
        default=30.0,
        description="HTTP request timeout in seconds",
        gt=0,
    )

    cache_settle_delay: float = Field(
        default=2.0,
        description="Seconds to wait between magnet upload and status check",
        ge=0,
    )

    check_interval_minutes: int = Field(
        default=60,
        description="Interval between scheduled acquisition runs",
        ge=1,
    )

    # Process
    log_level: str = Field(default="INFO", description="One of LOG_LEVELS")
    environment: str = Field(default="production", description="One of ENVIRONMENTS")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("environment")
    @classmethod
    def normalize_environment(cls, v: str) -> str:
        env = v.strip().lower()
        if env not in ENVIRONMENTS:
            raise ValueError(f"environment must be one of {', '.join(ENVIRONMENTS)}")
        return env

    @field_validator("newznab_host", "nzbget_url")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        """Empty values count as unset; base URLs lose their trailing slash."""
        if v is None or not v.strip():
            return None
        return v.strip().rstrip("/")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def has_alldebrid(self) -> bool:
        """The remote cache service can be used."""
        return self.alldebrid_api_key is not None

    @property
    def has_usenet(self) -> bool:
        """Indexer and downloader are both configured."""
        indexer = self.newznab_host is not None and self.newznab_api_key is not None
        return indexer and self.nzbget_url is not None

    def get_safe_dict(self) -> dict[str, str | int | float | None]:
        """Settings as a plain dict for startup logging, secrets shown as '***'."""
        return {
            name: "***" if isinstance(value, SecretStr) else value
            for name, value in self
        }


settings = Settings()
