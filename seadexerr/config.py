"""Configuration management using pydantic-settings.

All environment variables are loaded and validated here. Service settings use
the ``SEADEXER_`` prefix; Sonarr settings keep the ``SONARR_`` names the rest
of the *arr stack uses. The Sonarr API key is a SecretStr to keep it out of logs.
"""

from pathlib import Path

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAPPING_SOURCE_URL = (
    "https://raw.githubusercontent.com/eliasbenb/PlexAniBridge-Mappings/"
    "refs/heads/v2/mappings.json"
)


def _normalize_root_url(value: str) -> str:
    """Ensure a base URL ends with a slash so relative paths join under it."""
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError(f"{value!r} must be an http(s) URL")
    if not value.endswith("/"):
        value += "/"
    return value


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Invalid values raise ValidationError on construction, which is fatal at
    startup.
    """

    model_config = SettingsConfigDict(
        env_prefix="SEADEXER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # HTTP listener
    host: str = Field(default="0.0.0.0", description="Address to bind the Torznab server to")

    port: int = Field(
        default=6767,
        description="Port for the Torznab server",
        ge=1,
        le=65535,
    )

    public_base_url: str | None = Field(
        default=None,
        description="Externally reachable base URL used in feed links (optional)",
    )

    title: str = Field(default="Seadexerr", description="Indexer title reported in caps")

    description: str = Field(
        default="Indexer bridge for releases.moe",
        description="Indexer description reported in caps",
    )

    # releases.moe catalog
    releases_base_url: str = Field(
        default="https://releases.moe/api/",
        description="releases.moe PocketBase API root",
    )

    releases_timeout: float = Field(
        default=10.0,
        validation_alias=AliasChoices(
            "SEADEXER_RELEASES_TIMEOUT_SECS", "SEADEXER_RELEASES_TIMEOUT", "releases_timeout"
        ),
        description="Per-call timeout for releases.moe requests in seconds",
        gt=0,
    )

    releases_max_concurrency: int = Field(
        default=4,
        description="Maximum concurrent releases.moe requests per search",
        ge=1,
    )

    # Mapping dataset
    data_path: Path = Field(
        default=Path("data"),
        description="Directory holding the cached mappings file",
    )

    mapping_source_url: str = Field(
        default=DEFAULT_MAPPING_SOURCE_URL,
        description="Remote PlexAniBridge mappings document",
    )

    mapping_refresh_interval: int = Field(
        default=21_600,
        validation_alias=AliasChoices(
            "SEADEXER_MAPPING_REFRESH_SECS",
            "SEADEXER_MAPPING_REFRESH_INTERVAL",
            "mapping_refresh_interval",
        ),
        description="Seconds between mapping refreshes",
        gt=0,
    )

    mapping_timeout: float = Field(
        default=10.0,
        validation_alias=AliasChoices(
            "SEADEXER_MAPPING_TIMEOUT_SECS", "SEADEXER_MAPPING_TIMEOUT", "mapping_timeout"
        ),
        description="Timeout for downloading the mappings document in seconds",
        gt=0,
    )

    # Search behaviour
    request_timeout: float = Field(
        default=30.0,
        validation_alias=AliasChoices(
            "SEADEXER_REQUEST_TIMEOUT_SECS", "SEADEXER_REQUEST_TIMEOUT", "request_timeout"
        ),
        description="Overall timeout for one search request in seconds",
        gt=0,
    )

    default_limit: int = Field(
        default=100,
        description="Default and maximum number of results per search",
        ge=1,
    )

    # Sonarr (PVR metadata lookups for free-text searches)
    sonarr_enabled: bool = Field(
        default=True,
        description="Use Sonarr to resolve free-text searches",
    )

    sonarr_base_url: str = Field(
        default="http://localhost:8989/",
        validation_alias=AliasChoices("SONARR_BASE_URL", "sonarr_base_url"),
        description="Sonarr base URL",
    )

    sonarr_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("SONARR_API_KEY", "sonarr_api_key"),
        description="Sonarr API key (optional, Sonarr lookups disabled without it)",
    )

    sonarr_timeout: float = Field(
        default=10.0,
        validation_alias=AliasChoices("SONARR_TIMEOUT_SECS", "sonarr_timeout"),
        description="Timeout for Sonarr requests in seconds",
        gt=0,
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    environment: str = Field(
        default="production",
        description="Environment name (development, production)",
    )

    @field_validator("releases_base_url", "sonarr_base_url")
    @classmethod
    def validate_root_url(cls, v: str) -> str:
        """Normalize API roots to end with a slash."""
        return _normalize_root_url(v)

    @field_validator("public_base_url")
    @classmethod
    def validate_public_base_url(cls, v: str | None) -> str | None:
        """Normalize the public base URL when one is set."""
        if v is None or not v.strip():
            return None
        return _normalize_root_url(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v_upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is development or production."""
        allowed = {"development", "production"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v_lower

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def has_sonarr(self) -> bool:
        """Check if Sonarr lookups are enabled and configured."""
        return self.sonarr_enabled and self.sonarr_api_key is not None

    @property
    def mapping_file(self) -> Path:
        """Location of the cached mappings document."""
        return self.data_path / "mappings.json"

    def get_safe_dict(self) -> dict[str, str | int | float | bool | None]:
        """Get configuration as dict with sensitive values masked.

        Returns:
            Dictionary with SecretStr values shown as '***'
        """
        result: dict[str, str | int | float | bool | None] = {}
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)

            if isinstance(value, SecretStr):
                result[field_name] = "***"
            elif value is None or isinstance(value, str | int | float | bool):
                result[field_name] = value
            else:
                result[field_name] = str(value)

        return result


# Global settings instance
settings = Settings()
