"""
Centralized configuration management using Pydantic Settings.

Process-wide settings (database URL, logging, connection retries, remote
node address) are loaded from environment variables and .env files with the
DATASERVICE_ prefix. Per-service behaviour (id field, field filters,
population rules, paging) lives in ServiceSettings, declared by each service.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def split_whitespace(value: Any) -> Any:
    """Split a whitespace-separated string into a list; pass lists through."""
    if isinstance(value, str):
        return value.split()
    return value


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via DATASERVICE_* environment variables.
    """

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///:memory:",
        description="Default database URL for the SQLAlchemy adapter"
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements (debug only)"
    )
    connect_max_retries: int = Field(
        default=5,
        ge=0,
        description="Reconnect attempts after the first failed connect on service start"
    )
    connect_retry_delay: float = Field(
        default=1.0,
        gt=0,
        description="Initial delay in seconds between reconnect attempts"
    )

    # Paging defaults applied to services that do not override them
    default_page_size: int = Field(default=10, gt=0)
    default_max_page_size: int = Field(default=100, ge=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    # Remote node for HttpBroker
    remote_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the node serving remote actions"
    )
    remote_timeout_seconds: float = Field(default=10.0, gt=0)
    remote_max_retries: int = Field(default=2, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="DATASERVICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """
        Validate database URL format.

        Only async drivers are accepted since every adapter call is awaited.
        """
        if not v or v.strip() == "":
            raise ValueError("DATABASE_URL is required and cannot be empty")

        valid_schemes = ["sqlite+aiosqlite", "postgresql+asyncpg", "mysql+aiomysql"]
        if not any(v.startswith(scheme + "://") for scheme in valid_schemes):
            raise ValueError(
                f"DATABASE_URL must start with one of: {', '.join(valid_schemes)}. "
                f"Got: {v[:20]}..."
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("remote_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class ServiceSettings(BaseModel):
    """
    Per-service data access settings.

    Attributes:
        id_field: Service-visible name of the identity field
        fields: Default field allow-list; None means no filtering
        exclude_fields: Fields always removed from responses
        populates: Relation rules keyed by relation name
        page_size: Default page size of the list action
        max_page_size: Upper bound on page_size (0 or less disables it)
        max_limit: Upper bound on limit of the find action (-1 disables it)
        entity_validator: Callable or pydantic model validating new entities
        use_dot_notation: Flatten nested update payloads into dotted keys
        cache_clean_event_type: "broadcast" or "emit"
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="allow")

    id_field: str = "_id"
    fields: Optional[List[str]] = None
    exclude_fields: Optional[List[str]] = None
    populates: Optional[Dict[str, Any]] = None
    page_size: int = Field(default_factory=lambda: get_settings().default_page_size)
    max_page_size: int = Field(default_factory=lambda: get_settings().default_max_page_size)
    max_limit: int = -1
    entity_validator: Any = None
    use_dot_notation: bool = False
    cache_clean_event_type: str = "broadcast"

    @field_validator("fields", "exclude_fields", mode="before")
    @classmethod
    def parse_field_list(cls, v: Any) -> Any:
        """Accept "a b c" as well as ["a", "b", "c"]."""
        return split_whitespace(v)

    @field_validator("cache_clean_event_type")
    @classmethod
    def validate_event_type(cls, v: str) -> str:
        if v not in {"broadcast", "emit"}:
            raise ValueError("cache_clean_event_type must be 'broadcast' or 'emit'")
        return v


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide Settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
