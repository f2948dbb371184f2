"""
Shared configuration management for the resilient cache service.

Raw values are resolved by pydantic-settings from the environment (prefix
``CACHE_``) and an optional ``.env`` file. The cache core only ever sees the
validated, immutable ``ConnectionConfig``.
"""

from typing import Any, Dict, List, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from cache_common.errors import ConfigInvalidError

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from cache_common.secrets_manager import SecretsManager


DEFAULT_TTL_SECONDS = 20 * 60
DEFAULT_MAX_RETRIES = 10
DEFAULT_BASE_DELAY_MS = 50
DEFAULT_MAX_DELAY_MS = 500


def _describe_errors(exc: PydanticValidationError) -> List[Dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]


class ConnectionConfig(BaseModel):
    """Validated parameters for the single remote-store connection."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str
    port: int = Field(default=6379, ge=1, le=65535)
    use_tls: bool = True
    credential: Optional[SecretStr] = None
    ttl_seconds: int = Field(default=DEFAULT_TTL_SECONDS, gt=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    base_delay_ms: int = Field(default=DEFAULT_BASE_DELAY_MS, ge=0)
    max_delay_ms: int = Field(default=DEFAULT_MAX_DELAY_MS, ge=0)
    db: int = Field(default=0, ge=0)
    socket_timeout_seconds: float = Field(default=5.0, gt=0)
    retry_forever: bool = False

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except PydanticValidationError as exc:
            raise ConfigInvalidError(
                "Invalid connection configuration",
                {"errors": _describe_errors(exc)}
            ) from exc

    @field_validator("host")
    @classmethod
    def _host_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("host must not be empty")
        return value

    @model_validator(mode="after")
    def _delay_bounds(self) -> "ConnectionConfig":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CACHE_",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Remote store
    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_tls: bool = True
    redis_db: int = 0
    redis_access_key: Optional[SecretStr] = None
    socket_timeout_seconds: float = 5.0

    # Expiry and reconnect policy
    ttl_seconds: int = DEFAULT_TTL_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    retry_forever: bool = False
    startup_connect_timeout_seconds: float = Field(default=2.0, ge=0)

    # Cache behaviour
    key_prefix: str = ""
    fallback_enabled: bool = True
    fallback_max_entries: int = Field(default=1000, ge=1)

    # Secrets
    master_key: Optional[SecretStr] = None
    secrets_file: Optional[str] = None


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    try:
        return ServiceConfig(service_name=service_name, port=port, **overrides)
    except PydanticValidationError as exc:
        raise ConfigInvalidError(
            "Invalid service configuration",
            {"errors": _describe_errors(exc)}
        ) from exc


def load_connection_config(
    settings: BaseConfig,
    secrets_manager: Optional["SecretsManager"] = None,
) -> ConnectionConfig:
    """Resolve settings and secrets into a validated ConnectionConfig."""
    credential = settings.redis_access_key
    if credential is None and secrets_manager is not None:
        secret = secrets_manager.get_secret("REDIS_ACCESS_KEY")
        if secret:
            credential = SecretStr(secret)

    return ConnectionConfig(
        host=settings.redis_host,
        port=settings.redis_port,
        use_tls=settings.redis_tls,
        credential=credential,
        ttl_seconds=settings.ttl_seconds,
        max_retries=settings.max_retries,
        base_delay_ms=settings.base_delay_ms,
        max_delay_ms=settings.max_delay_ms,
        db=settings.redis_db,
        socket_timeout_seconds=settings.socket_timeout_seconds,
        retry_forever=settings.retry_forever,
    )
