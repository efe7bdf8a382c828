"""
Session configuration using Pydantic Settings.

Configuration values can be set via ``SESSION_``-prefixed environment
variables or a .env file.
"""

from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from reqsession.core.security import validate_secret_key


class SessionSettings(BaseSettings):
    """Session manager settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="SESSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Secret used to sign (and optionally encrypt) the identifier cookie.
    # When unset, a key is generated on first use (see get_or_create_secret_key)
    secret_key: Optional[SecretStr] = None
    secret_key_file: Optional[str] = None

    # Identifier transport (cookie) attributes
    cookie_name: str = "session_id"
    cookie_path: str = "/"
    cookie_domain: Optional[str] = None
    max_age: Optional[int] = Field(default=1800, ge=1)  # 30 minutes
    https_only: bool = False
    http_only: bool = True
    same_site: Literal["lax", "strict", "none"] = "lax"

    # Re-issue the cookie on every response (sliding expiry)
    rolling: bool = False

    # Encrypt the identifier instead of only signing it
    encrypt_cookie: bool = False
    kdf_iterations: int = 300_000
    kdf_salt: str = "reqsession.cookie"

    # Number of random bytes in a freshly minted session id
    id_bytes: int = Field(default=32, ge=16, le=64)

    # Storage backend
    backend: Literal["memory", "database", "redis"] = "memory"
    database_url: str = "sqlite:///./data/sessions.db"
    redis_url: Optional[str] = None
    redis_prefix: str = "reqsession:"
    redis_socket_timeout: float = 2.0
    ttl_seconds: Optional[int] = Field(default=None, ge=1)

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    @field_validator("secret_key")
    @classmethod
    def _check_secret_key(cls, value: Optional[SecretStr]) -> Optional[SecretStr]:
        if value is not None:
            validate_secret_key(value.get_secret_value())
        return value

    @field_validator("kdf_iterations")
    @classmethod
    def _check_kdf_iterations(cls, value: int) -> int:
        if value < 100_000:
            raise ValueError("kdf_iterations must be at least 100,000")
        if value > 10_000_000:
            raise ValueError("kdf_iterations must not exceed 10,000,000")
        return value

    @property
    def effective_ttl(self) -> Optional[int]:
        """Store TTL; defaults to the cookie lifetime so data never outlives its id."""
        return self.ttl_seconds if self.ttl_seconds is not None else self.max_age
