"""Settings for hookrelay.

Values are read from ``HOOKRELAY_*`` environment variables or a ``.env``
file. Prefer passing a Settings instance explicitly over the global getter.
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hookrelay.errors import InvalidArgumentError

STORAGE_BACKENDS = ("memory", "file", "redis")

DEFAULT_SUCCESS_CODES = [200]


def validate_success_codes(codes) -> List[int]:
    """Validate an HTTP success-code set.

    Raises:
        InvalidArgumentError: if ``codes`` is not a non-empty list of
            HTTP status codes
    """
    if not isinstance(codes, (list, tuple, set, frozenset)):
        raise InvalidArgumentError(
            "http_success_codes", "http_success_codes must be a list"
        )
    if not codes:
        raise InvalidArgumentError(
            "http_success_codes",
            "http_success_codes must contain at least one http status code",
        )
    for code in codes:
        if isinstance(code, bool) or not isinstance(code, int) or not 100 <= code <= 599:
            raise InvalidArgumentError(
                "http_success_codes", f"Invalid http status code: {code!r}"
            )
    return sorted(set(codes))


class Settings(BaseSettings):
    """Runtime configuration."""

    # =========================================================================
    # STORAGE
    # =========================================================================
    storage_backend: str = "memory"  # Options: memory | file | redis
    db_path: str = "./webHooksDB.json"
    redis_url: str = "redis://localhost:6379"
    redis_key_prefix: str = ""

    # =========================================================================
    # DELIVERY
    # =========================================================================
    http_success_codes: List[int] = Field(default_factory=lambda: list(DEFAULT_SUCCESS_CODES))
    delivery_timeout: Optional[float] = Field(default=None, gt=0)
    # None keeps fan-out unbounded
    max_concurrent_deliveries: Optional[int] = Field(default=None, ge=1)
    verify_tls: bool = False

    # =========================================================================
    # LOGGING
    # =========================================================================
    log_level: str = "INFO"
    log_json: bool = True

    # =========================================================================
    # VALIDATORS
    # =========================================================================
    @field_validator("storage_backend", mode="after")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        """Only statically known backends are accepted."""
        v = v.lower()
        if v not in STORAGE_BACKENDS:
            raise ValueError(
                f"Invalid storage backend: {v}. Must be one of {', '.join(STORAGE_BACKENDS)}"
            )
        return v

    @field_validator("redis_url", mode="after")
    @classmethod
    def validate_redis_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError(f"Invalid Redis URL: {v}. Must start with redis:// or rediss://")
        return v

    @field_validator("http_success_codes", mode="after")
    @classmethod
    def validate_http_success_codes(cls, v: List[int]) -> List[int]:
        try:
            return validate_success_codes(v)
        except InvalidArgumentError as e:
            raise ValueError(str(e)) from e

    model_config = SettingsConfigDict(
        env_prefix="HOOKRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# =============================================================================
# GLOBAL SETTINGS (Lazy Initialization)
# =============================================================================

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance, creating it lazily."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings_instance: Settings) -> None:
    """Set the global settings instance.

    Primarily for testing purposes.
    """
    global _settings
    _settings = settings_instance


def reset_settings() -> None:
    """Reset the global settings instance.

    Forces re-creation on next get_settings() call.
    """
    global _settings
    _settings = None
