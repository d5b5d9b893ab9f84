"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from snapsecure_api.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: str = "snapsecure"
    postgres_password: Optional[str] = None
    postgres_db: str = "snapsecure"
    postgres_port: int = 5432

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # API
    environment: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Key material - NO DEFAULTS (process must not start without them)
    encryption_key: Optional[str] = None  # Session tokens and general data
    master_encryption_key: Optional[str] = None  # Per-user private keys
    key_derivation_salt: str = "snapsecure-key-derivation"
    key_derivation_iterations: int = 100000

    # Logging
    log_level: str = "INFO"

    # Firewall
    firewall_backend: str = "memory"  # memory, redis
    firewall_seed_blocked_ips: list[str] = ["0.0.0.0"]
    rate_limit_window_seconds: int = 60
    rate_limit_max_requests: int = 100
    max_failed_attempts: int = 5
    failed_attempt_ttl_seconds: int = 3600
    suspicious_threshold: int = 10
    firewall_cleanup_interval_seconds: int = 300

    # Intrusion heuristics
    rapid_activity_threshold: int = 20

    # Permissions
    min_security_score: int = 50
    max_permission_requests: int = 3

    # Auth tokens
    token_max_age_seconds: int = 24 * 60 * 60
    bcrypt_rounds: int = 12

    # Admin routes (disabled when unset)
    admin_api_key: Optional[str] = None

    # Worker schedule
    integrity_check_interval_seconds: int = 3600

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@localhost:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    def validate_settings(self):
        """Validate settings before any service is constructed."""
        missing = []
        if not self.encryption_key:
            missing.append("ENCRYPTION_KEY")
        if not self.master_encryption_key:
            missing.append("MASTER_ENCRYPTION_KEY")
        if missing:
            raise ConfigurationError(
                f"{', '.join(missing)} required for secure operations. "
                "Refusing to start without key material."
            )

        if self.firewall_backend.lower() not in ("memory", "redis"):
            raise ConfigurationError(f"Unknown firewall backend: {self.firewall_backend}")

        env = self.environment.lower()
        if env not in ("development", "test", "dev"):
            if self.encryption_key == self.master_encryption_key:
                raise ConfigurationError(
                    "ENCRYPTION_KEY and MASTER_ENCRYPTION_KEY must differ in production."
                )
            if not self.database_url and not self.postgres_password:
                raise ConfigurationError(
                    "DATABASE_URL or POSTGRES_PASSWORD is required in production. "
                    "Do not use default credentials."
                )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
