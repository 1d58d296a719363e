"""Core configuration loaded from environment variables."""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Environments allowed to run without an explicit DATABASE_URL
LOCAL_ENVS = frozenset({"dev", "test"})
LOCAL_DATABASE_URL = "sqlite+pysqlite:///:memory:"


class Settings(BaseSettings):
    """PHI core settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    VERSION: str = "0.01.00"

    # Database (audit store + repositories). Required outside dev/test.
    DATABASE_URL: str = ""

    # Field-level PHI encryption (Fernet keys)
    # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    PHI_ENCRYPTION_KEY: str = ""
    PHI_ENCRYPTION_KEY_PREVIOUS: str = ""  # Set during rotation, clear after re-encryption

    # HMAC key for deterministic search hashes
    PHI_HASH_KEY: str = ""

    # Audit retention
    AUDIT_RETENTION_YEARS: int = 7
    AUDIT_WRITE_RETRIES: int = 1

    # Proxy/Load Balancer Settings
    # Set to True when running behind nginx/Cloudflare to trust X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = False

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # OpenTelemetry tracing (optional)
    OTEL_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "phi-core"
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""
    OTEL_EXPORTER_OTLP_HEADERS: str = ""  # key=value,key2=value2
    OTEL_SAMPLE_RATE: float = 0.1
    OTEL_INSTRUMENT_SQLALCHEMY: bool = False

    @model_validator(mode="after")
    def require_database_url(self) -> "Settings":
        """The audit trail must never land in a volatile store by accident."""
        if not self.DATABASE_URL:
            if self.ENV not in LOCAL_ENVS:
                raise ValueError(f"DATABASE_URL must be set when ENV={self.ENV!r}")
            self.DATABASE_URL = LOCAL_DATABASE_URL
        return self

    @property
    def phi_encryption_keys(self) -> list[str]:
        """Returns list of valid keys (current first, then previous if set)."""
        keys = [self.PHI_ENCRYPTION_KEY]
        if self.PHI_ENCRYPTION_KEY_PREVIOUS:
            keys.append(self.PHI_ENCRYPTION_KEY_PREVIOUS)
        return keys

    @property
    def sentry_enabled(self) -> bool:
        return bool(self.SENTRY_DSN) and self.ENV != "dev"


settings = Settings()
