"""Application configuration loaded from environment variables.

Settings for the database pool, store deadlines, token provisioning,
and authentication. Uses pydantic-settings for validation and .env file support.
"""

import uuid

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "voice_backend_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "voice_backend"
    database_user: str = "voice_backend_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # Connection pool: pool_size + max_overflow bounds open connections (5..25)
    database_pool_size: int = 5
    database_max_overflow: int = 20
    database_pool_timeout: float = 10.0  # seconds to wait for a free connection
    database_statement_timeout_ms: int = 5000

    # Upper bound for one whole store transaction (seconds)
    store_operation_timeout: float = 15.0

    # CORS (Security)
    # Default allows localhost:3000 for the Mini App frontend in development
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Tokens
    default_token_balance: int = 1000
    free_plan_name: str = "Free"

    # Authentication
    # Local-first mode: DEFAULT_USER_ID provides user context without JWT
    # Hosted mode: auth_enabled=True, JWT cookie required on every request
    default_user_id: uuid.UUID | None = None
    auth_enabled: bool = False
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "voice-backend"
    auth_audience: str = "voice-backend"
    auth_cookie_name: str = "voice.session-token"

    # Rate Limiting (Security)
    rate_limit_deduct: str = "120/minute"  # /tokens/deduct, per user
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate pool, token and production security requirements.

        Checks:
        - Pool size, timeouts and default balance are sane (all environments)
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars when auth is enabled in production
        """
        if self.database_pool_size < 1:
            msg = f"DATABASE_POOL_SIZE must be at least 1. Got: {self.database_pool_size}"
            raise ValueError(msg)
        if self.database_max_overflow < 0:
            msg = (
                "DATABASE_MAX_OVERFLOW cannot be negative. "
                f"Got: {self.database_max_overflow}"
            )
            raise ValueError(msg)
        if self.database_pool_timeout <= 0 or self.store_operation_timeout <= 0:
            msg = "DATABASE_POOL_TIMEOUT and STORE_OPERATION_TIMEOUT must be positive."
            raise ValueError(msg)
        if self.default_token_balance < 0:
            msg = (
                "DEFAULT_TOKEN_BALANCE cannot be negative. "
                f"Got: {self.default_token_balance}"
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials (cookies) which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            if self.auth_enabled:
                secret_value = self.auth_secret.get_secret_value()
                if not secret_value:
                    msg = (
                        "AUTH_SECRET must be set when AUTH_ENABLED=true in production. "
                        'Generate with: python -c "import secrets; '
                        'print(secrets.token_hex(32))"'
                    )
                    raise ValueError(msg)
                if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                    msg = (
                        f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                        "characters for adequate security."
                    )
                    raise ValueError(msg)

        return self


settings = Settings()
