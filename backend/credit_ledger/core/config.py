"""Application configuration loaded from environment variables.

Settings for the database, seed balances, checkout lifetime, payment
timeouts, admin tokens, and tenant webhooks. Uses pydantic-settings for
validation and .env file support.
"""

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "ledger_dev_password"  # nosec B105

# Minimum length for ADMIN_TOKEN_SECRET in production (256 bits = 32 bytes)
_MIN_ADMIN_SECRET_LENGTH = 32


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
    database_name: str = "credit_ledger"
    database_user: str = "ledger_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD
    # Full SQLAlchemy URL; replaces the Postgres URL when set (SQLite in tests)
    database_url_override: str = ""

    # API
    # 0.0.0.0 binds to all network interfaces (required for Docker containers)
    api_host: str = "0.0.0.0"  # nosec B104
    api_port: int = 8000
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: str = "INFO"

    # Free-tier balances written when an account is first seen
    seed_article_credits: int = 5
    seed_image_credits: int = 10
    seed_rewrite_credits: int = 3

    # Checkout
    checkout_session_ttl_hours: int = 24
    default_currency: str = "jpy"
    payment_timeout_seconds: float = 10.0

    # Admin surface (Bearer JWT, HS256)
    admin_token_secret: SecretStr = SecretStr("")
    admin_token_issuer: str = "rakubun-credit-ledger"
    admin_token_audience: str = "rakubun-credit-ledger-admin"

    # Outbound tenant webhooks
    webhook_notifications_enabled: bool = True
    webhook_timeout_seconds: float = 5.0

    # Rate Limiting (Security)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_deduct: str = "120/minute"
    rate_limit_checkout: str = "20/minute"
    rate_limit_enabled: bool = True  # Disable for testing

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate ledger policy and production security requirements.

        Checks:
        - Seed balances must be non-negative (all environments)
        - Checkout TTL and payment timeout must be positive (all environments)
        - CORS must not use wildcard origin
        - Database password must not be the default in production
        - ADMIN_TOKEN_SECRET must be >= 32 chars in production
        """
        for name in (
            "seed_article_credits",
            "seed_image_credits",
            "seed_rewrite_credits",
        ):
            value = getattr(self, name)
            if value < 0:
                msg = f"{name.upper()} cannot be negative. Got: {value}"
                raise ValueError(msg)

        if self.checkout_session_ttl_hours <= 0:
            msg = (
                "CHECKOUT_SESSION_TTL_HOURS must be positive. "
                f"Got: {self.checkout_session_ttl_hours}"
            )
            raise ValueError(msg)
        if self.payment_timeout_seconds <= 0:
            msg = (
                "PAYMENT_TIMEOUT_SECONDS must be positive. "
                f"Got: {self.payment_timeout_seconds}"
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "List the dashboard origins explicitly."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            secret_value = self.admin_token_secret.get_secret_value()
            if len(secret_value) < _MIN_ADMIN_SECRET_LENGTH:
                msg = (
                    f"ADMIN_TOKEN_SECRET must be at least {_MIN_ADMIN_SECRET_LENGTH} "
                    'characters in production. Generate with: python -c "import '
                    'secrets; print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)

        return self


settings = Settings()
