"""
Configuration management.

The ``Settings`` dataclass reads configuration directly from
environment variables.  Every field has a default so the API starts
without any configuration; in production override them via the
environment (or a ``.env`` file loaded by your process manager).

Values are read when a ``Settings`` instance is created.  Tests change
environment variables and call :func:`reload_settings`, which refreshes
the shared ``settings`` object in place so that modules holding a
reference to it observe the new values.
"""

import os
from dataclasses import dataclass, field


def _env_str(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in {"1", "true", "yes"}


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    project_name: str = field(default_factory=lambda: _env_str("PROJECT_NAME", "Loconomy API"))
    api_version: str = field(default_factory=lambda: _env_str("API_VERSION", "1.0.0"))
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG", False))
    log_level: str = field(default_factory=lambda: _env_str("LOG_LEVEL", "INFO"))
    log_file: str = field(default_factory=lambda: _env_str("LOG_FILE", ""))
    # Comma-separated browser origins of the web front end; cookie
    # sessions need credentials to be allowed for them.
    cors_origins: str = field(default_factory=lambda: _env_str("CORS_ORIGINS", "http://localhost:3000"))

    secret_key: str = field(default_factory=lambda: _env_str("SECRET_KEY", "change_me"))
    access_token_expire_minutes: int = field(
        default_factory=lambda: _env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24)
    )
    algorithm: str = field(default_factory=lambda: _env_str("ALGORITHM", "HS256"))

    # Lifetime of cookie sessions created by ``POST /auth/session``.
    session_expire_hours: int = field(default_factory=lambda: _env_int("SESSION_EXPIRE_HOURS", 24 * 14))
    session_cookie_name: str = field(default_factory=lambda: _env_str("SESSION_COOKIE_NAME", "loconomy_session"))

    # Optional static token granting administrator access.  Requests
    # carrying it bypass JWT decoding and act as user 1.
    super_admin_static_token: str = field(default_factory=lambda: _env_str("SUPER_ADMIN_TOKEN", ""))

    # Comma‑separated tokens for trusted services (schedulers, internal
    # dashboards).  They authenticate without a user account and receive
    # the role given by ``service_role_id``.
    service_tokens: str = field(default_factory=lambda: _env_str("SERVICE_TOKENS", ""))
    service_role_id: int = field(default_factory=lambda: _env_int("SERVICE_ROLE_ID", 1))

    # Path to the SQLite database.  Relative paths are resolved against
    # the project root by ``core.db``.
    database_url: str = field(default_factory=lambda: _env_str("DATABASE_URL", "loconomy.db"))

    # Marketplace economics
    service_fee_percent: float = field(default_factory=lambda: _env_float("SERVICE_FEE_PERCENT", 10.0))
    default_currency: str = field(default_factory=lambda: _env_str("DEFAULT_CURRENCY", "USD"))

    # Stripe billing
    stripe_secret_key: str = field(default_factory=lambda: _env_str("STRIPE_SECRET_KEY", ""))
    stripe_webhook_secret: str = field(default_factory=lambda: _env_str("STRIPE_WEBHOOK_SECRET", ""))
    stripe_webhook_tolerance: int = field(default_factory=lambda: _env_int("STRIPE_WEBHOOK_TOLERANCE", 300))
    stripe_api_base: str = field(default_factory=lambda: _env_str("STRIPE_API_BASE", "https://api.stripe.com/v1"))
    app_base_url: str = field(default_factory=lambda: _env_str("APP_BASE_URL", "http://localhost:3000"))

    # OpenAI‑compatible assistant backend
    openai_api_key: str = field(default_factory=lambda: _env_str("OPENAI_API_KEY", ""))
    openai_base_url: str = field(default_factory=lambda: _env_str("OPENAI_BASE_URL", "https://api.openai.com/v1"))
    openai_model: str = field(default_factory=lambda: _env_str("OPENAI_MODEL", "gpt-3.5-turbo"))

    rate_limit_enabled: bool = field(default_factory=lambda: _env_bool("RATE_LIMIT_ENABLED", True))

    # Bumping the consent version forces every visitor to answer the
    # cookie banner again.
    consent_version: str = field(default_factory=lambda: _env_str("CONSENT_VERSION", "1.0.0"))


# Instantiate settings once so other modules can import it without
# repeatedly reading environment variables.
settings = Settings()


def reload_settings() -> Settings:
    """Re-read the environment into the shared ``settings`` instance."""
    fresh = Settings()
    settings.__dict__.update(fresh.__dict__)
    return settings
