"""
Simple configuration management.

The ``Settings`` dataclass reads configuration directly from environment
variables.  Defaults are provided for all fields so the API starts with
no configuration at all; in a production deployment override them via
environment variables.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    project_name: str = os.getenv("PROJECT_NAME", "Honua API")
    api_version: str = os.getenv("API_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "false").lower() in {"1", "true", "yes"}
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "")
    secret_key: str = os.getenv("SECRET_KEY", "change_me")
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))
    algorithm: str = os.getenv("ALGORITHM", "HS256")

    # Path to the SQLite database file.  Relative paths are resolved
    # against the project root by the ``db`` module.
    database_url: str = os.getenv("DATABASE_URL", "honua.db")

    # Comma-separated list of origins allowed by the CORS middleware.
    cors_origins: str = os.getenv("CORS_ORIGINS", "*")

    # Stripe credentials.  When the secret key is empty, card payments
    # are rejected and only green point orders can be placed.
    stripe_secret_key: str = os.getenv("STRIPE_SECRET_KEY", "")
    stripe_webhook_secret: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    stripe_api_base: str = os.getenv("STRIPE_API_BASE", "https://api.stripe.com/v1")

    # Sender address recorded on queued order emails.
    email_from: str = os.getenv("EMAIL_FROM", "Honua Marketplace <noreply@honua.app>")

    # Share of an order total credited to the seller as green points.
    seller_reward_rate: float = float(os.getenv("SELLER_REWARD_RATE", "0.05"))

    # Green points granted on a successful referral.
    referral_inviter_points: int = int(os.getenv("REFERRAL_INVITER_POINTS", "100"))
    referral_invitee_points: int = int(os.getenv("REFERRAL_INVITEE_POINTS", "50"))

    # Seconds to wait for a remote page when building link previews.
    link_preview_timeout: float = float(os.getenv("LINK_PREVIEW_TIMEOUT", "10"))


# Instantiate settings once so other modules can import it without
# repeatedly reading environment variables.  Environment variables
# should be set before importing this module.
settings = Settings()
