from __future__ import annotations

import sys
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_JWT_SECRET = "anonymous_social_secret_key_change_in_production"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GARDEN_")

    # Database
    database_url: str = "sqlite:///./garden.db"
    log_sql: bool = False

    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"
    allow_cors_origins: List[str] = ["*"]

    # Auth
    jwt_secret: str = _DEFAULT_JWT_SECRET
    jwt_expire_minutes: int = 7 * 24 * 60  # 7 days
    bcrypt_rounds: int = 12
    backup_code_count: int = 8

    # Rate limiting
    rate_limit_enabled: bool = True
    default_rate_limits: List[str] = ["60/minute", "1000/hour"]
    signup_rate_limit: str = "5/hour"
    login_rate_limit: str = "10/hour"
    feedback_rate_limit: str = "10/hour"

    # Posts
    post_default_ttl_days: int = 30
    post_max_length: int = 280
    block_links: bool = True

    # Moderation / access control
    quarantine_flag_threshold: int = 3
    reply_key_ttl_hours: int = 24

    # Passkeys
    webauthn_rp_id: str = "localhost"
    webauthn_rp_name: str = "noise.garden"
    webauthn_origin: str = ""
    webauthn_challenge_ttl_seconds: int = 300

    # CAPTCHA (ALTCHA)
    altcha_hmac_key: str = ""
    altcha_max_number: int = 50000

    # Push gateway
    push_gateway_url: str = ""
    push_gateway_token: str = ""

    # Uploads
    upload_max_bytes: int = 10 * 1024 * 1024

    # Seed admin
    admin_username: str = "admin"
    admin_password: str = "changeme"

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Refuse to start in production with the default JWT secret."""
        env = info.data.get("environment", "development")
        if env != "development" and v == _DEFAULT_JWT_SECRET:
            print(
                "\nFATAL: GARDEN_JWT_SECRET is set to the default value.\n"
                "   Set GARDEN_JWT_SECRET to a strong random string before "
                "running in production.\n",
                file=sys.stderr,
            )
            raise ValueError(
                "JWT secret must be changed from default in non-development environments. "
                "Set GARDEN_JWT_SECRET env var."
            )
        return v

    @property
    def expected_origin(self) -> str:
        return self.webauthn_origin or f"https://{self.webauthn_rp_id}"


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
