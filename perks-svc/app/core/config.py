from __future__ import annotations
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import cached_property
import logging
import secrets

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")

    # Staff sessions (signed cookie minted by the unlock link)
    staff_session_secret: str | None = Field(default=None, alias="STAFF_SESSION_SECRET")
    staff_session_ttl_minutes: int = Field(default=120, alias="STAFF_SESSION_TTL_MINUTES")
    staff_cookie_name: str = Field("nowio_staff_session", alias="STAFF_COOKIE_NAME")
    staff_cookie_secure: bool = Field(default=False, alias="STAFF_COOKIE_SECURE")
    staff_scan_base_url: str = Field("", alias="STAFF_SCAN_BASE_URL")
    public_base_url: str = Field("https://nowio.app", alias="PUBLIC_BASE_URL")

    # Perks
    admin_emails: str = Field("", alias="ADMIN_EMAILS")  # comma/semicolon separated
    default_max_claims: int = Field(default=25, alias="DEFAULT_MAX_CLAIMS")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=60, alias="RL_MAX_REQS")

    # NATS
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_claimed: str = Field("perks.claimed", alias="NATS_SUBJECT_CLAIMED")
    nats_subject_redeemed: str = Field("perks.redeemed", alias="NATS_SUBJECT_REDEEMED")
    events_enabled: bool = Field(default=True, alias="EVENTS_ENABLED")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
        alias="CORS_ORIGINS",
    )

    model_config = SettingsConfigDict(env_file=".env", env_prefix="", case_sensitive=False)

    @cached_property
    def staff_session_secret_effective(self) -> str:
        if self.staff_session_secret:
            return self.staff_session_secret
        # sessions minted with this secret die with the process
        logger.warning("STAFF_SESSION_SECRET not set; using a process-local random secret")
        return secrets.token_urlsafe(48)

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
