"""Application configuration via pydantic-settings.

Reads from a .env file or environment variables. Settings are validated at
startup, so a malformed value (an unknown authorization policy, a non-numeric
port) fails fast with a clear message instead of surfacing mid-request.

Usage:
    from escrow_marketplace.config import get_settings
    settings = get_settings()
    print(settings.registry_maester_list)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Well-known development identities. Production deployments override all three.
DEV_MAESTER = "0x" + "a1" * 20
DEV_OPERATOR = "0x" + "0f" * 20
DEV_DEPLOYER = "0x" + "de" * 20


class Settings(BaseSettings):
    """Central configuration for the escrow marketplace."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (audit journal) ---
    database_url: str = "sqlite+aiosqlite:///./escrow_marketplace.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis (API idempotency keys) ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- MCP ---
    mcp_transport: str = "streamable-http"

    # --- Marketplace genesis ---
    escrow_template_ref: str = "escrow-instance/v1"
    registry_authorization_policy: Literal["single", "list"] = "single"
    registry_maesters: str = DEV_MAESTER
    registry_operator: str = DEV_OPERATOR
    genesis_deployer: str = DEV_DEPLOYER
    faucet_enabled: bool = True

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_sqlite(self) -> bool:
        """SQLite engines take no pool sizing arguments."""
        return self.database_url.startswith("sqlite")

    @property
    def registry_maester_list(self) -> list[str]:
        """Parse comma-separated maester addresses into a list."""
        return [k.strip() for k in self.registry_maesters.split(",") if k.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
