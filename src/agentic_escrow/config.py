"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. Chain, token and contract
registries are NOT settings; they live in agentic_escrow.registry as
immutable data.

Usage:
    from agentic_escrow.config import get_settings
    settings = get_settings()
    print(settings.backend_base_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for agents driving escrow transactions."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_log_level: str = "INFO"

    # --- Backend ledger API ---
    backend_base_url: str = "https://abbababa.com"
    backend_api_key: str = ""
    backend_timeout_seconds: float = 30.0

    # --- Chain ---
    chain: str = "baseSepolia"
    rpc_url: str = ""  # empty = the chain's public RPC from the registry
    zerodev_project_id: str = ""
    bundler_url: str = "https://rpc.zerodev.app/api/v3/bundler"
    paymaster_url: str = "https://rpc.zerodev.app/api/v3/paymaster"
    chain_timeout_seconds: float = 60.0
    gas_strategy: Literal["self-funded", "erc20-sponsored", "auto"] = "auto"

    # --- Session keys ---
    session_validity_seconds: int = 86400  # 24 hours

    # --- Webhook listener ---
    # Empty secret = signature checking skipped (reduced-security mode).
    webhook_signing_secret: str = ""
    webhook_host: str = "0.0.0.0"
    webhook_port: int = 8787
    webhook_path: str = "/webhook"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def project_bundler_url(self) -> str:
        """Bundler endpoint scoped to the configured project."""
        return f"{self.bundler_url.rstrip('/')}/{self.zerodev_project_id}"

    @property
    def project_paymaster_url(self) -> str:
        """Paymaster endpoint scoped to the configured project."""
        return f"{self.paymaster_url.rstrip('/')}/{self.zerodev_project_id}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
