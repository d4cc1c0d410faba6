# vaultguard/config/settings.py

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class VaultSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_name: str = "vaultguard"
    environment: Literal["dev", "test", "prod"] = "dev"
    debug: bool = False
    version: str = "0.1.0"

    # --- Keys ---
    # Base64 of 32 random bytes. Missing key fails on first cryptographic use.
    encryption_key: Optional[str] = None
    key_version: int = 1
    master_secret: Optional[str] = Field(default=None, min_length=32)
    key_backup_dir: str = "storage/keys/backup"

    # --- Shared state ---
    # None -> in-process store (single node only)
    redis_url: Optional[str] = None

    # --- Audit ---
    # None -> in-memory audit repository
    database_url: Optional[str] = None
    audit_retention_days: int = 90
    audit_skip_paths: list[str] = ["/health", "/static", "/favicon.ico"]

    # --- Pipeline ---
    admin_path_prefix: str = "/admin"
    penalty_delay_enabled: bool = True
    # CIDRs whose X-Forwarded-For is honoured when resolving the client IP
    trusted_proxies: list[str] = []

    # --- Observability ---
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


@lru_cache
def get_settings() -> VaultSettings:
    return VaultSettings()
