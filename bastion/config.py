"""Bastion configuration system using Pydantic Settings."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BastionConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "BASTION"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./bastion.db"

    # Logging
    log_dir: str = "logs"
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    # Event log scanning
    scan_max_events: int = 10_000
    scan_lookback_hours: int = 24
    scan_interval_seconds: int = 300
    scan_auto_block: bool = False
    persist_batch_size: int = 100
    log_query_timeout: int = 45  # seconds per event log query

    # External command retries (transient failures only)
    command_retries: int = 3
    command_retry_delay: float = 1.0

    # Threat scoring (cumulative failed attempts per IP)
    threat_medium_threshold: int = 10
    threat_high_threshold: int = 20
    threat_critical_threshold: int = 50

    # Firewall
    firewall_rule_name: str = "Bastion Blocked IPs"
    firewall_timeout: int = 15  # seconds per firewall call

    # Geolocation (display only)
    geo_enabled: bool = True
    geo_base_url: str = "http://ip-api.com/json/"
    geo_timeout: float = 5.0
    geo_rate_limit: int = 45  # requests per window
    geo_rate_window_seconds: int = 60
    geo_cache_size: int = 1000

    # Maintenance
    event_retention_days: int = 30

    @field_validator("persist_batch_size", "scan_max_events", "command_retries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @field_validator("firewall_rule_name")
    @classmethod
    def validate_rule_name(cls, v: str) -> str:
        # Rule names end up as a PowerShell argument; keep them plain.
        if not v.strip() or any(ch in v for ch in ';|&`$<>{}()"\'\n\r'):
            raise ValueError("firewall_rule_name contains forbidden characters")
        return v.strip()

    @model_validator(mode="after")
    def validate_threat_thresholds(self) -> "BastionConfig":
        if not (
            0 < self.threat_medium_threshold
            < self.threat_high_threshold
            < self.threat_critical_threshold
        ):
            raise ValueError(
                "threat thresholds must satisfy 0 < medium < high < critical"
            )
        return self

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent.parent


def get_config() -> BastionConfig:
    """Factory function to create config instance."""
    return BastionConfig()
