"""Configuration management for the tradeguard compliance engine.

Process-level settings (environment, logging, engine defaults) are read from
the environment and ``.env``. Per-trader rules live in
``tradeguard.core.models.Settings`` and travel with each request.
"""

from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tradeguard.core.models import (
    AccountMode,
    DrawdownMode,
    RiskManagementConfig,
    Settings,
)
from tradeguard.utils.timeutils import UTC, resolve_timezone

# Settings fields seeded from the environment when a trader leaves them unset
SEEDED_FIELDS = (
    "lockout_duration_hours",
    "warning_ratio",
    "good_trade_rr_threshold",
    "risk_window_size",
)

# =============================================================================
# System Configuration
# =============================================================================


class SystemConfig(BaseSettings):
    """System-level configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )
    app_name: str = Field(default="tradeguard")
    app_version: str = Field(default="1.0.0")
    timezone: str = Field(default="UTC")

    # Ledger partition evaluated when the caller does not pass one
    default_mode: Optional[AccountMode] = Field(default=None)


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )
    log_file: str = Field(default="logs/tradeguard.log")
    log_file_max_size_mb: int = Field(default=10)
    log_file_backup_count: int = Field(default=5)

    @field_validator("log_file_max_size_mb", "log_file_backup_count")
    @classmethod
    def validate_positive(cls, v):
        """Rotation values must be positive."""
        if v <= 0:
            raise ValueError("Log rotation values must be positive")
        return v


# =============================================================================
# Engine Defaults
# =============================================================================


class EngineDefaultsConfig(BaseSettings):
    """Defaults applied to trader settings that leave a policy value unset.

    Environment variables are prefixed with ``TRADEGUARD_``.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="TRADEGUARD_", case_sensitive=False, extra="ignore"
    )

    # Ultra-disciplined lock length
    lockout_duration_hours: float = Field(default=24.0)

    # Fraction of a cap at which warnings start
    warning_ratio: Decimal = Field(default=Decimal("0.8"))

    # R/R at or above which a clean trade is a model trade
    good_trade_rr_threshold: Decimal = Field(default=Decimal("2"))

    # Trailing trades used for average risk (None = all trades)
    risk_window_size: Optional[int] = Field(default=None)

    drawdown_mode: DrawdownMode = Field(default=DrawdownMode.WARNING)

    @field_validator("lockout_duration_hours")
    @classmethod
    def validate_duration(cls, v):
        """Lockout must last between 0 and one week."""
        if v < 0 or v > 168:
            raise ValueError("Lockout duration must be between 0 and 168 hours")
        return v

    @field_validator("warning_ratio")
    @classmethod
    def validate_ratio(cls, v):
        """Warning ratio is a fraction of the cap."""
        if v <= 0 or v > 1:
            raise ValueError("Warning ratio must be between 0 and 1")
        return v

    @field_validator("risk_window_size")
    @classmethod
    def validate_window(cls, v):
        if v is not None and v < 1:
            raise ValueError("Risk window must contain at least one trade")
        return v

    def build_settings(self, **overrides) -> Settings:
        """Create trader settings seeded with these defaults."""
        return self.apply_to(Settings(**overrides))

    def apply_to(self, settings: Settings, timezone: Optional[str] = None) -> Settings:
        """Fill the policy values ``settings`` left unset with these defaults.

        Only fields absent from the trader's input are replaced, so explicit
        values always win. ``timezone`` seeds the calendar timezone the same way.
        """
        unset = set(Settings.model_fields) - settings.model_fields_set
        updates = {
            name: getattr(self, name)
            for name in SEEDED_FIELDS
            if name in unset
        }
        if timezone is not None and "timezone" in unset:
            # Unknown names fall back to UTC; validate_configuration reports them
            updates["timezone"] = timezone if resolve_timezone(timezone) is not UTC else "UTC"

        risk = settings.risk_management
        if "drawdown_mode" not in risk.model_fields_set:
            updates["risk_management"] = risk.model_copy(update={"drawdown_mode": self.drawdown_mode})

        if not updates:
            return settings
        return settings.model_copy(update=updates)


# =============================================================================
# Global Configuration Container
# =============================================================================


class TradeGuardConfig:
    """
    Container for all tradeguard configurations.

    Usage:
        from tradeguard.core.config import tradeguard_config

        level = tradeguard_config.logging.log_level
        settings = tradeguard_config.defaults.build_settings(account_size=25000)
    """

    def __init__(self):
        self.system = SystemConfig()
        self.logging = LoggingConfig()
        self.defaults = EngineDefaultsConfig()

    @property
    def is_production(self) -> bool:
        return self.system.environment == "production"

    def validate_configuration(self) -> dict:
        """
        Validate the complete configuration and return any issues.

        Returns:
            Dictionary with 'valid' boolean and 'issues' list
        """
        issues = []

        if resolve_timezone(self.system.timezone) is resolve_timezone(None) and (
            self.system.timezone.upper() != "UTC"
        ):
            issues.append(f"Unknown timezone '{self.system.timezone}', falling back to UTC")

        if self.defaults.lockout_duration_hours == 0:
            issues.append("Lockout duration is 0 hours; ultra-disciplined mode will never lock")

        if self.is_production and self.logging.log_level == "DEBUG":
            issues.append("DEBUG logging enabled in production")

        return {"valid": len(issues) == 0, "issues": issues}


# =============================================================================
# Global Configuration Instances
# =============================================================================

system_config = SystemConfig()
logging_config = LoggingConfig()
engine_defaults = EngineDefaultsConfig()

tradeguard_config = TradeGuardConfig()


__all__ = [
    "SystemConfig",
    "LoggingConfig",
    "EngineDefaultsConfig",
    "TradeGuardConfig",
    "system_config",
    "logging_config",
    "engine_defaults",
    "tradeguard_config",
]
