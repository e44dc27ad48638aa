"""Alert service configuration.

Controls the background sweep cadence and query bounds for the alert
lifecycle. All settings can be overridden via ``ALERTS_*`` environment
variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AlertConfig(BaseSettings):
    """Configuration for the alert lifecycle and its scheduler."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Scheduled jobs
    expiry_sweep_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between expiry sweeps over active alerts",
    )
    statistics_interval_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Seconds between unacknowledged-alert statistics log lines",
    )

    # Queries
    default_trend_days: int = Field(
        default=7,
        ge=1,
        le=365,
        description="Trailing window used when trends are requested without days",
    )
    max_list_limit: int = Field(
        default=500,
        ge=1,
        description="Upper bound on alerts returned by list endpoints",
    )
