"""Configuration management for chatharvest using pydantic-settings.

Settings are read from environment variables (``CHATHARVEST_`` prefix) and
``.env`` files, with type validation. Component configs are built from these
settings with ``from_settings`` so the core stays testable without globals.
"""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HarvestSettings(BaseSettings):
    """Main configuration settings for chatharvest."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CHATHARVEST_",
        case_sensitive=False,
        extra="ignore",
    )

    # Discovery (enumerator) settings
    discovery_max_rounds: int = Field(2200, ge=1, description="Hard cap on scan/scroll rounds")
    discovery_scroll_step_px: int = Field(900, ge=1, description="Pixels scrolled per round")
    discovery_settle_ms: int = Field(260, ge=0, description="Wait after each scroll")
    discovery_stable_rounds: int = Field(
        12, ge=1, description="Consecutive non-growing rounds that prove exhaustion"
    )
    discovery_low_count: int = Field(
        3, ge=0, description="Fail closed when the final count is at or below this"
    )
    discovery_locator_attempts: int = Field(3, ge=1, description="Container locator retries")
    discovery_progress_every: int = Field(10, ge=1, description="Ledger progress every N rounds")

    # Busy/backoff settings
    busy_wait_budget_ms: int = Field(45000, ge=0, description="Max wait for a busy view")
    busy_poll_ms: int = Field(500, ge=1, description="Busy polling interval")

    # Navigation settings
    nav_wait_budget_ms: int = Field(15000, ge=0, description="Max wait for a view to become current")
    nav_poll_ms: int = Field(250, ge=1, description="Navigation polling interval")
    nav_max_retries: int = Field(2, ge=0, description="Re-navigation attempts before a stall")
    return_to_anchor: bool = Field(
        True, description="Return to the list view between items instead of going direct"
    )

    # Content stabilization settings
    quiet_ms: int = Field(850, ge=0, description="Quiescence window without changes")
    quiescence_timeout_ms: int = Field(10000, ge=0, description="Max wait for quiescence")
    quiescence_poll_ms: int = Field(100, ge=1, description="Change feed polling interval")
    stable_text_max_attempts: int = Field(16, ge=1, description="Value stabilization polls")
    stable_text_poll_ms: int = Field(350, ge=0, description="Value stabilization interval")

    # Capture/export settings
    shard_max_chars: int = Field(140000, ge=1000, description="Max characters per shard")
    shard_overlap_turns: int = Field(2, ge=0, description="Turns repeated across shards")
    sink_throttle_ms: int = Field(0, ge=0, description="Delay after each artifact write")
    min_turns_warn: int = Field(2, ge=0, description="Warn when a record has fewer turns")
    hydrate_passes: int = Field(40, ge=0, description="Scroll-to-top passes loading item history")
    hydrate_pause_ms: int = Field(500, ge=0, description="Pause after each history pass")
    hydrate_min_nodes: int = Field(2, ge=1, description="Turn nodes required before history counts as loaded")

    # Trigger settings
    tick_poll_interval_ms: int = Field(500, ge=10, description="Fallback tick poll interval")
    route_settle_ms: int = Field(250, ge=0, description="Delay before ticking on route change")
    run_deadline_s: float = Field(6 * 3600.0, gt=0, description="Overall driver deadline")

    # Storage settings
    data_path: Path = Field(Path("./harvest_data"), description="Path for run state and ledger")
    output_path: Path = Field(Path("./harvest_output"), description="Path for exported artifacts")
    log_path: Path = Field(Path("./logs"), description="Path for log files")

    # Logging
    debug_mode: bool = Field(False, description="Enable debug logging")
    log_level: str = Field("INFO", description="Log level")


class DevelopmentSettings(HarvestSettings):
    """Development-specific settings."""

    model_config = SettingsConfigDict(
        env_file=".env.development",
        env_prefix="CHATHARVEST_",
        case_sensitive=False,
        extra="ignore",
    )

    debug_mode: bool = True
    log_level: str = "DEBUG"


class TestSettings(HarvestSettings):
    """Test-specific settings with short budgets."""

    model_config = SettingsConfigDict(
        env_file=".env.test",
        env_prefix="CHATHARVEST_",
        case_sensitive=False,
        extra="ignore",
    )

    discovery_settle_ms: int = 0
    busy_wait_budget_ms: int = 50
    busy_poll_ms: int = 5
    nav_wait_budget_ms: int = 20
    nav_poll_ms: int = 5
    quiet_ms: int = 5
    quiescence_timeout_ms: int = 50
    quiescence_poll_ms: int = 1
    stable_text_poll_ms: int = 0
    hydrate_pause_ms: int = 0
    tick_poll_interval_ms: int = 10
    route_settle_ms: int = 0
    data_path: Path = Path("./test_harvest_data")
    output_path: Path = Path("./test_harvest_output")
    log_path: Path = Path("./test_logs")


# Singleton instance
_settings: HarvestSettings | None = None


def get_settings(env: str | None = None) -> HarvestSettings:
    """Get the singleton settings instance.

    Args:
        env: Environment name ('development', 'production', 'test')

    Returns:
        HarvestSettings instance
    """
    global _settings

    if _settings is None:
        env_name = env or os.getenv("CHATHARVEST_ENV", "production")
        if env_name == "development":
            _settings = DevelopmentSettings()
        elif env_name == "test":
            _settings = TestSettings()
        else:
            _settings = HarvestSettings()

    return _settings


def reset_settings() -> None:
    """Reset the settings singleton (mainly for testing)."""
    global _settings
    _settings = None
