"""
Configuration management for the combination engine.

Uses pydantic-settings for type-safe environment variable handling
(prefix COMBO_, optional .env file). Core components never read settings
themselves: the helpers below build the explicit config objects they take.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from combo_engine.backtest.models import BacktestConfig
from combo_engine.portfolio.allocator import AllocationConfig
from combo_engine.search.models import SearchConfig


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COMBO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Backtest
    initial_capital: float = Field(default=10_000.0, gt=0, description="Starting capital per backtest")
    risk_per_trade: float = Field(
        default=0.15,
        gt=0,
        le=1,
        description="Fraction of capital committed per trade",
    )
    stop_loss_pct: float | None = Field(
        default=None,
        gt=0,
        lt=1,
        description="Stop loss as a fraction of entry price (None = disabled)",
    )
    take_profit_pct: float | None = Field(
        default=None,
        gt=0,
        description="Take profit as a fraction of entry price (None = disabled)",
    )
    allow_short: bool = Field(default=False, description="Allow short backtest positions and SELL predictions")

    # Search
    max_workers: int | None = Field(
        default=None,
        ge=1,
        description="Search worker processes (None = CPU count)",
    )
    search_deadline_s: float | None = Field(
        default=None,
        gt=0,
        description="Wall-clock budget per search (None = unbounded)",
    )
    max_subset_size: int = Field(
        default=2,
        ge=1,
        le=4,
        description="Largest number of strategies OR-ed on one side",
    )
    random_search_limit: int = Field(
        default=5000,
        ge=1,
        description="Grids larger than this are randomly sampled",
    )

    # Allocation
    max_gross_exposure: float = Field(default=0.90, gt=0, description="Limit on sum of |weight|")
    max_weight_per_symbol: float = Field(default=0.03, gt=0, description="Limit on |weight| per instrument")
    min_score_threshold: float = Field(default=0.0, ge=0, description="Minimum |raw score| to allocate")
    max_positions: int | None = Field(default=None, ge=1, description="Keep only the top-N instruments")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    # Artefacts
    data_dir: Path = Field(default=Path("./data"), description="Directory for leaderboards and reports")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @field_validator("data_dir")
    @classmethod
    def resolve_data_dir(cls, v: Path) -> Path:
        return v.resolve()

    @model_validator(mode="after")
    def cap_within_gross(self) -> "Settings":
        if self.max_weight_per_symbol > self.max_gross_exposure:
            raise ValueError("max_weight_per_symbol must not exceed max_gross_exposure")
        return self

    # =========================================================================
    # Config factories
    # =========================================================================

    def backtest_config(self) -> BacktestConfig:
        return BacktestConfig(
            initial_capital=self.initial_capital,
            risk_per_trade=self.risk_per_trade,
            stop_loss_pct=self.stop_loss_pct,
            take_profit_pct=self.take_profit_pct,
            allow_short=self.allow_short,
        )

    def search_config(self, **overrides: Any) -> SearchConfig:
        """SearchConfig from settings; keyword arguments win over settings."""
        values: dict[str, Any] = {
            "max_workers": self.max_workers or os.cpu_count() or 1,
            "deadline_s": self.search_deadline_s,
            "max_subset_size": self.max_subset_size,
            "random_search_limit": self.random_search_limit,
        }
        values.update(overrides)
        return SearchConfig(**values)

    def allocation_config(self) -> AllocationConfig:
        return AllocationConfig(
            max_gross_exposure=self.max_gross_exposure,
            max_weight_per_symbol=self.max_weight_per_symbol,
            allow_short=self.allow_short,
            min_score_threshold=self.min_score_threshold,
            max_positions=self.max_positions,
        )

    def ensure_data_dir(self) -> Path:
        """Create the artefact directory if needed."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return self.data_dir


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure single instance throughout application.
    """
    return Settings()
