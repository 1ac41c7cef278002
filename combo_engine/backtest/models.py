"""
Backtest data models.

Defines the simulation configuration, per-trade records and the immutable
RiskResult produced by every backtest run.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Returned instead of infinity when a run has gains but no losing trade
PROFIT_FACTOR_SENTINEL = 999.99


class PositionSide(str, Enum):
    """Simulation state / position side."""

    FLAT = "flat"
    LONG = "long"
    SHORT = "short"


class ExitReason(str, Enum):
    """Why a simulated trade was closed."""

    SIGNAL = "signal"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    END_OF_SERIES = "end_of_series"


# =============================================================================
# Configuration
# =============================================================================


class BacktestConfig(BaseModel):
    """
    Money-management parameters of a simulation.

    Stop-loss and take-profit are disabled by default: positions then only
    close on the exit rule or at the last bar.
    """

    model_config = ConfigDict(frozen=True)

    initial_capital: float = Field(default=10_000.0, gt=0, description="Starting capital")
    risk_per_trade: float = Field(
        default=0.15,
        gt=0,
        le=1,
        description="Fraction of current capital committed to each trade",
    )
    stop_loss_pct: float | None = Field(
        default=None,
        gt=0,
        lt=1,
        description="Close when price moves this fraction against the entry",
    )
    take_profit_pct: float | None = Field(
        default=None,
        gt=0,
        description="Close when price moves this fraction in favour of the entry",
    )
    allow_short: bool = Field(
        default=False,
        description="Open a short when the exit rule fires while flat",
    )


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class TradeRecord:
    """A closed simulated trade."""

    side: PositionSide
    entry_index: int
    exit_index: int
    entry_price: float
    exit_price: float
    size: float
    pnl: float
    exit_reason: ExitReason

    @property
    def bars_held(self) -> int:
        return self.exit_index - self.entry_index

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "side": self.side.value,
            "entry_index": self.entry_index,
            "exit_index": self.exit_index,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "size": self.size,
            "pnl": self.pnl,
            "bars_held": self.bars_held,
            "exit_reason": self.exit_reason.value,
        }


class RiskResult(BaseModel):
    """
    Performance summary of one backtest run.

    Created once per (instrument, rule combination) run and never mutated;
    derived variants are produced with `model_copy(update=...)`.
    """

    model_config = ConfigDict(frozen=True)

    rendement: float = Field(default=0.0, description="final capital / initial capital - 1")
    max_drawdown: float = Field(default=0.0, ge=0, le=1, description="Max peak-to-trough fraction")
    trade_count: int = Field(default=0, ge=0, description="Closed trades")
    win_rate: float = Field(default=0.0, ge=0, le=1, description="Winning trades / trade_count")
    avg_pnl: float = Field(default=0.0, description="Mean P&L per trade")
    profit_factor: float = Field(default=0.0, ge=0, description="Gross profit / gross loss")
    avg_trade_bars: float = Field(default=0.0, ge=0, description="Mean bars between entry and exit")
    max_trade_gain: float = Field(default=0.0, description="Largest single-trade profit")
    max_trade_loss: float = Field(default=0.0, description="Largest single-trade loss (<= 0)")
    swing_trade_score: float = Field(default=0.0, description="Swing-trade composite score")
    filtered_out: bool = Field(default=False, description="Excluded from selection")

    @model_validator(mode="after")
    def zero_trades_are_filtered(self) -> "RiskResult":
        """A run without closed trades can never be selected."""
        if self.trade_count == 0 and not self.filtered_out:
            raise ValueError("a result with zero trades must be filtered_out")
        return self

    @classmethod
    def empty(cls) -> "RiskResult":
        """Zeroed result for runs that closed no trade."""
        return cls(filtered_out=True)

    @property
    def gain_loss_ratio(self) -> float | None:
        """|largest gain| / |largest loss|, None when no trade lost money."""
        if self.max_trade_loss == 0:
            return None
        return abs(self.max_trade_gain) / abs(self.max_trade_loss)
