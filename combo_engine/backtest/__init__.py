"""
Backtest module: rule-pair simulation and risk metrics.
"""

from combo_engine.backtest.backtester import BacktestOutcome, Backtester
from combo_engine.backtest.metrics import composite_score, rank_key, swing_trade_score
from combo_engine.backtest.models import (
    PROFIT_FACTOR_SENTINEL,
    BacktestConfig,
    ExitReason,
    PositionSide,
    RiskResult,
    TradeRecord,
)

__all__ = [
    "PROFIT_FACTOR_SENTINEL",
    "BacktestConfig",
    "BacktestOutcome",
    "Backtester",
    "ExitReason",
    "PositionSide",
    "RiskResult",
    "TradeRecord",
    "composite_score",
    "rank_key",
    "swing_trade_score",
]
