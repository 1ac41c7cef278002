"""
Strategy library: rule predicates, indicator helpers, variants and grids.
"""

from combo_engine.strategies.combined import CombinedStrategy
from combo_engine.strategies.grids import DEFAULT_GRIDS, ParamGrid, grid_for
from combo_engine.strategies.library import (
    STRATEGY_LIBRARY,
    Breakout,
    ImprovedTrendFollowing,
    Macd,
    MeanReversion,
    Rsi,
    SmaCrossover,
    StrategyFactory,
    StrategyRule,
    TrendFollowing,
)
from combo_engine.strategies.rules import Rule, any_of

__all__ = [
    "STRATEGY_LIBRARY",
    "DEFAULT_GRIDS",
    "Breakout",
    "CombinedStrategy",
    "ImprovedTrendFollowing",
    "Macd",
    "MeanReversion",
    "ParamGrid",
    "Rsi",
    "Rule",
    "SmaCrossover",
    "StrategyFactory",
    "StrategyRule",
    "TrendFollowing",
    "any_of",
    "grid_for",
]
