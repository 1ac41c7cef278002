"""
Search module: best entry/exit combination per instrument.
"""

from combo_engine.search.combination_search import (
    CombinationSearch,
    enumerate_explicit,
    enumerate_subsets,
    enumerate_tuning,
    evaluate_candidate,
)
from combo_engine.search.models import (
    BestCombinationResult,
    Candidate,
    CandidateLeg,
    CellOutcome,
    CellStatus,
    RankedCandidate,
    SearchConfig,
    SearchMode,
    SearchStats,
)
from combo_engine.search.walk_forward import (
    StrategyFilterConfig,
    WalkForwardFold,
    WalkForwardResult,
    WalkForwardValidator,
    filter_reasons,
    passes_filter,
)

__all__ = [
    "BestCombinationResult",
    "Candidate",
    "CandidateLeg",
    "CellOutcome",
    "CellStatus",
    "CombinationSearch",
    "RankedCandidate",
    "SearchConfig",
    "SearchMode",
    "SearchStats",
    "StrategyFilterConfig",
    "WalkForwardFold",
    "WalkForwardResult",
    "WalkForwardValidator",
    "enumerate_explicit",
    "enumerate_subsets",
    "enumerate_tuning",
    "evaluate_candidate",
    "filter_reasons",
    "passes_filter",
]
