"""
Combination search data models.

Candidates are plain (name, params) descriptions so that enumeration stays
pure and cheap to ship to worker processes; strategies are only built when a
candidate is evaluated.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from combo_engine.backtest.models import RiskResult
from combo_engine.strategies.combined import CombinedStrategy
from combo_engine.strategies.library import STRATEGY_LIBRARY, StrategyFactory, StrategyRule


class SearchMode(str, Enum):
    """How the candidate grid is built."""

    EXPLICIT_PERIODS = "explicit_periods"  # one lookback strategy, entry x exit periods
    FULL_LIBRARY = "full_library"  # every library subset, tuned parameters


class SearchConfig(BaseModel):
    """
    Configuration for CombinationSearch.

    One object covers both modes; fields that do not apply to the selected
    mode are ignored.
    """

    mode: SearchMode = Field(default=SearchMode.FULL_LIBRARY, description="Grid construction mode")

    # Explicit-period mode
    entry_periods: list[int] = Field(default_factory=list, description="Entry lookbacks to try")
    exit_periods: list[int] = Field(default_factory=list, description="Exit lookbacks to try")
    period_strategy: str = Field(
        default="Breakout",
        description="Library strategy whose lookback parameter is varied",
    )

    # Full-library mode
    strategies: list[str] | None = Field(
        default=None,
        description="Library subset to search (None = whole library)",
    )
    max_subset_size: int = Field(
        default=2,
        ge=1,
        description="Largest number of strategies OR-ed on one side",
    )
    grids: dict[str, dict[str, list[Any]]] | None = Field(
        default=None,
        description="Per-strategy parameter grid overrides",
    )
    random_search_limit: int = Field(
        default=5000,
        ge=1,
        description="Grids larger than this are randomly sampled down to it",
    )
    seed: int = Field(default=42, description="Seed for grid sampling")
    early_stop_return: float | None = Field(
        default=None,
        description="Stop tuning a strategy once a candidate returns more than this",
    )

    # Execution
    max_workers: int = Field(default=1, ge=1, description="Worker processes (1 = in-process)")
    deadline_s: float | None = Field(
        default=None,
        gt=0,
        description="Wall-clock budget; the best result so far is returned when exceeded",
    )
    leaderboard_size: int = Field(default=10, ge=1, description="Ranked candidates kept on the result")

    @model_validator(mode="after")
    def validate_mode(self) -> "SearchConfig":
        if self.mode == SearchMode.EXPLICIT_PERIODS:
            if not self.entry_periods or not self.exit_periods:
                raise ValueError("explicit_periods mode needs entry_periods and exit_periods")
            strategy_cls = STRATEGY_LIBRARY.get(self.period_strategy)
            if strategy_cls is None or strategy_cls.lookback_field is None:
                raise ValueError(f"{self.period_strategy!r} has no single lookback parameter")
        if self.strategies is not None:
            unknown = [s for s in self.strategies if s not in STRATEGY_LIBRARY]
            if unknown:
                raise ValueError(f"Unknown strategies: {unknown}")
            if not self.strategies:
                raise ValueError("strategies must not be empty")
        for strategy, grid in (self.grids or {}).items():
            if strategy not in STRATEGY_LIBRARY:
                raise ValueError(f"Grid given for unknown strategy {strategy!r}")
            allowed = StrategyFactory.parameter_names(strategy)
            unknown_params = sorted(set(grid) - set(allowed))
            if unknown_params:
                raise ValueError(f"Unknown {strategy} parameters {unknown_params}; expected some of {allowed}")
        return self

    @classmethod
    def explicit(
        cls,
        entry_periods: Iterable[int],
        exit_periods: Iterable[int],
        **kwargs: Any,
    ) -> "SearchConfig":
        """Explicit-period config from any iterables (e.g. range objects)."""
        return cls(
            mode=SearchMode.EXPLICIT_PERIODS,
            entry_periods=list(entry_periods),
            exit_periods=list(exit_periods),
            **kwargs,
        )

    @property
    def library(self) -> list[str]:
        return list(self.strategies) if self.strategies else list(STRATEGY_LIBRARY)


# =============================================================================
# Candidates
# =============================================================================


@dataclass(frozen=True)
class CandidateLeg:
    """One strategy of a candidate, by name and parameters."""

    strategy: str
    params: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, strategy: str, params: dict[str, Any] | None = None) -> "CandidateLeg":
        return cls(strategy, tuple((params or {}).items()))

    def build(self) -> StrategyRule:
        return StrategyFactory.create(self.strategy, **dict(self.params))


@dataclass(frozen=True)
class Candidate:
    """A grid cell: entry legs OR-ed together, exit legs OR-ed together."""

    index: int
    entries: tuple[CandidateLeg, ...]
    exits: tuple[CandidateLeg, ...]

    def build(self) -> CombinedStrategy:
        """Instantiate the strategies; raises InvalidParameterRange on bad parameters."""
        return CombinedStrategy(
            tuple(leg.build() for leg in self.entries),
            tuple(leg.build() for leg in self.exits),
        )


class CellStatus(str, Enum):
    """Outcome class of one evaluated grid cell."""

    OK = "ok"
    INVALID = "invalid"  # InvalidParameterRange, skipped
    NO_TRADES = "no_trades"  # valid but never closed a trade


@dataclass(frozen=True)
class CellOutcome:
    """Result of evaluating one candidate."""

    candidate: Candidate
    status: CellStatus
    result: RiskResult | None = None
    reason: str | None = None


# =============================================================================
# Results
# =============================================================================


@dataclass
class SearchStats:
    """Counters describing how a search went."""

    total_cells: int = 0
    evaluated: int = 0
    skipped: int = 0
    zero_trade: int = 0
    cancelled: bool = False
    deadline_hit: bool = False
    early_stopped: bool = False
    duration_s: float = 0.0

    @property
    def interrupted(self) -> bool:
        return self.cancelled or self.deadline_hit

    def merge(self, other: "SearchStats") -> None:
        self.total_cells += other.total_cells
        self.evaluated += other.evaluated
        self.skipped += other.skipped
        self.zero_trade += other.zero_trade
        self.cancelled = self.cancelled or other.cancelled
        self.deadline_hit = self.deadline_hit or other.deadline_hit
        self.early_stopped = self.early_stopped or other.early_stopped

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_cells": self.total_cells,
            "evaluated": self.evaluated,
            "skipped": self.skipped,
            "zero_trade": self.zero_trade,
            "cancelled": self.cancelled,
            "deadline_hit": self.deadline_hit,
            "early_stopped": self.early_stopped,
            "duration_s": self.duration_s,
        }


@dataclass(frozen=True)
class RankedCandidate:
    """Leaderboard entry."""

    rank: int
    score: float
    candidate: Candidate
    result: RiskResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "score": self.score,
            "entries": ",".join(leg.strategy for leg in self.candidate.entries),
            "exits": ",".join(leg.strategy for leg in self.candidate.exits),
            "entry_params": repr([dict(leg.params) for leg in self.candidate.entries]),
            "exit_params": repr([dict(leg.params) for leg in self.candidate.exits]),
            **self.result.model_dump(),
        }


@dataclass
class BestCombinationResult:
    """Winning combination of a search and how it was found."""

    symbol: str
    candidate: Candidate
    result: RiskResult
    score: float
    stats: SearchStats = field(default_factory=SearchStats)
    leaderboard: list[RankedCandidate] = field(default_factory=list)

    @property
    def entry_names(self) -> list[str]:
        return [leg.strategy for leg in self.candidate.entries]

    @property
    def exit_names(self) -> list[str]:
        return [leg.strategy for leg in self.candidate.exits]

    @property
    def entry_params(self) -> dict[str, dict[str, Any]]:
        return {leg.strategy: dict(leg.params) for leg in self.candidate.entries}

    @property
    def exit_params(self) -> dict[str, dict[str, Any]]:
        return {leg.strategy: dict(leg.params) for leg in self.candidate.exits}

    @property
    def strategy(self) -> CombinedStrategy:
        return self.candidate.build()

    @property
    def is_partial(self) -> bool:
        """True when the search was cancelled or hit its deadline."""
        return self.stats.interrupted

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "entry_names": self.entry_names,
            "exit_names": self.exit_names,
            "entry_params": self.entry_params,
            "exit_params": self.exit_params,
            "score": self.score,
            "result": self.result.model_dump(),
            "stats": self.stats.to_dict(),
        }

    def write_leaderboard(self, path: str) -> None:
        """Write the leaderboard to parquet (pandas + pyarrow)."""
        import pandas as pd

        frame = pd.DataFrame([entry.to_dict() for entry in self.leaderboard])
        frame.insert(0, "symbol", self.symbol)
        frame.to_parquet(path, index=False, engine="pyarrow")
