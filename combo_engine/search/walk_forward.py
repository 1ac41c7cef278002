"""
Walk-forward validation of the combination search.

The series is cut into rolling (optimisation, test) windows. The search
picks a combination on each optimisation window; that combination is then
traded on the test window that follows, with the optimisation window used
only to warm up its rules.
"""

import math
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from combo_engine.backtest.metrics import average_results
from combo_engine.backtest.models import RiskResult
from combo_engine.domain.bar import BarSeries
from combo_engine.errors import NoViableCombination
from combo_engine.logging import get_logger
from combo_engine.search.combination_search import CombinationSearch
from combo_engine.search.models import BestCombinationResult

logger = get_logger(__name__)

# test / train return ratio outside this band marks the run overfit
OVERFIT_RATIO_MIN = 0.7
OVERFIT_RATIO_MAX = 1.3


# =============================================================================
# Strategy filter
# =============================================================================


@dataclass(frozen=True)
class StrategyFilterConfig:
    """Quality bar a validated combination must clear."""

    max_drawdown: float = 0.5
    min_profit_factor: float = 1.0
    min_win_rate: float = 0.2
    min_avg_trade_bars: float = 1.0
    max_avg_trade_bars: float = 30.0
    min_gain_loss_ratio: float = 0.7
    max_param_count: int = 15


def filter_reasons(
    result: RiskResult,
    param_count: int,
    config: StrategyFilterConfig | None = None,
) -> list[str]:
    """Why `result` fails the filter; empty when it passes."""
    cfg = config or StrategyFilterConfig()
    reasons = []

    if result.trade_count == 0:
        reasons.append("no_trades")
    if result.max_drawdown > cfg.max_drawdown:
        reasons.append("max_drawdown")
    if result.profit_factor < cfg.min_profit_factor:
        reasons.append("profit_factor")
    if result.win_rate < cfg.min_win_rate:
        reasons.append("win_rate")
    if not cfg.min_avg_trade_bars <= result.avg_trade_bars <= cfg.max_avg_trade_bars:
        reasons.append("avg_trade_bars")
    ratio = result.gain_loss_ratio
    if ratio is not None and ratio < cfg.min_gain_loss_ratio:
        reasons.append("gain_loss_ratio")
    if param_count > cfg.max_param_count:
        reasons.append("param_count")

    return reasons


def passes_filter(
    result: RiskResult,
    param_count: int,
    config: StrategyFilterConfig | None = None,
) -> bool:
    return not filter_reasons(result, param_count, config)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class WalkForwardFold:
    """One optimisation/test window pair."""

    index: int
    optim_start: int
    optim_end: int
    test_end: int
    best: BestCombinationResult
    test: RiskResult

    @property
    def train(self) -> RiskResult:
        return self.best.result

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "optim_start": self.optim_start,
            "optim_end": self.optim_end,
            "test_end": self.test_end,
            "entry_names": self.best.entry_names,
            "exit_names": self.best.exit_names,
            "train_rendement": self.train.rendement,
            "test_rendement": self.test.rendement,
        }


@dataclass
class WalkForwardResult:
    """Aggregate of all folds of one walk-forward run."""

    symbol: str
    folds: list[WalkForwardFold] = field(default_factory=list)
    result: RiskResult = field(default_factory=RiskResult.empty)
    avg_train_rendement: float = 0.0
    avg_test_rendement: float = 0.0
    overfit_ratio: float | None = None
    rendement_score: float = 0.0
    rendement_std: float = 0.0
    sharpe: float = 0.0
    sortino: float = 0.0
    reasons: list[str] = field(default_factory=list)

    @property
    def best(self) -> BestCombinationResult | None:
        """Combination of the most recent fold."""
        return self.folds[-1].best if self.folds else None

    @property
    def overfit(self) -> bool:
        if self.overfit_ratio is None:
            return False
        return not OVERFIT_RATIO_MIN <= self.overfit_ratio <= OVERFIT_RATIO_MAX

    @property
    def filtered_out(self) -> bool:
        return self.result.filtered_out

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "folds": [f.to_dict() for f in self.folds],
            "result": self.result.model_dump(),
            "avg_train_rendement": self.avg_train_rendement,
            "avg_test_rendement": self.avg_test_rendement,
            "overfit_ratio": self.overfit_ratio,
            "overfit": self.overfit,
            "rendement_score": self.rendement_score,
            "rendement_std": self.rendement_std,
            "sharpe": self.sharpe,
            "sortino": self.sortino,
            "reasons": list(self.reasons),
        }


def _std(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    mean = math.fsum(values) / len(values)
    return math.sqrt(math.fsum((v - mean) ** 2 for v in values) / len(values))


def _downside_deviation(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return math.sqrt(math.fsum(min(v, 0.0) ** 2 for v in values) / len(values))


# =============================================================================
# Validator
# =============================================================================


class WalkForwardValidator:
    """
    Rolling walk-forward over one series.

    Example:
        validator = WalkForwardValidator(CombinationSearch(config))
        report = validator.run(series)
        if not report.filtered_out:
            ...
    """

    def __init__(
        self,
        search: CombinationSearch | None = None,
        filter_config: StrategyFilterConfig | None = None,
        folds: int = 5,
        optim_fraction: float = 0.2,
        test_fraction: float = 0.1,
    ):
        if folds < 1:
            raise ValueError(f"folds must be >= 1, got {folds}")
        if not 0 < optim_fraction < 1 or not 0 < test_fraction < 1:
            raise ValueError("window fractions must be in (0, 1)")
        if optim_fraction + test_fraction > 1:
            raise ValueError("optimisation + test windows exceed the series")

        self.search = search or CombinationSearch()
        self.filter_config = filter_config or StrategyFilterConfig()
        self.folds = folds
        self.optim_fraction = optim_fraction
        self.test_fraction = test_fraction

    def windows(self, length: int) -> list[tuple[int, int, int]]:
        """(optim_start, optim_end, test_end) per fold, rolling by one test window."""
        optim = int(length * self.optim_fraction)
        test = int(length * self.test_fraction)
        if optim < 2 or test < 1:
            return []

        windows = []
        for k in range(self.folds):
            start = k * test
            if start + optim + test > length:
                break
            windows.append((start, start + optim, start + optim + test))
        return windows

    def run(self, series: BarSeries, cancel_event: threading.Event | None = None) -> WalkForwardResult:
        """Validate the search on `series`; folds without a viable combination are dropped."""
        folds: list[WalkForwardFold] = []

        for index, (optim_start, optim_end, test_end) in enumerate(self.windows(len(series))):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Walk-forward for %s cancelled at fold %d", series.symbol, index)
                break
            try:
                best = self.search.search(series.window(optim_start, optim_end), cancel_event)
            except NoViableCombination:
                logger.info("Fold %d of %s: no viable combination", index, series.symbol)
                continue

            window = series.window(optim_start, test_end)
            test = self.search.backtester.run_strategy(
                window,
                best.strategy,
                start_index=optim_end - optim_start,
            )
            folds.append(WalkForwardFold(index, optim_start, optim_end, test_end, best, test))
            logger.debug(
                "Fold %d of %s: train=%.4f test=%.4f",
                index,
                series.symbol,
                best.result.rendement,
                test.rendement,
            )

        report = self._summarise(series.symbol, folds)
        logger.info(
            "Walk-forward %s: %d folds, test=%.4f, score=%.4f, filtered_out=%s",
            series.symbol,
            len(folds),
            report.avg_test_rendement,
            report.rendement_score,
            report.filtered_out,
        )
        return report

    def _summarise(self, symbol: str, folds: list[WalkForwardFold]) -> WalkForwardResult:
        if not folds:
            return WalkForwardResult(symbol=symbol, reasons=["no_folds"])

        train = [f.train.rendement for f in folds]
        test = [f.test.rendement for f in folds]
        avg_train = math.fsum(train) / len(train)
        avg_test = math.fsum(test) / len(test)

        std = _std(test)
        downside = _downside_deviation(test)

        aggregate = average_results([f.test for f in folds])
        param_count = folds[-1].best.strategy.param_count
        reasons = filter_reasons(aggregate, param_count, self.filter_config)

        report = WalkForwardResult(
            symbol=symbol,
            folds=folds,
            avg_train_rendement=avg_train,
            avg_test_rendement=avg_test,
            overfit_ratio=avg_test / avg_train if avg_train != 0 else None,
            rendement_score=math.fsum(test) - abs(avg_train - avg_test),
            rendement_std=std,
            sharpe=avg_test / std if std > 0 else 0.0,
            sortino=avg_test / downside if downside > 0 else 0.0,
        )
        if report.overfit:
            reasons.append("overfit")

        report.reasons = reasons
        report.result = aggregate.model_copy(update={"filtered_out": aggregate.filtered_out or bool(reasons)})
        return report
