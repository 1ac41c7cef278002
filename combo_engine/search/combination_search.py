"""
Combination search.

Enumerates rule/parameter combinations for one instrument, backtests each
grid cell and keeps the arg-max under `rank_key`.

Features:
- Explicit-period mode: one lookback strategy, entry periods x exit periods
- Full-library mode: per-strategy parameter tuning, then every in/out
  subset of the tuned strategies
- Process-based parallelism with an order-independent reduction
- Cooperative cancellation and deadline checked between grid cells
"""

import heapq
import itertools
import threading
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from multiprocessing import cpu_count

from combo_engine.backtest.backtester import Backtester
from combo_engine.backtest.metrics import composite_score, rank_key
from combo_engine.backtest.models import BacktestConfig
from combo_engine.domain.bar import BarSeries
from combo_engine.errors import InvalidParameterRange, NoViableCombination
from combo_engine.logging import get_logger
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
from combo_engine.strategies.grids import grid_for
from combo_engine.strategies.library import STRATEGY_LIBRARY

logger = get_logger(__name__)


# =============================================================================
# Pure cell evaluation
# =============================================================================


def evaluate_candidate(series: BarSeries, candidate: Candidate, backtester: Backtester) -> CellOutcome:
    """
    Backtest one grid cell.

    Never raises for bad parameters: those come back as INVALID outcomes.
    """
    try:
        strategy = candidate.build()
        entry = strategy.entry_rule(series)
        exit_ = strategy.exit_rule(series)
    except InvalidParameterRange as e:
        return CellOutcome(candidate, CellStatus.INVALID, reason=str(e))

    result = backtester.run(series, entry, exit_)
    if result.trade_count == 0:
        return CellOutcome(candidate, CellStatus.NO_TRADES, result)
    return CellOutcome(candidate, CellStatus.OK, result)


_worker_context: tuple[BarSeries, Backtester] | None = None


def _init_worker(series: BarSeries, backtest_config: BacktestConfig) -> None:
    """Ship the series once per worker process instead of once per cell."""
    global _worker_context
    _worker_context = (series, Backtester(backtest_config))


def _evaluate_in_worker(candidate: Candidate) -> CellOutcome:
    if _worker_context is None:
        raise RuntimeError("worker not initialised")
    series, backtester = _worker_context
    return evaluate_candidate(series, candidate, backtester)


# =============================================================================
# Enumeration
# =============================================================================


def enumerate_explicit(config: SearchConfig) -> list[Candidate]:
    """Entry period x exit period grid over `config.period_strategy`."""
    strategy = config.period_strategy
    lookback = STRATEGY_LIBRARY[strategy].lookback_field
    assert lookback is not None  # checked by SearchConfig

    return [
        Candidate(
            index,
            (CandidateLeg.of(strategy, {lookback: entry}),),
            (CandidateLeg.of(strategy, {lookback: exit_}),),
        )
        for index, (entry, exit_) in enumerate(itertools.product(config.entry_periods, config.exit_periods))
    ]


def enumerate_tuning(strategy: str, config: SearchConfig) -> list[Candidate]:
    """The strategy alone on both sides, once per (possibly sampled) grid point."""
    params_list = grid_for(strategy, config.grids).sample(config.random_search_limit, config.seed)
    candidates = []
    for index, params in enumerate(params_list):
        leg = CandidateLeg.of(strategy, params)
        candidates.append(Candidate(index, (leg,), (leg,)))
    return candidates


def enumerate_subsets(legs: Sequence[CandidateLeg], max_subset_size: int) -> list[Candidate]:
    """Every (in subset, out subset) pair of sizes 1..max_subset_size."""
    subsets = [
        combo
        for size in range(1, min(max_subset_size, len(legs)) + 1)
        for combo in itertools.combinations(legs, size)
    ]
    return [
        Candidate(index, entries, exits)
        for index, (entries, exits) in enumerate(itertools.product(subsets, subsets))
    ]


# =============================================================================
# Reduction
# =============================================================================


class _StopControl:
    """Cancellation event + deadline shared by every stage of one search."""

    def __init__(self, cancel_event: threading.Event | None, deadline_s: float | None):
        self.cancel_event = cancel_event
        self.deadline = time.monotonic() + deadline_s if deadline_s is not None else None
        self.cancelled = False
        self.deadline_hit = False

    def should_stop(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            self.cancelled = True
        elif self.deadline is not None and time.monotonic() >= self.deadline:
            self.deadline_hit = True
        return self.cancelled or self.deadline_hit


class _Reducer:
    """Running arg-max and leaderboard; insensitive to arrival order."""

    def __init__(self, leaderboard_size: int):
        self.best: CellOutcome | None = None
        self._best_key: tuple | None = None
        self._heap: list[tuple[tuple, CellOutcome]] = []
        self._leaderboard_size = leaderboard_size
        self.stats = SearchStats()

    def add(self, outcome: CellOutcome) -> None:
        if outcome.status is CellStatus.INVALID:
            self.stats.skipped += 1
            logger.debug("Skipped candidate %d: %s", outcome.candidate.index, outcome.reason)
            return

        self.stats.evaluated += 1
        if outcome.status is CellStatus.NO_TRADES:
            self.stats.zero_trade += 1
            return

        assert outcome.result is not None
        key = rank_key(outcome.result, outcome.candidate.index)
        if self._best_key is None or key > self._best_key:
            self._best_key = key
            self.best = outcome

        # Keys embed the unique index, so tuples never tie into comparing outcomes
        if len(self._heap) < self._leaderboard_size:
            heapq.heappush(self._heap, (key, outcome))
        elif key > self._heap[0][0]:
            heapq.heapreplace(self._heap, (key, outcome))

    def leaderboard(self) -> list[RankedCandidate]:
        ranked = sorted(self._heap, key=lambda item: item[0], reverse=True)
        return [
            RankedCandidate(
                rank=position + 1,
                score=key[0],
                candidate=outcome.candidate,
                result=outcome.result,  # type: ignore[arg-type]
            )
            for position, (key, outcome) in enumerate(ranked)
        ]


# =============================================================================
# Search
# =============================================================================


class CombinationSearch:
    """
    Finds the best entry/exit combination for one instrument.

    Every cell is a pure function of (series, candidate), so cells can run
    in any order on any worker; the reduction uses a total order (see
    `rank_key`) and therefore always picks the same winner.
    """

    def __init__(
        self,
        config: SearchConfig | None = None,
        backtest_config: BacktestConfig | None = None,
    ):
        self.config = config or SearchConfig()
        self.backtest_config = backtest_config or BacktestConfig()
        self.backtester = Backtester(self.backtest_config)

    def search(
        self,
        series: BarSeries,
        cancel_event: threading.Event | None = None,
    ) -> BestCombinationResult:
        """
        Run the search over `series`.

        Args:
            series: Bars of the instrument
            cancel_event: Set it from another thread to stop between cells

        Returns:
            Best combination found (possibly partial if cancelled / past deadline)

        Raises:
            NoViableCombination: If no candidate was valid and traded
        """
        started = time.monotonic()
        control = _StopControl(cancel_event, self.config.deadline_s)

        logger.info(
            "Starting %s search for %s (%d bars, %d workers)",
            self.config.mode.value,
            series.symbol,
            len(series),
            self.config.max_workers,
        )

        pool = self._make_pool(series)
        try:
            if self.config.mode == SearchMode.EXPLICIT_PERIODS:
                reducer = _Reducer(self.config.leaderboard_size)
                self._evaluate(series, enumerate_explicit(self.config), control, pool, reducer)
                stats = reducer.stats
            else:
                reducer, stats = self._search_full_library(series, control, pool)
        finally:
            if pool is not None:
                pool.shutdown(wait=True, cancel_futures=True)

        stats.cancelled = control.cancelled
        stats.deadline_hit = control.deadline_hit
        stats.duration_s = time.monotonic() - started

        if control.cancelled:
            logger.warning("Search for %s cancelled after %d cells", series.symbol, stats.evaluated)
        elif control.deadline_hit:
            logger.warning("Search for %s hit its deadline after %d cells", series.symbol, stats.evaluated)

        best = reducer.best
        if best is None or best.result is None:
            raise NoViableCombination(series.symbol, stats.evaluated, stats.skipped)

        score = composite_score(best.result)
        logger.info(
            "Best combination for %s: %s (score=%.4f, rendement=%.4f, trades=%d) in %.2fs",
            series.symbol,
            best.candidate.build().label,
            score,
            best.result.rendement,
            best.result.trade_count,
            stats.duration_s,
        )

        return BestCombinationResult(
            symbol=series.symbol,
            candidate=best.candidate,
            result=best.result,
            score=score,
            stats=stats,
            leaderboard=reducer.leaderboard(),
        )

    def search_or_none(
        self,
        series: BarSeries,
        cancel_event: threading.Event | None = None,
    ) -> BestCombinationResult | None:
        """Like search(), but "no result" is None instead of an exception."""
        try:
            return self.search(series, cancel_event)
        except NoViableCombination as e:
            logger.info("%s", e)
            return None

    def enumerate_candidates(self) -> list[Candidate]:
        """
        Cells of an explicit-period search, in enumeration order.

        Full-library cells depend on the tuning stage and are only known
        while a search runs.
        """
        if self.config.mode != SearchMode.EXPLICIT_PERIODS:
            raise ValueError("candidates are only enumerable up front in explicit_periods mode")
        return enumerate_explicit(self.config)

    # -------------------------------------------------------------------------
    # Modes
    # -------------------------------------------------------------------------

    def _search_full_library(
        self,
        series: BarSeries,
        control: _StopControl,
        pool: ProcessPoolExecutor | None,
    ) -> tuple[_Reducer, SearchStats]:
        stats = SearchStats()
        tuned: dict[str, CellOutcome] = {}

        # Stage 1: best parameters of each strategy used alone
        for strategy in self.config.library:
            if control.should_stop():
                break
            stage = _Reducer(1)
            self._evaluate(
                series,
                enumerate_tuning(strategy, self.config),
                control,
                pool,
                stage,
                early_stop_return=self.config.early_stop_return,
            )
            stats.merge(stage.stats)
            if stage.best is not None:
                tuned[strategy] = stage.best
                logger.debug("Tuned %s: %s", strategy, dict(stage.best.candidate.entries[0].params))

        legs = [outcome.candidate.entries[0] for outcome in tuned.values()]
        candidates = enumerate_subsets(legs, self.config.max_subset_size)

        # Stage 2: single-strategy cells were already backtested while tuning
        final = _Reducer(self.config.leaderboard_size)
        seeded: set[int] = set()
        for candidate in candidates:
            if len(candidate.entries) == 1 and candidate.entries == candidate.exits:
                outcome = tuned[candidate.entries[0].strategy]
                final.add(CellOutcome(candidate, outcome.status, outcome.result))
                seeded.add(candidate.index)
        final.stats = SearchStats(total_cells=len(seeded))

        remaining = [c for c in candidates if c.index not in seeded]
        self._evaluate(series, remaining, control, pool, final)
        stats.merge(final.stats)
        return final, stats

    # -------------------------------------------------------------------------
    # Grid evaluation
    # -------------------------------------------------------------------------

    def _evaluate(
        self,
        series: BarSeries,
        candidates: Sequence[Candidate],
        control: _StopControl,
        pool: ProcessPoolExecutor | None,
        reducer: _Reducer,
        early_stop_return: float | None = None,
    ) -> None:
        """Evaluate cells into `reducer` until done, stopped or early-stopped."""
        reducer.stats.total_cells += len(candidates)
        if pool is None:
            self._evaluate_serial(series, candidates, control, reducer, early_stop_return)
        else:
            self._evaluate_parallel(candidates, control, reducer, pool, early_stop_return)

    def _evaluate_serial(
        self,
        series: BarSeries,
        candidates: Iterable[Candidate],
        control: _StopControl,
        reducer: _Reducer,
        early_stop_return: float | None,
    ) -> None:
        for candidate in candidates:
            if control.should_stop():
                return
            reducer.add(evaluate_candidate(series, candidate, self.backtester))
            if self._early_stop(reducer, early_stop_return):
                return

    def _evaluate_parallel(
        self,
        candidates: Sequence[Candidate],
        control: _StopControl,
        reducer: _Reducer,
        pool: ProcessPoolExecutor,
        early_stop_return: float | None,
    ) -> None:
        # Bounded in-flight window so cancellation takes effect quickly
        max_in_flight = self.config.max_workers * 2
        queue = iter(candidates)
        pending: set[Future[CellOutcome]] = set()
        exhausted = False

        while True:
            while not exhausted and len(pending) < max_in_flight and not control.should_stop():
                candidate = next(queue, None)
                if candidate is None:
                    exhausted = True
                    break
                pending.add(pool.submit(_evaluate_in_worker, candidate))

            if not pending:
                return

            done, pending = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                reducer.add(future.result())

            if control.should_stop() or self._early_stop(reducer, early_stop_return):
                for future in pending:
                    future.cancel()
                return

    @staticmethod
    def _early_stop(reducer: _Reducer, early_stop_return: float | None) -> bool:
        if early_stop_return is None or reducer.best is None or reducer.best.result is None:
            return False
        if reducer.best.result.rendement > early_stop_return:
            reducer.stats.early_stopped = True
            return True
        return False

    def _make_pool(self, series: BarSeries) -> ProcessPoolExecutor | None:
        if self.config.max_workers <= 1:
            return None
        workers = min(self.config.max_workers, cpu_count())
        return ProcessPoolExecutor(
            max_workers=workers,
            initializer=_init_worker,
            initargs=(series, self.backtest_config),
        )
