"""
Tests for the combination search.
"""

import threading

import pandas as pd
import pytest
from pydantic import ValidationError

from combo_engine.backtest.backtester import Backtester
from combo_engine.backtest.metrics import composite_score, rank_key
from combo_engine.backtest.models import RiskResult
from combo_engine.errors import NoViableCombination
from combo_engine.search.combination_search import (
    CombinationSearch,
    _Reducer,
    enumerate_subsets,
    evaluate_candidate,
)
from combo_engine.search.models import (
    Candidate,
    CandidateLeg,
    CellOutcome,
    CellStatus,
    SearchConfig,
    SearchMode,
)
from combo_engine.strategies.library import Breakout
from tests.synthetic_data import flat_market


class _CancelAfterFirstCell:
    """Backtester wrapper that sets a cancel event once a cell has run."""

    def __init__(self, inner: Backtester, event: threading.Event):
        self.inner = inner
        self.event = event

    def run(self, *args, **kwargs):
        result = self.inner.run(*args, **kwargs)
        self.event.set()
        return result


class TestSearchConfig:
    """Test SearchConfig validation."""

    def test_explicit_needs_periods(self):
        with pytest.raises(ValidationError):
            SearchConfig(mode=SearchMode.EXPLICIT_PERIODS, entry_periods=[5])

    def test_period_strategy_needs_lookback(self):
        with pytest.raises(ValidationError):
            SearchConfig.explicit([5], [10], period_strategy="Macd")

    def test_unknown_strategy(self):
        with pytest.raises(ValidationError):
            SearchConfig(strategies=["Nope"])

    def test_unknown_grid_parameter(self):
        with pytest.raises(ValidationError, match="period"):
            SearchConfig(strategies=["Breakout"], grids={"Breakout": {"period": [10]}})

    def test_grid_for_unknown_strategy(self):
        with pytest.raises(ValidationError):
            SearchConfig(grids={"Nope": {"lookback": [10]}})

    def test_valid_grid_override(self):
        config = SearchConfig(strategies=["Breakout"], grids={"Breakout": {"lookback": [10, 20]}})
        assert config.grids == {"Breakout": {"lookback": [10, 20]}}

    def test_explicit_accepts_ranges(self):
        config = SearchConfig.explicit(range(5, 8), range(10, 12))
        assert config.entry_periods == [5, 6, 7]
        assert config.exit_periods == [10, 11]


class TestExplicitSearch:
    """Test explicit entry-period x exit-period searches."""

    def test_single_cell_grid_returns_that_backtest(self, wave_series, backtester):
        best = CombinationSearch(SearchConfig.explicit([5], [10])).search(wave_series)

        expected = backtester.run(
            wave_series,
            Breakout(5).entry_rule(wave_series),
            Breakout(10).exit_rule(wave_series),
        )
        assert best.result == expected
        assert best.entry_params == {"Breakout": {"lookback": 5}}
        assert best.exit_params == {"Breakout": {"lookback": 10}}
        assert best.stats.evaluated == 1
        assert not best.is_partial

    def test_enumeration_order(self):
        search = CombinationSearch(SearchConfig.explicit([5, 10], [20, 30]))
        cells = [
            (c.index, dict(c.entries[0].params)["lookback"], dict(c.exits[0].params)["lookback"])
            for c in search.enumerate_candidates()
        ]
        assert cells == [(0, 5, 20), (1, 5, 30), (2, 10, 20), (3, 10, 30)]

    def test_enumerate_candidates_needs_explicit_mode(self):
        with pytest.raises(ValueError):
            CombinationSearch(SearchConfig()).enumerate_candidates()

    def test_invalid_periods_are_skipped(self, wave_series):
        best = CombinationSearch(SearchConfig.explicit([5, 500], [10])).search(wave_series)
        assert best.stats.skipped == 1
        assert best.stats.evaluated == 1
        assert best.entry_params == {"Breakout": {"lookback": 5}}

    def test_all_invalid_raises(self, wave_series):
        search = CombinationSearch(SearchConfig.explicit([500], [600]))
        with pytest.raises(NoViableCombination) as exc:
            search.search(wave_series)
        assert exc.value.skipped == 1
        assert exc.value.evaluated == 0
        assert search.search_or_none(wave_series) is None

    def test_zero_trade_series_raises(self):
        with pytest.raises(NoViableCombination) as exc:
            CombinationSearch(SearchConfig.explicit([5], [5])).search(flat_market(100))
        assert exc.value.evaluated == 1

    def test_winner_is_arg_max_in_any_order(self, wave_series, backtester):
        search = CombinationSearch(SearchConfig.explicit([3, 5, 8, 13], [3, 5, 8, 13]))
        best = search.search(wave_series)

        outcomes = [evaluate_candidate(wave_series, c, backtester) for c in reversed(search.enumerate_candidates())]
        ranked = [o for o in outcomes if o.status is CellStatus.OK]
        expected = max(ranked, key=lambda o: rank_key(o.result, o.candidate.index))
        assert best.candidate == expected.candidate

    def test_duplicate_cells_pick_lowest_index(self, wave_series):
        best = CombinationSearch(SearchConfig.explicit([5, 5], [10])).search(wave_series)
        assert best.candidate.index == 0

    def test_parallel_matches_serial(self, wave_series):
        serial = CombinationSearch(SearchConfig.explicit([3, 5, 8], [5, 10])).search(wave_series)
        parallel = CombinationSearch(SearchConfig.explicit([3, 5, 8], [5, 10], max_workers=2)).search(wave_series)
        assert parallel.candidate == serial.candidate
        assert parallel.result == serial.result
        assert parallel.stats.evaluated == serial.stats.evaluated


class TestCancellation:
    """Test cooperative cancellation and deadlines."""

    def test_cancel_before_start(self, wave_series):
        event = threading.Event()
        event.set()
        with pytest.raises(NoViableCombination):
            CombinationSearch(SearchConfig.explicit([5, 8], [10])).search(wave_series, cancel_event=event)

    def test_cancel_returns_best_so_far(self, wave_series, backtester):
        event = threading.Event()
        search = CombinationSearch(SearchConfig.explicit([5, 8, 13], [10]))
        search.backtester = _CancelAfterFirstCell(backtester, event)

        best = search.search(wave_series, cancel_event=event)

        assert best.stats.cancelled
        assert best.is_partial
        assert best.stats.evaluated == 1
        assert best.candidate.index == 0

    def test_deadline_already_passed(self, wave_series):
        config = SearchConfig.explicit([5, 8], [10], deadline_s=1e-9)
        with pytest.raises(NoViableCombination):
            CombinationSearch(config).search(wave_series)


class TestFullLibrarySearch:
    """Test tuning + subset enumeration."""

    @pytest.fixture
    def config(self) -> SearchConfig:
        return SearchConfig(
            strategies=["Breakout", "MeanReversion"],
            grids={
                "Breakout": {"lookback": [5, 10]},
                "MeanReversion": {"sma_period": [5], "threshold_pct": [1.0]},
            },
        )

    def test_subset_enumeration(self):
        legs = [CandidateLeg.of("A"), CandidateLeg.of("B"), CandidateLeg.of("C")]
        # 3 singles + 3 pairs on each side
        assert len(enumerate_subsets(legs, 2)) == 36
        assert len(enumerate_subsets(legs, 1)) == 9

    def test_search(self, wave_series, config):
        best = CombinationSearch(config).search(wave_series)

        assert set(best.entry_names) <= {"Breakout", "MeanReversion"}
        assert set(best.exit_names) <= {"Breakout", "MeanReversion"}
        # 3 tuning cells + 3 x 3 subset cells
        assert best.stats.total_cells == 12
        assert best.stats.evaluated == 10
        assert best.leaderboard[0].candidate == best.candidate
        scores = [entry.score for entry in best.leaderboard]
        assert scores == sorted(scores, reverse=True)

    def test_deterministic(self, wave_series, config):
        first = CombinationSearch(config).search(wave_series)
        second = CombinationSearch(config).search(wave_series)
        assert first.candidate == second.candidate
        assert first.result == second.result

    def test_early_stop(self, wave_series):
        config = SearchConfig(
            strategies=["Breakout"],
            grids={"Breakout": {"lookback": [5, 10, 20]}},
            early_stop_return=-1.0,
        )
        best = CombinationSearch(config).search(wave_series)
        assert best.stats.early_stopped
        assert best.entry_params == {"Breakout": {"lookback": 5}}

    def test_write_leaderboard(self, wave_series, config, tmp_path):
        best = CombinationSearch(config).search(wave_series)
        path = tmp_path / "leaderboard.parquet"
        best.write_leaderboard(str(path))

        frame = pd.read_parquet(path)
        assert len(frame) == len(best.leaderboard)
        assert {"symbol", "rank", "score", "rendement"} <= set(frame.columns)
        assert frame["rank"].tolist() == list(range(1, len(frame) + 1))


class TestReduction:
    """Test the arg-max reduction on tied scores."""

    @staticmethod
    def outcome(index: int, win_rate: float, max_drawdown: float) -> CellOutcome:
        candidate = Candidate(
            index,
            (CandidateLeg.of("Breakout", {"lookback": 5 + index}),),
            (CandidateLeg.of("Breakout", {"lookback": 10}),),
        )
        result = RiskResult(
            rendement=0.0,
            max_drawdown=max_drawdown,
            trade_count=4,
            win_rate=win_rate,
            profit_factor=0.0,
            avg_trade_bars=5.0,
        )
        return CellOutcome(candidate, CellStatus.OK, result)

    @pytest.mark.parametrize("order", [(0, 1), (1, 0)])
    def test_score_tie_goes_to_lower_drawdown(self, order):
        outcomes = [
            self.outcome(0, win_rate=0.75, max_drawdown=0.5),
            self.outcome(1, win_rate=0.5, max_drawdown=0.25),
        ]
        assert composite_score(outcomes[0].result) == composite_score(outcomes[1].result)

        reducer = _Reducer(leaderboard_size=5)
        for i in order:
            reducer.add(outcomes[i])

        assert reducer.best.candidate.index == 1
        assert [entry.candidate.index for entry in reducer.leaderboard()] == [1, 0]
