"""
Tests for the rule-pair backtester.

Rules are given as explicit flag tuples so every trade can be checked by hand.
Default config: 10 000 capital, 15 % of capital per trade.
"""

import pytest

from combo_engine.backtest.backtester import Backtester
from combo_engine.backtest.models import (
    PROFIT_FACTOR_SENTINEL,
    BacktestConfig,
    ExitReason,
    PositionSide,
)
from combo_engine.domain.bar import BarSeries
from combo_engine.strategies.library import Breakout
from combo_engine.strategies.rules import Rule
from tests.synthetic_data import from_closes


def flags(n: int, *fired: int) -> Rule:
    return Rule(tuple(i in fired for i in range(n)))


class TestSingleTrade:
    """Test one entry/exit round trip."""

    def test_winning_trade(self, backtester):
        series = from_closes([100, 100, 110, 120, 90, 100])
        outcome = backtester.run_detailed(series, flags(6, 1), flags(6, 3))

        assert len(outcome.trades) == 1
        trade = outcome.trades[0]
        assert (trade.entry_index, trade.exit_index) == (1, 3)
        assert trade.exit_reason == ExitReason.SIGNAL
        assert trade.pnl == pytest.approx(300.0)

        result = outcome.result
        assert result.trade_count == 1
        assert result.rendement == pytest.approx(0.03)
        assert result.win_rate == 1.0
        assert result.profit_factor == PROFIT_FACTOR_SENTINEL
        assert result.avg_trade_bars == 2
        assert result.max_trade_gain == pytest.approx(300.0)
        assert result.max_trade_loss == 0.0
        assert result.max_drawdown == 0.0
        assert not result.filtered_out

    def test_losing_then_winning_trade(self, backtester):
        series = from_closes([100, 100, 80, 90, 120])
        result = backtester.run(series, flags(5, 1, 3), flags(5, 2))

        # -300 on the first trade, then 9700 * 0.15 * (30 / 90) = 485 forced at the end
        assert result.trade_count == 2
        assert result.win_rate == 0.5
        assert result.profit_factor == pytest.approx(485.0 / 300.0)
        assert result.avg_pnl == pytest.approx((485.0 - 300.0) / 2)
        assert result.rendement == pytest.approx(0.0185)
        assert result.max_drawdown == pytest.approx(0.03)
        assert result.avg_trade_bars == 1
        assert result.max_trade_loss == pytest.approx(-300.0)

    def test_no_exit_check_on_entry_bar(self, backtester):
        series = from_closes([100, 100, 110, 120])
        outcome = backtester.run_detailed(series, flags(4, 1), flags(4, 1, 2))
        assert outcome.trades[0].exit_index == 2


class TestForcedClose:
    """Test the end-of-series close."""

    def test_open_position_closed_at_last_bar(self, backtester):
        series = from_closes([100, 100, 50])
        outcome = backtester.run_detailed(series, flags(3, 1), flags(3))

        trade = outcome.trades[0]
        assert trade.exit_reason == ExitReason.END_OF_SERIES
        assert trade.exit_index == 2
        assert trade.pnl == pytest.approx(-750.0)
        # Drawdown includes the forced close
        assert outcome.result.max_drawdown == pytest.approx(0.075)
        assert outcome.result.profit_factor == 0.0

    def test_final_capital(self, backtester):
        series = from_closes([100, 100, 120])
        outcome = backtester.run_detailed(series, flags(3, 1), flags(3))
        assert outcome.final_capital == pytest.approx(10_300.0)


class TestDegenerateSeries:
    """Test zero-trade and tiny series."""

    def test_zero_trades_is_filtered_out(self, backtester):
        series = from_closes([100, 101, 102, 103])
        result = backtester.run(series, flags(4), flags(4))
        assert result.trade_count == 0
        assert result.filtered_out
        assert result.profit_factor == 0.0
        assert result.win_rate == 0.0

    @pytest.mark.parametrize("closes", [[], [100.0]])
    def test_empty_and_single_bar(self, backtester, closes):
        series = from_closes(closes)
        n = len(closes)
        result = backtester.run(series, flags(n, *range(n)), flags(n))
        assert result.trade_count == 0
        assert result.filtered_out

    def test_start_index_past_end(self, backtester):
        series = from_closes([100, 101, 102])
        assert backtester.run(series, flags(3, 0), flags(3), start_index=2).filtered_out

    def test_flat_market_breakout_never_trades(self, backtester):
        series = from_closes([100.0] * 50)
        result = backtester.run_strategy(series, Breakout(lookback=10))
        assert result.trade_count == 0
        assert result.filtered_out


class TestStartIndex:
    def test_bars_before_start_are_warm_up(self, backtester):
        series = from_closes([80, 120, 100, 110])
        entry = flags(4, 0, 2)

        full = backtester.run(series, entry, flags(4))
        late = backtester.run(series, entry, flags(4), start_index=1)

        assert full.max_trade_gain == pytest.approx(1500 * 30 / 80)
        assert late.max_trade_gain == pytest.approx(150.0)


class TestShort:
    """Test short positions when enabled."""

    def test_exit_rule_opens_short_while_flat(self):
        backtester = Backtester(BacktestConfig(allow_short=True))
        series = from_closes([100, 100, 80, 90])
        outcome = backtester.run_detailed(series, flags(4, 3), flags(4, 1))

        trade = outcome.trades[0]
        assert trade.side == PositionSide.SHORT
        assert (trade.entry_index, trade.exit_index) == (1, 3)
        assert trade.pnl == pytest.approx(150.0)

    def test_short_disabled_by_default(self, backtester):
        series = from_closes([100, 100, 80, 90])
        assert backtester.run(series, flags(4), flags(4, 1)).trade_count == 0


class TestStops:
    """Test stop-loss and take-profit exits at the stop/target price."""

    def test_stop_loss(self):
        backtester = Backtester(BacktestConfig(stop_loss_pct=0.1))
        series = from_closes([100, 100, 95, 85, 120])
        trade = backtester.run_detailed(series, flags(5, 1), flags(5)).trades[0]
        assert trade.exit_reason == ExitReason.STOP_LOSS
        assert trade.exit_index == 3
        assert trade.exit_price == pytest.approx(90.0)
        assert trade.pnl == pytest.approx(-150.0)

    def test_take_profit(self):
        backtester = Backtester(BacktestConfig(take_profit_pct=0.1))
        series = from_closes([100, 100, 105, 115])
        trade = backtester.run_detailed(series, flags(4, 1), flags(4)).trades[0]
        assert trade.exit_reason == ExitReason.TAKE_PROFIT
        assert trade.exit_price == pytest.approx(110.0)
        assert trade.pnl == pytest.approx(150.0)


class TestInvariants:
    """Test result bounds on a realistic series."""

    def test_bounds(self, backtester, wave_series):
        for lookback in (3, 5, 10, 20):
            result = backtester.run_strategy(wave_series, Breakout(lookback))
            assert result.profit_factor >= 0
            assert 0.0 <= result.win_rate <= 1.0
            assert 0.0 <= result.max_drawdown <= 1.0
            assert (result.trade_count == 0) == result.filtered_out

    def test_deterministic(self, backtester, wave_series):
        strategy = Breakout(10)
        assert backtester.run_strategy(wave_series, strategy) == backtester.run_strategy(wave_series, strategy)

    def test_rejects_non_positive_capital(self, backtester):
        series = BarSeries("X", [])
        with pytest.raises(ValueError):
            backtester.run(series, flags(0), flags(0), initial_capital=0)
