"""
Single-instrument rule backtester.

Simulates one entry/exit rule pair over one BarSeries in a single O(n) pass:

    FLAT --entry--> LONG --exit / stop / target / last bar--> FLAT

With `allow_short`, an exit signal while flat opens a SHORT which is covered
by the entry rule (or stop / target / last bar). The simulation always ends
FLAT: an open position is closed at the final close price.
"""

from dataclasses import dataclass, field

from combo_engine.backtest.metrics import build_risk_result, drawdown
from combo_engine.backtest.models import (
    BacktestConfig,
    ExitReason,
    PositionSide,
    RiskResult,
    TradeRecord,
)
from combo_engine.domain.bar import BarSeries
from combo_engine.logging import get_logger
from combo_engine.strategies.library import StrategyRule
from combo_engine.strategies.rules import Rule

logger = get_logger(__name__)


@dataclass
class BacktestOutcome:
    """RiskResult plus the trades and capital path behind it."""

    result: RiskResult
    trades: list[TradeRecord] = field(default_factory=list)
    final_capital: float = 0.0


@dataclass
class _OpenPosition:
    side: PositionSide
    entry_index: int
    entry_price: float
    size: float


class Backtester:
    """
    Deterministic rule-pair simulator.

    Stateless between runs, so one instance can be shared by threads or
    copied into worker processes.
    """

    def __init__(self, config: BacktestConfig | None = None):
        self.config = config or BacktestConfig()

    def run(
        self,
        series: BarSeries,
        entry_rule: Rule,
        exit_rule: Rule,
        initial_capital: float | None = None,
        start_index: int = 0,
    ) -> RiskResult:
        """
        Simulate the rule pair and summarise the closed trades.

        Args:
            series: Bars to simulate over
            entry_rule: Opens a long while flat
            exit_rule: Closes a long (opens a short while flat if enabled)
            initial_capital: Overrides the configured starting capital
            start_index: First tradable bar; earlier bars only warm up the rules

        Returns:
            RiskResult; zeroed and filtered_out when no trade closed
        """
        return self.run_detailed(series, entry_rule, exit_rule, initial_capital, start_index).result

    def run_strategy(
        self,
        series: BarSeries,
        strategy: StrategyRule,
        initial_capital: float | None = None,
        start_index: int = 0,
    ) -> RiskResult:
        """Build the strategy's rules on `series` and simulate them."""
        return self.run(
            series,
            strategy.entry_rule(series),
            strategy.exit_rule(series),
            initial_capital,
            start_index,
        )

    def run_detailed(
        self,
        series: BarSeries,
        entry_rule: Rule,
        exit_rule: Rule,
        initial_capital: float | None = None,
        start_index: int = 0,
    ) -> BacktestOutcome:
        """Same as run() but also returns the trade list."""
        capital = self.config.initial_capital if initial_capital is None else initial_capital
        if capital <= 0:
            raise ValueError(f"initial_capital must be > 0, got {capital}")

        n = len(series)
        if n < 2 or start_index >= n - 1:
            # Not enough bars to open and later close a position
            return BacktestOutcome(result=RiskResult.empty(), final_capital=capital)

        closes = series.closes
        initial = capital
        peak = capital
        max_dd = 0.0
        trades: list[TradeRecord] = []
        position: _OpenPosition | None = None

        for i in range(max(start_index, 0), n):
            price = closes[i]

            if position is None:
                if entry_rule.is_satisfied(i):
                    position = _OpenPosition(PositionSide.LONG, i, price, self._size(capital))
                elif self.config.allow_short and exit_rule.is_satisfied(i):
                    position = _OpenPosition(PositionSide.SHORT, i, price, self._size(capital))
                continue

            exit_price, reason = self._check_exit(position, price, i, entry_rule, exit_rule)
            if reason is None:
                continue

            trade = self._close(position, i, exit_price, reason)
            trades.append(trade)
            capital += trade.pnl
            peak = max(peak, capital)
            max_dd = max(max_dd, drawdown(peak, capital))
            position = None

        if position is not None:
            trade = self._close(position, n - 1, closes[-1], ExitReason.END_OF_SERIES)
            trades.append(trade)
            capital += trade.pnl
            peak = max(peak, capital)
            max_dd = max(max_dd, drawdown(peak, capital))

        result = build_risk_result(trades, initial, capital, max_dd)
        logger.debug(
            "Backtest %s: %d trades, rendement=%.4f, max_dd=%.4f",
            series.symbol,
            result.trade_count,
            result.rendement,
            result.max_drawdown,
        )
        return BacktestOutcome(result=result, trades=trades, final_capital=capital)

    def _check_exit(
        self,
        position: _OpenPosition,
        price: float,
        index: int,
        entry_rule: Rule,
        exit_rule: Rule,
    ) -> tuple[float, ExitReason | None]:
        """Return (exit price, reason) or (price, None) to stay in the position."""
        sl = self.config.stop_loss_pct
        tp = self.config.take_profit_pct
        entry = position.entry_price

        if position.side is PositionSide.LONG:
            if sl is not None and price <= entry * (1 - sl):
                return entry * (1 - sl), ExitReason.STOP_LOSS
            if tp is not None and price >= entry * (1 + tp):
                return entry * (1 + tp), ExitReason.TAKE_PROFIT
            if exit_rule.is_satisfied(index):
                return price, ExitReason.SIGNAL
        else:
            if sl is not None and price >= entry * (1 + sl):
                return entry * (1 + sl), ExitReason.STOP_LOSS
            if tp is not None and price <= entry * (1 - tp):
                return entry * (1 - tp), ExitReason.TAKE_PROFIT
            if entry_rule.is_satisfied(index):
                return price, ExitReason.SIGNAL

        return price, None

    def _size(self, capital: float) -> float:
        # A wiped-out account cannot open new exposure
        return max(capital, 0.0) * self.config.risk_per_trade

    @staticmethod
    def _close(position: _OpenPosition, index: int, exit_price: float, reason: ExitReason) -> TradeRecord:
        move = (exit_price - position.entry_price) / position.entry_price
        if position.side is PositionSide.SHORT:
            move = -move
        return TradeRecord(
            side=position.side,
            entry_index=position.entry_index,
            exit_index=index,
            entry_price=position.entry_price,
            exit_price=exit_price,
            size=position.size,
            pnl=position.size * move,
            exit_reason=reason,
        )
