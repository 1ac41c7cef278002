"""
Signal aggregation.

Turns the current-bar state of a selected combination, or an external
prediction, into a SignalType.
"""

from combo_engine.backtest.metrics import swing_trade_score
from combo_engine.backtest.models import PositionSide, RiskResult
from combo_engine.domain.bar import BarSeries
from combo_engine.domain.signal import PredictionRecord, SignalType
from combo_engine.errors import InvalidParameterRange
from combo_engine.logging import get_logger
from combo_engine.search.models import BestCombinationResult
from combo_engine.strategies.library import StrategyRule

logger = get_logger(__name__)


class SignalAggregator:
    """Stateless; all methods are static."""

    @staticmethod
    def from_combination(
        series: BarSeries,
        combination: StrategyRule | BestCombinationResult | None,
        position: PositionSide | None = None,
        allow_short: bool = False,
    ) -> SignalType:
        """
        Signal on the last bar of `series`.

        Args:
            series: Bars up to and including the current one
            combination: Selected strategy (or search result); None means none was found
            position: Current position if known. FLAT only looks at the entry
                rule, LONG only at the exit rule, SHORT only at the entry rule
                (which covers). Unknown checks entry first, then exit.
            allow_short: Match a short-enabled backtest: while FLAT, an exit
                without an entry opens a short and gives SELL

        Returns:
            BUY, SELL or HOLD; NONE when there is nothing to evaluate
        """
        if combination is None or series.is_empty:
            return SignalType.NONE

        strategy = combination.strategy if isinstance(combination, BestCombinationResult) else combination
        try:
            entry = strategy.entry_rule(series)
            exit_ = strategy.exit_rule(series)
        except InvalidParameterRange as e:
            logger.debug("No signal for %s: %s", series.symbol, e)
            return SignalType.NONE

        last = series.end_index
        if position == PositionSide.LONG:
            return SignalType.SELL if exit_.is_satisfied(last) else SignalType.HOLD
        if position in (PositionSide.FLAT, PositionSide.SHORT):
            if entry.is_satisfied(last):
                return SignalType.BUY
            if position == PositionSide.FLAT and allow_short and exit_.is_satisfied(last):
                return SignalType.SELL
            return SignalType.HOLD

        if entry.is_satisfied(last):
            return SignalType.BUY
        if exit_.is_satisfied(last):
            return SignalType.SELL
        return SignalType.HOLD

    @staticmethod
    def from_prediction(record: PredictionRecord | None) -> SignalType:
        """Direction of an external prediction; NONE when there is none."""
        if record is None:
            return SignalType.NONE
        return record.signal

    @staticmethod
    def swing_score(result: RiskResult) -> RiskResult:
        """Copy of `result` with the swing-trade score recomputed; other fields untouched."""
        return result.model_copy(update={"swing_trade_score": swing_trade_score(result)})
