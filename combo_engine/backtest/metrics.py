"""
Risk metrics, composite scores and ranking.

`composite_score` and `rank_key` are the only ranking primitives in the
engine; every selection (search, walk-forward, leaderboard) goes through them.
"""

import math
from collections.abc import Sequence

from combo_engine.backtest.models import PROFIT_FACTOR_SENTINEL, RiskResult, TradeRecord

# Profit factors above this add nothing to a score
PROFIT_FACTOR_SCORE_CAP = 10.0

COMPOSITE_WEIGHTS = {
    "profit_factor": 0.3,
    "win_rate": 0.2,
    "drawdown": 0.2,
    "rendement": 0.3,
}

SWING_WEIGHTS = {
    "rendement": 2.0,
    "win_rate": 1.5,
    "profit_factor": 1.0,
    "drawdown": 1.0,
    "holding": 1.0,
}

# Preferred holding period for swing trades, in bars
SWING_HOLDING_MIN_BARS = 3
SWING_HOLDING_MAX_BARS = 10


def profit_factor(gross_profit: float, gross_loss: float) -> float:
    """
    Gross profit / gross loss.

    With no loss the ratio is undefined: the sentinel is returned when there
    was some profit and 0.0 when there was none, so callers never see inf/NaN.
    """
    if gross_loss > 0:
        return gross_profit / gross_loss
    return PROFIT_FACTOR_SENTINEL if gross_profit > 0 else 0.0


def drawdown(peak: float, current: float) -> float:
    """Fractional decline from `peak`, clamped to [0, 1]."""
    if peak <= 0:
        return 0.0
    return min(max((peak - current) / peak, 0.0), 1.0)


def build_risk_result(
    trades: Sequence[TradeRecord],
    initial_capital: float,
    final_capital: float,
    max_drawdown: float,
) -> RiskResult:
    """Summarise closed trades into a RiskResult (swing score included)."""
    if not trades:
        return RiskResult.empty()

    wins = [t.pnl for t in trades if t.pnl > 0]
    losses = [t.pnl for t in trades if t.pnl < 0]
    gross_profit = math.fsum(wins)
    gross_loss = abs(math.fsum(losses))
    count = len(trades)

    result = RiskResult(
        rendement=final_capital / initial_capital - 1.0,
        max_drawdown=max_drawdown,
        trade_count=count,
        win_rate=len(wins) / count,
        avg_pnl=math.fsum(t.pnl for t in trades) / count,
        profit_factor=profit_factor(gross_profit, gross_loss),
        avg_trade_bars=sum(t.bars_held for t in trades) / count,
        max_trade_gain=max(wins, default=0.0),
        max_trade_loss=min(losses, default=0.0),
    )
    return result.model_copy(update={"swing_trade_score": swing_trade_score(result)})


# =============================================================================
# Scores
# =============================================================================


def composite_score(result: RiskResult) -> float:
    """
    Weighted quality score used to rank candidate combinations.

    Combines capped/normalised profit factor, win rate, (1 - max drawdown)
    and total return.
    """
    pf = min(result.profit_factor, PROFIT_FACTOR_SCORE_CAP) / PROFIT_FACTOR_SCORE_CAP
    return (
        COMPOSITE_WEIGHTS["profit_factor"] * pf
        + COMPOSITE_WEIGHTS["win_rate"] * result.win_rate
        + COMPOSITE_WEIGHTS["drawdown"] * (1.0 - result.max_drawdown)
        + COMPOSITE_WEIGHTS["rendement"] * result.rendement
    )


def holding_period_fit(avg_trade_bars: float) -> float:
    """1.0 inside the swing holding window, decaying linearly to 0 outside it."""
    if avg_trade_bars < SWING_HOLDING_MIN_BARS:
        distance = SWING_HOLDING_MIN_BARS - avg_trade_bars
    elif avg_trade_bars > SWING_HOLDING_MAX_BARS:
        distance = avg_trade_bars - SWING_HOLDING_MAX_BARS
    else:
        return 1.0
    return max(0.0, 1.0 - distance / SWING_HOLDING_MAX_BARS)


def swing_trade_score(result: RiskResult) -> float:
    """
    Alternate score favouring 3-10 bar holding periods.

    Penalises drawdown half as hard as returns are rewarded. Zero-trade
    results score 0.
    """
    if result.trade_count == 0:
        return 0.0
    pf = min(result.profit_factor, PROFIT_FACTOR_SCORE_CAP)
    return (
        SWING_WEIGHTS["rendement"] * result.rendement
        + SWING_WEIGHTS["win_rate"] * result.win_rate
        + SWING_WEIGHTS["profit_factor"] * pf
        - SWING_WEIGHTS["drawdown"] * result.max_drawdown
        + SWING_WEIGHTS["holding"] * holding_period_fit(result.avg_trade_bars)
    )


def rank_key(result: RiskResult, index: int) -> tuple[float, float, int, int]:
    """
    Total-order key: larger is better.

    Higher composite score, then lower drawdown, then more trades, then the
    earlier enumeration index. Since indices are unique, max() over these
    keys gives the same winner whatever order results arrive in.
    """
    return (composite_score(result), -result.max_drawdown, result.trade_count, -index)


# =============================================================================
# Aggregation
# =============================================================================


def average_results(results: Sequence[RiskResult]) -> RiskResult:
    """
    Mean of each metric across results; trade counts are summed.

    Used to summarise walk-forward folds.
    """
    if not results:
        return RiskResult.empty()

    n = len(results)

    def mean(attr: str) -> float:
        return math.fsum(getattr(r, attr) for r in results) / n

    trade_count = sum(r.trade_count for r in results)
    averaged = RiskResult(
        rendement=mean("rendement"),
        max_drawdown=mean("max_drawdown"),
        trade_count=trade_count,
        win_rate=mean("win_rate"),
        avg_pnl=mean("avg_pnl"),
        profit_factor=mean("profit_factor"),
        avg_trade_bars=mean("avg_trade_bars"),
        max_trade_gain=max(r.max_trade_gain for r in results),
        max_trade_loss=min(r.max_trade_loss for r in results),
        filtered_out=trade_count == 0,
    )
    return averaged.model_copy(update={"swing_trade_score": swing_trade_score(averaged)})
