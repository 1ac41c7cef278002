"""
Technical indicators used by the strategy library.

All functions are pure and deterministic and return one value per input
element. Value i only depends on inputs [0, i] (no lookahead). During the
warm-up period, averages are taken over the bars available so far.
"""

from collections import deque
from collections.abc import Sequence


def sma(values: Sequence[float], period: int) -> list[float]:
    """
    Simple moving average.

    Bars before `period` average over the available prefix.
    """
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")

    result: list[float] = []
    window_sum = 0.0
    for i, value in enumerate(values):
        window_sum += value
        if i >= period:
            window_sum -= values[i - period]
        result.append(window_sum / min(i + 1, period))
    return result


def ema(values: Sequence[float], period: int) -> list[float]:
    """
    Exponential moving average seeded with the first value.

    Uses the usual smoothing factor 2 / (period + 1).
    """
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")
    if not values:
        return []

    k = 2.0 / (period + 1)
    result = [float(values[0])]
    for value in values[1:]:
        result.append(result[-1] + k * (value - result[-1]))
    return result


def rsi(closes: Sequence[float], period: int = 14) -> list[float]:
    """
    Relative Strength Index with Wilder smoothing.

    The first bar has no change and reads 50. A window with no losses reads
    100, one with no gains reads 0, and a flat window reads 50.
    """
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")
    if not closes:
        return []

    result = [50.0]
    avg_gain = 0.0
    avg_loss = 0.0
    for i in range(1, len(closes)):
        change = closes[i] - closes[i - 1]
        gain = max(change, 0.0)
        loss = max(-change, 0.0)

        # Plain average until a full period is available, then Wilder's
        n = min(i, period)
        avg_gain = avg_gain + (gain - avg_gain) / n
        avg_loss = avg_loss + (loss - avg_loss) / n

        if avg_loss == 0.0:
            result.append(100.0 if avg_gain > 0.0 else 50.0)
        else:
            rs = avg_gain / avg_loss
            result.append(100.0 - 100.0 / (1.0 + rs))
    return result


def macd(
    closes: Sequence[float],
    short_period: int = 12,
    long_period: int = 26,
    signal_period: int = 9,
) -> tuple[list[float], list[float]]:
    """
    MACD line and its signal line.

    Returns:
        Tuple of (macd_line, signal_line)
    """
    fast = ema(closes, short_period)
    slow = ema(closes, long_period)
    line = [f - s for f, s in zip(fast, slow, strict=True)]
    return line, ema(line, signal_period)


def rolling_max(values: Sequence[float], period: int) -> list[float]:
    """Maximum over the last `period` values, current one included."""
    return _rolling_extreme(values, period, lambda a, b: a >= b)


def rolling_min(values: Sequence[float], period: int) -> list[float]:
    """Minimum over the last `period` values, current one included."""
    return _rolling_extreme(values, period, lambda a, b: a <= b)


def _rolling_extreme(values: Sequence[float], period: int, keeps) -> list[float]:
    # Monotonic deque of indices: O(n) for the whole series
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")

    result: list[float] = []
    window: deque[int] = deque()
    for i, value in enumerate(values):
        while window and not keeps(values[window[-1]], value):
            window.pop()
        window.append(i)
        if window[0] <= i - period:
            window.popleft()
        result.append(values[window[0]])
    return result


# =============================================================================
# Cross detection
# =============================================================================


def crossed_up(series1: Sequence[float], series2: Sequence[float], index: int) -> bool:
    """True when series1 moves from <= series2 at index-1 to > series2 at index."""
    if index < 1 or index >= len(series1) or index >= len(series2):
        return False
    return series1[index - 1] <= series2[index - 1] and series1[index] > series2[index]


def crossed_down(series1: Sequence[float], series2: Sequence[float], index: int) -> bool:
    """True when series1 moves from >= series2 at index-1 to < series2 at index."""
    if index < 1 or index >= len(series1) or index >= len(series2):
        return False
    return series1[index - 1] >= series2[index - 1] and series1[index] < series2[index]
