"""
Strategy library.

Each variant is an immutable, parametrised generator of an entry Rule and an
exit Rule over a BarSeries. Variants are registered by name in
STRATEGY_LIBRARY; the backtester and the search only ever talk to the
StrategyRule interface, so adding a variant means adding a class and a
registry entry.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, ClassVar

from combo_engine.domain.bar import BarSeries
from combo_engine.errors import InvalidParameterRange, UnknownStrategy
from combo_engine.strategies.indicators import (
    crossed_down,
    crossed_up,
    macd,
    rolling_max,
    rolling_min,
    rsi,
    sma,
)
from combo_engine.strategies.rules import Rule


class StrategyRule(ABC):
    """Base class for parametrised rule generators."""

    # Single lookback parameter varied by explicit-period searches (None: not supported)
    lookback_field: ClassVar[str | None] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable strategy name."""
        pass

    @abstractmethod
    def lookbacks(self) -> dict[str, int]:
        """Window-length parameters that must fit inside the series."""
        pass

    @abstractmethod
    def _entry(self, series: BarSeries) -> Rule:
        pass

    @abstractmethod
    def _exit(self, series: BarSeries) -> Rule:
        pass

    def entry_rule(self, series: BarSeries) -> Rule:
        """Entry predicate over `series`; raises InvalidParameterRange if it does not fit."""
        self.validate(len(series))
        return self._entry(series)

    def exit_rule(self, series: BarSeries) -> Rule:
        """Exit predicate over `series`; raises InvalidParameterRange if it does not fit."""
        self.validate(len(series))
        return self._exit(series)

    def validate(self, series_length: int) -> None:
        for param, value in self.lookbacks().items():
            if value > series_length:
                raise InvalidParameterRange(param, value, series_length)

    def params(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    @property
    def param_count(self) -> int:
        return len(self.params())

    @property
    def label(self) -> str:
        args = ", ".join(f"{k}={v}" for k, v in self.params().items())
        return f"{self.name}({args})"

    def with_params(self, **changes: Any) -> "StrategyRule":
        return replace(self, **changes)  # type: ignore[type-var]


def _require_positive(**values: int | None) -> None:
    for param, value in values.items():
        if value is not None and value <= 0:
            raise InvalidParameterRange(param, value)


def _require_ordered(low_name: str, low: float, high_name: str, high: float) -> None:
    if low >= high:
        raise InvalidParameterRange(
            low_name,
            low,
            message=f"{low_name}={low} must be < {high_name}={high}",
        )


def _breakout_rules(series: BarSeries, period: int, threshold: float) -> tuple[Rule, Rule, list[float], list[float]]:
    """
    Donchian channel of the previous `period` bars (current bar excluded).

    Returns (entry, exit, upper, lower); bands are only defined once a full
    window of prior bars exists.
    """
    closes = series.closes
    upper = rolling_max(series.highs, period)
    lower = rolling_min(series.lows, period)
    n = len(closes)

    entry = Rule.from_predicate(
        n,
        lambda i: i >= period and closes[i] > upper[i - 1] * (1 + threshold),
        f"close>HH{period}",
    )
    exit_ = Rule.from_predicate(
        n,
        lambda i: i >= period and closes[i] < lower[i - 1] * (1 - threshold),
        f"close<LL{period}",
    )
    return entry, exit_, upper, lower


# =============================================================================
# Variants
# =============================================================================


@dataclass(frozen=True)
class TrendFollowing(StrategyRule):
    """
    Trend-following breakout.

    Entry: close breaks above the prior `trend_period` highest high widened
    by `threshold`, or (with `ma_period`) close crosses up its SMA.
    Exit: close breaks below the prior lowest low narrowed by `threshold`,
    or close crosses down the SMA.
    """

    trend_period: int = 50
    threshold: float = 0.0
    ma_period: int | None = None

    lookback_field: ClassVar[str | None] = "trend_period"

    def __post_init__(self) -> None:
        _require_positive(trend_period=self.trend_period, ma_period=self.ma_period)
        if not 0 <= self.threshold < 1:
            raise InvalidParameterRange("threshold", self.threshold, message="threshold must be in [0, 1)")

    @property
    def name(self) -> str:
        return "TrendFollowing"

    def lookbacks(self) -> dict[str, int]:
        periods = {"trend_period": self.trend_period}
        if self.ma_period is not None:
            periods["ma_period"] = self.ma_period
        return periods

    def _entry(self, series: BarSeries) -> Rule:
        entry, _, _, _ = _breakout_rules(series, self.trend_period, self.threshold)
        if self.ma_period is None:
            return entry
        closes = series.closes
        ma = sma(closes, self.ma_period)
        return entry | Rule.from_predicate(len(closes), lambda i: crossed_up(closes, ma, i), "close^SMA")

    def _exit(self, series: BarSeries) -> Rule:
        _, exit_, _, _ = _breakout_rules(series, self.trend_period, self.threshold)
        if self.ma_period is None:
            return exit_
        closes = series.closes
        ma = sma(closes, self.ma_period)
        return exit_ | Rule.from_predicate(len(closes), lambda i: crossed_down(closes, ma, i), "close_vSMA")


@dataclass(frozen=True)
class Breakout(StrategyRule):
    """Plain Donchian breakout: long above the prior high, out below the prior low."""

    lookback: int = 20

    lookback_field: ClassVar[str | None] = "lookback"

    def __post_init__(self) -> None:
        _require_positive(lookback=self.lookback)

    @property
    def name(self) -> str:
        return "Breakout"

    def lookbacks(self) -> dict[str, int]:
        return {"lookback": self.lookback}

    def _entry(self, series: BarSeries) -> Rule:
        return _breakout_rules(series, self.lookback, 0.0)[0]

    def _exit(self, series: BarSeries) -> Rule:
        return _breakout_rules(series, self.lookback, 0.0)[1]


@dataclass(frozen=True)
class ImprovedTrendFollowing(StrategyRule):
    """
    Moving-average trend filter with breakout band and optional RSI guard.

    Entry: short SMA above long SMA and either close clears the long SMA by
    `breakout_threshold` or close crosses up the short SMA; with the RSI
    filter the RSI must also be below 80.
    Exit: close crosses down the short SMA, or close drops below the long
    SMA band while the short SMA is under the long one.
    """

    short_ma: int = 10
    long_ma: int = 20
    breakout_threshold: float = 0.005
    use_rsi_filter: bool = True
    rsi_period: int = 14

    RSI_CEILING: ClassVar[float] = 80.0

    def __post_init__(self) -> None:
        _require_positive(short_ma=self.short_ma, long_ma=self.long_ma, rsi_period=self.rsi_period)
        _require_ordered("short_ma", self.short_ma, "long_ma", self.long_ma)
        if not 0 <= self.breakout_threshold < 1:
            raise InvalidParameterRange(
                "breakout_threshold",
                self.breakout_threshold,
                message="breakout_threshold must be in [0, 1)",
            )

    @property
    def name(self) -> str:
        return "ImprovedTrendFollowing"

    def lookbacks(self) -> dict[str, int]:
        periods = {"short_ma": self.short_ma, "long_ma": self.long_ma}
        if self.use_rsi_filter:
            periods["rsi_period"] = self.rsi_period
        return periods

    def _entry(self, series: BarSeries) -> Rule:
        closes = series.closes
        short = sma(closes, self.short_ma)
        long = sma(closes, self.long_ma)
        strength = rsi(closes, self.rsi_period) if self.use_rsi_filter else None
        th = self.breakout_threshold

        def fires(i: int) -> bool:
            uptrend = short[i] > long[i]
            breakout = closes[i] > long[i] * (1 + th) and uptrend
            pullback_recovery = uptrend and crossed_up(closes, short, i)
            if not (breakout or pullback_recovery):
                return False
            return strength is None or strength[i] < self.RSI_CEILING

        return Rule.from_predicate(len(closes), fires, "improved_trend_entry")

    def _exit(self, series: BarSeries) -> Rule:
        closes = series.closes
        short = sma(closes, self.short_ma)
        long = sma(closes, self.long_ma)
        th = self.breakout_threshold

        def fires(i: int) -> bool:
            breakdown = closes[i] < long[i] * (1 - th) and short[i] < long[i]
            return crossed_down(closes, short, i) or breakdown

        return Rule.from_predicate(len(closes), fires, "improved_trend_exit")


@dataclass(frozen=True)
class Macd(StrategyRule):
    """MACD line crossing its signal line."""

    short_period: int = 12
    long_period: int = 26
    signal_period: int = 9

    def __post_init__(self) -> None:
        _require_positive(
            short_period=self.short_period,
            long_period=self.long_period,
            signal_period=self.signal_period,
        )
        _require_ordered("short_period", self.short_period, "long_period", self.long_period)

    @property
    def name(self) -> str:
        return "Macd"

    def lookbacks(self) -> dict[str, int]:
        return {
            "short_period": self.short_period,
            "long_period": self.long_period,
            "signal_period": self.signal_period,
        }

    def _entry(self, series: BarSeries) -> Rule:
        line, signal = macd(series.closes, self.short_period, self.long_period, self.signal_period)
        return Rule.from_predicate(len(line), lambda i: crossed_up(line, signal, i), "macd^signal")

    def _exit(self, series: BarSeries) -> Rule:
        line, signal = macd(series.closes, self.short_period, self.long_period, self.signal_period)
        return Rule.from_predicate(len(line), lambda i: crossed_down(line, signal, i), "macd_vsignal")


@dataclass(frozen=True)
class MeanReversion(StrategyRule):
    """Buy `threshold_pct` percent below the SMA, sell the same distance above it."""

    sma_period: int = 20
    threshold_pct: float = 2.0

    lookback_field: ClassVar[str | None] = "sma_period"

    def __post_init__(self) -> None:
        _require_positive(sma_period=self.sma_period)
        if not 0 < self.threshold_pct < 100:
            raise InvalidParameterRange(
                "threshold_pct",
                self.threshold_pct,
                message="threshold_pct must be in (0, 100)",
            )

    @property
    def name(self) -> str:
        return "MeanReversion"

    def lookbacks(self) -> dict[str, int]:
        return {"sma_period": self.sma_period}

    def _entry(self, series: BarSeries) -> Rule:
        closes = series.closes
        mean = sma(closes, self.sma_period)
        band = 1 - self.threshold_pct / 100
        return Rule.from_predicate(len(closes), lambda i: closes[i] < mean[i] * band, "below_band")

    def _exit(self, series: BarSeries) -> Rule:
        closes = series.closes
        mean = sma(closes, self.sma_period)
        band = 1 + self.threshold_pct / 100
        return Rule.from_predicate(len(closes), lambda i: closes[i] > mean[i] * band, "above_band")


@dataclass(frozen=True)
class Rsi(StrategyRule):
    """Buy oversold, sell overbought."""

    period: int = 14
    oversold: float = 30.0
    overbought: float = 70.0

    lookback_field: ClassVar[str | None] = "period"

    def __post_init__(self) -> None:
        _require_positive(period=self.period)
        if not 0 < self.oversold < self.overbought < 100:
            raise InvalidParameterRange(
                "oversold",
                self.oversold,
                message=f"need 0 < oversold ({self.oversold}) < overbought ({self.overbought}) < 100",
            )

    @property
    def name(self) -> str:
        return "Rsi"

    def lookbacks(self) -> dict[str, int]:
        return {"period": self.period}

    def _entry(self, series: BarSeries) -> Rule:
        values = rsi(series.closes, self.period)
        return Rule.from_predicate(len(values), lambda i: values[i] < self.oversold, "rsi_oversold")

    def _exit(self, series: BarSeries) -> Rule:
        values = rsi(series.closes, self.period)
        return Rule.from_predicate(len(values), lambda i: values[i] > self.overbought, "rsi_overbought")


@dataclass(frozen=True)
class SmaCrossover(StrategyRule):
    """Short SMA crossing the long SMA."""

    short_period: int = 5
    long_period: int = 20

    def __post_init__(self) -> None:
        _require_positive(short_period=self.short_period, long_period=self.long_period)
        _require_ordered("short_period", self.short_period, "long_period", self.long_period)

    @property
    def name(self) -> str:
        return "SmaCrossover"

    def lookbacks(self) -> dict[str, int]:
        return {"short_period": self.short_period, "long_period": self.long_period}

    def _entry(self, series: BarSeries) -> Rule:
        short = sma(series.closes, self.short_period)
        long = sma(series.closes, self.long_period)
        return Rule.from_predicate(len(short), lambda i: crossed_up(short, long, i), "sma^")

    def _exit(self, series: BarSeries) -> Rule:
        short = sma(series.closes, self.short_period)
        long = sma(series.closes, self.long_period)
        return Rule.from_predicate(len(short), lambda i: crossed_down(short, long, i), "sma_v")


# =============================================================================
# Registry
# =============================================================================


STRATEGY_LIBRARY: dict[str, type[StrategyRule]] = {
    "TrendFollowing": TrendFollowing,
    "ImprovedTrendFollowing": ImprovedTrendFollowing,
    "Breakout": Breakout,
    "Macd": Macd,
    "MeanReversion": MeanReversion,
    "Rsi": Rsi,
    "SmaCrossover": SmaCrossover,
}


class StrategyFactory:
    """Creates library strategies by name."""

    @staticmethod
    def get_class(name: str) -> type[StrategyRule]:
        if name not in STRATEGY_LIBRARY:
            raise UnknownStrategy(name, list(STRATEGY_LIBRARY))
        return STRATEGY_LIBRARY[name]

    @staticmethod
    def create(name: str, **params: Any) -> StrategyRule:
        """
        Create a strategy instance by name.

        Raises:
            UnknownStrategy: If the name is not registered
            InvalidParameterRange: If a parameter is out of range
        """
        return StrategyFactory.get_class(name)(**params)

    @staticmethod
    def list_strategies() -> list[str]:
        return list(STRATEGY_LIBRARY)

    @staticmethod
    def parameter_names(name: str) -> list[str]:
        return [f.name for f in fields(StrategyFactory.get_class(name))]  # type: ignore[arg-type]

    @staticmethod
    def supports_lookback(name: str) -> bool:
        return StrategyFactory.get_class(name).lookback_field is not None
