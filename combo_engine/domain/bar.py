"""
Bar (OHLCV) and BarSeries domain models.

A BarSeries is the only price input of the core: an ordered, immutable
sequence of bars for one instrument. Gaps are not detected or repaired here.
"""

from collections.abc import Iterator, Sequence
from datetime import datetime
from functools import cached_property
from typing import TYPE_CHECKING, overload

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

if TYPE_CHECKING:
    import pandas as pd

BAR_COLUMNS = ("timestamp", "open", "high", "low", "close", "volume")


class Bar(BaseModel):
    """
    A single OHLCV bar.

    Immutable so that a series can be shared between workers safely.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(..., description="Bar open timestamp")
    open: float = Field(..., description="Opening price", gt=0)
    high: float = Field(..., description="Highest price", gt=0)
    low: float = Field(..., description="Lowest price", gt=0)
    close: float = Field(..., description="Closing price", gt=0)
    volume: float = Field(default=0.0, description="Traded volume", ge=0)

    @field_validator("high")
    @classmethod
    def high_gte_open(cls, v: float, info: ValidationInfo) -> float:
        """Validate high >= open."""
        if "open" in info.data and v < info.data["open"]:
            raise ValueError("high must be >= open")
        return v

    @field_validator("low")
    @classmethod
    def low_lte_open_high(cls, v: float, info: ValidationInfo) -> float:
        """Validate low <= open and low <= high."""
        data = info.data
        if "open" in data and v > data["open"]:
            raise ValueError("low must be <= open")
        if "high" in data and v > data["high"]:
            raise ValueError("low must be <= high")
        return v

    @field_validator("close")
    @classmethod
    def close_within_range(cls, v: float, info: ValidationInfo) -> float:
        """Validate low <= close <= high."""
        data = info.data
        if "high" in data and v > data["high"]:
            raise ValueError("close must be <= high")
        if "low" in data and v < data["low"]:
            raise ValueError("close must be >= low")
        return v


class BarSeries:
    """
    Immutable, chronologically ordered bars for one instrument.

    Price columns are materialised once as tuples and cached, so rules built
    on the same series share them.
    """

    def __init__(self, symbol: str, bars: Sequence[Bar] = ()):
        self._symbol = symbol
        self._bars: tuple[Bar, ...] = tuple(bars)

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def bars(self) -> tuple[Bar, ...]:
        return self._bars

    def __len__(self) -> int:
        return len(self._bars)

    def __iter__(self) -> Iterator[Bar]:
        return iter(self._bars)

    @overload
    def __getitem__(self, index: int) -> Bar: ...

    @overload
    def __getitem__(self, index: slice) -> "BarSeries": ...

    def __getitem__(self, index: int | slice) -> "Bar | BarSeries":
        if isinstance(index, slice):
            return BarSeries(self._symbol, self._bars[index])
        return self._bars[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BarSeries):
            return NotImplemented
        return self._symbol == other._symbol and self._bars == other._bars

    def __hash__(self) -> int:
        return hash((self._symbol, self._bars))

    def __repr__(self) -> str:
        return f"BarSeries(symbol={self._symbol!r}, bars={len(self._bars)})"

    def __reduce__(self) -> tuple:
        # Cached columns are rebuilt lazily in the receiving process
        return (BarSeries, (self._symbol, self._bars))

    @property
    def is_empty(self) -> bool:
        return not self._bars

    @property
    def end_index(self) -> int:
        """Index of the last bar (-1 for an empty series)."""
        return len(self._bars) - 1

    @cached_property
    def opens(self) -> tuple[float, ...]:
        return tuple(b.open for b in self._bars)

    @cached_property
    def highs(self) -> tuple[float, ...]:
        return tuple(b.high for b in self._bars)

    @cached_property
    def lows(self) -> tuple[float, ...]:
        return tuple(b.low for b in self._bars)

    @cached_property
    def closes(self) -> tuple[float, ...]:
        return tuple(b.close for b in self._bars)

    @cached_property
    def volumes(self) -> tuple[float, ...]:
        return tuple(b.volume for b in self._bars)

    def window(self, start: int, end: int) -> "BarSeries":
        """Sub-series of bars in [start, end)."""
        return BarSeries(self._symbol, self._bars[start:end])

    def split(self, fraction: float) -> tuple["BarSeries", "BarSeries"]:
        """Split into (head, tail) with round(len * fraction) bars in the head."""
        cut = round(len(self._bars) * fraction)
        return self.window(0, cut), self.window(cut, len(self._bars))

    # =========================================================================
    # pandas interchange
    # =========================================================================

    @classmethod
    def from_dataframe(cls, df: "pd.DataFrame", symbol: str) -> "BarSeries":
        """
        Build a series from a DataFrame with timestamp/open/high/low/close[/volume].

        Rows are sorted by timestamp. Missing volume is treated as zero.
        """
        import pandas as pd

        missing = [c for c in BAR_COLUMNS[:5] if c not in df.columns]
        if missing:
            raise ValueError(f"DataFrame missing columns: {missing}")

        frame = df.sort_values("timestamp")
        timestamps = pd.to_datetime(frame["timestamp"])
        volumes = frame["volume"].fillna(0.0) if "volume" in frame.columns else [0.0] * len(frame)

        bars = [
            Bar(
                timestamp=ts.to_pydatetime(),
                open=float(o),
                high=float(h),
                low=float(lo),
                close=float(c),
                volume=float(v),
            )
            for ts, o, h, lo, c, v in zip(
                timestamps,
                frame["open"],
                frame["high"],
                frame["low"],
                frame["close"],
                volumes,
                strict=True,
            )
        ]
        return cls(symbol, bars)

    def to_dataframe(self) -> "pd.DataFrame":
        """Export bars as a DataFrame with the standard OHLCV columns."""
        import pandas as pd

        return pd.DataFrame(
            [b.model_dump() for b in self._bars],
            columns=list(BAR_COLUMNS),
        )
