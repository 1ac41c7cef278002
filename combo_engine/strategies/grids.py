"""
Parameter grids for strategy tuning.

A grid maps each parameter to its candidate values and expands into the
Cartesian product in a fixed order (parameter declaration order, values as
given), so enumeration indices are reproducible.
"""

import itertools
import random
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any


def frange(start: float, stop: float, step: float, digits: int = 6) -> tuple[float, ...]:
    """Inclusive float range, rounded to avoid accumulation drift."""
    if step <= 0:
        raise ValueError(f"step must be > 0, got {step}")
    count = int(round((stop - start) / step)) + 1
    return tuple(round(start + k * step, digits) for k in range(max(count, 0)))


@dataclass(frozen=True)
class ParamGrid:
    """Candidate values per parameter for one strategy."""

    strategy: str
    values: Mapping[str, Sequence[Any]] = field(default_factory=dict)

    @property
    def size(self) -> int:
        size = 1
        for options in self.values.values():
            size *= len(options)
        return size

    def __iter__(self) -> Iterator[dict[str, Any]]:
        names = list(self.values)
        for combo in itertools.product(*(self.values[n] for n in names)):
            yield dict(zip(names, combo, strict=True))

    def expand(self) -> list[dict[str, Any]]:
        return list(self)

    def sample(self, limit: int, seed: int) -> list[dict[str, Any]]:
        """
        At most `limit` parameter sets.

        The full grid when it fits, otherwise a seeded random subset kept in
        enumeration order.
        """
        combos = self.expand()
        if len(combos) <= limit:
            return combos
        picked = sorted(random.Random(seed).sample(range(len(combos)), limit))
        return [combos[i] for i in picked]


# Ranges follow the swing-trading optimisation bounds
DEFAULT_GRIDS: dict[str, ParamGrid] = {
    "TrendFollowing": ParamGrid(
        "TrendFollowing",
        {"trend_period": (10, 20, 30, 40, 50), "threshold": (0.0, 0.005)},
    ),
    "ImprovedTrendFollowing": ParamGrid(
        "ImprovedTrendFollowing",
        {
            "short_ma": (5, 10, 15),
            "long_ma": (15, 20, 25),
            "breakout_threshold": frange(0.001, 0.009, 0.002),
        },
    ),
    "Breakout": ParamGrid("Breakout", {"lookback": tuple(range(5, 51, 5))}),
    "Macd": ParamGrid(
        "Macd",
        {"short_period": (8, 12, 16), "long_period": (20, 25, 30), "signal_period": (6, 9, 12)},
    ),
    "MeanReversion": ParamGrid(
        "MeanReversion",
        {"sma_period": (10, 15, 20, 25, 30), "threshold_pct": frange(1.0, 5.0, 0.5)},
    ),
    "Rsi": ParamGrid(
        "Rsi",
        {
            "period": (10, 15, 20),
            "oversold": (20.0, 25.0, 30.0, 35.0, 40.0),
            "overbought": (60.0, 65.0, 70.0, 75.0, 80.0),
        },
    ),
    "SmaCrossover": ParamGrid(
        "SmaCrossover",
        {"short_period": (5, 10, 15, 20), "long_period": (10, 20, 30, 40, 50)},
    ),
}


def grid_for(strategy: str, overrides: Mapping[str, Mapping[str, Sequence[Any]]] | None = None) -> ParamGrid:
    """Grid for `strategy`: the override when given, else the default, else a single default point."""
    if overrides and strategy in overrides:
        return ParamGrid(strategy, {k: tuple(v) for k, v in overrides[strategy].items()})
    return DEFAULT_GRIDS.get(strategy, ParamGrid(strategy, {}))
