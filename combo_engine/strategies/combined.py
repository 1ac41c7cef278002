"""
Combination of library strategies into one entry/exit pair.

The entry rule is the OR of the "in" strategies' entry rules and the exit
rule is the OR of the "out" strategies' exit rules.
"""

from dataclasses import dataclass
from typing import Any

from combo_engine.domain.bar import BarSeries
from combo_engine.strategies.library import StrategyRule
from combo_engine.strategies.rules import Rule, any_of


@dataclass(frozen=True)
class CombinedStrategy(StrategyRule):
    """OR-combination of entry strategies and exit strategies."""

    entries: tuple[StrategyRule, ...]
    exits: tuple[StrategyRule, ...]

    def __post_init__(self) -> None:
        if not self.entries or not self.exits:
            raise ValueError("CombinedStrategy needs at least one entry and one exit strategy")

    @property
    def name(self) -> str:
        entry_names = "+".join(s.name for s in self.entries)
        exit_names = "+".join(s.name for s in self.exits)
        return f"Combined({entry_names} / {exit_names})"

    @property
    def entry_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.entries)

    @property
    def exit_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.exits)

    def lookbacks(self) -> dict[str, int]:
        merged: dict[str, int] = {}
        for side, strategies in (("in", self.entries), ("out", self.exits)):
            for strategy in strategies:
                for param, value in strategy.lookbacks().items():
                    merged[f"{side}.{strategy.name}.{param}"] = value
        return merged

    def validate(self, series_length: int) -> None:
        for strategy in (*self.entries, *self.exits):
            strategy.validate(series_length)

    def _entry(self, series: BarSeries) -> Rule:
        return any_of((s.entry_rule(series) for s in self.entries), len(series))

    def _exit(self, series: BarSeries) -> Rule:
        return any_of((s.exit_rule(series) for s in self.exits), len(series))

    def params(self) -> dict[str, Any]:
        return {
            "in": {s.name: s.params() for s in self.entries},
            "out": {s.name: s.params() for s in self.exits},
        }

    @property
    def param_count(self) -> int:
        return sum(s.param_count for s in (*self.entries, *self.exits))

    @property
    def label(self) -> str:
        entry_labels = " | ".join(s.label for s in self.entries)
        exit_labels = " | ".join(s.label for s in self.exits)
        return f"IN[{entry_labels}] OUT[{exit_labels}]"
