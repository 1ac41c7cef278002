"""
Boolean predicates over bar indices.

A Rule is evaluated once for every bar of the series it was built for and
stores the result, so `is_satisfied(i)` is O(1) and a rule pickles cleanly
into worker processes.
"""

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class Rule:
    """Precomputed predicate: `flags[i]` is True when the rule fires at bar i."""

    flags: tuple[bool, ...]
    name: str = "rule"

    @classmethod
    def from_predicate(cls, length: int, predicate: Callable[[int], bool], name: str = "rule") -> "Rule":
        """Evaluate `predicate` on every index in [0, length)."""
        return cls(tuple(bool(predicate(i)) for i in range(length)), name)

    @classmethod
    def never(cls, length: int, name: str = "never") -> "Rule":
        return cls((False,) * length, name)

    def __len__(self) -> int:
        return len(self.flags)

    def is_satisfied(self, index: int) -> bool:
        """Out-of-range indices are never satisfied."""
        return 0 <= index < len(self.flags) and self.flags[index]

    __call__ = is_satisfied

    def __or__(self, other: "Rule") -> "Rule":
        return Rule(_combine(self.flags, other.flags, any), f"({self.name} OR {other.name})")

    def __and__(self, other: "Rule") -> "Rule":
        return Rule(_combine(self.flags, other.flags, all), f"({self.name} AND {other.name})")

    def fired_indices(self) -> list[int]:
        return [i for i, flag in enumerate(self.flags) if flag]


def any_of(rules: Iterable[Rule], length: int) -> Rule:
    """OR of all rules; a rule that never fires when `rules` is empty."""
    combined: Rule | None = None
    for rule in rules:
        combined = rule if combined is None else combined | rule
    return combined if combined is not None else Rule.never(length)


def _combine(a: Sequence[bool], b: Sequence[bool], op: Callable[[Iterable[bool]], bool]) -> tuple[bool, ...]:
    if len(a) != len(b):
        raise ValueError(f"Cannot combine rules of different lengths ({len(a)} vs {len(b)})")
    return tuple(op(pair) for pair in zip(a, b, strict=True))
