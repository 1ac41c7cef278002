"""
Exception taxonomy for the combination engine.

Only two conditions ever propagate out of the core:
- InvalidParameterRange: a single candidate is unusable (callers skip it)
- NoViableCombination: a whole search produced nothing usable

Empty or too-short bar series and missing model metrics are not errors;
they yield a zeroed result or an empty allocation instead.
"""


class ComboEngineError(Exception):
    """Base class for all engine errors."""

    pass


class InvalidParameterRange(ComboEngineError, ValueError):
    """Raised when a lookback/period is non-positive or exceeds the series length."""

    def __init__(
        self,
        parameter: str,
        value: float,
        series_length: int | None = None,
        message: str | None = None,
    ):
        if message is None:
            if series_length is None:
                message = f"{parameter}={value} must be > 0"
            else:
                message = f"{parameter}={value} must be in [1, {series_length}]"
        super().__init__(message)
        self.parameter = parameter
        self.value = value
        self.series_length = series_length


class NoViableCombination(ComboEngineError):
    """Raised when every candidate was invalid or produced zero trades."""

    def __init__(self, symbol: str, evaluated: int = 0, skipped: int = 0):
        super().__init__(
            f"No viable combination for {symbol}: "
            f"{evaluated} evaluated, {skipped} skipped"
        )
        self.symbol = symbol
        self.evaluated = evaluated
        self.skipped = skipped


class UnknownStrategy(ComboEngineError, KeyError):
    """Raised when a strategy name is not registered in the library."""

    def __init__(self, name: str, available: list[str]):
        super().__init__(f"Unknown strategy '{name}'. Available: {', '.join(available)}")
        self.name = name
        self.available = available

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0])
