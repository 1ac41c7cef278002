"""
Trading decisions and externally produced predictions.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SignalType(str, Enum):
    """Discrete trading decision for one instrument."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"  # a combination exists but neither rule fires
    NONE = "NONE"  # nothing to evaluate (no data or no combination)

    @property
    def direction_factor(self) -> int:
        """+1 for BUY, -1 for SELL, 0 otherwise."""
        if self is SignalType.BUY:
            return 1
        if self is SignalType.SELL:
            return -1
        return 0


class PredictionRecord(BaseModel):
    """Directional call from the prediction collaborator for one instrument."""

    model_config = ConfigDict(frozen=True)

    instrument: str = Field(..., description="Instrument identifier")
    signal: SignalType = Field(..., description="Predicted direction")
    predicted_price: float | None = Field(
        default=None,
        description="Predicted next close, if the predictor supplies one",
    )
