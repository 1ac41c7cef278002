"""
Per-instrument model quality snapshot supplied by the training collaborator.

Every field is optional. An absent value means "unknown" and is never
coerced to zero: consumers must treat it as disqualifying.
"""

from pydantic import BaseModel, ConfigDict, Field


class ModelMetrics(BaseModel):
    """Quality metrics of the model backing one instrument's predictions."""

    model_config = ConfigDict(frozen=True)

    profit_factor: float | None = Field(default=None, ge=0, description="Gross profit / gross loss")
    win_rate: float | None = Field(default=None, ge=0, le=1, description="Winning trade fraction")
    max_drawdown: float | None = Field(default=None, ge=0, le=1, description="Max drawdown fraction")
    business_score: float | None = Field(default=None, description="External composite quality score")
    total_trades: int | None = Field(default=None, ge=0, description="Trades behind the metrics")

    # Informational only, not used for allocation
    rendement: float | None = Field(default=None, description="Backtest total return")
    sum_profit: float | None = Field(default=None, description="Summed trade P&L")
    mse: float | None = Field(default=None, ge=0, description="Prediction mean squared error")
    rmse: float | None = Field(default=None, ge=0, description="Prediction root mean squared error")

    def missing_fields(self) -> list[str]:
        """Names of the allocation-relevant fields that are absent."""
        required = ("profit_factor", "win_rate", "max_drawdown", "business_score", "total_trades")
        return [name for name in required if getattr(self, name) is None]

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()
