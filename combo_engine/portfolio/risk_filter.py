"""
Risk filter for allocation eligibility.

A stateless gate over ModelMetrics: an instrument is eligible only when every
threshold is strictly cleared. Missing metrics are disqualifying, never zero.
"""

from pydantic import BaseModel, ConfigDict, Field

from combo_engine.domain.model_metrics import ModelMetrics


class RiskFilterConfig(BaseModel):
    """Eligibility thresholds (all strict)."""

    model_config = ConfigDict(frozen=True)

    min_profit_factor: float = Field(default=1.0, description="profit_factor must exceed this")
    min_win_rate: float = Field(default=0.5, ge=0, le=1, description="win_rate must exceed this")
    max_drawdown: float = Field(default=0.35, gt=0, le=1, description="max_drawdown must stay below this")
    min_business_score: float = Field(default=0.0, description="business_score must exceed this")


class RiskFilter:
    """
    Hard gate between model metrics and the allocator.

    Validates:
    - All allocation-relevant metrics are present
    - Profit factor and win rate above their floors
    - Drawdown below its ceiling
    - Positive business score
    """

    def __init__(self, config: RiskFilterConfig | None = None):
        self.config = config or RiskFilterConfig()

    def rejection_reasons(self, metrics: ModelMetrics | None) -> list[str]:
        """Reason codes for rejecting `metrics`; empty when eligible."""
        if metrics is None:
            return ["missing_metrics"]

        missing = metrics.missing_fields()
        if missing:
            return [f"missing:{name}" for name in missing]

        # Presence checked above
        assert metrics.profit_factor is not None
        assert metrics.win_rate is not None
        assert metrics.max_drawdown is not None
        assert metrics.business_score is not None

        reasons = []
        if not metrics.profit_factor > self.config.min_profit_factor:
            reasons.append("profit_factor_too_low")
        if not metrics.win_rate > self.config.min_win_rate:
            reasons.append("win_rate_too_low")
        if not metrics.max_drawdown < self.config.max_drawdown:
            reasons.append("drawdown_too_high")
        if not metrics.business_score > self.config.min_business_score:
            reasons.append("business_score_too_low")
        return reasons

    def eligible(self, metrics: ModelMetrics | None) -> bool:
        """True when `metrics` clears every threshold."""
        return not self.rejection_reasons(metrics)
