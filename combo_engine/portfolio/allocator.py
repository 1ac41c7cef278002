"""
Direct allocator: predictions + model metrics -> target weights.

Scores each eligible instrument, normalises the scores linearly, applies the
per-instrument cap and scales the book down to the gross exposure limit.
Capped instruments do not pass their unused budget to the others. Only
positive scores are allocated, so a SELL scores negative and is dropped
even when shorting is allowed.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from combo_engine.domain.model_metrics import ModelMetrics
from combo_engine.domain.signal import PredictionRecord, SignalType
from combo_engine.logging import get_logger
from combo_engine.portfolio.risk_filter import RiskFilter

logger = get_logger(__name__)


class AllocationConfig(BaseModel):
    """Exposure limits and scoring knobs for one allocation request."""

    model_config = ConfigDict(frozen=True)

    max_gross_exposure: float = Field(default=0.90, gt=0, description="Limit on sum of |weight|")
    max_weight_per_symbol: float = Field(default=0.03, gt=0, description="Limit on |weight| per instrument")
    allow_short: bool = Field(default=False, description="Let SELL predictions through the direction check")
    min_score_threshold: float = Field(
        default=0.0,
        ge=0,
        description="Instruments whose |raw score| is below this are dropped",
    )
    max_positions: int | None = Field(
        default=None,
        ge=1,
        description="Keep only the top-N instruments by |raw score|",
    )
    stable_trade_count: int = Field(
        default=50,
        ge=0,
        description="Metrics backed by more trades than this are fully trusted",
    )
    unstable_factor: float = Field(
        default=0.7,
        gt=0,
        le=1,
        description="Score multiplier for metrics backed by few trades",
    )

    @model_validator(mode="after")
    def cap_within_gross(self) -> "AllocationConfig":
        if self.max_weight_per_symbol > self.max_gross_exposure:
            raise ValueError(
                f"max_weight_per_symbol ({self.max_weight_per_symbol}) "
                f"exceeds max_gross_exposure ({self.max_gross_exposure})"
            )
        return self


@dataclass
class AllocationReport:
    """Weights plus why every other instrument got none."""

    weights: dict[str, float] = field(default_factory=dict)
    raw_scores: dict[str, float] = field(default_factory=dict)
    rejected: dict[str, list[str]] = field(default_factory=dict)

    @property
    def gross_exposure(self) -> float:
        return math.fsum(abs(w) for w in self.weights.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "weights": dict(self.weights),
            "raw_scores": dict(self.raw_scores),
            "rejected": {k: list(v) for k, v in self.rejected.items()},
            "gross_exposure": self.gross_exposure,
        }


def _signal_of(prediction: SignalType | PredictionRecord | None) -> SignalType:
    if prediction is None:
        return SignalType.NONE
    if isinstance(prediction, PredictionRecord):
        return prediction.signal
    return SignalType(prediction)


class Allocator:
    """
    Stateless allocator; one instance can serve concurrent requests.

    Output is a new dict keyed by instrument in sorted order, so results do
    not depend on the iteration order of the inputs.
    """

    def __init__(self, config: AllocationConfig | None = None, risk_filter: RiskFilter | None = None):
        self.config = config or AllocationConfig()
        self.risk_filter = risk_filter or RiskFilter()

    def allocate(
        self,
        predictions: Mapping[str, SignalType | PredictionRecord],
        metrics: Mapping[str, ModelMetrics],
    ) -> dict[str, float]:
        """Target weight per instrument; empty when nothing is eligible."""
        return self.allocate_with_report(predictions, metrics).weights

    def allocate_with_report(
        self,
        predictions: Mapping[str, SignalType | PredictionRecord],
        metrics: Mapping[str, ModelMetrics],
    ) -> AllocationReport:
        """Like allocate(), with raw scores and per-instrument rejection reasons."""
        report = AllocationReport()
        cfg = self.config

        # 1. Raw scores
        for symbol in sorted(set(predictions) | set(metrics)):
            if symbol not in predictions:
                report.rejected[symbol] = ["missing_prediction"]
                continue
            score, reasons = self._raw_score(predictions[symbol], metrics.get(symbol))
            if reasons:
                report.rejected[symbol] = reasons
                continue
            report.raw_scores[symbol] = score

        # 2. Threshold and top-N
        kept = {s: v for s, v in report.raw_scores.items() if abs(v) >= cfg.min_score_threshold}
        for symbol in report.raw_scores.keys() - kept.keys():
            report.rejected[symbol] = ["below_score_threshold"]

        if cfg.max_positions is not None and len(kept) > cfg.max_positions:
            ranked = sorted(kept, key=lambda s: (-abs(kept[s]), s))
            for symbol in ranked[cfg.max_positions :]:
                report.rejected[symbol] = ["max_positions"]
            kept = {s: kept[s] for s in sorted(ranked[: cfg.max_positions])}

        if not kept:
            logger.debug("No instrument eligible for allocation (%d rejected)", len(report.rejected))
            return report

        # 3. Linear normalisation, per-instrument cap
        total = math.fsum(abs(v) for v in kept.values())
        weights = {
            symbol: math.copysign(min(abs(score) / total * cfg.max_gross_exposure, cfg.max_weight_per_symbol), score)
            for symbol, score in kept.items()
        }

        # 4. Shrink-only rescale to the gross limit
        gross = math.fsum(abs(w) for w in weights.values())
        if gross > cfg.max_gross_exposure:
            ratio = cfg.max_gross_exposure / gross
            weights = {symbol: w * ratio for symbol, w in weights.items()}

        report.weights = weights
        logger.debug(
            "Allocated %d instruments, gross=%.4f, rejected=%d",
            len(weights),
            report.gross_exposure,
            len(report.rejected),
        )
        return report

    def _raw_score(
        self,
        prediction: SignalType | PredictionRecord | None,
        metrics: ModelMetrics | None,
    ) -> tuple[float, list[str]]:
        """(score, []) for an eligible instrument, else (0.0, reasons)."""
        if metrics is None:
            return 0.0, ["missing_metrics"]

        reasons = self.risk_filter.rejection_reasons(metrics)
        if reasons:
            return 0.0, reasons

        signal = _signal_of(prediction)
        if signal == SignalType.SELL and not self.config.allow_short:
            return 0.0, ["short_not_allowed"]
        if signal not in (SignalType.BUY, SignalType.SELL):
            return 0.0, [f"no_direction:{signal.value}"]

        # Presence guaranteed by the risk filter
        assert metrics.business_score is not None
        assert metrics.profit_factor is not None
        assert metrics.win_rate is not None
        assert metrics.max_drawdown is not None
        assert metrics.total_trades is not None

        stability = 1.0 if metrics.total_trades > self.config.stable_trade_count else self.config.unstable_factor
        score = (
            signal.direction_factor
            * metrics.business_score
            * metrics.profit_factor
            * metrics.win_rate
            * (1.0 - metrics.max_drawdown)
            * stability
        )
        if not score > 0.0 or not math.isfinite(score):
            return 0.0, ["non_positive_score"]
        return score, []


def allocate(
    predictions: Mapping[str, SignalType | PredictionRecord],
    metrics: Mapping[str, ModelMetrics],
    max_gross_exposure: float,
    max_weight_per_symbol: float,
    allow_short: bool = False,
) -> dict[str, float]:
    """
    Functional form of Allocator.allocate.

    Args:
        predictions: Predicted direction per instrument
        metrics: Model metrics per instrument
        max_gross_exposure: Limit on sum of |weight|
        max_weight_per_symbol: Limit on |weight| per instrument
        allow_short: Whether SELL predictions get past the direction check

    Returns:
        Target weight per instrument (sorted by instrument)
    """
    config = AllocationConfig(
        max_gross_exposure=max_gross_exposure,
        max_weight_per_symbol=max_weight_per_symbol,
        allow_short=allow_short,
    )
    return Allocator(config).allocate(predictions, metrics)
