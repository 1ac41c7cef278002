"""
Tests for the risk filter and the allocator.
"""

import random

import pytest
from pydantic import ValidationError

from combo_engine.domain.model_metrics import ModelMetrics
from combo_engine.domain.signal import PredictionRecord, SignalType
from combo_engine.portfolio.allocator import AllocationConfig, Allocator, allocate
from combo_engine.portfolio.risk_filter import RiskFilter, RiskFilterConfig


def good_metrics(**overrides) -> ModelMetrics:
    values = {
        "profit_factor": 2.0,
        "win_rate": 0.6,
        "max_drawdown": 0.1,
        "business_score": 0.8,
        "total_trades": 100,
    }
    values.update(overrides)
    return ModelMetrics(**values)


class TestRiskFilter:
    """Test eligibility thresholds."""

    @pytest.fixture
    def risk_filter(self) -> RiskFilter:
        return RiskFilter()

    def test_eligible(self, risk_filter):
        assert risk_filter.eligible(good_metrics())

    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"profit_factor": 1.0}, "profit_factor_too_low"),
            ({"win_rate": 0.5}, "win_rate_too_low"),
            ({"max_drawdown": 0.35}, "drawdown_too_high"),
            ({"business_score": 0.0}, "business_score_too_low"),
        ],
    )
    def test_thresholds_are_strict(self, risk_filter, overrides, reason):
        metrics = good_metrics(**overrides)
        assert not risk_filter.eligible(metrics)
        assert risk_filter.rejection_reasons(metrics) == [reason]

    @pytest.mark.parametrize(
        "field", ["profit_factor", "win_rate", "max_drawdown", "business_score", "total_trades"]
    )
    def test_missing_metric_rejects(self, risk_filter, field):
        metrics = good_metrics(**{field: None})
        assert not risk_filter.eligible(metrics)
        assert risk_filter.rejection_reasons(metrics) == [f"missing:{field}"]

    def test_no_metrics(self, risk_filter):
        assert risk_filter.rejection_reasons(None) == ["missing_metrics"]

    def test_custom_thresholds(self):
        lenient = RiskFilter(RiskFilterConfig(min_win_rate=0.3))
        assert lenient.eligible(good_metrics(win_rate=0.4))

    def test_informational_fields_ignored(self, risk_filter):
        assert risk_filter.eligible(good_metrics(rmse=5.0, mse=25.0))


class TestAllocationScenarios:
    """Test the documented allocation scenarios."""

    def test_only_eligible_instrument_gets_weight(self):
        predictions = {"A": SignalType.BUY, "B": SignalType.BUY}
        metrics = {"A": good_metrics(), "B": ModelMetrics(win_rate=0.4)}

        weights = allocate(predictions, metrics, max_gross_exposure=0.9, max_weight_per_symbol=0.5)

        assert list(weights) == ["A"]
        assert weights["A"] == pytest.approx(min(1.0 * 0.9, 0.5))

    def test_single_instrument_below_cap(self):
        weights = allocate({"A": SignalType.BUY}, {"A": good_metrics()}, 0.4, 0.4)
        assert weights["A"] == pytest.approx(0.4)

    def test_identical_scores_equal_weights(self):
        predictions = {"A": SignalType.BUY, "B": SignalType.BUY}
        metrics = {"A": good_metrics(), "B": good_metrics()}
        weights = allocate(predictions, metrics, 0.9, 0.9)
        assert weights["A"] == pytest.approx(weights["B"])
        assert weights["A"] == pytest.approx(0.45)

    def test_cap_without_redistribution(self):
        predictions = {"A": SignalType.BUY, "B": SignalType.BUY}
        # A's score is 4x B's
        metrics = {"A": good_metrics(business_score=0.8), "B": good_metrics(business_score=0.2)}

        weights = allocate(predictions, metrics, max_gross_exposure=0.9, max_weight_per_symbol=0.3)

        assert weights["A"] == pytest.approx(0.3)
        assert weights["B"] == pytest.approx(0.2 * 0.9)
        assert sum(abs(w) for w in weights.values()) < 0.9

    def test_empty_predictions(self):
        assert allocate({}, {"A": good_metrics()}, 0.9, 0.1) == {}

    def test_stability_factor(self):
        predictions = {"A": SignalType.BUY, "B": SignalType.BUY}
        metrics = {"A": good_metrics(total_trades=100), "B": good_metrics(total_trades=50)}
        report = Allocator(AllocationConfig(max_gross_exposure=1.0, max_weight_per_symbol=1.0)).allocate_with_report(
            predictions, metrics
        )
        assert report.raw_scores["B"] == pytest.approx(report.raw_scores["A"] * 0.7)


class TestDirections:
    """Test BUY / SELL / HOLD / NONE handling."""

    def test_sell_dropped_when_long_only(self):
        report = Allocator(AllocationConfig(max_gross_exposure=0.9, max_weight_per_symbol=0.5)).allocate_with_report(
            {"A": SignalType.SELL}, {"A": good_metrics()}
        )
        assert report.weights == {}
        assert report.rejected["A"] == ["short_not_allowed"]

    def test_sell_dropped_as_non_positive_when_short_allowed(self):
        report = Allocator(
            AllocationConfig(max_gross_exposure=0.9, max_weight_per_symbol=0.9, allow_short=True)
        ).allocate_with_report(
            {"A": SignalType.BUY, "B": SignalType.SELL},
            {"A": good_metrics(), "B": good_metrics()},
        )
        assert report.weights == {"A": pytest.approx(0.9)}
        assert report.rejected["B"] == ["non_positive_score"]

    def test_lone_sell_allocates_nothing(self):
        assert allocate({"A": SignalType.SELL}, {"A": good_metrics()}, 1.0, 0.5, allow_short=True) == {}

    @pytest.mark.parametrize("signal", [SignalType.HOLD, SignalType.NONE])
    def test_no_direction_dropped(self, signal):
        assert allocate({"A": signal}, {"A": good_metrics()}, 0.9, 0.5, allow_short=True) == {}

    def test_prediction_records_accepted(self):
        record = PredictionRecord(instrument="A", signal=SignalType.BUY, predicted_price=1.2)
        weights = allocate({"A": record}, {"A": good_metrics()}, 0.9, 0.5)
        assert weights["A"] == pytest.approx(0.5)

    def test_missing_metrics_and_prediction_reported(self):
        report = Allocator().allocate_with_report({"A": SignalType.BUY}, {"B": good_metrics()})
        assert report.rejected == {"A": ["missing_metrics"], "B": ["missing_prediction"]}


class TestAllocationExtras:
    """Test threshold and top-N limits."""

    def test_min_score_threshold(self):
        config = AllocationConfig(max_gross_exposure=0.9, max_weight_per_symbol=0.9, min_score_threshold=0.5)
        predictions = {"A": SignalType.BUY, "B": SignalType.BUY}
        # A: 0.8 * 2 * 0.6 * 0.9 = 0.864; B: 0.1 * 2 * 0.6 * 0.9 = 0.108
        metrics = {"A": good_metrics(), "B": good_metrics(business_score=0.1)}

        report = Allocator(config).allocate_with_report(predictions, metrics)

        assert list(report.weights) == ["A"]
        assert report.rejected["B"] == ["below_score_threshold"]

    def test_max_positions_ties_by_instrument(self):
        config = AllocationConfig(max_gross_exposure=0.9, max_weight_per_symbol=0.9, max_positions=2)
        predictions = {s: SignalType.BUY for s in ("C", "A", "B")}
        metrics = {s: good_metrics() for s in predictions}

        report = Allocator(config).allocate_with_report(predictions, metrics)

        assert list(report.weights) == ["A", "B"]
        assert report.rejected["C"] == ["max_positions"]

    def test_config_validation(self):
        with pytest.raises(ValidationError):
            AllocationConfig(max_gross_exposure=0.1, max_weight_per_symbol=0.2)
        with pytest.raises(ValidationError):
            AllocationConfig(max_gross_exposure=0.0)


class TestAllocationProperties:
    """Test exposure bounds and order independence on random books."""

    @pytest.fixture
    def book(self) -> tuple[dict[str, SignalType], dict[str, ModelMetrics]]:
        rng = random.Random(11)
        predictions = {}
        metrics = {}
        for i in range(40):
            symbol = f"S{i:02d}"
            predictions[symbol] = rng.choice([SignalType.BUY, SignalType.SELL, SignalType.HOLD])
            metrics[symbol] = ModelMetrics(
                profit_factor=rng.uniform(0.8, 3.0),
                win_rate=rng.uniform(0.4, 0.8),
                max_drawdown=rng.uniform(0.0, 0.5),
                business_score=rng.uniform(-0.2, 1.0),
                total_trades=rng.randint(0, 200),
            )
        for symbol in ("G0", "G1", "G2"):
            predictions[symbol] = SignalType.BUY
            metrics[symbol] = good_metrics()
        return predictions, metrics

    @pytest.mark.parametrize("gross, cap", [(0.9, 0.03), (1.0, 0.5), (0.5, 0.5)])
    def test_bounds(self, book, gross, cap):
        predictions, metrics = book
        weights = allocate(predictions, metrics, gross, cap, allow_short=True)
        assert weights
        assert sum(abs(w) for w in weights.values()) <= gross + 1e-9
        assert all(0.0 < w <= cap + 1e-9 for w in weights.values())

    def test_order_independent(self, book):
        predictions, metrics = book
        symbols = list(predictions)
        random.Random(3).shuffle(symbols)
        shuffled_predictions = {s: predictions[s] for s in symbols}
        shuffled_metrics = {s: metrics[s] for s in reversed(symbols)}

        expected = allocate(predictions, metrics, 0.9, 0.1, allow_short=True)
        actual = allocate(shuffled_predictions, shuffled_metrics, 0.9, 0.1, allow_short=True)

        assert actual == expected
        assert list(actual) == list(expected)
