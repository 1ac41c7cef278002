"""
Domain models: bars, series, signals, predictions and model metrics.
"""

from combo_engine.domain.bar import Bar, BarSeries
from combo_engine.domain.model_metrics import ModelMetrics
from combo_engine.domain.signal import PredictionRecord, SignalType

__all__ = [
    "Bar",
    "BarSeries",
    "ModelMetrics",
    "PredictionRecord",
    "SignalType",
]
