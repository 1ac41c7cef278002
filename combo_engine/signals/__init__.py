"""
Signals module: current-bar trading decisions.
"""

from combo_engine.signals.aggregator import SignalAggregator

__all__ = ["SignalAggregator"]
