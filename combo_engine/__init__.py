"""
Combination Engine

Rule-combination search and allocation core:
- Deterministic rule-pair backtesting with risk metrics
- Best entry/exit combination search per instrument (parallel, cancellable)
- Walk-forward validation of the selected combination
- Risk-filtered, capped target-weight allocation
"""

__version__ = "0.1.0"

from combo_engine.config import Settings, get_settings

__all__ = ["__version__", "Settings", "get_settings"]
