"""
Portfolio module: eligibility filter and target-weight allocation.
"""

from combo_engine.portfolio.allocator import AllocationConfig, AllocationReport, Allocator, allocate
from combo_engine.portfolio.risk_filter import RiskFilter, RiskFilterConfig

__all__ = [
    "AllocationConfig",
    "AllocationReport",
    "Allocator",
    "RiskFilter",
    "RiskFilterConfig",
    "allocate",
]
