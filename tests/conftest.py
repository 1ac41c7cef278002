"""
Pytest configuration and shared fixtures.
"""

from collections.abc import Generator

import pytest

from combo_engine.backtest.backtester import Backtester
from combo_engine.backtest.models import BacktestConfig
from combo_engine.config import get_settings
from combo_engine.domain.bar import BarSeries
from combo_engine.logging import clear_run_id
from tests.synthetic_data import clean_trend, oscillating


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure a local .env or shell COMBO_* variables do not leak into tests."""
    import os

    for var in list(os.environ):
        if var.startswith("COMBO_"):
            monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached settings and the logging run id between tests."""
    yield
    get_settings.cache_clear()
    clear_run_id()


@pytest.fixture
def backtester() -> Backtester:
    return Backtester(BacktestConfig())


@pytest.fixture
def wave_series() -> BarSeries:
    return oscillating(200)


@pytest.fixture
def trend_series() -> BarSeries:
    return clean_trend(120)
