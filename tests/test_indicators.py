"""Tests for the latest-bar EMA / ATR indicators."""

import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from admission.indicators import atr_last, ema_last, latest_indicators, true_ranges
from admission.models import Candle


def _d(values):
    return [Decimal(str(v)) for v in values]


def _stepwise(values, period, alpha):
    """Bar-by-bar smoothing, used as the reference for the closed form."""
    value = sum(values[:period]) / period
    for x in values[period:]:
        value = alpha * x + (1 - alpha) * value
    return value


class TestEmaLast:
    def test_seeded_with_sma(self):
        # seed 2, multiplier 0.5: 4 * 0.5 + 2 * 0.5 = 3, then 5 * 0.5 + 3 * 0.5 = 4
        assert ema_last(_d([1, 2, 3, 4, 5]), period=3) == pytest.approx(4.0)

    def test_exactly_period_values_is_the_mean(self):
        assert ema_last(_d([1, 2, 3]), period=3) == pytest.approx(2.0)

    def test_insufficient_data(self):
        assert math.isnan(ema_last(_d([1, 2]), period=3))

    def test_constant_series(self):
        assert ema_last(_d([10] * 20), period=5) == pytest.approx(10.0)

    def test_matches_bar_by_bar_smoothing(self):
        values = [100 + ((i * 7) % 11) - 5 for i in range(80)]
        expected = _stepwise(values, 20, 2 / 21)
        assert ema_last(values, period=20) == pytest.approx(expected)


class TestTrueRanges:
    def test_first_bar_is_high_minus_low(self):
        assert true_ranges(_d([12]), _d([10]), _d([11])).tolist() == [2.0]

    def test_uses_previous_close_gap(self):
        # Gap up: previous close 10, bar 15..14 -> TR = 15 - 10 = 5
        tr = true_ranges(_d([11, 15]), _d([9, 14]), _d([10, 14.5]))
        assert tr[1] == pytest.approx(5.0)

    def test_gap_down(self):
        # previous close 20, bar 12..10 -> TR = 20 - 10 = 10
        tr = true_ranges([21, 12], [19, 10], [20, 11])
        assert tr[1] == pytest.approx(10.0)

    def test_empty(self):
        assert len(true_ranges([], [], [])) == 0


class TestAtrLast:
    def test_constant_range(self):
        assert atr_last(_d([11] * 20), _d([9] * 20), _d([10] * 20), period=14) == pytest.approx(2.0)

    def test_matches_bar_by_bar_wilder_smoothing(self):
        highs = [102 + (i % 5) for i in range(40)]
        lows = [98 - (i % 3) for i in range(40)]
        closes = [100 + (i % 4) - 2 for i in range(40)]
        tr = true_ranges(highs, lows, closes).tolist()

        expected = _stepwise(tr, 14, 1 / 14)
        assert atr_last(highs, lows, closes, period=14) == pytest.approx(expected)

    def test_insufficient_data(self):
        assert math.isnan(atr_last(_d([11] * 5), _d([9] * 5), _d([10] * 5), period=14))


class TestLatestIndicators:
    def _candles(self, n):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return [
            Candle(
                symbol="BTCUSDT",
                timestamp=start + timedelta(minutes=15 * i),
                open=Decimal("100"),
                high=Decimal("101"),
                low=Decimal("99"),
                close=Decimal("100"),
            )
            for i in range(n)
        ]

    def test_latest_values(self):
        values = latest_indicators(self._candles(60), ema_period=50, atr_period=14)
        assert isinstance(values["ema"], Decimal)
        assert float(values["ema"]) == pytest.approx(100.0)
        assert float(values["atr"]) == pytest.approx(2.0)
        assert values["close"] == Decimal("100")

    def test_short_history(self):
        assert latest_indicators(self._candles(49), ema_period=50) is None
