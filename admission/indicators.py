"""Latest-bar EMA and ATR for the reference indicator function (NumPy, no I/O).

The pipeline only ever needs the value at the newest candle, so each
indicator is evaluated in closed form over the whole window instead of
materialising the full series. An SMA-seeded exponential smoothing with
factor ``a`` over ``x[0..n)`` with seed ``S = mean(x[:p])`` ends at::

    (1 - a) ** (n - p) * S + sum(a * (1 - a) ** (n - 1 - i) * x[i] for i in p..n-1)
"""

from decimal import Decimal
from typing import Sequence

import numpy as np

from admission.models import Candle

NAN = Decimal("NaN")


def _as_array(values: Sequence) -> np.ndarray:
    return np.fromiter((float(v) for v in values), dtype=np.float64, count=len(values))


def _smoothed_last(x: np.ndarray, period: int, alpha: float) -> float:
    """Final value of the SMA-seeded smoothing of *x*, NaN if *x* is too short."""
    if period < 1 or len(x) < period:
        return float("nan")

    tail = x[period:]
    decay = 1.0 - alpha
    weights = alpha * decay ** np.arange(len(tail) - 1, -1, -1, dtype=np.float64)
    return float(decay ** len(tail) * x[:period].mean() + weights @ tail)


def ema_last(values: Sequence, period: int) -> float:
    """EMA (multiplier ``2 / (period + 1)``) at the last value."""
    return _smoothed_last(_as_array(values), period, 2.0 / (period + 1))


def true_ranges(highs: Sequence, lows: Sequence, closes: Sequence) -> np.ndarray:
    """True range per bar; the first bar has no previous close and uses high - low."""
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    tr = h - l
    if len(tr) > 1:
        prev_close = c[:-1]
        gaps = np.maximum(np.abs(h[1:] - prev_close), np.abs(l[1:] - prev_close))
        tr[1:] = np.maximum(tr[1:], gaps)
    return tr


def atr_last(highs: Sequence, lows: Sequence, closes: Sequence, period: int = 14) -> float:
    """Wilder ATR (smoothing ``1 / period``) at the last bar."""
    return _smoothed_last(true_ranges(highs, lows, closes), period, 1.0 / period)


def _to_decimal(value: float) -> Decimal:
    return NAN if np.isnan(value) else Decimal(str(value))


def latest_indicators(
    candles: Sequence[Candle],
    ema_period: int = 50,
    atr_period: int = 14,
) -> dict[str, Decimal] | None:
    """EMA and ATR of the latest candle, or None if history is too short."""
    if len(candles) < max(ema_period, atr_period):
        return None

    closes = [c.close for c in candles]
    return {
        "ema": _to_decimal(ema_last(closes, ema_period)),
        "atr": _to_decimal(
            atr_last([c.high for c in candles], [c.low for c in candles], closes, atr_period)
        ),
        "close": closes[-1],
    }
