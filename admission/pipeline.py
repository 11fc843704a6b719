"""Signal admission pipeline.

For each tick: fetch indicators through the interval cache (keyed by the
active strategy/exchange/mode and the symbol), build a pending signal,
evaluate it against the risk registry, and emit the decision.

All I/O is injected: the indicator function and the signal builder come
from the execution engine, which also drains the decision stream. The
pipeline itself holds nothing but wiring.
"""

from __future__ import annotations

import inspect
import logging
import math
import time
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from decimal import Decimal
from typing import Any, Awaitable, Callable, Sequence

from admission.cache import memoize
from admission.context import ExecutionFrame, ScopedStream, current_frame, run_scoped
from admission.indicators import latest_indicators
from admission.models import Candle, Decision, PendingSignal, Position, RiskGateConfig, Tick
from admission.risk import RiskGateRegistry, default_risk_schemas

logger = logging.getLogger(__name__)

# Type aliases for injected callables
IndicatorFn = Callable[[str], Awaitable[Any]]
SignalBuilder = Callable[[Tick, Any], "PendingSignal | None | Awaitable[PendingSignal | None]"]
DecisionCallback = Callable[[Decision], Awaitable[None]]
HistoryFn = Callable[[str], Awaitable[Sequence[Candle]]]


def frame_cache_key(symbol: str) -> str:
    """Cache key 'strategy:exchange:mode:symbol' from the active frame."""
    frame = current_frame()
    return f"{frame.strategy_name}:{frame.exchange_name}:{frame.mode}:{symbol}"


def _is_nan(value) -> bool:
    if value is None:
        return True
    if isinstance(value, Decimal):
        return value.is_nan()
    if isinstance(value, float):
        return math.isnan(value)
    return False


class SignalAdmissionPipeline:
    """Gate the signals a strategy produces on every tick.

    Args:
        registry: Risk registry, built once and injected.
        indicator_fn: ``async (symbol) -> indicators``. Memoized per window.
        signal_builder: ``(tick, indicators) -> PendingSignal | None``.
            May be async. ``None`` means no candidate on this tick.
        timeframe: Interval token for the indicator cache window.
        clock: Epoch-seconds clock for window alignment.
        cache_max_entries: Bound on cached keys (0 = unbounded).
    """

    def __init__(
        self,
        registry: RiskGateRegistry,
        indicator_fn: IndicatorFn,
        signal_builder: SignalBuilder,
        timeframe: str = "15m",
        clock: Callable[[], float] = time.time,
        cache_max_entries: int = 0,
    ):
        self.registry = registry
        self.signal_builder = signal_builder
        self.timeframe = timeframe
        self.indicators = memoize(
            indicator_fn,
            interval=timeframe,
            key_fn=frame_cache_key,
            clock=clock,
            max_entries=cache_max_entries,
        )
        self._callbacks: list[DecisionCallback] = []

    @classmethod
    def from_config(
        cls,
        config: RiskGateConfig,
        indicator_fn: IndicatorFn,
        signal_builder: SignalBuilder,
        **kwargs: Any,
    ) -> SignalAdmissionPipeline:
        """Build the registry from configured profiles and wire a pipeline."""
        registry = RiskGateRegistry(default_risk_schemas(config))
        return cls(
            registry,
            indicator_fn,
            signal_builder,
            timeframe=config.timeframe,
            **kwargs,
        )

    @property
    def cache(self):
        """The interval cache behind the indicator function."""
        return self.indicators.cache

    def on_decision(self, callback: DecisionCallback) -> None:
        """Register callback for decisions.

        Note: Duplicate callbacks are ignored.
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def off_decision(self, callback: DecisionCallback) -> None:
        """Unregister callback for decisions."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def process_tick(self, tick: Tick) -> Decision | None:
        """Evaluate one tick under the active frame.

        Returns:
            The decision, or None if the builder produced no candidate.

        Raises:
            CacheComputationFailed: If the indicator computation failed.
        """
        indicators = await self.indicators(tick.symbol)

        pending = self.signal_builder(tick, indicators)
        if inspect.isawaitable(pending):
            pending = await pending
        if pending is None:
            return None

        decision = await self.registry.evaluate(
            pending, tick.price, timestamp=tick.timestamp
        )

        for callback in self._callbacks:
            try:
                await callback(decision)
            except Exception as e:
                logger.error(f"Decision callback error: {e}")

        return decision

    async def _drain(self, ticks: AsyncIterable[Tick]) -> AsyncIterator[Decision]:
        try:
            async for tick in ticks:
                decision = await self.process_tick(tick)
                if decision is not None:
                    yield decision
        finally:
            aclose = getattr(ticks, "aclose", None)
            if aclose is not None:
                await aclose()

    def run(
        self,
        ticks: AsyncIterable[Tick],
        frame: ExecutionFrame | Mapping[str, Any],
    ) -> ScopedStream[Decision]:
        """Drain *ticks* in source order with *frame* active.

        Yields one decision per tick that produced a candidate signal. The
        stream must be drained inside ``async with pipeline.run(...) as
        decisions``; the frame is released when the block exits.
        """
        stream = run_scoped(self._drain(ticks), frame)
        logger.info(
            "Admission run: strategy=%s exchange=%s frame=%s timeframe=%s",
            stream.frame.strategy_name,
            stream.frame.exchange_name,
            stream.frame.frame_name,
            self.timeframe,
        )
        return stream


# =============================================================================
# Reference indicator function and signal builder
# =============================================================================

def make_indicator_fn(
    history_fn: HistoryFn,
    ema_period: int = 50,
    atr_period: int = 14,
) -> IndicatorFn:
    """Turn a candle-history provider into an indicator function."""

    async def compute(symbol: str) -> dict[str, Decimal] | None:
        candles = await history_fn(symbol)
        return latest_indicators(candles, ema_period=ema_period, atr_period=atr_period)

    compute.__name__ = f"indicators_ema{ema_period}_atr{atr_period}"
    return compute


def atr_signal_builder(
    tp_atr_mult: Decimal = Decimal("3"),
    sl_atr_mult: Decimal = Decimal("1.5"),
) -> Callable[[Tick, Mapping[str, Decimal] | None], PendingSignal | None]:
    """Trend-following market-entry signals with ATR-based TP/SL.

    - price > EMA -> long, TP = price + ATR * tp_mult, SL = price - ATR * sl_mult
    - price < EMA -> short, mirrored
    - price == EMA, or missing/NaN indicators -> no signal

    The open price is left unset so it resolves to the tick price.
    """

    def build(tick: Tick, indicators: Mapping[str, Decimal] | None) -> PendingSignal | None:
        if not indicators:
            return None
        ema_value = indicators.get("ema")
        atr_value = indicators.get("atr")
        if _is_nan(ema_value) or _is_nan(atr_value) or atr_value <= 0:
            return None

        tp_distance = atr_value * tp_atr_mult
        sl_distance = atr_value * sl_atr_mult

        if tick.price > ema_value:
            position = Position.LONG
            tp_price = tick.price + tp_distance
            sl_price = tick.price - sl_distance
        elif tick.price < ema_value:
            position = Position.SHORT
            tp_price = tick.price - tp_distance
            sl_price = tick.price + sl_distance
        else:
            return None

        return PendingSignal(
            symbol=tick.symbol,
            position=position,
            price_take_profit=tp_price,
            price_stop_loss=sl_price,
            timestamp=tick.timestamp,
            note=f"ATR={atr_value} EMA={ema_value}",
        )

    return build
