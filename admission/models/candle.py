"""Candle (OHLCV) model consumed by the reference indicators."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class Candle(BaseModel):
    """One closed candle of a symbol's history."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal = Decimal("0")

    @property
    def range_size(self) -> Decimal:
        """Get the full range (high - low) of the candle."""
        return self.high - self.low
