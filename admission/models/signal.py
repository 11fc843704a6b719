"""Tick, pending signal and active position models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict


class Position(str, Enum):
    """Trade side."""

    LONG = "long"
    SHORT = "short"


class Tick(BaseModel):
    """A single market tick delivered by the execution engine."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    price: Decimal
    timestamp: datetime
    high: Decimal | None = None
    low: Decimal | None = None
    volume: Decimal | None = None


class PendingSignal(BaseModel):
    """Candidate trade parameters awaiting admission.

    ``price_open`` is optional: a market entry has no explicit open price
    and is evaluated at the current price instead (see ``with_open_price``).
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    position: Position
    price_take_profit: Decimal
    price_stop_loss: Decimal
    price_open: Decimal | None = None
    timestamp: datetime | None = None
    note: str = ""

    def with_open_price(self, current_price: Decimal) -> "PendingSignal":
        """Return a copy whose open price defaults to *current_price*."""
        if self.price_open is not None:
            return self
        return self.model_copy(update={"price_open": current_price})

    @property
    def reward_amount(self) -> Decimal | None:
        """Distance from open to take profit, in the trade's favour."""
        if self.price_open is None:
            return None
        if self.position == Position.LONG:
            return self.price_take_profit - self.price_open
        return self.price_open - self.price_take_profit

    @property
    def risk_amount(self) -> Decimal | None:
        """Distance from open to stop loss, against the trade."""
        if self.price_open is None:
            return None
        if self.position == Position.LONG:
            return self.price_open - self.price_stop_loss
        return self.price_stop_loss - self.price_open


class ActivePosition(BaseModel):
    """An opened position tracked by the risk registry."""

    model_config = ConfigDict(frozen=True)

    strategy_name: str
    exchange_name: str
    symbol: str
    position: Position
    price_open: Decimal
    price_take_profit: Decimal
    price_stop_loss: Decimal
    opened_at: datetime | None = None

    @property
    def key(self) -> str:
        """Unique key: 'STRATEGY_EXCHANGE_SYMBOL'."""
        return position_key(self.strategy_name, self.exchange_name, self.symbol)


def position_key(strategy_name: str, exchange_name: str, symbol: str) -> str:
    return f"{strategy_name}_{exchange_name}_{symbol}"
