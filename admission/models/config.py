"""Risk gate configuration models."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, field_validator, model_validator

from admission.cache import INTERVAL_MINUTES


class RiskProfileConfig(BaseModel):
    """Thresholds for one named risk schema.

    A threshold left as ``None`` (or ``0`` for ``max_active_positions``)
    disables the corresponding gate.
    """

    risk_name: str
    enabled: bool = True
    note: str = ""

    # Minimum reward/risk ratio, e.g. 2 means TP must be twice as far as SL
    min_reward_risk: Decimal | None = None

    # Minimum stop-loss distance from open, in percent of the open price
    min_stop_loss_pct: Decimal | None = None

    # Maximum concurrently open positions seen by this profile
    max_active_positions: int = 0

    @property
    def has_gates(self) -> bool:
        return (
            self.min_reward_risk is not None
            or self.min_stop_loss_pct is not None
            or self.max_active_positions > 0
        )


DEFAULT_PROFILES: list[RiskProfileConfig] = [
    RiskProfileConfig(
        risk_name="reward_risk",
        note="Take profit must be at least twice as far as stop loss",
        min_reward_risk=Decimal("2"),
    ),
    RiskProfileConfig(
        risk_name="stop_loss_distance",
        note="Stop loss must sit at least 1% away from entry",
        min_stop_loss_pct=Decimal("1"),
    ),
]


class RiskGateConfig(BaseModel):
    """Timeframe for indicator caching plus the ordered risk profiles."""

    timeframe: str = "15m"
    profiles: list[RiskProfileConfig] = list(DEFAULT_PROFILES)

    @field_validator("timeframe")
    @classmethod
    def _check_timeframe(cls, value: str) -> str:
        if value not in INTERVAL_MINUTES:
            raise ValueError(
                f"timeframe must be one of {list(INTERVAL_MINUTES)}, got '{value}'"
            )
        return value

    @model_validator(mode="after")
    def _check_unique_names(self):
        names = [p.risk_name for p in self.profiles]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate risk_name in profiles: {duplicates}")
        return self

    def enabled_profiles(self) -> list[RiskProfileConfig]:
        """Profiles with enabled=True, in configured order."""
        return [p for p in self.profiles if p.enabled]
