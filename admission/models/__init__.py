"""Data models."""

from admission.models.signal import (
    ActivePosition,
    PendingSignal,
    Position,
    Tick,
    position_key,
)
from admission.models.candle import Candle
from admission.models.decision import Decision, Verdict
from admission.models.config import (
    DEFAULT_PROFILES,
    RiskGateConfig,
    RiskProfileConfig,
)

__all__ = [
    "Candle",
    "ActivePosition",
    "PendingSignal",
    "Position",
    "Tick",
    "position_key",
    "Decision",
    "Verdict",
    "DEFAULT_PROFILES",
    "RiskGateConfig",
    "RiskProfileConfig",
]
