"""Admission decision returned for every evaluated signal."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from admission.models.signal import PendingSignal


class Verdict(str, Enum):
    """Binary admission outcome."""

    ADMIT = "admit"
    REJECT = "reject"


class Decision(BaseModel):
    """Result of running a pending signal through every risk schema.

    A rejection is a normal value, not an exception: ``risk_name`` and
    ``reason`` identify the first validation that failed.
    """

    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    signal: PendingSignal
    risk_name: str | None = None
    reason: str | None = None
    timestamp: datetime | None = None

    @classmethod
    def admit(cls, signal: PendingSignal, timestamp: datetime | None = None) -> "Decision":
        return cls(verdict=Verdict.ADMIT, signal=signal, timestamp=timestamp)

    @classmethod
    def reject(
        cls,
        signal: PendingSignal,
        risk_name: str,
        reason: str,
        timestamp: datetime | None = None,
    ) -> "Decision":
        return cls(
            verdict=Verdict.REJECT,
            signal=signal,
            risk_name=risk_name,
            reason=reason,
            timestamp=timestamp,
        )

    @property
    def admitted(self) -> bool:
        return self.verdict == Verdict.ADMIT

    @property
    def symbol(self) -> str:
        return self.signal.symbol
