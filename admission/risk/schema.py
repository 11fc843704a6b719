"""Risk schema types: validations, their results and the check payload.

A validation is a callable taking a ``RiskCheckPayload``. It may be sync or
async and reports its verdict by return value or by raising:

- ``None``, ``True`` or ``ValidationResult.ok()``: pass
- ``ValidationResult.fail(reason)`` or a non-empty reason string: fail
- ``False``: fail, with the validation's note as the reason
- raising: fail, with the error message (or the note) as the reason
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel, ConfigDict

from admission.models import ActivePosition, PendingSignal

DEFAULT_REJECTION_NOTE = "Validation failed"


@dataclass(frozen=True)
class ValidationResult:
    """Pass, or fail with a human-readable reason."""

    passed: bool
    reason: str = ""

    @classmethod
    def ok(cls) -> ValidationResult:
        return PASS

    @classmethod
    def fail(cls, reason: str) -> ValidationResult:
        return cls(passed=False, reason=reason)


PASS = ValidationResult(passed=True)


class RiskCheckPayload(BaseModel):
    """Everything a validation may look at."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    pending_signal: PendingSignal
    current_price: Decimal
    timestamp: datetime | None = None
    strategy_name: str = ""
    exchange_name: str = ""
    frame_name: str = ""
    backtest: bool = False
    active_position_count: int = 0
    active_positions: tuple[ActivePosition, ...] = ()


ValidationOutcome = Union[ValidationResult, str, bool, None]
ValidationFn = Callable[
    [RiskCheckPayload], Union[ValidationOutcome, Awaitable[ValidationOutcome]]
]
RejectedCallback = Callable[[str, str, RiskCheckPayload], Any]
AllowedCallback = Callable[[str, RiskCheckPayload], Any]


@dataclass(frozen=True)
class Validation:
    """A validation function plus a note describing what it checks."""

    validate: ValidationFn
    note: str = ""


@dataclass
class RiskSchema:
    """Named, ordered set of validations gating signal admission.

    Attributes:
        risk_name: Unique identifier within a registry.
        validations: Checks run in listed order. Plain callables are
            accepted and wrapped in ``Validation`` on registration.
        note: Optional developer note.
        on_rejected: Called as ``on_rejected(symbol, reason, payload)`` when
            one of this schema's validations rejects a signal.
        on_allowed: Called as ``on_allowed(symbol, payload)`` when a signal
            passes every registered schema.
    """

    risk_name: str
    validations: list[Validation | ValidationFn] = field(default_factory=list)
    note: str = ""
    on_rejected: RejectedCallback | None = None
    on_allowed: AllowedCallback | None = None

    def normalized(self) -> RiskSchema:
        """Copy with validations wrapped and frozen into a tuple."""
        validations = tuple(
            v if isinstance(v, Validation) else Validation(v, getattr(v, "__name__", ""))
            for v in self.validations
        )
        return replace(self, validations=validations)


def to_result(outcome: ValidationOutcome, note: str = "") -> ValidationResult:
    """Interpret a validation's return value.

    Raises:
        TypeError: If the value is not a supported outcome.
    """
    if outcome is None or outcome is True:
        return PASS
    if isinstance(outcome, ValidationResult):
        if outcome.passed or outcome.reason:
            return outcome
        return ValidationResult.fail(note or DEFAULT_REJECTION_NOTE)
    if outcome is False:
        return ValidationResult.fail(note or DEFAULT_REJECTION_NOTE)
    if isinstance(outcome, str):
        # An empty reason is treated as "nothing to report"
        return ValidationResult.fail(outcome) if outcome else PASS
    raise TypeError(
        f"Validation returned unsupported value of type {type(outcome).__name__}"
    )
