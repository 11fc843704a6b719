"""Reference risk gates.

Each factory returns a ``Validation``. Gates that need the open price skip
(pass) when it is unavailable; the registry normally fills it in from the
current price before any gate runs.
"""

from decimal import ROUND_HALF_UP, Decimal

from admission.models import Position, RiskGateConfig, RiskProfileConfig
from admission.risk.schema import (
    PASS,
    RiskCheckPayload,
    RiskSchema,
    Validation,
    ValidationResult,
)

_CENT = Decimal("0.01")


def _round2(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def reward_risk_gate(min_ratio: Decimal | float | str = Decimal("2")) -> Validation:
    """Reject signals whose reward/risk ratio is below *min_ratio*.

    For a long: reward = TP - open, risk = open - SL.
    For a short: reward = open - TP, risk = SL - open.
    A ratio exactly equal to *min_ratio* passes.
    """
    minimum = Decimal(str(min_ratio))

    def validate(payload: RiskCheckPayload) -> ValidationResult:
        signal = payload.pending_signal
        if signal.price_open is None:
            return PASS

        reward = signal.reward_amount
        risk = signal.risk_amount

        if risk <= 0:
            return ValidationResult.fail("Invalid SL placement: stop loss is on the wrong side of entry")

        ratio = reward / risk
        if ratio < minimum:
            return ValidationResult.fail(
                f"Poor R/R ratio: {_round2(ratio)} (minimum {minimum})"
            )
        return PASS

    return Validation(validate, note=f"Reward/risk ratio must be at least {minimum}")


def stop_loss_distance_gate(min_pct: Decimal | float | str = Decimal("1")) -> Validation:
    """Reject signals whose stop loss sits closer than *min_pct* percent to entry.

    A distance exactly equal to *min_pct* passes.
    """
    minimum = Decimal(str(min_pct))

    def validate(payload: RiskCheckPayload) -> ValidationResult:
        signal = payload.pending_signal
        price_open = signal.price_open
        if price_open is None:
            return PASS
        if price_open <= 0:
            return ValidationResult.fail(f"Invalid open price: {price_open}")

        if signal.position == Position.LONG:
            distance = (price_open - signal.price_stop_loss) / price_open * 100
        else:
            distance = (signal.price_stop_loss - price_open) / price_open * 100

        if distance < minimum:
            return ValidationResult.fail(
                f"SL too close: {_round2(distance)}% (minimum {minimum}%)"
            )
        return PASS

    return Validation(validate, note=f"Stop loss must be at least {minimum}% from entry")


def max_positions_gate(limit: int) -> Validation:
    """Reject new signals once *limit* positions are already open."""

    def validate(payload: RiskCheckPayload) -> ValidationResult:
        if payload.active_position_count >= limit:
            return ValidationResult.fail(
                f"Too many active positions: {payload.active_position_count} (limit {limit})"
            )
        return PASS

    return Validation(validate, note=f"At most {limit} concurrent positions")


def schema_from_profile(profile: RiskProfileConfig) -> RiskSchema:
    """Build a risk schema from one configured profile."""
    validations: list[Validation] = []
    if profile.min_reward_risk is not None:
        validations.append(reward_risk_gate(profile.min_reward_risk))
    if profile.min_stop_loss_pct is not None:
        validations.append(stop_loss_distance_gate(profile.min_stop_loss_pct))
    if profile.max_active_positions > 0:
        validations.append(max_positions_gate(profile.max_active_positions))
    return RiskSchema(
        risk_name=profile.risk_name,
        validations=validations,
        note=profile.note,
    )


def default_risk_schemas(config: RiskGateConfig | None = None) -> list[RiskSchema]:
    """Schemas for every enabled profile that has at least one gate."""
    config = config or RiskGateConfig()
    return [
        schema_from_profile(profile)
        for profile in config.enabled_profiles()
        if profile.has_gates
    ]
