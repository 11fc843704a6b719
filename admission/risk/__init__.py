"""Risk gates: schemas, reference validations and the ordered registry."""

from admission.risk.schema import (
    PASS,
    RiskCheckPayload,
    RiskSchema,
    Validation,
    ValidationResult,
)
from admission.risk.gates import (
    default_risk_schemas,
    max_positions_gate,
    reward_risk_gate,
    schema_from_profile,
    stop_loss_distance_gate,
)
from admission.risk.registry import RiskGateRegistry

__all__ = [
    "PASS",
    "RiskCheckPayload",
    "RiskSchema",
    "Validation",
    "ValidationResult",
    "default_risk_schemas",
    "max_positions_gate",
    "reward_risk_gate",
    "schema_from_profile",
    "stop_loss_distance_gate",
    "RiskGateRegistry",
]
