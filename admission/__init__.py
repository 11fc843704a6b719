"""Signal admission core.

Caches derived indicators per time window, carries the active execution
frame through async tick streams, and gates pending signals through an
ordered registry of risk schemas.

Public API:
- memoize / IntervalCache: interval-windowed async memoization
- run_scoped / current_frame: ambient execution frame
- RiskGateRegistry / RiskSchema: ordered risk gates
- SignalAdmissionPipeline: per-tick orchestration
"""

from admission.cache import IntervalCache, memoize, parse_interval
from admission.context import (
    EMPTY_FRAME,
    ExecutionFrame,
    ScopedStream,
    current_frame,
    has_frame,
    run_in_frame,
    run_scoped,
    scoped_frame,
)
from admission.exceptions import (
    AdmissionError,
    CacheComputationFailed,
    RiskSchemaError,
)
from admission.models import (
    ActivePosition,
    Candle,
    Decision,
    PendingSignal,
    Position,
    RiskGateConfig,
    RiskProfileConfig,
    Tick,
    Verdict,
)
from admission.risk import (
    RiskCheckPayload,
    RiskGateRegistry,
    RiskSchema,
    Validation,
    ValidationResult,
    default_risk_schemas,
    reward_risk_gate,
    stop_loss_distance_gate,
)
from admission.pipeline import (
    SignalAdmissionPipeline,
    atr_signal_builder,
    make_indicator_fn,
)
from admission.report import RiskReport

__all__ = [
    "IntervalCache",
    "memoize",
    "parse_interval",
    "EMPTY_FRAME",
    "ExecutionFrame",
    "ScopedStream",
    "current_frame",
    "has_frame",
    "run_in_frame",
    "run_scoped",
    "scoped_frame",
    "AdmissionError",
    "CacheComputationFailed",
    "RiskSchemaError",
    "ActivePosition",
    "Candle",
    "Decision",
    "PendingSignal",
    "Position",
    "RiskGateConfig",
    "RiskProfileConfig",
    "Tick",
    "Verdict",
    "RiskCheckPayload",
    "RiskGateRegistry",
    "RiskSchema",
    "Validation",
    "ValidationResult",
    "default_risk_schemas",
    "reward_risk_gate",
    "stop_loss_distance_gate",
    "SignalAdmissionPipeline",
    "atr_signal_builder",
    "make_indicator_fn",
    "RiskReport",
]
