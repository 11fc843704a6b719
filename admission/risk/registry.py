"""Risk gate registry: ordered risk schemas evaluated against pending signals.

The registry is an explicit object built once at setup and injected where
needed. Schemas are kept in registration order and the registry is
append-only: registering an existing name raises ``RiskSchemaError``.
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from admission.context import current_frame
from admission.exceptions import RiskSchemaError
from admission.models import ActivePosition, Decision, PendingSignal, position_key
from admission.risk.schema import (
    DEFAULT_REJECTION_NOTE,
    RiskCheckPayload,
    RiskSchema,
    Validation,
    ValidationResult,
    to_result,
)

logger = logging.getLogger(__name__)


async def _call_callback(callback, *args: Any) -> None:
    """Invoke a schema callback; errors are logged, never propagated."""
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(f"Risk callback error: {e}")


class RiskGateRegistry:
    """Ordered registry of risk schemas.

    ``evaluate`` runs every validation of every schema in order and stops at
    the first failure, which becomes a ``Reject`` decision. Validations see
    the ambient execution frame and the currently open positions.
    """

    def __init__(self, schemas: Iterable[RiskSchema] = ()):
        self._schemas: dict[str, RiskSchema] = {}
        self._active_positions: dict[str, ActivePosition] = {}
        for schema in schemas:
            self.add_risk_schema(schema)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_risk_schema(self, schema: RiskSchema) -> None:
        """Register a schema.

        Raises:
            RiskSchemaError: If the schema is malformed or its name is
                already registered.
        """
        if not isinstance(schema, RiskSchema):
            raise RiskSchemaError(
                f"risk schema validation failed: expected RiskSchema, got {type(schema).__name__}"
            )
        if not isinstance(schema.risk_name, str) or not schema.risk_name:
            raise RiskSchemaError("risk schema validation failed: missing risk_name")
        for validation in schema.validations:
            fn = validation.validate if isinstance(validation, Validation) else validation
            if not callable(fn):
                raise RiskSchemaError(
                    f"risk schema validation failed: {schema.risk_name} has a non-callable validation"
                )
        if schema.risk_name in self._schemas:
            raise RiskSchemaError(f"risk {schema.risk_name} already exist")

        self._schemas[schema.risk_name] = schema.normalized()
        logger.info(
            "Registered risk schema: %s (%d validations)",
            schema.risk_name,
            len(schema.validations),
        )

    def get(self, risk_name: str) -> RiskSchema:
        """Return the schema registered under *risk_name*.

        Raises:
            KeyError: If no schema has that name.
        """
        schema = self._schemas.get(risk_name)
        if schema is None:
            available = ", ".join(self._schemas) or "(none)"
            raise KeyError(f"Unknown risk '{risk_name}'. Available: {available}")
        return schema

    def list_schemas(self) -> list[RiskSchema]:
        """Registered schemas in registration order."""
        return list(self._schemas.values())

    @property
    def risk_names(self) -> list[str]:
        return list(self._schemas)

    def __contains__(self, risk_name: str) -> bool:
        return risk_name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    # ------------------------------------------------------------------
    # Active positions
    # ------------------------------------------------------------------

    def add_position(self, position: ActivePosition) -> None:
        """Track an opened position; replaces one with the same key."""
        self._active_positions[position.key] = position
        logger.debug("Added active position %s", position.key)

    def remove_position(self, strategy_name: str, exchange_name: str, symbol: str) -> None:
        """Stop tracking a closed position. Unknown keys are ignored."""
        key = position_key(strategy_name, exchange_name, symbol)
        if self._active_positions.pop(key, None) is not None:
            logger.debug("Removed active position %s", key)

    @property
    def active_positions(self) -> list[ActivePosition]:
        return list(self._active_positions.values())

    @property
    def active_position_count(self) -> int:
        return len(self._active_positions)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def build_payload(
        self,
        pending_signal: PendingSignal,
        current_price: Decimal,
        timestamp: datetime | None = None,
    ) -> RiskCheckPayload:
        frame = current_frame()
        return RiskCheckPayload(
            symbol=pending_signal.symbol,
            pending_signal=pending_signal.with_open_price(current_price),
            current_price=current_price,
            timestamp=timestamp,
            strategy_name=frame.strategy_name,
            exchange_name=frame.exchange_name,
            frame_name=frame.frame_name,
            backtest=frame.backtest,
            active_position_count=self.active_position_count,
            active_positions=tuple(self._active_positions.values()),
        )

    async def evaluate(
        self,
        pending_signal: PendingSignal,
        current_price: Decimal | float | str,
        *,
        timestamp: datetime | None = None,
    ) -> Decision:
        """Run *pending_signal* through every registered validation.

        Returns ``Decision.reject`` for the first failing validation, or
        ``Decision.admit`` if all pass. A validation that raises counts as
        failing, with the error message as the reason.
        """
        if not isinstance(current_price, Decimal):
            current_price = Decimal(str(current_price))
        timestamp = timestamp or pending_signal.timestamp
        payload = self.build_payload(pending_signal, current_price, timestamp)
        signal = payload.pending_signal

        logger.debug(
            "Evaluating %s %s @ %s against %d risk schemas",
            signal.symbol,
            signal.position.value,
            current_price,
            len(self._schemas),
        )

        for schema in self._schemas.values():
            for validation in schema.validations:
                result = await self._run_validation(schema, validation, payload)
                if result.passed:
                    continue

                logger.warning(
                    "Signal rejected: %s %s risk=%s reason=%s",
                    signal.symbol,
                    signal.position.value,
                    schema.risk_name,
                    result.reason,
                )
                await _call_callback(schema.on_rejected, signal.symbol, result.reason, payload)
                return Decision.reject(signal, schema.risk_name, result.reason, timestamp)

        for schema in self._schemas.values():
            await _call_callback(schema.on_allowed, signal.symbol, payload)

        logger.info(
            "Signal admitted: %s %s open=%s TP=%s SL=%s",
            signal.symbol,
            signal.position.value,
            signal.price_open,
            signal.price_take_profit,
            signal.price_stop_loss,
        )
        return Decision.admit(signal, timestamp)

    async def _run_validation(
        self,
        schema: RiskSchema,
        validation: Validation,
        payload: RiskCheckPayload,
    ) -> ValidationResult:
        try:
            outcome = validation.validate(payload)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return to_result(outcome, validation.note)
        except Exception as e:
            # A raising validation rejects with the error message as reason
            logger.warning(
                "Validation %r of risk %s raised: %s",
                validation.note,
                schema.risk_name,
                e,
            )
            return ValidationResult.fail(str(e) or validation.note or DEFAULT_REJECTION_NOTE)
