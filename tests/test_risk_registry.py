"""Tests for RiskGateRegistry (ordering, short-circuit, callbacks, raising validations)."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from admission.context import ExecutionFrame, scoped_frame
from admission.exceptions import RiskSchemaError
from admission.models import ActivePosition, PendingSignal, Position, Verdict
from admission.risk import (
    RiskGateRegistry,
    RiskSchema,
    Validation,
    ValidationResult,
    default_risk_schemas,
    stop_loss_distance_gate,
)

TS = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def _signal(open_="100", tp="106", sl="97", position=Position.LONG) -> PendingSignal:
    return PendingSignal(
        symbol="BTCUSDT",
        position=position,
        price_open=Decimal(open_) if open_ is not None else None,
        price_take_profit=Decimal(tp),
        price_stop_loss=Decimal(sl),
        timestamp=TS,
    )


def _passing(payload):
    return None


def _failing(payload):
    return ValidationResult.fail("nope")


def _position(symbol: str) -> ActivePosition:
    return ActivePosition(
        strategy_name="ema_cross",
        exchange_name="binance",
        symbol=symbol,
        position=Position.LONG,
        price_open=Decimal("100"),
        price_take_profit=Decimal("106"),
        price_stop_loss=Decimal("97"),
    )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

class TestRegistration:
    def test_schemas_kept_in_registration_order(self):
        registry = RiskGateRegistry()
        registry.add_risk_schema(RiskSchema("b", [_passing]))
        registry.add_risk_schema(RiskSchema("a", [_passing]))

        assert registry.risk_names == ["b", "a"]
        assert [s.risk_name for s in registry.list_schemas()] == ["b", "a"]
        assert "a" in registry
        assert len(registry) == 2

    def test_duplicate_name_rejected(self):
        registry = RiskGateRegistry([RiskSchema("reward_risk", [_passing])])

        with pytest.raises(RiskSchemaError, match="risk reward_risk already exist"):
            registry.add_risk_schema(RiskSchema("reward_risk", [_failing]))

        # First registration untouched
        assert len(registry) == 1
        assert registry.get("reward_risk").validations[0].validate is _passing

    def test_duplicate_is_also_a_value_error(self):
        registry = RiskGateRegistry([RiskSchema("x")])
        with pytest.raises(ValueError):
            registry.add_risk_schema(RiskSchema("x"))

    def test_missing_name_rejected(self):
        with pytest.raises(RiskSchemaError, match="missing risk_name"):
            RiskGateRegistry().add_risk_schema(RiskSchema(""))

    def test_non_callable_validation_rejected(self):
        with pytest.raises(RiskSchemaError, match="non-callable"):
            RiskGateRegistry().add_risk_schema(RiskSchema("bad", ["not callable"]))

    def test_non_schema_rejected(self):
        with pytest.raises(RiskSchemaError):
            RiskGateRegistry().add_risk_schema({"risk_name": "dict"})

    def test_plain_callables_wrapped(self):
        registry = RiskGateRegistry([RiskSchema("r", [_passing])])
        validation = registry.get("r").validations[0]
        assert isinstance(validation, Validation)
        assert validation.note == "_passing"

    def test_get_unknown_raises(self):
        with pytest.raises(KeyError, match="Unknown risk"):
            RiskGateRegistry().get("missing")


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

class TestEvaluate:
    @pytest.mark.asyncio
    async def test_default_schemas_admit_valid_signal(self):
        registry = RiskGateRegistry(default_risk_schemas())
        decision = await registry.evaluate(_signal(), Decimal("100"))

        assert decision.verdict == Verdict.ADMIT
        assert decision.admitted
        assert decision.risk_name is None
        assert decision.timestamp == TS

    @pytest.mark.asyncio
    async def test_default_schemas_reject_poor_ratio(self):
        registry = RiskGateRegistry(default_risk_schemas())
        decision = await registry.evaluate(_signal(tp="105"), Decimal("100"))

        assert decision.verdict == Verdict.REJECT
        assert decision.risk_name == "reward_risk"
        assert "1.67" in decision.reason

    @pytest.mark.asyncio
    async def test_default_schemas_reject_tight_stop(self):
        registry = RiskGateRegistry(default_risk_schemas())
        decision = await registry.evaluate(_signal(tp="110", sl="99.5"), Decimal("100"))

        assert decision.verdict == Verdict.REJECT
        assert decision.risk_name == "stop_loss_distance"
        assert "0.50%" in decision.reason

    @pytest.mark.asyncio
    async def test_open_price_defaults_to_current_price(self):
        seen = []

        def record(payload):
            seen.append(payload.pending_signal.price_open)

        registry = RiskGateRegistry([RiskSchema("recorder", [record])])
        decision = await registry.evaluate(_signal(open_=None), "100.5")

        assert seen == [Decimal("100.5")]
        assert decision.signal.price_open == Decimal("100.5")

    @pytest.mark.asyncio
    async def test_zero_current_price_rejects_instead_of_raising(self):
        registry = RiskGateRegistry([RiskSchema("sl", [stop_loss_distance_gate()])])
        decision = await registry.evaluate(_signal(open_=None, tp="10", sl="-1"), Decimal("0"))

        assert decision.verdict == Verdict.REJECT
        assert decision.reason == "Invalid open price: 0"

    @pytest.mark.asyncio
    async def test_explicit_open_price_is_kept(self):
        registry = RiskGateRegistry([RiskSchema("recorder", [_passing])])
        decision = await registry.evaluate(_signal(open_="99"), Decimal("100"))
        assert decision.signal.price_open == Decimal("99")

    @pytest.mark.asyncio
    async def test_validations_run_in_order(self):
        order = []

        def make(name):
            def validate(payload):
                order.append(name)
            return validate

        registry = RiskGateRegistry([
            RiskSchema("first", [make("a"), make("b")]),
            RiskSchema("second", [make("c")]),
        ])
        decision = await registry.evaluate(_signal(), Decimal("100"))

        assert order == ["a", "b", "c"]
        assert decision.admitted

    @pytest.mark.asyncio
    async def test_first_failure_short_circuits(self):
        later_in_schema = MagicMock(return_value=None)
        later_schema = MagicMock(return_value=None)

        registry = RiskGateRegistry([
            RiskSchema("first", [_failing, later_in_schema]),
            RiskSchema("second", [later_schema]),
        ])
        decision = await registry.evaluate(_signal(), Decimal("100"))

        assert decision.verdict == Verdict.REJECT
        assert decision.risk_name == "first"
        assert decision.reason == "nope"
        later_in_schema.assert_not_called()
        later_schema.assert_not_called()

    @pytest.mark.asyncio
    async def test_async_validation(self):
        async def slow_check(payload):
            return "exchange halted"

        registry = RiskGateRegistry([RiskSchema("halt", [slow_check])])
        decision = await registry.evaluate(_signal(), Decimal("100"))

        assert decision.reason == "exchange halted"

    @pytest.mark.asyncio
    async def test_false_outcome_uses_validation_note(self):
        registry = RiskGateRegistry([
            RiskSchema("flag", [Validation(lambda p: False, note="Trading disabled")])
        ])
        decision = await registry.evaluate(_signal(), Decimal("100"))

        assert decision.reason == "Trading disabled"

    @pytest.mark.asyncio
    async def test_empty_registry_admits(self):
        decision = await RiskGateRegistry().evaluate(_signal(), Decimal("100"))
        assert decision.admitted

    @pytest.mark.asyncio
    async def test_raising_validation_rejects_with_error_message(self):
        def no_weekend(payload):
            raise ValueError("weekend trading disabled")

        later = MagicMock(return_value=None)
        registry = RiskGateRegistry([
            RiskSchema("calendar", [Validation(no_weekend, "no weekend"), later]),
            RiskSchema("other", [later]),
        ])

        decision = await registry.evaluate(_signal(), Decimal("100"))

        assert decision.verdict == Verdict.REJECT
        assert decision.risk_name == "calendar"
        assert decision.reason == "weekend trading disabled"
        later.assert_not_called()

    @pytest.mark.asyncio
    async def test_raising_validation_without_message_uses_note(self):
        async def broken(payload):
            raise RuntimeError()

        registry = RiskGateRegistry([RiskSchema("feed", [Validation(broken, "Feed is stale")])])
        decision = await registry.evaluate(_signal(), Decimal("100"))

        assert decision.reason == "Feed is stale"

    @pytest.mark.asyncio
    async def test_raising_validation_calls_on_rejected(self):
        on_rejected = MagicMock()

        def broken(payload):
            raise KeyError("missing")

        registry = RiskGateRegistry([RiskSchema("broken", [broken], on_rejected=on_rejected)])
        await registry.evaluate(_signal(), Decimal("100"))

        on_rejected.assert_called_once()

    @pytest.mark.asyncio
    async def test_payload_carries_active_frame(self):
        seen = []
        registry = RiskGateRegistry([RiskSchema("recorder", [seen.append])])

        frame = ExecutionFrame("ema_cross", "binance", "2024-q1", backtest=True)
        with scoped_frame(frame):
            await registry.evaluate(_signal(), Decimal("100"))

        payload = seen[0]
        assert payload.strategy_name == "ema_cross"
        assert payload.exchange_name == "binance"
        assert payload.frame_name == "2024-q1"
        assert payload.backtest is True
        assert payload.symbol == "BTCUSDT"
        assert payload.current_price == Decimal("100")

    @pytest.mark.asyncio
    async def test_payload_without_frame(self):
        seen = []
        registry = RiskGateRegistry([RiskSchema("recorder", [seen.append])])
        await registry.evaluate(_signal(), Decimal("100"))

        assert seen[0].strategy_name == ""
        assert seen[0].backtest is False


# ---------------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------------

class TestCallbacks:
    @pytest.mark.asyncio
    async def test_on_rejected_called_for_failing_schema_only(self):
        on_rejected = MagicMock()
        other_rejected = MagicMock()

        registry = RiskGateRegistry([
            RiskSchema("ok", [_passing], on_rejected=other_rejected),
            RiskSchema("strict", [_failing], on_rejected=on_rejected),
        ])
        await registry.evaluate(_signal(), Decimal("100"))

        on_rejected.assert_called_once()
        symbol, reason, payload = on_rejected.call_args.args
        assert symbol == "BTCUSDT"
        assert reason == "nope"
        assert payload.pending_signal.price_open == Decimal("100")
        other_rejected.assert_not_called()

    @pytest.mark.asyncio
    async def test_on_allowed_called_for_every_schema(self):
        first_allowed = AsyncMock()
        second_allowed = MagicMock()

        registry = RiskGateRegistry([
            RiskSchema("a", [_passing], on_allowed=first_allowed),
            RiskSchema("b", [_passing], on_allowed=second_allowed),
        ])
        await registry.evaluate(_signal(), Decimal("100"))

        first_allowed.assert_awaited_once()
        second_allowed.assert_called_once()
        assert second_allowed.call_args.args[0] == "BTCUSDT"

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_change_decision(self):
        def explode(*args):
            raise RuntimeError("callback bug")

        registry = RiskGateRegistry([
            RiskSchema("strict", [_failing], on_rejected=explode),
        ])
        decision = await registry.evaluate(_signal(), Decimal("100"))
        assert decision.verdict == Verdict.REJECT

        registry = RiskGateRegistry([
            RiskSchema("lenient", [_passing], on_allowed=AsyncMock(side_effect=RuntimeError("x"))),
        ])
        decision = await registry.evaluate(_signal(), Decimal("100"))
        assert decision.verdict == Verdict.ADMIT


# ---------------------------------------------------------------------------
# Active positions
# ---------------------------------------------------------------------------

class TestActivePositions:
    @pytest.mark.asyncio
    async def test_positions_visible_to_validations(self):
        seen = []
        registry = RiskGateRegistry([RiskSchema("recorder", [seen.append])])
        registry.add_position(_position("ETHUSDT"))
        registry.add_position(_position("SOLUSDT"))

        await registry.evaluate(_signal(), Decimal("100"))

        payload = seen[0]
        assert payload.active_position_count == 2
        assert {p.symbol for p in payload.active_positions} == {"ETHUSDT", "SOLUSDT"}

    def test_same_key_replaces(self):
        registry = RiskGateRegistry()
        registry.add_position(_position("ETHUSDT"))
        registry.add_position(_position("ETHUSDT"))
        assert registry.active_position_count == 1
        assert registry.active_positions[0].key == "ema_cross_binance_ETHUSDT"

    def test_remove_position(self):
        registry = RiskGateRegistry()
        registry.add_position(_position("ETHUSDT"))
        registry.remove_position("ema_cross", "binance", "ETHUSDT")
        registry.remove_position("ema_cross", "binance", "UNKNOWN")
        assert registry.active_position_count == 0
