"""Tests for the RiskReport decision journal."""

from datetime import datetime, timezone
from decimal import Decimal

import orjson
import pytest

from admission.context import ExecutionFrame, scoped_frame
from admission.models import Decision, PendingSignal, Position
from admission.report import RiskReport

TS = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
FRAME = ExecutionFrame("ema_cross", "binance", "2024-q1", backtest=True)


def _signal(symbol="BTCUSDT") -> PendingSignal:
    return PendingSignal(
        symbol=symbol,
        position=Position.LONG,
        price_open=Decimal("100"),
        price_take_profit=Decimal("106"),
        price_stop_loss=Decimal("97"),
    )


@pytest.fixture
def report():
    report = RiskReport()
    with scoped_frame(FRAME):
        report.record(Decision.admit(_signal(), TS))
        report.record(Decision.reject(_signal(), "reward_risk", "Poor R/R ratio: 1.67 (minimum 2)", TS))
        report.record(Decision.reject(_signal("ETHUSDT"), "stop_loss_distance", "SL too close", TS))
        report.record(Decision.reject(_signal("ETHUSDT"), "reward_risk", "Poor R/R ratio", TS))
    return report


class TestRiskReport:
    def test_rows_tagged_with_active_frame(self, report):
        row = report.rows[0]
        assert len(report) == 4
        assert row["strategy_name"] == "ema_cross"
        assert row["frame_name"] == "2024-q1"
        assert row["mode"] == "backtest"
        assert row["verdict"] == "admit"

    def test_explicit_frame_overrides_active(self, report):
        report.record(Decision.admit(_signal(), TS), frame=ExecutionFrame("manual", "okx"))
        assert report.rows[-1]["strategy_name"] == "manual"
        assert report.rows[-1]["mode"] == "live"

    def test_rejections(self, report):
        assert len(report.rejections()) == 3
        assert len(report.rejections("ETHUSDT")) == 2
        assert report.rejections("BTCUSDT")[0]["reason"].startswith("Poor R/R")

    def test_count_by_risk(self, report):
        assert report.count_by_risk() == {"reward_risk": 2, "stop_loss_distance": 1}

    def test_summary(self, report):
        assert report.summary() == {
            "total": 4,
            "admitted": 1,
            "rejected": 3,
            "rejection_rate": 0.75,
        }
        assert report.summary("BTCUSDT")["rejection_rate"] == 0.5
        assert report.summary("SOLUSDT")["rejection_rate"] == 0.0

    def test_to_json(self, report):
        data = orjson.loads(report.to_json())
        assert data["summary"]["total"] == 4
        assert data["by_risk"]["reward_risk"] == 2
        assert data["decisions"][0]["price_open"] == 100.0
        assert data["decisions"][0]["timestamp"] == "2024-01-01T10:00:00+00:00"

    def test_dump_creates_directories(self, report, tmp_path):
        path = report.dump(tmp_path / "reports" / "risk.json")
        assert path.exists()
        assert orjson.loads(path.read_bytes())["summary"]["rejected"] == 3

    @pytest.mark.asyncio
    async def test_record_async_as_decision_callback(self):
        report = RiskReport()
        with scoped_frame(FRAME):
            await report.record_async(Decision.admit(_signal(), TS))
        assert report.rows[0]["exchange_name"] == "binance"
