"""Decision journal with per-symbol and per-risk rejection counts.

Subscribe it to a pipeline to keep a record of every admission outcome::

    report = RiskReport()
    pipeline.on_decision(report.record_async)
    ...
    report.dump("reports/risk.json")
"""

from __future__ import annotations

import logging
from collections import Counter
from decimal import Decimal
from pathlib import Path
from typing import Any

import orjson

from admission.context import ExecutionFrame, current_frame
from admission.models import Decision

logger = logging.getLogger(__name__)


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return float(obj)
    raise TypeError


class RiskReport:
    """In-memory journal of decisions."""

    def __init__(self):
        self._rows: list[dict[str, Any]] = []

    def record(self, decision: Decision, frame: ExecutionFrame | None = None) -> None:
        """Append a decision, tagged with the given (or active) frame."""
        frame = frame or current_frame()
        signal = decision.signal
        self._rows.append({
            "symbol": signal.symbol,
            "verdict": decision.verdict.value,
            "risk_name": decision.risk_name,
            "reason": decision.reason,
            "position": signal.position.value,
            "price_open": signal.price_open,
            "price_take_profit": signal.price_take_profit,
            "price_stop_loss": signal.price_stop_loss,
            "timestamp": decision.timestamp,
            "strategy_name": frame.strategy_name,
            "exchange_name": frame.exchange_name,
            "frame_name": frame.frame_name,
            "mode": frame.mode,
        })

    async def record_async(self, decision: Decision) -> None:
        """Decision-callback form of ``record``."""
        self.record(decision)

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def rows(self) -> list[dict[str, Any]]:
        return list(self._rows)

    def rejections(self, symbol: str | None = None) -> list[dict[str, Any]]:
        """Rejected rows, optionally for one symbol."""
        return [
            row for row in self._rows
            if row["verdict"] == "reject" and (symbol is None or row["symbol"] == symbol)
        ]

    def count_by_risk(self) -> dict[str, int]:
        """Number of rejections per risk name."""
        return dict(Counter(row["risk_name"] for row in self.rejections()))

    def summary(self, symbol: str | None = None) -> dict[str, Any]:
        rows = [r for r in self._rows if symbol is None or r["symbol"] == symbol]
        rejected = sum(1 for r in rows if r["verdict"] == "reject")
        total = len(rows)
        return {
            "total": total,
            "admitted": total - rejected,
            "rejected": rejected,
            "rejection_rate": rejected / total if total else 0.0,
        }

    def to_json(self) -> bytes:
        return orjson.dumps(
            {
                "summary": self.summary(),
                "by_risk": self.count_by_risk(),
                "decisions": self._rows,
            },
            default=_default,
            option=orjson.OPT_INDENT_2,
        )

    def dump(self, path: str | Path) -> Path:
        """Write the report as JSON; parent directories are created."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.to_json())
        logger.info("Risk report written to %s (%d decisions)", path, len(self._rows))
        return path
