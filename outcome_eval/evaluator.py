# outcome_eval/evaluator.py
"""
Tracks published predictions and scores them once they mature.

Baseline for a prediction: the latest price this evaluator has seen for the
prediction's symbol, else the baseline carried on the prediction event.
Without either the prediction is untracked (logged and counted).
Resolution compares against the latest price of that same symbol.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional

from common.logging import get_logger
from common.schemas import (
    DIRECTIONS,
    OutcomeRecord,
    PendingPrediction,
    PerformanceMetrics,
    PriceEvent,
    is_prediction_event,
)
from outcome_eval.metrics import classify_movement, compute_metrics, is_correct, percent_change
from shared.clock import Clock, EventClock
from shared.dedupe import SeenWindow
from signal_detect.buffers import SymbolBuffers

log = get_logger("outcome_eval")


def _baseline_from_meta(meta: Dict[str, Any]) -> Optional[float]:
    raw = meta.get("baseline_price")
    try:
        v = float(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None
    return v if v is not None and v > 0 else None


class OutcomeEvaluator:
    def __init__(
        self,
        store,
        *,
        buffer_size: int = 100,
        maturation: timedelta = timedelta(hours=24),
        expiry: timedelta = timedelta(days=7),
        clock: Optional[Clock] = None,
        max_done: int = 10_000,
    ) -> None:
        self.store = store
        self.maturation = maturation
        self.expiry = max(expiry, maturation)
        self.clock = clock or EventClock()
        self.prices: SymbolBuffers[PriceEvent] = SymbolBuffers(buffer_size)
        self.pending: Dict[str, PendingPrediction] = {}
        # finished ids, so a redelivered prediction is not tracked twice
        self._done = SeenWindow(max_done)
        self.untracked = 0
        self.expired = 0
        self.resolved = 0
        self.last_metrics: Optional[PerformanceMetrics] = None

    def handle_price(self, event: PriceEvent) -> None:
        if event.kind != "price":
            return
        self.prices.append(event)
        self.clock.observe(event.timestamp)

    def handle_prediction(self, event) -> Optional[PendingPrediction]:
        if not is_prediction_event(event):
            return None
        meta = event.meta
        pid = str(meta["prediction_id"])
        if pid in self.pending or pid in self._done:
            log.debug("prediction %s already tracked", pid)
            return None

        direction = str(meta.get("direction") or "").lower()
        try:
            confidence = float(meta.get("confidence"))
        except (TypeError, ValueError):
            confidence = -1.0
        if direction not in DIRECTIONS or not 0.0 <= confidence <= 1.0:
            log.warning("prediction %s has invalid direction/confidence; not tracked", pid)
            self.untracked += 1
            return None

        symbol = SymbolBuffers.bucket(event.symbol)
        latest = self.prices.latest(symbol)
        baseline = latest.price if latest is not None else _baseline_from_meta(meta)
        if baseline is None:
            self.untracked += 1
            log.warning("prediction %s (%s): no baseline price known; not tracked", pid, symbol)
            return None

        pending = PendingPrediction(
            prediction_id=pid,
            baseline_symbol=symbol,
            baseline_price=baseline,
            created_at=event.timestamp,
            direction=direction,
            confidence=confidence,
        )
        self.pending[pid] = pending
        self.clock.observe(event.timestamp)
        log.info("tracking prediction %s (%s @ %.2f)", pid, symbol, baseline)
        return pending

    async def evaluate_once(self) -> List[OutcomeRecord]:
        now = self.clock.now()
        records: List[OutcomeRecord] = []
        log.info("evaluating %d pending prediction(s)", len(self.pending))

        for pid, p in list(self.pending.items()):
            age = now - p.created_at
            if age < self.maturation:
                continue
            latest = self.prices.latest(p.baseline_symbol)
            if latest is None:
                if age >= self.expiry:
                    del self.pending[pid]
                    self._done.seen_or_record(pid)
                    self.expired += 1
                    log.warning("prediction %s expired without a %s price", pid, p.baseline_symbol)
                else:
                    log.info("prediction %s: no %s price yet; keeping", pid, p.baseline_symbol)
                continue

            pct = percent_change(p.baseline_price, latest.price)
            movement = classify_movement(pct)
            record = OutcomeRecord(
                prediction_id=pid,
                symbol=p.baseline_symbol,
                direction=p.direction,
                confidence=p.confidence,
                baseline_price=p.baseline_price,
                latest_price=latest.price,
                actual_movement=movement,
                price_delta=latest.price - p.baseline_price,
                percent_delta=pct,
                correct=is_correct(p.direction, movement),
                recorded_at=now,
            )
            await asyncio.to_thread(self.store.record_outcome, record)
            del self.pending[pid]
            self._done.seen_or_record(pid)
            self.resolved += 1
            records.append(record)
            log.info(
                "prediction %s %s: %s %+.2f%% -> %s",
                pid, p.direction, p.baseline_symbol, pct, "CORRECT" if record.correct else "INCORRECT",
            )

        if records:
            self.last_metrics = compute_metrics(self.store.outcomes())
            m = self.last_metrics
            log.info(
                "performance: accuracy=%.1f%% (%d/%d) avg_confidence=%.2f recommended_threshold=%.2f",
                m.accuracy * 100, m.correct_predictions, m.total_predictions,
                m.average_confidence, m.recommended_threshold,
            )
        return records

    def status(self) -> Dict[str, Any]:
        return {
            "pending": len(self.pending),
            "resolved": self.resolved,
            "untracked": self.untracked,
            "expired": self.expired,
            "symbols": self.prices.symbols(),
            "metrics": self.last_metrics.model_dump() if self.last_metrics else None,
        }
