# outcome_eval/metrics.py
"""Pure scoring helpers: movement classification, correctness and aggregate accuracy."""

from __future__ import annotations

from typing import Dict, Iterable, List

from common.schemas import DIRECTIONS, DirectionStats, OutcomeRecord, PerformanceMetrics

# percent move needed to count as up/down; exactly +/-1.0 is neutral
MOVEMENT_THRESHOLD_PCT = 1.0

_EXPECTED_MOVEMENT = {"bullish": "up", "bearish": "down", "neutral": "neutral"}


def classify_movement(percent_delta: float) -> str:
    if percent_delta > MOVEMENT_THRESHOLD_PCT:
        return "up"
    if percent_delta < -MOVEMENT_THRESHOLD_PCT:
        return "down"
    return "neutral"


def is_correct(direction: str, movement: str) -> bool:
    return _EXPECTED_MOVEMENT.get(direction) == movement


def percent_change(baseline: float, latest: float) -> float:
    if baseline <= 0:
        raise ValueError("baseline price must be > 0")
    return (latest - baseline) / baseline * 100.0


def recommended_threshold(accuracy: float) -> float:
    """Advisory confidence cut-off: the better the track record, the lower the bar."""
    if accuracy > 0.7:
        return 0.5
    if accuracy > 0.5:
        return 0.65
    return 0.8


def compute_metrics(records: Iterable[OutcomeRecord]) -> PerformanceMetrics:
    rows: List[OutcomeRecord] = list(records)
    if not rows:
        return PerformanceMetrics(recommended_threshold=recommended_threshold(0.0))

    total = len(rows)
    correct = sum(1 for r in rows if r.correct)
    accuracy = correct / total
    by_direction: Dict[str, DirectionStats] = {}
    for d in DIRECTIONS:
        subset = [r for r in rows if r.direction == d]
        n = len(subset)
        c = sum(1 for r in subset if r.correct)
        by_direction[d] = DirectionStats(total=n, correct=c, accuracy=(c / n) if n else 0.0)

    return PerformanceMetrics(
        total_predictions=total,
        correct_predictions=correct,
        accuracy=accuracy,
        average_confidence=sum(r.confidence for r in rows) / total,
        by_direction=by_direction,
        recommended_threshold=recommended_threshold(accuracy),
    )
