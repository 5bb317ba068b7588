"""
Grade aggregation.

Weighted course averages, credit-weighted overall averages and score
statistics. Everything here is a pure function of its input; the caller
fetches the evaluations and persists or returns the result.

Averages:
    course  = sum(score * weight) / sum(weight)
    overall = sum(average * credits) / sum(credits)
Both rounded to 2 decimals, half away from zero.
"""

from __future__ import annotations

import datetime
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

SCORE_MIN = 0.0
SCORE_MAX = 20.0

# (lower bound inclusive, label), highest first
MENTION_BANDS: list[tuple[float, str]] = [
    (16.0, "Very good"),
    (14.0, "Good"),
    (12.0, "Fairly good"),
    (10.0, "Pass"),
]
FAIL_MENTION = "Fail"


@dataclass(frozen=True)
class Evaluation:
    score: float
    weight: float = 1.0
    evaluation_type: str = ""
    date: Optional[datetime.date] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class CourseCredit:
    average: float
    credits: float


def round2(value: float) -> float:
    # str() first so 2.675 rounds as written, not as its binary neighbour
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def course_average(evaluations: Sequence[Evaluation]) -> Optional[float]:
    """
    Weighted mean of one student's evaluations in one course.

    None when nothing has been recorded yet, 0.0 when the weights sum to zero.
    """
    if not evaluations:
        return None
    total_weight = math.fsum(e.weight for e in evaluations)
    if total_weight == 0:
        return 0.0
    weighted = math.fsum(e.score * e.weight for e in evaluations)
    return round2(weighted / total_weight)


def overall_average(course_averages: Sequence) -> Optional[float]:
    """
    Credit-weighted mean of course averages.

    Accepts anything exposing ``average`` and ``credits`` attributes.
    """
    if not course_averages:
        return None
    total_credits = math.fsum(c.credits for c in course_averages)
    if total_credits == 0:
        return 0.0
    weighted = math.fsum(c.average * c.credits for c in course_averages)
    return round2(weighted / total_credits)


def mention(score: float) -> str:
    for low, label in MENTION_BANDS:
        if score >= low:
            return label
    return FAIL_MENTION


def _mean(values: list[float]) -> Optional[float]:
    if not values:
        return None
    return round2(math.fsum(values) / len(values))


def grade_statistics(rows: Iterable[tuple[str, float]]) -> dict:
    """Roll up (evaluation_type, score) pairs into overview figures."""
    scores: list[float] = []
    by_type: dict[str, list[float]] = {}
    by_band: dict[str, int] = {}
    for evaluation_type, score in rows:
        scores.append(score)
        by_type.setdefault(evaluation_type, []).append(score)
        band = mention(score)
        by_band[band] = by_band.get(band, 0) + 1

    band_order = [label for _, label in MENTION_BANDS] + [FAIL_MENTION]
    return {
        "total": len(scores),
        "mean": _mean(scores),
        "by_type": [
            {"evaluation_type": t, "count": len(vals), "mean": _mean(vals)}
            for t, vals in sorted(by_type.items())
        ],
        "distribution": [{"band": b, "count": by_band[b]} for b in band_order if b in by_band],
    }
