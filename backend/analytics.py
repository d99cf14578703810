"""Check-in analytics computed from legacy-shaped records.

Works the same in both schema modes because it only reads the
reconstructed check-in fields.
"""

from statistics import mean
from typing import Any, Dict, List, Mapping, Optional, Sequence

TIMEFRAME_DAYS = {"week": 7, "month": 30, "quarter": 90}

MOOD_SCORES = {
    "devastated": 1,
    "heartbroken": 2,
    "defeated": 3,
    "struggling": 4,
    "discouraged": 5,
    "uncertain": 6,
    "hopeful": 7,
    "confident": 8,
    "optimistic": 9,
    "empowered": 10,
}


def mood_to_number(mood: Optional[str]) -> Optional[int]:
    if not mood:
        return None
    return MOOD_SCORES.get(mood.strip().lower())


def calculate_trend(values: Sequence[float]) -> float:
    """Mean of the last three values minus the mean of everything before.

    With three values or fewer the baseline is the first value.
    """

    if len(values) < 2:
        return 0.0
    recent = mean(values[-3:])
    earlier = mean(values[:-3]) if len(values) > 3 else values[0]
    return round(recent - earlier, 2)


def adherence_rate(checkins: Sequence[Mapping[str, Any]]) -> Optional[int]:
    """Percent of medication-tracked check-ins where medication was taken."""

    tracked = [c for c in checkins if c.get("medication_taken") in ("yes", "no")]
    if not tracked:
        return None
    taken = sum(1 for c in tracked if c["medication_taken"] == "yes")
    return round(taken / len(tracked) * 100)


def summarize(checkins: Sequence[Mapping[str, Any]], timeframe: str) -> Dict[str, Any]:
    """`checkins` must be oldest first."""

    moods: List[float] = [
        m for m in (mood_to_number(c.get("mood_today")) for c in checkins) if m is not None
    ]
    confidences = [c["confidence_today"] for c in checkins if c.get("confidence_today") is not None]
    phq4 = [c for c in checkins if c.get("phq4_total_score") is not None]

    return {
        "timeframe": timeframe,
        "days": TIMEFRAME_DAYS[timeframe],
        "total_checkins": len(checkins),
        "mood_trend": calculate_trend(moods),
        "average_confidence": round(mean(confidences), 2) if confidences else None,
        "adherence_rate": adherence_rate(checkins),
        "latest_phq4_total": phq4[-1]["phq4_total_score"] if phq4 else None,
    }
