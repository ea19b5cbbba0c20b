from collections.abc import Sequence

from app.models.emergency import (
    DeteriorationPrediction,
    EmergencyCase,
    RiskLevel,
    VitalsSnapshot,
    VitalsTrends,
)
from app.services.triage import numeric

TREND_WINDOW = 3

RECOMMENDATIONS: dict[str, list[str]] = {
    "High": [
        "Increase monitoring frequency to every 15 minutes",
        "Consider ICU consultation",
        "Review current treatment plan",
        "Prepare for potential escalation",
    ],
    "Medium": [
        "Increase monitoring frequency to every 30 minutes",
        "Review vital signs trends",
        "Consider additional diagnostic tests",
    ],
    "Low": [
        "Continue standard monitoring",
        "Document current status",
    ],
}


def _trend(first, last) -> tuple[str | None, float | None]:
    start, end = numeric(first), numeric(last)
    if start is None or end is None:
        return None, None
    direction = "increasing" if end > start else "decreasing"
    return direction, abs(end - start)


def calculate_vitals_trends(window: Sequence[VitalsSnapshot]) -> VitalsTrends:
    """Direction and size of change between the first and last snapshot."""
    if len(window) < 2:
        return VitalsTrends()

    first, last = window[0], window[-1]
    bp_trend, bp_change = _trend(first.systolic_bp, last.systolic_bp)
    hr_trend, hr_change = _trend(first.heart_rate, last.heart_rate)
    o2_trend, o2_change = _trend(first.oxygen_saturation, last.oxygen_saturation)
    temp_trend, temp_change = _trend(first.temperature, last.temperature)
    return VitalsTrends(
        bp_trend=bp_trend,
        bp_change=bp_change,
        hr_trend=hr_trend,
        hr_change=hr_change,
        o2_trend=o2_trend,
        o2_change=o2_change,
        temp_trend=temp_trend,
        temp_change=temp_change,
    )


def deterioration_score(trends: VitalsTrends) -> int:
    score = 0
    if trends.bp_trend == "decreasing" and trends.bp_change > 20:
        score += 2
    if trends.hr_trend == "increasing" and trends.hr_change > 20:
        score += 2
    if trends.o2_trend == "decreasing" and trends.o2_change > 5:
        score += 3
    if trends.temp_trend == "increasing" and trends.temp_change > 1.5:
        score += 1
    return score


def risk_for_score(score: int) -> RiskLevel:
    if score >= 4:
        return "High"
    if score >= 2:
        return "Medium"
    return "Low"


def predict_deterioration(case: EmergencyCase) -> DeteriorationPrediction:
    window = list(case.vitals_history[-TREND_WINDOW:])
    if len(window) < 2:
        return DeteriorationPrediction(risk="Unknown", confidence=0)

    trends = calculate_vitals_trends(window)
    score = deterioration_score(trends)
    risk = risk_for_score(score)
    return DeteriorationPrediction(
        risk=risk,
        confidence=min(score * 20, 95),
        trends=trends,
        recommendations=list(RECOMMENDATIONS[risk]),
    )
