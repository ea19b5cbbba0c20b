"""Rule-based triage scoring.

Additive point scoring over one vitals snapshot, the presenting symptoms,
and patient age. The score maps onto four priority classes through fixed
thresholds. Pure and synchronous: safe to call from any request handler.
"""

import math
from collections.abc import Iterable

from app.models.emergency import (
    Demographics,
    EmergencyCase,
    Priority,
    TriageAssessment,
    VitalsSnapshot,
    utcnow,
)

CRITICAL_SYMPTOMS = ("chest pain", "difficulty breathing", "unconscious", "severe bleeding")
URGENT_SYMPTOMS = ("severe pain", "vomiting", "high fever", "confusion")

RECOMMENDED_ACTIONS: dict[str, str] = {
    "Critical": "Immediate resuscitation required - Activate trauma team",
    "High": "Urgent medical attention - See within 15 minutes",
    "Medium": "Semi-urgent care - See within 1 hour",
    "Low": "Standard care - See within 2-4 hours",
}


def numeric(value) -> float | None:
    """Return value as a float, or None when it is missing or not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def _outside(value, low: float, high: float) -> bool:
    number = numeric(value)
    if number is None:
        return False
    return number > high or number < low


def _below(value, limit: float) -> bool:
    number = numeric(value)
    return number is not None and number < limit


def priority_for_score(score: int) -> Priority:
    if score >= 8:
        return "Critical"
    if score >= 5:
        return "High"
    if score >= 3:
        return "Medium"
    return "Low"


def recommended_action(priority: str) -> str:
    return RECOMMENDED_ACTIONS.get(priority, RECOMMENDED_ACTIONS["Low"])


def calculate_triage_score(
    vitals: VitalsSnapshot | None,
    symptoms: Iterable[str] | None,
    demographics: Demographics | None,
) -> TriageAssessment:
    score = 0
    risk_factors: list[str] = []
    vitals = vitals or VitalsSnapshot()

    if _outside(vitals.systolic_bp, 90, 180):
        score += 3
        risk_factors.append("Critical Blood Pressure")
    if _outside(vitals.heart_rate, 50, 120):
        score += 2
        risk_factors.append("Abnormal Heart Rate")
    if _outside(vitals.temperature, 35, 39):
        score += 2
        risk_factors.append("Temperature Extremes")
    if _below(vitals.oxygen_saturation, 92):
        score += 3
        risk_factors.append("Low Oxygen Saturation")
    if _outside(vitals.respiratory_rate, 12, 24):
        score += 2
        risk_factors.append("Abnormal Respiratory Rate")

    # Substring match; a symptom scores once, critical before urgent
    for symptom in symptoms or []:
        if not isinstance(symptom, str):
            continue
        text = symptom.lower()
        if any(keyword in text for keyword in CRITICAL_SYMPTOMS):
            score += 4
            risk_factors.append(f"Critical Symptom: {symptom}")
        elif any(keyword in text for keyword in URGENT_SYMPTOMS):
            score += 2
            risk_factors.append(f"Urgent Symptom: {symptom}")

    age = numeric(demographics.age) if demographics else None
    if age is not None and (age > 65 or age < 2):
        score += 1
        risk_factors.append("Age Risk Factor")

    priority = priority_for_score(score)
    return TriageAssessment(
        score=score,
        priority=priority,
        risk_factors=risk_factors,
        recommended_action=recommended_action(priority),
    )


def apply_triage_assessment(case: EmergencyCase, assessment: TriageAssessment) -> EmergencyCase:
    """Write score, priority, risk factors and action onto a case in one step."""
    case.triage_score = assessment.score
    case.priority = assessment.priority
    case.risk_factors = list(assessment.risk_factors)
    case.recommended_action = assessment.recommended_action
    case.last_updated = utcnow()
    return case


def retriage(case: EmergencyCase) -> TriageAssessment:
    """Recompute triage from the case's latest vitals, symptoms and age."""
    assessment = calculate_triage_score(
        case.vitals,
        case.symptoms,
        Demographics(age=case.patient_age),
    )
    apply_triage_assessment(case, assessment)
    return assessment
