from collections.abc import Iterable
from datetime import datetime, timedelta

from app.models.emergency import EmergencyCase, QualityMetrics, as_utc, utcnow

CRITICAL_DIAGNOSES = ("myocardial infarction", "stroke", "sepsis", "trauma")
URGENT_DIAGNOSES = ("pneumonia", "appendicitis", "fracture")


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def is_triage_accurate(priority: str, final_diagnosis: str) -> bool:
    """Legacy keyword heuristic. Not a clinical validation.

    Critical must name a critical diagnosis, High a critical or urgent one.
    Medium and Low always count as accurate.
    """
    diagnosis = final_diagnosis.lower()
    if priority == "Critical":
        return any(d in diagnosis for d in CRITICAL_DIAGNOSES)
    if priority == "High":
        return any(d in diagnosis for d in URGENT_DIAGNOSES + CRITICAL_DIAGNOSES)
    return True


def calculate_quality_metrics(
    cases: Iterable[EmergencyCase],
    timeframe_hours: float = 24,
    now: datetime | None = None,
) -> QualityMetrics:
    cutoff = as_utc(now or utcnow()) - timedelta(hours=timeframe_hours)
    recent = [c for c in cases if as_utc(c.arrival_time) > cutoff]

    metrics = QualityMetrics(timeframe_hours=timeframe_hours, total_cases=len(recent))
    if not recent:
        return metrics

    wait_minutes = [
        (as_utc(c.treatment_start_time) - as_utc(c.arrival_time)).total_seconds() / 60
        for c in recent
        if c.treatment_start_time
    ]
    metrics.average_wait_time = _mean(wait_minutes)

    accurate = [
        c for c in recent
        if c.final_diagnosis
        and c.triage_score is not None
        and is_triage_accurate(c.priority, c.final_diagnosis)
    ]
    metrics.triage_accuracy = len(accurate) / len(recent) * 100

    completed = [c for c in recent if c.status == "completed"]
    if completed:
        # Unrated discharges still count in the denominator
        rated_total = sum(c.satisfaction_score for c in completed if c.satisfaction_score)
        metrics.patient_satisfaction = rated_total / len(completed)

        stay_hours = [
            (as_utc(c.discharge_time) - as_utc(c.arrival_time)).total_seconds() / 3600
            for c in completed
            if c.discharge_time
        ]
        metrics.length_of_stay = _mean(stay_hours)

    return metrics
