"""Tests for quality metrics aggregation."""

from datetime import timedelta

import pytest

from app.models.emergency import utcnow
from app.services.quality_metrics import calculate_quality_metrics, is_triage_accurate


def test_empty_case_list_returns_zeros():
    metrics = calculate_quality_metrics([])
    assert metrics.total_cases == 0
    assert metrics.average_wait_time == 0
    assert metrics.triage_accuracy == 0
    assert metrics.patient_satisfaction == 0
    assert metrics.length_of_stay == 0
    assert metrics.timeframe_hours == 24


def test_cases_outside_window_ignored(make_case):
    old = make_case("old", minutes_ago=60 * 30)
    metrics = calculate_quality_metrics([old], timeframe_hours=24)
    assert metrics.total_cases == 0


def test_average_wait_time(make_case):
    now = utcnow()
    a = make_case("a", arrival_time=now - timedelta(hours=2))
    a.treatment_start_time = a.arrival_time + timedelta(minutes=10)
    b = make_case("b", arrival_time=now - timedelta(hours=1))
    b.treatment_start_time = b.arrival_time + timedelta(minutes=30)
    untreated = make_case("c", arrival_time=now - timedelta(minutes=5))

    metrics = calculate_quality_metrics([a, b, untreated], now=now)
    assert metrics.total_cases == 3
    assert metrics.average_wait_time == pytest.approx(20)


def test_no_treated_cases_wait_is_zero(make_case):
    metrics = calculate_quality_metrics([make_case()])
    assert metrics.average_wait_time == 0


def test_triage_accuracy(make_case):
    cases = [
        make_case("1", priority="Critical", final_diagnosis="Acute Myocardial Infarction", triage_score=12),
        make_case("2", priority="Critical", final_diagnosis="Migraine", triage_score=9),
        make_case("3", priority="High", final_diagnosis="Distal radius fracture", triage_score=6),
        make_case("4", priority="Low", final_diagnosis="Sprain", triage_score=1),
    ]
    # No diagnosis yet: counted in the denominator only
    cases.append(make_case("5", priority="Medium", triage_score=3))

    metrics = calculate_quality_metrics(cases)
    assert metrics.triage_accuracy == pytest.approx(60)


def test_satisfaction_and_length_of_stay(make_case):
    now = utcnow()
    rated = make_case("a", status="completed", satisfaction_score=4, arrival_time=now - timedelta(hours=5))
    rated.discharge_time = rated.arrival_time + timedelta(hours=3)
    unrated = make_case("b", status="completed", arrival_time=now - timedelta(hours=4))
    unrated.discharge_time = unrated.arrival_time + timedelta(hours=1)
    active = make_case("c", satisfaction_score=5, arrival_time=now - timedelta(hours=1))

    metrics = calculate_quality_metrics([rated, unrated, active], now=now)
    assert metrics.patient_satisfaction == pytest.approx(2.0)
    assert metrics.length_of_stay == pytest.approx(2.0)


def test_no_completed_cases(make_case):
    metrics = calculate_quality_metrics([make_case(satisfaction_score=5)])
    assert metrics.patient_satisfaction == 0
    assert metrics.length_of_stay == 0


def test_custom_timeframe(make_case):
    recent = make_case("recent", minutes_ago=30)
    earlier = make_case("earlier", minutes_ago=180)
    assert calculate_quality_metrics([recent, earlier], timeframe_hours=1).total_cases == 1
    assert calculate_quality_metrics([recent, earlier], timeframe_hours=4).total_cases == 2


class TestAccuracyHeuristic:
    @pytest.mark.parametrize("diagnosis", ["Stroke", "Septic shock / sepsis", "Blunt trauma"])
    def test_critical_accepts_critical_diagnoses(self, diagnosis):
        assert is_triage_accurate("Critical", diagnosis)

    def test_critical_rejects_urgent_diagnosis(self):
        assert not is_triage_accurate("Critical", "Pneumonia")

    def test_high_accepts_both_sets(self):
        assert is_triage_accurate("High", "Appendicitis")
        assert is_triage_accurate("High", "Stroke")
        assert not is_triage_accurate("High", "Anxiety")

    def test_lower_priorities_always_accurate(self):
        assert is_triage_accurate("Medium", "anything")
        assert is_triage_accurate("Low", "anything")
