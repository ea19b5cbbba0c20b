"""Tests for trend-based deterioration prediction."""

from datetime import timedelta

from app.models.emergency import VitalsSnapshot, utcnow
from app.services.deterioration import (
    RECOMMENDATIONS,
    calculate_vitals_trends,
    deterioration_score,
    predict_deterioration,
    risk_for_score,
)


def _series(*readings):
    start = utcnow() - timedelta(minutes=10 * len(readings))
    return [
        VitalsSnapshot(timestamp=start + timedelta(minutes=10 * i), **r)
        for i, r in enumerate(readings)
    ]


STABLE = dict(systolic_bp=120, heart_rate=80, oxygen_saturation=98, temperature=37.0)


class TestInsufficientHistory:
    def test_no_history(self, make_case):
        result = predict_deterioration(make_case())
        assert result.risk == "Unknown"
        assert result.confidence == 0
        assert result.trends is None
        assert result.recommendations == []

    def test_single_entry(self, make_case):
        result = predict_deterioration(make_case(vitals_history=_series(STABLE)))
        assert result.risk == "Unknown"
        assert result.confidence == 0


class TestTrends:
    def test_first_vs_last_of_window(self):
        window = _series(
            dict(STABLE, heart_rate=80),
            dict(STABLE, heart_rate=140),
            dict(STABLE, heart_rate=95),
        )
        trends = calculate_vitals_trends(window)
        assert trends.hr_trend == "increasing"
        assert trends.hr_change == 15

    def test_equal_values_read_as_decreasing(self):
        trends = calculate_vitals_trends(_series(STABLE, STABLE))
        assert trends.bp_trend == "decreasing"
        assert trends.bp_change == 0

    def test_missing_reading_has_no_trend(self):
        trends = calculate_vitals_trends(_series(dict(heart_rate=80), dict(heart_rate=90)))
        assert trends.hr_trend == "increasing"
        assert trends.bp_trend is None
        assert trends.bp_change is None
        assert deterioration_score(trends) == 0

    def test_short_window(self):
        trends = calculate_vitals_trends(_series(STABLE))
        assert trends.hr_trend is None


class TestPrediction:
    def test_oxygen_drop_is_medium(self, make_case):
        case = make_case(vitals_history=_series(
            dict(STABLE, oxygen_saturation=98),
            dict(STABLE, oxygen_saturation=85),
        ))
        result = predict_deterioration(case)
        assert result.risk == "Medium"
        assert result.confidence == 60
        assert result.trends.o2_change == 13
        assert result.recommendations == RECOMMENDATIONS["Medium"]

    def test_stable_is_low(self, make_case):
        result = predict_deterioration(make_case(vitals_history=_series(STABLE, STABLE, STABLE)))
        assert result.risk == "Low"
        assert result.confidence == 0
        assert result.recommendations == [
            "Continue standard monitoring",
            "Document current status",
        ]

    def test_multiple_worsening_trends_is_high(self, make_case):
        case = make_case(vitals_history=_series(
            STABLE,
            dict(systolic_bp=110, heart_rate=100, oxygen_saturation=95, temperature=38.0),
            dict(systolic_bp=95, heart_rate=125, oxygen_saturation=90, temperature=39.0),
        ))
        result = predict_deterioration(case)
        # BP -25 (+2), HR +45 (+2), O2 -8 (+3), temp +2.0 (+1)
        assert result.risk == "High"
        assert result.confidence == 95
        assert len(result.recommendations) == 4

    def test_only_last_three_snapshots_count(self, make_case):
        case = make_case(vitals_history=_series(
            dict(STABLE, oxygen_saturation=100),
            dict(STABLE, oxygen_saturation=92),
            dict(STABLE, oxygen_saturation=91),
            dict(STABLE, oxygen_saturation=90),
        ))
        result = predict_deterioration(case)
        assert result.trends.o2_change == 2
        assert result.risk == "Low"

    def test_improving_vitals_do_not_score(self, make_case):
        case = make_case(vitals_history=_series(
            dict(systolic_bp=85, heart_rate=140, oxygen_saturation=85, temperature=39.5),
            dict(systolic_bp=120, heart_rate=90, oxygen_saturation=97, temperature=37.0),
        ))
        assert predict_deterioration(case).risk == "Low"

    def test_temperature_rise_alone(self, make_case):
        case = make_case(vitals_history=_series(
            dict(STABLE, temperature=37.0),
            dict(STABLE, temperature=38.6),
        ))
        result = predict_deterioration(case)
        assert result.risk == "Low"
        assert result.confidence == 20


def test_risk_levels():
    assert risk_for_score(0) == "Low"
    assert risk_for_score(1) == "Low"
    assert risk_for_score(2) == "Medium"
    assert risk_for_score(3) == "Medium"
    assert risk_for_score(4) == "High"
    assert risk_for_score(8) == "High"
