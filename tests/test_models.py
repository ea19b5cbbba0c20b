"""Tests for Pydantic models - vitals, cases, orders and request bodies."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from app.models.emergency import (
    CaseCreate,
    CaseDetailsUpdate,
    Demographics,
    EmergencyCase,
    ResourceCreate,
    TreatmentOrderCreate,
    VitalsSnapshot,
    as_utc,
)


class TestVitalsSnapshot:
    def test_defaults_all_none(self):
        v = VitalsSnapshot()
        assert v.systolic_bp is None
        assert v.heart_rate is None
        assert v.oxygen_saturation is None
        assert v.pain_scale is None
        assert v.timestamp.tzinfo is not None

    def test_frozen(self):
        v = VitalsSnapshot(heart_rate=80)
        with pytest.raises(ValidationError):
            v.heart_rate = 90

    def test_pain_scale_range(self):
        assert VitalsSnapshot(pain_scale=10).pain_scale == 10
        with pytest.raises(ValidationError):
            VitalsSnapshot(pain_scale=11)

    def test_json_round_trip_keeps_missing_readings(self):
        v = VitalsSnapshot(heart_rate=110, temperature=38.2)
        restored = VitalsSnapshot.model_validate_json(v.model_dump_json())
        assert restored == v
        assert restored.systolic_bp is None


class TestEmergencyCase:
    def test_defaults(self):
        case = EmergencyCase(id="c1", patient_id="P1", chief_complaint="Headache")
        assert case.status == "active"
        assert case.priority == "Low"
        assert case.triage_score == 0
        assert case.vitals_history == []
        assert case.treatment_orders == []
        assert case.version == 0

    def test_rejects_negative_age(self):
        with pytest.raises(ValidationError):
            EmergencyCase(id="c1", patient_id="P1", chief_complaint="x", patient_age=-1)

    def test_rejects_unknown_priority(self):
        with pytest.raises(ValidationError):
            EmergencyCase(id="c1", patient_id="P1", chief_complaint="x", priority="Urgent")

    def test_satisfaction_range(self):
        with pytest.raises(ValidationError):
            EmergencyCase(id="c1", patient_id="P1", chief_complaint="x", satisfaction_score=6)


class TestRequests:
    def test_case_create_minimal(self):
        body = CaseCreate(patient_id="P1", chief_complaint="Cough")
        assert body.vitals is None
        assert body.arrival_mode == "Walk-in"

    def test_case_create_requires_complaint(self):
        with pytest.raises(ValidationError):
            CaseCreate(patient_id="P1")

    def test_negative_ages_rejected(self):
        with pytest.raises(ValidationError):
            Demographics(age=-1)
        with pytest.raises(ValidationError):
            CaseDetailsUpdate(patient_age=-5)
        assert Demographics(age=0).age == 0

    def test_details_update_tracks_set_fields(self):
        update = CaseDetailsUpdate(final_diagnosis="Asthma")
        assert update.model_dump(exclude_unset=True) == {"final_diagnosis": "Asthma"}

    def test_order_type_enum(self):
        with pytest.raises(ValidationError):
            TreatmentOrderCreate(type="surgery", description="x", urgency="stat", ordered_by="dr")

    def test_resource_type_enum(self):
        assert ResourceCreate(type="acute_bed").label is None
        with pytest.raises(ValidationError):
            ResourceCreate(type="helipad")


def test_as_utc_treats_naive_as_utc():
    naive = datetime(2026, 1, 1, 12, 0)
    assert as_utc(naive) == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    aware = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert as_utc(aware) is aware
