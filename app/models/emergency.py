from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Priority = Literal["Critical", "High", "Medium", "Low"]
CaseStatus = Literal["active", "completed", "transferred"]
ArrivalMode = Literal["Walk-in", "Ambulance", "Police", "Helicopter", "Transfer"]
OrderType = Literal["medication", "lab", "imaging", "procedure", "consultation"]
OrderUrgency = Literal["routine", "urgent", "stat"]
OrderStatus = Literal["pending", "in-progress", "completed", "cancelled"]
ResourceType = Literal["trauma_bay", "acute_bed", "standard_bed", "triage_chair"]
ResourceStatus = Literal["available", "occupied"]
RiskLevel = Literal["High", "Medium", "Low", "Unknown"]
TrendDirection = Literal["increasing", "decreasing"]


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class VitalsSnapshot(BaseModel):
    """One set of vital signs. Any reading may be missing."""

    model_config = ConfigDict(frozen=True)

    systolic_bp: float | None = None
    diastolic_bp: float | None = None
    heart_rate: float | None = None
    temperature: float | None = None  # Celsius
    oxygen_saturation: float | None = None
    respiratory_rate: float | None = None
    pain_scale: int | None = Field(None, ge=0, le=10)
    timestamp: datetime = Field(default_factory=utcnow)


class Demographics(BaseModel):
    age: int | None = Field(None, ge=0)


class TriageAssessment(BaseModel):
    score: int
    priority: Priority
    risk_factors: list[str] = []
    recommended_action: str


class TreatmentOrder(BaseModel):
    id: str
    type: OrderType
    description: str
    urgency: OrderUrgency
    status: OrderStatus = "pending"
    ordered_by: str
    ordered_at: datetime = Field(default_factory=utcnow)
    completed_by: str | None = None
    completed_at: datetime | None = None
    notes: str | None = None


class StaffAssignment(BaseModel):
    staff_id: str
    role: str
    assigned_at: datetime = Field(default_factory=utcnow)


class PreHospitalData(BaseModel):
    ambulance_service: str | None = None
    paramedics_report: str | None = None
    treatment_given: str | None = None
    medications: str | None = None


class PoliceReport(BaseModel):
    fir_number: str
    police_station: str = "Local Police Station"
    reported_at: datetime = Field(default_factory=utcnow)


class MedicoLegalData(BaseModel):
    """Legal documentation for a medico-legal case (assault, accident, poisoning...)."""

    injury_type: str
    evidence: list[str] = []
    police_report: PoliceReport | None = None
    forensic_opinion: str = "Pending forensic evaluation"
    authority_notifications: list[str] = []
    audit_log: list[str] = []


class EmergencyCase(BaseModel):
    id: str
    patient_id: str
    patient_age: int | None = Field(None, ge=0)
    chief_complaint: str
    symptoms: list[str] = []
    vitals: VitalsSnapshot = Field(default_factory=VitalsSnapshot)
    vitals_history: list[VitalsSnapshot] = []

    # Written together from a TriageAssessment only
    triage_score: int = 0
    priority: Priority = "Low"
    risk_factors: list[str] = []
    recommended_action: str = ""

    treatment_orders: list[TreatmentOrder] = []
    assigned_staff: list[StaffAssignment] = []
    assigned_resource_id: str | None = None

    arrival_time: datetime = Field(default_factory=utcnow)
    arrival_mode: ArrivalMode = "Walk-in"
    treatment_start_time: datetime | None = None
    discharge_time: datetime | None = None
    status: CaseStatus = "active"
    disposition: str | None = None
    discharge_notes: str | None = None
    follow_up_instructions: str | None = None
    satisfaction_score: float | None = Field(None, ge=1, le=5)
    final_diagnosis: str | None = None
    pre_hospital_data: PreHospitalData | None = None
    mlc_data: MedicoLegalData | None = None

    version: int = 0
    last_updated: datetime = Field(default_factory=utcnow)


class VitalsTrends(BaseModel):
    bp_trend: TrendDirection | None = None
    bp_change: float | None = None
    hr_trend: TrendDirection | None = None
    hr_change: float | None = None
    o2_trend: TrendDirection | None = None
    o2_change: float | None = None
    temp_trend: TrendDirection | None = None
    temp_change: float | None = None


class DeteriorationPrediction(BaseModel):
    risk: RiskLevel
    confidence: int = Field(0, ge=0, le=100)
    trends: VitalsTrends | None = None
    recommendations: list[str] = []


class Resource(BaseModel):
    id: str
    type: ResourceType
    status: ResourceStatus = "available"
    label: str | None = None


class Assignment(BaseModel):
    case_id: str
    resource_id: str
    resource_type: ResourceType
    priority: Priority
    estimated_duration: int  # minutes
    assigned_at: datetime


class WaitingQueueEntry(BaseModel):
    case_id: str
    priority: Priority
    waiting_since: datetime
    estimated_wait_time: float  # minutes


class ResourceUtilization(BaseModel):
    total: int = 0
    occupied: int = 0


class ResourceAllocation(BaseModel):
    assignments: list[Assignment] = []
    waiting_queue: list[WaitingQueueEntry] = []
    resource_utilization: dict[str, ResourceUtilization] = {}
    resources: list[Resource] = []


class QualityMetrics(BaseModel):
    timeframe_hours: float
    total_cases: int = 0
    average_wait_time: float = 0.0  # minutes
    triage_accuracy: float = 0.0  # percent
    patient_satisfaction: float = 0.0  # 0-5
    length_of_stay: float = 0.0  # hours


# --- Request bodies ---


class TriageScoreRequest(BaseModel):
    vitals: VitalsSnapshot = Field(default_factory=VitalsSnapshot)
    symptoms: list[str] = []
    demographics: Demographics = Field(default_factory=Demographics)


class CaseCreate(BaseModel):
    patient_id: str
    chief_complaint: str
    patient_age: int | None = Field(None, ge=0)
    symptoms: list[str] = []
    vitals: VitalsSnapshot | None = None
    arrival_mode: ArrivalMode = "Walk-in"
    pre_hospital_data: PreHospitalData | None = None


class MedicoLegalCaseCreate(CaseCreate):
    injury_type: str
    evidence: list[str] = []
    fir_number: str | None = None
    police_station: str | None = None
    forensic_opinion: str | None = None


class CaseDetailsUpdate(BaseModel):
    symptoms: list[str] | None = None
    patient_age: int | None = Field(None, ge=0)
    chief_complaint: str | None = None
    final_diagnosis: str | None = None
    satisfaction_score: float | None = Field(None, ge=1, le=5)


class StaffAssignRequest(BaseModel):
    staff_id: str
    role: str


class TreatmentOrderCreate(BaseModel):
    type: OrderType
    description: str
    urgency: OrderUrgency
    ordered_by: str


class TreatmentOrderUpdate(BaseModel):
    status: OrderStatus
    completed_by: str | None = None
    notes: str | None = None


class DischargeRequest(BaseModel):
    disposition: str
    discharge_notes: str | None = None
    follow_up_instructions: str | None = None


class ResourceCreate(BaseModel):
    type: ResourceType
    label: str | None = None


# --- Responses ---


class CaseDetail(BaseModel):
    case: EmergencyCase
    deterioration_prediction: DeteriorationPrediction


class CaseListResponse(BaseModel):
    cases: list[EmergencyCase]
    total: int
    total_pages: int
    current_page: int


class QueuedCase(BaseModel):
    id: str
    patient_id: str
    chief_complaint: str
    priority: Priority
    triage_score: int
    arrival_time: datetime
    wait_time: int  # whole minutes since arrival


class PriorityQueue(BaseModel):
    critical: list[QueuedCase] = []
    high: list[QueuedCase] = []
    medium: list[QueuedCase] = []
    low: list[QueuedCase] = []


class PriorityCounts(BaseModel):
    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class TodayCounts(PriorityCounts):
    completed: int = 0


class DashboardStats(BaseModel):
    today: TodayCounts
    active: PriorityCounts
    average_wait_time: int = 0
    bed_occupancy: float = 0.0


class MedicoLegalStats(BaseModel):
    total: int = 0
    active: int = 0
    completed: int = 0
    transferred: int = 0
    with_police_report: int = 0


class MedicoLegalCaseList(BaseModel):
    cases: list[EmergencyCase]
    stats: MedicoLegalStats
