import logging

from fastapi import APIRouter, HTTPException, Query

from app.config import QUALITY_METRICS_DEFAULT_HOURS
from app.models.emergency import (
    CaseCreate,
    CaseDetail,
    CaseDetailsUpdate,
    CaseListResponse,
    DashboardStats,
    DeteriorationPrediction,
    DischargeRequest,
    EmergencyCase,
    MedicoLegalCaseCreate,
    MedicoLegalCaseList,
    PriorityQueue,
    QualityMetrics,
    Resource,
    ResourceAllocation,
    ResourceCreate,
    StaffAssignRequest,
    TreatmentOrderCreate,
    TreatmentOrderUpdate,
    TriageAssessment,
    TriageScoreRequest,
    VitalsSnapshot,
    utcnow,
)
from app.services import emergency_cases
from app.services.deterioration import predict_deterioration
from app.services.emergency_cases import (
    CaseNotFoundError,
    CaseVersionConflict,
    InvalidOrderTransition,
    OrderNotFoundError,
    OutOfOrderVitals,
)
from app.services.quality_metrics import calculate_quality_metrics
from app.services.triage import calculate_triage_score

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/emergency", tags=["emergency"])


async def _load(case_id: str) -> EmergencyCase:
    try:
        return await emergency_cases.get_case(case_id)
    except CaseNotFoundError:
        raise HTTPException(status_code=404, detail="Emergency case not found") from None


def _conflict(exc: Exception) -> HTTPException:
    return HTTPException(status_code=409, detail=str(exc))


@router.post("/triage/score", response_model=TriageAssessment)
async def score_triage(body: TriageScoreRequest):
    """Score a vitals snapshot without creating a case."""
    return calculate_triage_score(body.vitals, body.symptoms, body.demographics)


@router.post("/cases", response_model=EmergencyCase, status_code=201)
async def create_case(body: CaseCreate):
    """Register an arrival and triage it."""
    return await emergency_cases.create_case(body)


@router.get("/mlc-cases", response_model=MedicoLegalCaseList)
async def list_mlc_cases():
    """Medico-legal cases with status counts."""
    return await emergency_cases.list_mlc_cases()


@router.post("/mlc-cases", response_model=EmergencyCase, status_code=201)
async def create_mlc_case(body: MedicoLegalCaseCreate):
    return await emergency_cases.create_mlc_case(body)


@router.get("/cases", response_model=CaseListResponse)
async def list_cases(
    status: str | None = Query(None, pattern="^(active|completed|transferred)$"),
    priority: str | None = Query(None, pattern="^(Critical|High|Medium|Low)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
):
    return await emergency_cases.list_cases(
        status=status, priority=priority, sort_order=sort_order, page=page, limit=limit
    )


@router.get("/cases/{case_id}", response_model=CaseDetail)
async def get_case(case_id: str):
    """Get a case together with its current deterioration prediction."""
    case = await _load(case_id)
    return CaseDetail(case=case, deterioration_prediction=predict_deterioration(case))


@router.get("/cases/{case_id}/deterioration", response_model=DeteriorationPrediction)
async def get_deterioration(case_id: str):
    case = await _load(case_id)
    return predict_deterioration(case)


@router.put("/cases/{case_id}/vitals", response_model=CaseDetail)
async def record_vitals(case_id: str, vitals: VitalsSnapshot):
    """Append a vitals snapshot; triage is recomputed from it."""
    try:
        case = await emergency_cases.record_vitals(case_id, vitals)
    except CaseNotFoundError:
        raise HTTPException(status_code=404, detail="Emergency case not found") from None
    except (OutOfOrderVitals, CaseVersionConflict) as exc:
        raise _conflict(exc) from None
    return CaseDetail(case=case, deterioration_prediction=predict_deterioration(case))


@router.patch("/cases/{case_id}", response_model=EmergencyCase)
async def update_case(case_id: str, body: CaseDetailsUpdate):
    try:
        return await emergency_cases.update_case_details(case_id, body)
    except CaseNotFoundError:
        raise HTTPException(status_code=404, detail="Emergency case not found") from None
    except CaseVersionConflict as exc:
        raise _conflict(exc) from None


@router.post("/cases/{case_id}/assign", response_model=EmergencyCase)
async def assign_staff(case_id: str, body: StaffAssignRequest):
    try:
        return await emergency_cases.assign_staff(case_id, body.staff_id, body.role)
    except CaseNotFoundError:
        raise HTTPException(status_code=404, detail="Emergency case not found") from None
    except CaseVersionConflict as exc:
        raise _conflict(exc) from None


@router.post("/cases/{case_id}/orders", status_code=201)
async def add_treatment_order(case_id: str, body: TreatmentOrderCreate):
    try:
        case, order = await emergency_cases.add_treatment_order(case_id, body)
    except CaseNotFoundError:
        raise HTTPException(status_code=404, detail="Emergency case not found") from None
    except CaseVersionConflict as exc:
        raise _conflict(exc) from None
    return {"case": case.model_dump(mode="json"), "order": order.model_dump(mode="json")}


@router.put("/cases/{case_id}/orders/{order_id}")
async def update_treatment_order(case_id: str, order_id: str, body: TreatmentOrderUpdate):
    try:
        case, order = await emergency_cases.update_treatment_order(case_id, order_id, body)
    except CaseNotFoundError:
        raise HTTPException(status_code=404, detail="Emergency case not found") from None
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Treatment order not found") from None
    except (InvalidOrderTransition, CaseVersionConflict) as exc:
        raise _conflict(exc) from None
    return {"case": case.model_dump(mode="json"), "order": order.model_dump(mode="json")}


@router.post("/cases/{case_id}/discharge", response_model=EmergencyCase)
async def discharge_case(case_id: str, body: DischargeRequest):
    try:
        return await emergency_cases.discharge_case(case_id, body)
    except CaseNotFoundError:
        raise HTTPException(status_code=404, detail="Emergency case not found") from None
    except CaseVersionConflict as exc:
        raise _conflict(exc) from None


@router.get("/queue", response_model=PriorityQueue)
async def get_priority_queue():
    """Active cases grouped by priority, with minutes waited."""
    return await emergency_cases.get_priority_queue()


@router.get("/dashboard/stats", response_model=DashboardStats)
async def get_dashboard_stats():
    return await emergency_cases.get_dashboard_stats()


@router.get("/metrics/quality", response_model=QualityMetrics)
async def get_quality_metrics(
    timeframe: float = Query(QUALITY_METRICS_DEFAULT_HOURS, gt=0, le=24 * 365),
):
    """Department quality metrics over the last ``timeframe`` hours.

    Triage accuracy is a legacy keyword heuristic, not a clinical audit.
    """
    now = utcnow()
    cases = await emergency_cases.all_cases_since(timeframe, now=now)
    return calculate_quality_metrics(cases, timeframe, now=now)


@router.get("/resources", response_model=list[Resource])
async def list_resources():
    return await emergency_cases.list_resources()


@router.post("/resources", response_model=Resource, status_code=201)
async def add_resource(body: ResourceCreate):
    return await emergency_cases.add_resource(body)


@router.post("/resources/allocate", response_model=ResourceAllocation)
async def allocate_resources():
    """Run one greedy allocation pass and persist the assignments."""
    try:
        return await emergency_cases.allocate_resources()
    except CaseVersionConflict as exc:
        raise _conflict(exc) from None
