"""Emergency case lifecycle on top of the case store.

Every mutation is a read-modify-write guarded by the case's ``version``
column. A write that loses the race is re-applied on a fresh copy a few
times before ``CaseVersionConflict`` is raised to the caller.
"""

import asyncio
import logging
import math
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from app.database import get_db
from app.models.emergency import (
    CaseCreate,
    CaseDetailsUpdate,
    CaseListResponse,
    DashboardStats,
    DischargeRequest,
    EmergencyCase,
    MedicoLegalCaseCreate,
    MedicoLegalCaseList,
    MedicoLegalData,
    MedicoLegalStats,
    PoliceReport,
    PriorityCounts,
    PriorityQueue,
    QueuedCase,
    Resource,
    ResourceAllocation,
    ResourceCreate,
    StaffAssignment,
    TodayCounts,
    TreatmentOrder,
    TreatmentOrderCreate,
    TreatmentOrderUpdate,
    VitalsSnapshot,
    WaitingQueueEntry,
    as_utc,
    utcnow,
)
from app.services.event_bus import event_bus
from app.services.resource_allocation import (
    estimate_wait_time,
    optimize_resource_allocation,
    summarize_utilization,
)
from app.services.triage import retriage

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3

ORDER_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"in-progress", "completed", "cancelled"},
    "in-progress": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}

MLC_NOTIFICATIONS = ["Police notified", "Medical officer informed"]

# One allocation pass at a time per process
_allocation_lock = asyncio.Lock()


def _ts(value: datetime) -> str:
    # Fixed-width UTC text so stored timestamps compare correctly as strings
    return as_utc(value).isoformat(timespec="microseconds")


class CaseNotFoundError(ValueError):
    pass


class OrderNotFoundError(ValueError):
    pass


class CaseVersionConflict(RuntimeError):
    pass


class InvalidOrderTransition(ValueError):
    pass


class OutOfOrderVitals(ValueError):
    pass


class CaseNotPlaceable(ValueError):
    pass


def _row_to_case(row) -> EmergencyCase:
    case = EmergencyCase.model_validate_json(row["data"])
    case.version = row["version"]
    return case


async def get_case(case_id: str) -> EmergencyCase:
    db = await get_db()
    row = await db.fetch_one(
        "SELECT data, version FROM emergency_cases WHERE id = ?", (case_id,)
    )
    if not row:
        raise CaseNotFoundError(f"Case {case_id} not found")
    return _row_to_case(row)


async def _insert_case(case: EmergencyCase) -> None:
    db = await get_db()
    await db.execute(
        """INSERT INTO emergency_cases (
            id, status, priority, arrival_time, version, is_mlc, data, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            case.id,
            case.status,
            case.priority,
            _ts(case.arrival_time),
            case.version,
            1 if case.mlc_data else 0,
            case.model_dump_json(),
            _ts(case.last_updated),
        ),
    )
    await db.commit()


async def save_case(case: EmergencyCase) -> EmergencyCase:
    """Persist a case if nobody else wrote it since it was read."""
    db = await get_db()
    expected = case.version
    case.version = expected + 1
    case.last_updated = utcnow()
    updated = await db.execute(
        "UPDATE emergency_cases SET status = ?, priority = ?, version = ?, data = ?, updated_at = ? "
        "WHERE id = ? AND version = ?",
        (
            case.status,
            case.priority,
            case.version,
            case.model_dump_json(),
            _ts(case.last_updated),
            case.id,
            expected,
        ),
    )
    await db.commit()
    if updated == 0:
        case.version = expected
        raise CaseVersionConflict(f"Case {case.id} was modified concurrently")
    return case


async def _mutate(case_id: str, change: Callable[[EmergencyCase], None]) -> EmergencyCase:
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        case = await get_case(case_id)
        change(case)
        try:
            return await save_case(case)
        except CaseVersionConflict:
            if attempt == MAX_WRITE_ATTEMPTS:
                raise
            logger.info("Version conflict on case %s, retrying (attempt %d)", case_id, attempt)
    raise CaseVersionConflict(f"Case {case_id} was modified concurrently")  # pragma: no cover


async def create_case(body: CaseCreate, mlc_data: MedicoLegalData | None = None) -> EmergencyCase:
    now = utcnow()
    case = EmergencyCase(
        id=str(uuid.uuid4()),
        patient_id=body.patient_id,
        patient_age=body.patient_age,
        chief_complaint=body.chief_complaint,
        symptoms=body.symptoms,
        arrival_mode=body.arrival_mode,
        arrival_time=now,
        pre_hospital_data=body.pre_hospital_data,
        mlc_data=mlc_data,
    )
    if body.vitals is not None:
        case.vitals = body.vitals
        case.vitals_history = [body.vitals]
    retriage(case)

    await _insert_case(case)
    logger.info("Created case %s priority=%s score=%d", case.id, case.priority, case.triage_score)
    await event_bus.publish("case_created", {"case": case.model_dump(mode="json")}, case_id=case.id)
    return case


async def list_cases(
    status: str | None = None,
    priority: str | None = None,
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 20,
) -> CaseListResponse:
    db = await get_db()
    clauses = []
    params: list = []
    if status:
        clauses.append("status = ?")
        params.append(status)
    if priority:
        clauses.append("priority = ?")
        params.append(priority)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    direction = "ASC" if sort_order == "asc" else "DESC"

    count_row = await db.fetch_one(
        f"SELECT COUNT(*) as count FROM emergency_cases{where}", tuple(params)
    )
    total = count_row["count"] if count_row else 0
    rows = await db.fetch_all(
        f"SELECT data, version FROM emergency_cases{where} "
        f"ORDER BY arrival_time {direction} LIMIT ? OFFSET ?",
        (*params, limit, (page - 1) * limit),
    )
    return CaseListResponse(
        cases=[_row_to_case(row) for row in rows],
        total=total,
        total_pages=math.ceil(total / limit) if limit else 0,
        current_page=page,
    )


async def create_mlc_case(body: MedicoLegalCaseCreate) -> EmergencyCase:
    """Register a medico-legal case. Triage is scored like any other arrival."""
    now = utcnow()
    police_report = None
    if body.fir_number:
        police_report = PoliceReport(
            fir_number=body.fir_number,
            police_station=body.police_station or "Local Police Station",
            reported_at=now,
        )
    mlc_data = MedicoLegalData(
        injury_type=body.injury_type,
        evidence=[item.strip() for item in body.evidence if item.strip()],
        police_report=police_report,
        forensic_opinion=body.forensic_opinion or "Pending forensic evaluation",
        authority_notifications=MLC_NOTIFICATIONS.copy(),
        audit_log=[f"MLC case registered - {now.isoformat()}"],
    )
    fields = body.model_dump(include=set(CaseCreate.model_fields))
    # The injury is the presenting symptom when none were recorded
    if not fields["symptoms"]:
        fields["symptoms"] = [body.injury_type]
    return await create_case(CaseCreate(**fields), mlc_data=mlc_data)


async def list_mlc_cases() -> MedicoLegalCaseList:
    db = await get_db()
    rows = await db.fetch_all(
        "SELECT data, version FROM emergency_cases WHERE is_mlc = 1 ORDER BY arrival_time DESC"
    )
    cases = [_row_to_case(row) for row in rows]
    stats = MedicoLegalStats(
        total=len(cases),
        active=sum(1 for c in cases if c.status == "active"),
        completed=sum(1 for c in cases if c.status == "completed"),
        transferred=sum(1 for c in cases if c.status == "transferred"),
        with_police_report=sum(1 for c in cases if c.mlc_data.police_report is not None),
    )
    return MedicoLegalCaseList(cases=cases, stats=stats)


async def record_vitals(case_id: str, vitals: VitalsSnapshot) -> EmergencyCase:
    """Append a vitals snapshot and re-triage the case from it."""

    def change(case: EmergencyCase) -> None:
        if case.vitals_history and as_utc(vitals.timestamp) < as_utc(case.vitals_history[-1].timestamp):
            raise OutOfOrderVitals("Vitals snapshot is older than the latest recorded one")
        case.vitals_history.append(vitals)
        case.vitals = vitals
        retriage(case)

    case = await _mutate(case_id, change)
    logger.info("Vitals recorded for case %s priority=%s score=%d", case_id, case.priority, case.triage_score)
    await event_bus.publish("case_updated", {"case": case.model_dump(mode="json")}, case_id=case_id)
    return case


async def update_case_details(case_id: str, updates: CaseDetailsUpdate) -> EmergencyCase:
    fields = updates.model_dump(exclude_unset=True)

    def change(case: EmergencyCase) -> None:
        for key, value in fields.items():
            setattr(case, key, value)
        if "symptoms" in fields or "patient_age" in fields:
            retriage(case)

    case = await _mutate(case_id, change)
    await event_bus.publish("case_updated", {"case": case.model_dump(mode="json")}, case_id=case_id)
    return case


async def assign_staff(case_id: str, staff_id: str, role: str) -> EmergencyCase:
    def change(case: EmergencyCase) -> None:
        assignment = StaffAssignment(staff_id=staff_id, role=role)
        case.assigned_staff.append(assignment)
        if case.treatment_start_time is None:
            case.treatment_start_time = assignment.assigned_at

    case = await _mutate(case_id, change)
    logger.info("Assigned %s (%s) to case %s", staff_id, role, case_id)
    await event_bus.publish("case_updated", {"case": case.model_dump(mode="json")}, case_id=case_id)
    return case


async def add_treatment_order(case_id: str, body: TreatmentOrderCreate) -> tuple[EmergencyCase, TreatmentOrder]:
    order = TreatmentOrder(id=uuid.uuid4().hex, **body.model_dump())

    def change(case: EmergencyCase) -> None:
        case.treatment_orders.append(order)

    case = await _mutate(case_id, change)
    await event_bus.publish("case_updated", {"case": case.model_dump(mode="json")}, case_id=case_id)
    return case, order


def _transition_order(order: TreatmentOrder, body: TreatmentOrderUpdate) -> None:
    if body.status != order.status and body.status not in ORDER_TRANSITIONS[order.status]:
        raise InvalidOrderTransition(f"Cannot move order from {order.status} to {body.status}")
    order.status = body.status
    if body.completed_by:
        order.completed_by = body.completed_by
    if body.notes:
        order.notes = body.notes
    if body.status == "completed" and order.completed_at is None:
        order.completed_at = utcnow()


async def update_treatment_order(
    case_id: str, order_id: str, body: TreatmentOrderUpdate
) -> tuple[EmergencyCase, TreatmentOrder]:
    def change(case: EmergencyCase) -> None:
        order = next((o for o in case.treatment_orders if o.id == order_id), None)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        _transition_order(order, body)

    case = await _mutate(case_id, change)
    order = next(o for o in case.treatment_orders if o.id == order_id)
    await event_bus.publish("case_updated", {"case": case.model_dump(mode="json")}, case_id=case_id)
    return case, order


async def _release_resource(resource_id: str) -> None:
    db = await get_db()
    await db.execute(
        "UPDATE ed_resources SET status = 'available' WHERE id = ?", (resource_id,)
    )
    await db.commit()


async def discharge_case(case_id: str, body: DischargeRequest) -> EmergencyCase:
    held: list[str] = []

    def change(case: EmergencyCase) -> None:
        held.clear()
        if case.assigned_resource_id:
            held.append(case.assigned_resource_id)
        case.status = "completed"
        case.disposition = body.disposition
        case.discharge_notes = body.discharge_notes
        case.follow_up_instructions = body.follow_up_instructions
        case.discharge_time = utcnow()
        case.assigned_resource_id = None
        if case.mlc_data is not None:
            case.mlc_data.audit_log.append(
                f"Discharged ({body.disposition}) - {case.discharge_time.isoformat()}"
            )

    case = await _mutate(case_id, change)
    for resource_id in held:
        await _release_resource(resource_id)
    logger.info("Discharged case %s (%s)", case_id, body.disposition)
    await event_bus.publish("case_discharged", {"case": case.model_dump(mode="json")}, case_id=case_id)
    return case


# --- Resources ---


async def list_resources() -> list[Resource]:
    db = await get_db()
    rows = await db.fetch_all("SELECT id, type, status, label FROM ed_resources ORDER BY id")
    return [
        Resource(id=row["id"], type=row["type"], status=row["status"], label=row["label"])
        for row in rows
    ]


async def add_resource(body: ResourceCreate) -> Resource:
    resource = Resource(id=uuid.uuid4().hex[:8], type=body.type, label=body.label)
    db = await get_db()
    await db.execute(
        "INSERT INTO ed_resources (id, type, status, label) VALUES (?, ?, ?, ?)",
        (resource.id, resource.type, resource.status, resource.label),
    )
    await db.commit()
    return resource


async def _active_cases() -> list[EmergencyCase]:
    db = await get_db()
    rows = await db.fetch_all(
        "SELECT data, version FROM emergency_cases WHERE status = 'active' ORDER BY arrival_time ASC"
    )
    return [_row_to_case(row) for row in rows]


async def _claim_resource(resource_id: str) -> bool:
    db = await get_db()
    claimed = await db.execute(
        "UPDATE ed_resources SET status = 'occupied' WHERE id = ? AND status = 'available'",
        (resource_id,),
    )
    await db.commit()
    return claimed == 1


async def _place_case(case_id: str, resource_id: str) -> None:
    def change(case: EmergencyCase) -> None:
        if case.status != "active" or case.assigned_resource_id is not None:
            raise CaseNotPlaceable(f"Case {case_id} is no longer waiting for a resource")
        case.assigned_resource_id = resource_id

    await _mutate(case_id, change)


async def allocate_resources() -> ResourceAllocation:
    """Run one allocation pass over unplaced active cases and persist it.

    A resource is claimed only if it is still available, then the case is
    pointed at it. If the case was discharged or placed in the meantime the
    claim is released again.
    """
    async with _allocation_lock:
        cases = [c for c in await _active_cases() if c.assigned_resource_id is None]
        by_id = {c.id: c for c in cases}
        allocation = optimize_resource_allocation(cases, await list_resources())

        placed = []
        waiting = list(allocation.waiting_queue)
        for assignment in allocation.assignments:
            case = by_id[assignment.case_id]
            if not await _claim_resource(assignment.resource_id):
                logger.info("Resource %s was taken, case %s waits", assignment.resource_id, case.id)
                waiting.append(WaitingQueueEntry(
                    case_id=case.id,
                    priority=case.priority,
                    waiting_since=case.arrival_time,
                    estimated_wait_time=estimate_wait_time(case, placed),
                ))
                continue
            try:
                await _place_case(case.id, assignment.resource_id)
            except CaseNotPlaceable:
                await _release_resource(assignment.resource_id)
                logger.info("Case %s left the queue during allocation", case.id)
                continue
            except Exception:
                await _release_resource(assignment.resource_id)
                raise
            placed.append(assignment)

        resources = await list_resources()
        allocation = ResourceAllocation(
            assignments=placed,
            waiting_queue=waiting,
            resource_utilization=summarize_utilization(resources),
            resources=resources,
        )

    logger.info(
        "Allocation: %d assigned, %d waiting",
        len(allocation.assignments),
        len(allocation.waiting_queue),
    )
    await event_bus.publish("resources_allocated", {"allocation": allocation.model_dump(mode="json")})
    return allocation


# --- Department views ---


def _wait_minutes(case: EmergencyCase, now: datetime) -> int:
    return int((as_utc(now) - as_utc(case.arrival_time)).total_seconds() // 60)


async def get_priority_queue(now: datetime | None = None) -> PriorityQueue:
    now = now or utcnow()
    queue = PriorityQueue()
    groups = {
        "Critical": queue.critical,
        "High": queue.high,
        "Medium": queue.medium,
        "Low": queue.low,
    }
    for case in await _active_cases():
        groups[case.priority].append(QueuedCase(
            id=case.id,
            patient_id=case.patient_id,
            chief_complaint=case.chief_complaint,
            priority=case.priority,
            triage_score=case.triage_score,
            arrival_time=case.arrival_time,
            wait_time=_wait_minutes(case, now),
        ))
    return queue


def _count_by_priority(cases: list[EmergencyCase], counts: PriorityCounts) -> PriorityCounts:
    counts.total = len(cases)
    counts.critical = sum(1 for c in cases if c.priority == "Critical")
    counts.high = sum(1 for c in cases if c.priority == "High")
    counts.medium = sum(1 for c in cases if c.priority == "Medium")
    counts.low = sum(1 for c in cases if c.priority == "Low")
    return counts


async def get_dashboard_stats(now: datetime | None = None) -> DashboardStats:
    now = as_utc(now or utcnow())
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

    db = await get_db()
    rows = await db.fetch_all(
        "SELECT data, version FROM emergency_cases WHERE status = 'active' OR arrival_time >= ?",
        (_ts(start_of_day),),
    )
    cases = [_row_to_case(row) for row in rows]
    today_cases = [c for c in cases if as_utc(c.arrival_time) >= start_of_day]
    active_cases = [c for c in cases if c.status == "active"]

    today = _count_by_priority(today_cases, TodayCounts())
    today.completed = sum(1 for c in today_cases if c.status == "completed")
    stats = DashboardStats(today=today, active=_count_by_priority(active_cases, PriorityCounts()))

    treated = [c for c in today_cases if c.status == "completed" and c.treatment_start_time]
    if treated:
        total_wait = sum(
            (as_utc(c.treatment_start_time) - as_utc(c.arrival_time)).total_seconds()
            for c in treated
        )
        stats.average_wait_time = int(total_wait // (len(treated) * 60))

    resources = await list_resources()
    if resources:
        occupied = sum(1 for r in resources if r.status == "occupied")
        stats.bed_occupancy = round(occupied / len(resources) * 100, 1)
    return stats


async def all_cases_since(hours: float, now: datetime | None = None) -> list[EmergencyCase]:
    """Cases that arrived within the last ``hours``; input for quality metrics."""
    cutoff = as_utc(now or utcnow()) - timedelta(hours=hours)
    db = await get_db()
    rows = await db.fetch_all(
        "SELECT data, version FROM emergency_cases WHERE arrival_time > ?",
        (_ts(cutoff),),
    )
    return [_row_to_case(row) for row in rows]
