"""Greedy single-pass assignment of ED resources to active cases.

Cases are served highest priority first, earliest arrival first within a
priority. Each case takes the first available resource of the type its
priority requires; otherwise it joins the waiting queue. There is no
backtracking: output must match the legacy allocator pass for pass.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from app.models.emergency import (
    Assignment,
    EmergencyCase,
    Resource,
    ResourceAllocation,
    ResourceUtilization,
    WaitingQueueEntry,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

PRIORITY_RANK = {"Critical": 4, "High": 3, "Medium": 2, "Low": 1}

REQUIRED_RESOURCE = {
    "Critical": "trauma_bay",
    "High": "acute_bed",
    "Medium": "standard_bed",
    "Low": "triage_chair",
}

# Minutes
BASE_DURATION = {"Critical": 120, "High": 90, "Medium": 60, "Low": 30}
DEFAULT_DURATION = 60
MIN_WAIT_MINUTES = 15
WAIT_FACTOR = 0.8


def required_resource(priority: str) -> str:
    return REQUIRED_RESOURCE.get(priority, "triage_chair")


def estimate_treatment_duration(case: EmergencyCase) -> int:
    return BASE_DURATION.get(case.priority, DEFAULT_DURATION)


def estimate_wait_time(case: EmergencyCase, assignments: list[Assignment]) -> float:
    similar = [a for a in assignments if a.priority == case.priority]
    if similar:
        average = sum(a.estimated_duration for a in similar) / len(similar)
    else:
        average = estimate_treatment_duration(case)
    return max(MIN_WAIT_MINUTES, average * WAIT_FACTOR)


def prioritize(cases: Iterable[EmergencyCase]) -> list[EmergencyCase]:
    """Active cases, highest priority first, then by arrival. Stable on ties."""
    active = [c for c in cases if c.status == "active"]
    return sorted(
        active,
        key=lambda c: (-PRIORITY_RANK.get(c.priority, 0), as_utc(c.arrival_time)),
    )


def summarize_utilization(resources: Iterable[Resource]) -> dict[str, ResourceUtilization]:
    """Total and occupied counts per resource type."""
    utilization: dict[str, ResourceUtilization] = {}
    for resource in resources:
        usage = utilization.setdefault(resource.type, ResourceUtilization())
        usage.total += 1
        if resource.status == "occupied":
            usage.occupied += 1
    return utilization


def optimize_resource_allocation(
    active_cases: Iterable[EmergencyCase],
    available_resources: Iterable[Resource],
    now: datetime | None = None,
) -> ResourceAllocation:
    assigned_at = now or utcnow()
    # Work on copies; callers own the originals
    resources = [r.model_copy() for r in available_resources]
    allocation = ResourceAllocation()

    for case in prioritize(active_cases):
        resource_type = required_resource(case.priority)
        resource = next(
            (r for r in resources if r.type == resource_type and r.status == "available"),
            None,
        )
        if resource is not None:
            allocation.assignments.append(Assignment(
                case_id=case.id,
                resource_id=resource.id,
                resource_type=resource.type,
                priority=case.priority,
                estimated_duration=estimate_treatment_duration(case),
                assigned_at=assigned_at,
            ))
            resource.status = "occupied"
        else:
            allocation.waiting_queue.append(WaitingQueueEntry(
                case_id=case.id,
                priority=case.priority,
                waiting_since=case.arrival_time,
                estimated_wait_time=estimate_wait_time(case, allocation.assignments),
            ))

    allocation.resource_utilization = summarize_utilization(resources)
    allocation.resources = resources
    logger.debug(
        "Allocation pass: %d assigned, %d waiting",
        len(allocation.assignments),
        len(allocation.waiting_queue),
    )
    return allocation
