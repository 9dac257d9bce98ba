"""
Schedule conflict detection service.
Flags overlapping assignments for the same crew on the same day and
classifies daily crew load. Detection only; nothing here blocks scheduling.
"""
from datetime import date
from typing import Dict, List, NamedTuple, Sequence, Tuple

from ..schemas.operations import (
    AssignmentStatus,
    CapacityStatus,
    CrewDayCapacity,
    SignalAssignment,
)

# Daily capacity thresholds (minutes)
NORMAL_CAPACITY_MINUTES = 480
WARNING_CAPACITY_MINUTES = 540


class CrewCapacity(NamedTuple):
    total_minutes: int
    status: CapacityStatus


def times_overlap(start1: int, end1: int, start2: int, end2: int) -> bool:
    """
    Check if two minute-offset intervals overlap.
    Touching intervals (one ends when the next starts) do not overlap.
    """
    return start1 < end2 and start2 < end1


def overlap_minutes(a: SignalAssignment, b: SignalAssignment) -> int:
    return max(0, min(a.end_minutes, b.end_minutes) - max(a.start_minutes, b.start_minutes))


def detect_overlaps(assignments: Sequence[SignalAssignment]) -> Dict[str, List[str]]:
    """
    Detect overlapping assignments within one crew's day.

    Args:
        assignments: All assignments for a single crew on a single day

    Returns:
        Dict of assignment id -> ids of the assignments it overlaps, in input order
    """
    overlap_map: Dict[str, List[str]] = {assignment.id: [] for assignment in assignments}

    # O(n^2), n is assignments per crew per day
    for i, a in enumerate(assignments):
        for b in assignments[i + 1:]:
            if times_overlap(a.start_minutes, a.end_minutes, b.start_minutes, b.end_minutes):
                overlap_map[a.id].append(b.id)
                overlap_map[b.id].append(a.id)

    return overlap_map


def get_crew_capacity(assignments: Sequence[SignalAssignment]) -> CrewCapacity:
    """
    Total scheduled minutes for a crew's day and its load status.
    """
    total_minutes = sum(a.end_minutes - a.start_minutes for a in assignments)

    status = CapacityStatus.normal
    if total_minutes >= WARNING_CAPACITY_MINUTES:
        status = CapacityStatus.over
    elif total_minutes >= NORMAL_CAPACITY_MINUTES:
        status = CapacityStatus.warning

    return CrewCapacity(total_minutes, status)


def summarize_crew_capacity(assignments: Sequence[SignalAssignment]) -> List[CrewDayCapacity]:
    """
    Load per crew per day, ordered by date then crew id.
    Cancelled and crewless assignments carry no load.
    """
    by_crew_day: Dict[Tuple[str, date], List[SignalAssignment]] = {}
    for assignment in assignments:
        if assignment.crew_id is None or assignment.status == AssignmentStatus.cancelled:
            continue
        key = (assignment.crew_id, assignment.assignment_date)
        by_crew_day.setdefault(key, []).append(assignment)

    summaries = []
    for crew_id, day in sorted(by_crew_day, key=lambda key: (key[1], key[0])):
        capacity = get_crew_capacity(by_crew_day[(crew_id, day)])
        summaries.append(CrewDayCapacity(
            crew_id=crew_id,
            assignment_date=day,
            total_minutes=capacity.total_minutes,
            status=capacity.status,
        ))
    return summaries
