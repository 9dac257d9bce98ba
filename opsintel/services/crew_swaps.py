"""
Crew swap extraction from schedule audit logs.
An ASSIGN entry whose before/after snapshots name different crews is a swap.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..schemas.operations import CrewSwapEvent, ScheduleAuditRow


def _pick_str(snapshot: Optional[Dict[str, Any]], *keys: str) -> Optional[str]:
    if not snapshot:
        return None
    for key in keys:
        value = snapshot.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def crew_swaps_from_audit_rows(
    rows: Iterable[ScheduleAuditRow],
    since: Optional[datetime] = None,
) -> List[CrewSwapEvent]:
    """
    Build crew swap events from schedule audit rows.

    Args:
        rows: Audit rows with before/after assignment snapshots
        since: Ignore rows created before this instant

    Returns:
        One CrewSwapEvent per row that changed the assigned crew
    """
    events: List[CrewSwapEvent] = []
    for row in rows:
        if row.entity_type != "schedule" or row.action != "ASSIGN":
            continue
        if since is not None and row.created_at < since:
            continue

        previous_crew_id = _pick_str(row.before, "crewId", "crew_id")
        next_crew_id = _pick_str(row.after, "crewId", "crew_id")
        if not previous_crew_id or not next_crew_id or previous_crew_id == next_crew_id:
            continue

        assignment_id = _pick_str(row.after, "id") or _pick_str(row.before, "id")
        job_id = (
            _pick_str(row.after, "jobId", "job_id")
            or _pick_str(row.before, "jobId", "job_id")
            or row.entity_id
        )
        if not assignment_id or not job_id:
            continue

        events.append(CrewSwapEvent(
            event_id=row.id,
            assignment_id=assignment_id,
            job_id=job_id,
            previous_crew_id=previous_crew_id,
            next_crew_id=next_crew_id,
            changed_at=row.created_at,
        ))
    return events
