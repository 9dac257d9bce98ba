"""
Operations intelligence signal engine.

Derives a ranked list of explainable signals from a point-in-time snapshot of
jobs, crews, assignments and job aggregates. The engine is a pure function of
its input: no I/O, no mutation, no module-level caches.

Every signal carries:
    - a deterministic id: <rule>:<entityType>:<entityId>[:<disambiguator>]
    - the evidence its rule fired on, and nothing else
    - ordered recommended actions and deep links to the job/crew/route
    - created_at: when the condition became true (not necessarily now)

Adding a rule: write a function taking the snapshot index and returning
candidates, keep its evidence minimal, and register it in RULES.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..schemas.operations import (
    SEVERITY_WEIGHT,
    AssignmentStatus,
    CrewState,
    LocationSource,
    OperationsMapCrew,
    OperationsMapJob,
    ProfitabilityStatus,
    ScheduleState,
    SignalAssignment,
    SignalCandidate,
    SignalDeepLink,
    SignalDraft,
    SignalEngineInput,
    SignalEntityType,
    SignalSeverity,
    SignalType,
)
from .geo import LatLng, build_maps_search_url, build_route_url, job_coords, resolve_crew_coords, within_radius
from .schedule_conflicts import detect_overlaps, overlap_minutes
from .schedule_time import (
    add_minutes,
    earliest_date,
    format_currency,
    format_minutes,
    format_number,
    latest_date,
    minutes_between,
    to_date,
    to_iso,
)

_NOT_SET = object()


@dataclass
class JobSchedule:
    planned_minutes: int = 0
    earliest_start: Optional[datetime] = None
    latest_end: Optional[datetime] = None


class SnapshotIndex:
    """Lookups derived once per evaluation and shared by every rule."""

    def __init__(self, data: SignalEngineInput):
        self.data = data
        self.now = data.now
        self.thresholds = data.thresholds
        self.job_by_id: Dict[str, OperationsMapJob] = {job.id: job for job in data.jobs}
        self.crew_by_id: Dict[str, OperationsMapCrew] = {crew.id: crew for crew in data.crews}
        self.last_assignment_by_crew_id: Dict[str, SignalAssignment] = {}
        self.schedule_by_job_id: Dict[str, JobSchedule] = {}
        self._crew_coords: Dict[str, Optional[LatLng]] = {}

        for assignment in data.assignments:
            if assignment.status == AssignmentStatus.cancelled:
                continue
            if assignment.crew_id:
                current = self.last_assignment_by_crew_id.get(assignment.crew_id)
                if current is None or assignment.scheduled_end > current.scheduled_end:
                    self.last_assignment_by_crew_id[assignment.crew_id] = assignment

            schedule = self.schedule_by_job_id.setdefault(assignment.job_id, JobSchedule())
            schedule.planned_minutes += max(0, assignment.end_minutes - assignment.start_minutes)
            if schedule.earliest_start is None or assignment.scheduled_start < schedule.earliest_start:
                schedule.earliest_start = assignment.scheduled_start
            if schedule.latest_end is None or assignment.scheduled_end > schedule.latest_end:
                schedule.latest_end = assignment.scheduled_end

    def crew_coords(self, crew: OperationsMapCrew) -> Optional[LatLng]:
        cached = self._crew_coords.get(crew.id, _NOT_SET)
        if cached is _NOT_SET:
            cached = resolve_crew_coords(crew, self.job_by_id)
            self._crew_coords[crew.id] = cached
        return cached

    def schedule_window(self, job: OperationsMapJob) -> Tuple[Optional[datetime], Optional[datetime]]:
        """Assignments are authoritative for timing; job fields are the fallback."""
        schedule = self.schedule_by_job_id.get(job.id)
        start = schedule.earliest_start if schedule and schedule.earliest_start else to_date(job.scheduled_start)
        end = schedule.latest_end if schedule and schedule.latest_end else to_date(job.scheduled_end)
        return start, end

    def primary_crew(self, job: OperationsMapJob) -> Optional[OperationsMapCrew]:
        if not job.crew:
            return None
        return self.crew_by_id.get(job.crew[0].id)

    def job_links(self, job: OperationsMapJob, crew: Optional[OperationsMapCrew] = None) -> List[SignalDeepLink]:
        coords = self.crew_coords(crew) if crew else None
        return build_job_deep_links(job, crew, coords)

    def crew_links(self, crew: OperationsMapCrew, job: Optional[OperationsMapJob] = None) -> List[SignalDeepLink]:
        return build_crew_deep_links(crew, job, self.crew_coords(crew))

    def next_job(self, crew: OperationsMapCrew) -> Optional[OperationsMapJob]:
        return self.job_by_id.get(crew.next_job_id) if crew.next_job_id else None


def _route_link(address: str, crew_coords: Optional[LatLng]) -> Optional[SignalDeepLink]:
    if not address:
        return None
    href = build_route_url(crew_coords, address) if crew_coords else build_maps_search_url(address)
    return SignalDeepLink(label="Open Route", href=href, external=True)


def build_job_deep_links(
    job: OperationsMapJob,
    crew: Optional[OperationsMapCrew],
    crew_coords: Optional[LatLng],
) -> List[SignalDeepLink]:
    links = [SignalDeepLink(label="Open Job", href=f"/jobs/{job.id}")]
    if crew is not None:
        links.append(SignalDeepLink(label="Open Crew", href=f"/crews/{crew.id}"))
    route = _route_link(job.address, crew_coords)
    if route is not None:
        links.append(route)
    return links


def build_crew_deep_links(
    crew: OperationsMapCrew,
    job: Optional[OperationsMapJob],
    crew_coords: Optional[LatLng],
) -> List[SignalDeepLink]:
    links = [SignalDeepLink(label="Open Crew", href=f"/crews/{crew.id}")]
    if job is not None:
        links.append(SignalDeepLink(label="Open Job", href=f"/jobs/{job.id}"))
        route = _route_link(job.address, crew_coords)
        if route is not None:
            links.append(route)
    return links


def build_signal_candidate(draft: SignalDraft) -> SignalCandidate:
    """Fill the convenience fields every consumer expects from the draft."""
    return SignalCandidate(
        id=draft.id,
        type=draft.type or SignalType(draft.entity_type.value),
        severity=draft.severity,
        title=draft.title or draft.headline,
        description=draft.description or draft.reason,
        entity_type=draft.entity_type,
        entity_id=draft.entity_id,
        detected_at=draft.detected_at or draft.created_at,
        metadata=draft.metadata if draft.metadata is not None else draft.evidence,
        headline=draft.headline,
        reason=draft.reason,
        evidence=draft.evidence,
        recommended_actions=draft.recommended_actions,
        deep_links=draft.deep_links,
        created_at=draft.created_at,
    )


def scheduled_unassigned_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    days = idx.thresholds.unassigned_warning_days
    for job in idx.data.jobs:
        if job.is_completed or job.schedule_state != ScheduleState.scheduled_unassigned:
            continue
        scheduled_start, scheduled_end = idx.schedule_window(job)
        if scheduled_start is None or scheduled_end is None:
            continue

        minutes_to_start = minutes_between(idx.now, scheduled_start)
        window_minutes = max(0, days * 24 * 60)
        within_window = window_minutes > 0 and minutes_to_start <= window_minutes

        if minutes_to_start <= 0:
            severity = SignalSeverity.critical
            reason = "Scheduled start has passed with no crew assigned."
        elif within_window:
            severity = SignalSeverity.warning
            plural = "" if days == 1 else "s"
            reason = f"Scheduled start is within {format_number(days)} day{plural} and no crew is assigned."
        else:
            severity = SignalSeverity.info
            reason = "Job is scheduled without a crew assignment."

        if within_window:
            signal_id = f"unassigned_near_start:job:{job.id}"
            headline = f"Crew unassigned close to start: {job.title}"
        else:
            signal_id = f"scheduled_unassigned:job:{job.id}"
            headline = f"Scheduled without crew: {job.title}"

        signals.append(build_signal_candidate(SignalDraft(
            id=signal_id,
            severity=severity,
            entity_type=SignalEntityType.job,
            entity_id=job.id,
            headline=headline,
            reason=reason,
            evidence={
                "scheduledStart": to_iso(scheduled_start),
                "scheduledEnd": to_iso(scheduled_end),
                "minutesToStart": minutes_to_start,
                "unassignedWarningDays": days,
            },
            recommended_actions=[
                "Assign a crew to the scheduled window.",
                "Confirm the schedule if the job can proceed without a crew.",
            ],
            deep_links=idx.job_links(job),
            created_at=idx.now,
        )))
    return signals


def crew_swap_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    window = idx.thresholds.crew_swap_window_minutes
    if not idx.data.crew_swap_events or window <= 0:
        return []

    signals = []
    assignment_by_id = {assignment.id: assignment for assignment in idx.data.assignments}
    for swap in idx.data.crew_swap_events:
        assignment = assignment_by_id.get(swap.assignment_id)
        if assignment is None:
            continue
        job = idx.job_by_id.get(swap.job_id) or idx.job_by_id.get(assignment.job_id)
        if job is None or job.is_completed:
            continue

        minutes_from_start = abs(minutes_between(swap.changed_at, assignment.scheduled_start))
        if minutes_from_start > window:
            continue

        previous_crew = idx.crew_by_id.get(swap.previous_crew_id)
        next_crew = idx.crew_by_id.get(swap.next_crew_id)
        link_crew = next_crew or previous_crew

        signals.append(build_signal_candidate(SignalDraft(
            id=f"crew_swap:assignment:{swap.event_id}",
            severity=SignalSeverity.warning,
            entity_type=SignalEntityType.job,
            entity_id=job.id,
            headline=f"Crew swap near start: {job.title}",
            reason=f"Crew changed within {format_minutes(minutes_from_start)} of the scheduled start.",
            evidence={
                "assignmentId": assignment.id,
                "previousCrewId": swap.previous_crew_id,
                "previousCrewName": previous_crew.name if previous_crew else None,
                "nextCrewId": swap.next_crew_id,
                "nextCrewName": next_crew.name if next_crew else None,
                "scheduledStart": to_iso(assignment.scheduled_start),
                "changedAt": to_iso(swap.changed_at),
                "windowMinutes": window,
            },
            recommended_actions=[
                "Confirm the new crew has received the job details.",
                "Notify the client if the change impacts arrival time.",
            ],
            deep_links=idx.job_links(job, link_crew),
            created_at=swap.changed_at,
        )))
    return signals


def late_risk_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    for job in idx.data.jobs:
        if job.is_completed:
            continue
        scheduled_start = to_date(job.scheduled_start)
        if scheduled_start is None:
            continue
        minutes_to_start = minutes_between(idx.now, scheduled_start)
        if abs(minutes_to_start) > idx.thresholds.late_risk_minutes:
            continue

        crew_ids = [ref.id for ref in job.crew]
        crew_states = [
            idx.crew_by_id[crew_id].state for crew_id in crew_ids if crew_id in idx.crew_by_id
        ]
        if any(state in (CrewState.en_route, CrewState.on_job) for state in crew_states):
            continue

        severity = SignalSeverity.critical if minutes_to_start <= 0 else SignalSeverity.warning
        reason = (
            "Start window is near and no crew is assigned."
            if not crew_ids
            else "Start window is near and crew is not en route."
        )

        signals.append(build_signal_candidate(SignalDraft(
            id=f"late_risk:job:{job.id}",
            severity=severity,
            entity_type=SignalEntityType.job,
            entity_id=job.id,
            headline=f"Late risk for {job.title}",
            reason=reason,
            evidence={
                "scheduledStart": to_iso(scheduled_start),
                "minutesToStart": minutes_to_start,
                "crewIds": crew_ids,
                "crewStates": [state.value for state in crew_states],
                "progressStatus": job.progress_status.value,
            },
            recommended_actions=[
                "Confirm crew ETA and travel status.",
                "Assign a nearby crew or update the schedule start.",
            ],
            deep_links=idx.job_links(job, idx.primary_crew(job)),
            created_at=scheduled_start,
        )))
    return signals


def no_progress_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    data = idx.data
    threshold = idx.thresholds.no_progress_minutes
    for job in data.jobs:
        if not job.is_in_progress:
            continue
        last_hours_at = data.last_hours_log_by_job_id.get(job.id)
        last_materials_at = data.last_materials_log_by_job_id.get(job.id)
        activity_update = latest_date(
            data.last_activity_by_job_id.get(job.id),
            data.job_updated_at_by_id.get(job.id),
            last_hours_at,
            last_materials_at,
        )
        scheduled_start, _ = idx.schedule_window(job)
        last_update = activity_update or scheduled_start
        if last_update is None:
            continue
        minutes_since = minutes_between(last_update, idx.now)
        if minutes_since < threshold:
            continue

        signals.append(build_signal_candidate(SignalDraft(
            id=f"no_progress:job:{job.id}",
            severity=SignalSeverity.warning,
            entity_type=SignalEntityType.job,
            entity_id=job.id,
            headline=f"Job stalled on {job.title}",
            reason=f"No updates logged for {format_minutes(minutes_since)}.",
            evidence={
                "lastActivityAt": to_iso(activity_update),
                "lastHoursAt": to_iso(last_hours_at),
                "lastMaterialsAt": to_iso(last_materials_at),
                "lastUpdateAt": to_iso(last_update),
                "minutesSince": minutes_since,
                "progressStatus": job.progress_status.value,
            },
            recommended_actions=[
                "Request an update from the crew.",
                "Log progress, hours, or materials to confirm status.",
            ],
            deep_links=idx.job_links(job, idx.primary_crew(job)),
            created_at=add_minutes(last_update, threshold),
        )))
    return signals


def time_risk_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    t = idx.thresholds
    for job in idx.data.jobs:
        if not job.is_in_progress:
            continue
        schedule = idx.schedule_by_job_id.get(job.id)
        planned_minutes = schedule.planned_minutes if schedule else 0
        scheduled_start, scheduled_end = idx.schedule_window(job)
        if planned_minutes > 0:
            expected_minutes = planned_minutes
        elif scheduled_start and scheduled_end:
            expected_minutes = max(0, minutes_between(scheduled_start, scheduled_end))
        else:
            expected_minutes = t.default_job_duration_minutes

        actual_minutes = idx.data.hours_by_job_id.get(job.id) or 0
        hours_ratio = actual_minutes / planned_minutes if planned_minutes > 0 else None
        hours_over = planned_minutes > 0 and actual_minutes > planned_minutes * t.hours_overage_multiplier

        elapsed_minutes = minutes_between(scheduled_start, idx.now) if scheduled_start else None
        elapsed_over = elapsed_minutes is not None and elapsed_minutes > expected_minutes

        if not hours_over and not elapsed_over:
            continue

        critical_by_hours = hours_ratio is not None and hours_ratio >= t.time_risk_critical_multiplier
        critical_by_elapsed = (
            elapsed_minutes is not None
            and elapsed_minutes >= expected_minutes * t.time_risk_critical_multiplier
        )
        severity = (
            SignalSeverity.critical if critical_by_hours or critical_by_elapsed else SignalSeverity.warning
        )

        reason_parts = []
        if hours_over:
            reason_parts.append(
                f"Logged {format_minutes(actual_minutes)} vs planned {format_minutes(planned_minutes)} "
                f"(+{format_minutes(actual_minutes - planned_minutes)})."
            )
        if elapsed_over:
            reason_parts.append(
                f"Elapsed {format_minutes(elapsed_minutes)} vs expected {format_minutes(expected_minutes)} "
                f"(+{format_minutes(elapsed_minutes - expected_minutes)})."
            )

        created_at = earliest_date(
            (idx.data.last_hours_log_by_job_id.get(job.id) or idx.now) if hours_over else None,
            add_minutes(scheduled_start, expected_minutes) if elapsed_over else None,
        ) or idx.now

        signals.append(build_signal_candidate(SignalDraft(
            id=f"time_risk:job:{job.id}",
            severity=severity,
            entity_type=SignalEntityType.job,
            entity_id=job.id,
            headline=f"Time risk on {job.title}",
            reason=" ".join(reason_parts),
            evidence={
                "plannedMinutes": planned_minutes,
                "actualMinutes": actual_minutes,
                "hoursRatio": round(hours_ratio, 2) if hours_ratio is not None else None,
                "expectedMinutes": expected_minutes,
                "elapsedMinutes": elapsed_minutes,
                "hoursOverageMultiplier": t.hours_overage_multiplier,
                "timeRiskCriticalMultiplier": t.time_risk_critical_multiplier,
                "scheduledStart": to_iso(scheduled_start),
                "scheduledEnd": to_iso(scheduled_end),
            },
            recommended_actions=[
                "Review labour allocation and time spent on this job.",
                "Update the plan or schedule additional support if needed.",
            ],
            deep_links=idx.job_links(job, idx.primary_crew(job)),
            created_at=created_at,
        )))
    return signals


def no_materials_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    for job in idx.data.jobs:
        if not job.is_in_progress:
            continue
        planned_count = idx.data.planned_materials_by_job_id.get(job.id) or 0
        if planned_count <= 0:
            continue
        usage_count = idx.data.usage_by_job_id.get(job.id) or 0
        if usage_count > 0:
            continue

        scheduled_start, _ = idx.schedule_window(job)
        minutes_since_start = minutes_between(scheduled_start, idx.now) if scheduled_start else None

        signals.append(build_signal_candidate(SignalDraft(
            id=f"no_materials:job:{job.id}",
            severity=SignalSeverity.warning,
            entity_type=SignalEntityType.job,
            entity_id=job.id,
            headline=f"Materials missing on {job.title}",
            reason=f"Job is in progress with {planned_count} planned material allocations, but none logged.",
            evidence={
                "plannedCount": planned_count,
                "usageCount": usage_count,
                "scheduledStart": to_iso(scheduled_start),
                "minutesSinceStart": minutes_since_start,
                "progressStatus": job.progress_status.value,
            },
            recommended_actions=[
                "Log materials used for this job.",
                "Confirm material availability with the crew.",
            ],
            deep_links=idx.job_links(job, idx.primary_crew(job)),
            created_at=scheduled_start or idx.now,
        )))
    return signals


def margin_risk_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    data = idx.data
    t = idx.thresholds
    for job in data.jobs:
        if job.is_completed:
            continue
        financials = data.job_financials_by_id.get(job.id)
        if financials is None:
            continue
        invoice = data.job_invoice_by_id.get(job.id)

        revenue = financials.estimated_revenue_cents
        cost = financials.estimated_cost_cents
        target = financials.target_margin_percent
        margin_percent = (
            (revenue - cost) / revenue * 100
            if revenue is not None and revenue > 0 and cost is not None
            else None
        )

        real_time_risk = financials.profitability_status in (
            ProfitabilityStatus.warning,
            ProfitabilityStatus.critical,
        )
        projected_risk = margin_percent is not None and margin_percent <= t.margin_warning_percent
        below_target = margin_percent is not None and target is not None and margin_percent < target
        if not (real_time_risk or projected_risk or below_target):
            continue

        threshold_triggered = None
        if margin_percent is not None:
            threshold_triggered = (
                t.margin_critical_percent
                if margin_percent <= t.margin_critical_percent
                else t.margin_warning_percent
            )

        outstanding = invoice.outstanding_cents if invoice else 0
        reason_parts = []
        if real_time_risk:
            reason_parts.append(f"Real-time margin is {financials.profitability_status.value}.")
        if margin_percent is not None and target is not None:
            reason_parts.append(f"Estimated margin {margin_percent:.1f}% vs target {target:.1f}%.")
        elif margin_percent is not None:
            reason_parts.append(f"Estimated margin {margin_percent:.1f}%.")
        if projected_risk and threshold_triggered is not None:
            reason_parts.append(f"Projected margin is below {threshold_triggered:.1f}%.")
        if invoice and outstanding > 0:
            reason_parts.append(
                f"Outstanding invoice balance {format_currency(outstanding, invoice.currency)}."
            )

        actions = [
            "Review job costs and revenue assumptions.",
            "Adjust scope or pricing to protect margin.",
        ]
        if outstanding > 0:
            actions.append("Follow up on the outstanding invoice to reduce cashflow risk.")

        anchor = latest_date(
            data.job_updated_at_by_id.get(job.id),
            data.last_hours_log_by_job_id.get(job.id),
            data.last_materials_log_by_job_id.get(job.id),
        ) or idx.now

        signals.append(build_signal_candidate(SignalDraft(
            id=f"margin_risk:job:{job.id}",
            severity=SignalSeverity.critical,
            entity_type=SignalEntityType.job,
            entity_id=job.id,
            headline=f"Margin risk on {job.title}",
            reason=" ".join(reason_parts),
            evidence={
                "profitabilityStatus": financials.profitability_status.value,
                "estimatedMarginPercent": round(margin_percent, 1) if margin_percent is not None else None,
                "targetMarginPercent": target,
                "marginWarningPercent": t.margin_warning_percent,
                "marginCriticalPercent": t.margin_critical_percent,
                "invoiceOutstandingCents": invoice.outstanding_cents if invoice else None,
                "invoiceStatus": invoice.status if invoice else None,
            },
            recommended_actions=actions,
            deep_links=idx.job_links(job, idx.primary_crew(job)),
            created_at=anchor,
        )))
    return signals


def completed_unpaid_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    for job in idx.data.jobs:
        if not job.is_completed:
            continue
        invoice = idx.data.job_invoice_by_id.get(job.id)
        if invoice is None:
            continue
        if (invoice.status or "").lower() in ("draft", "void"):
            continue
        if invoice.outstanding_cents <= 0:
            continue

        overdue = invoice.overdue_at(idx.now)
        outstanding_label = format_currency(invoice.outstanding_cents, invoice.currency)
        reason = (
            f"Job completed with overdue balance of {outstanding_label}."
            if overdue
            else f"Job completed with unpaid balance of {outstanding_label}."
        )

        signals.append(build_signal_candidate(SignalDraft(
            id=f"completed_unpaid:job:{job.id}",
            severity=SignalSeverity.critical if overdue else SignalSeverity.warning,
            entity_type=SignalEntityType.job,
            entity_id=job.id,
            headline=f"Completed but unpaid: {job.title}",
            reason=reason,
            evidence={
                "invoiceId": invoice.invoice_id,
                "invoiceStatus": invoice.status,
                "totalCents": invoice.total_cents,
                "paidCents": invoice.paid_cents,
                "outstandingCents": invoice.outstanding_cents,
                "currency": invoice.currency,
                "issuedAt": to_iso(invoice.issued_at),
                "dueAt": to_iso(invoice.due_at),
                "paidAt": to_iso(invoice.paid_at),
                "overdue": overdue,
            },
            recommended_actions=[
                "Follow up with the client to confirm payment timing.",
                "Record any external payment received (EFT, cash, POS).",
            ],
            deep_links=idx.job_links(job),
            created_at=invoice.due_at or invoice.issued_at or idx.now,
        )))
    return signals


def _is_idle_past_threshold(crew: OperationsMapCrew, threshold: float) -> bool:
    return (
        crew.active
        and crew.state == CrewState.idle
        and crew.idle_minutes is not None
        and crew.idle_minutes >= threshold
    )


def idle_crew_nearby_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    radius_km = idx.thresholds.risk_radius_km
    idle_crews = [
        crew for crew in idx.data.crews
        if _is_idle_past_threshold(crew, idx.thresholds.idle_threshold_minutes)
    ]
    for job in idx.data.jobs:
        if not job.risk.at_risk:
            continue
        point = job_coords(job)
        if point is None:
            continue
        matches = within_radius(point, ((crew, idx.crew_coords(crew)) for crew in idle_crews), radius_km)
        if not matches:
            continue

        nearest = matches[0]
        signals.append(build_signal_candidate(SignalDraft(
            id=f"idle_crew_nearby:job:{job.id}",
            severity=SignalSeverity.info,
            entity_type=SignalEntityType.job,
            entity_id=job.id,
            headline=f"Idle crew near {job.title}",
            reason=f"There are {len(matches)} idle crew within {format_number(radius_km)} km.",
            evidence={
                "radiusKm": radius_km,
                "crewMatches": [
                    {
                        "crewId": match.item.id,
                        "crewName": match.item.name,
                        "distanceKm": match.distance_km,
                        "idleMinutes": match.item.idle_minutes,
                    }
                    for match in matches[:3]
                ],
            },
            recommended_actions=[
                "Assign the nearest idle crew to this job.",
                "Check if the crew can assist with current risk.",
            ],
            deep_links=build_job_deep_links(job, nearest.item, nearest.coords),
            created_at=idx.now,
        )))
    return signals


def idle_too_long_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    threshold = idx.thresholds.idle_threshold_minutes
    for crew in idx.data.crews:
        if not crew.active or crew.state != CrewState.idle:
            continue
        idle_minutes = crew.idle_minutes or 0
        if idle_minutes < threshold:
            continue

        severity = SignalSeverity.warning if idle_minutes >= threshold * 2 else SignalSeverity.info
        signals.append(build_signal_candidate(SignalDraft(
            id=f"idle_too_long:crew:{crew.id}",
            severity=severity,
            entity_type=SignalEntityType.crew,
            entity_id=crew.id,
            headline=f"Crew idle too long: {crew.name}",
            reason=f"Idle for {format_minutes(idle_minutes)} with no active assignment.",
            evidence={
                "idleMinutes": idle_minutes,
                "idleThresholdMinutes": threshold,
                "state": crew.state.value,
                "nextJobId": crew.next_job_id,
            },
            recommended_actions=[
                "Assign the crew to the next priority job.",
                "Confirm availability and update shift status if needed.",
            ],
            deep_links=idx.crew_links(crew, idx.next_job(crew)),
            created_at=idx.now - timedelta(minutes=max(0, idle_minutes - threshold)),
        )))
    return signals


def en_route_delay_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    delay = idx.thresholds.en_route_delay_minutes
    for crew in idx.data.crews:
        if not crew.active or crew.state != CrewState.en_route:
            continue
        next_job_start = to_date(crew.next_job_start)
        if next_job_start is None:
            continue
        minutes_past_start = minutes_between(next_job_start, idx.now)
        if minutes_past_start < delay:
            continue

        location_hint = f" Last known location: {crew.location.address}." if crew.location.address else ""
        signals.append(build_signal_candidate(SignalDraft(
            id=f"en_route_delay:crew:{crew.id}",
            severity=SignalSeverity.warning,
            entity_type=SignalEntityType.crew,
            entity_id=crew.id,
            headline=f"Crew en route too long: {crew.name}",
            reason=f"En route for {format_minutes(minutes_past_start)} past scheduled start.{location_hint}",
            evidence={
                "nextJobId": crew.next_job_id,
                "nextJobStart": to_iso(next_job_start),
                "minutesPastStart": minutes_past_start,
                "enRouteDelayMinutes": delay,
                "lastLocation": crew.location.model_dump(mode="json", by_alias=True),
            },
            recommended_actions=[
                "Check crew location and ETA.",
                "Update the job start or reassign if the delay continues.",
            ],
            deep_links=idx.crew_links(crew, idx.next_job(crew)),
            created_at=add_minutes(next_job_start, delay),
        )))
    return signals


def stale_location_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    threshold = idx.thresholds.stale_location_minutes
    for crew in idx.data.crews:
        if not crew.active or crew.state == CrewState.off_shift:
            continue
        last_assignment = idx.last_assignment_by_crew_id.get(crew.id)
        last_location_at = last_assignment.scheduled_end if last_assignment else None

        # Never reported and reported long ago share one signal id
        if last_location_at is None and crew.location.source == LocationSource.none:
            signals.append(build_signal_candidate(SignalDraft(
                id=f"stale_location:crew:{crew.id}",
                severity=SignalSeverity.warning,
                entity_type=SignalEntityType.crew,
                entity_id=crew.id,
                headline=f"Stale location for {crew.name}",
                reason="No recent location updates are available.",
                evidence={
                    "lastLocationAt": None,
                    "locationSource": crew.location.source.value,
                },
                recommended_actions=[
                    "Request a location update from the crew.",
                    "Confirm the crew is checked in.",
                ],
                deep_links=idx.crew_links(crew),
                created_at=idx.now,
            )))
            continue

        if last_location_at is None:
            continue
        minutes_stale = minutes_between(last_location_at, idx.now)
        if minutes_stale < threshold:
            continue

        signals.append(build_signal_candidate(SignalDraft(
            id=f"stale_location:crew:{crew.id}",
            severity=SignalSeverity.critical if minutes_stale >= threshold * 2 else SignalSeverity.warning,
            entity_type=SignalEntityType.crew,
            entity_id=crew.id,
            headline=f"Stale location for {crew.name}",
            reason=f"Last location update was {minutes_stale} minutes ago.",
            evidence={
                "lastLocationAt": to_iso(last_location_at),
                "minutesStale": minutes_stale,
                "locationSource": crew.location.source.value,
            },
            recommended_actions=[
                "Check in with the crew for an update.",
                "Verify travel or job status.",
            ],
            deep_links=idx.crew_links(crew),
            created_at=add_minutes(last_location_at, threshold),
        )))
    return signals


def _assignment_evidence(assignment: SignalAssignment, job: Optional[OperationsMapJob]) -> dict:
    return {
        "assignmentId": assignment.id,
        "jobId": assignment.job_id,
        "jobTitle": job.title if job else None,
        "scheduledStart": to_iso(assignment.scheduled_start),
        "scheduledEnd": to_iso(assignment.scheduled_end),
    }


def schedule_conflict_signals(idx: SnapshotIndex) -> List[SignalCandidate]:
    signals = []
    by_crew_day: Dict[Tuple[str, str], List[SignalAssignment]] = {}
    for assignment in idx.data.assignments:
        if assignment.status in (AssignmentStatus.cancelled, AssignmentStatus.completed):
            continue
        if not assignment.crew_id:
            continue
        key = (assignment.crew_id, assignment.assignment_date.isoformat())
        by_crew_day.setdefault(key, []).append(assignment)

    for (crew_id, day), crew_assignments in by_crew_day.items():
        crew = idx.crew_by_id.get(crew_id)
        if crew is None:
            continue
        assignment_by_id = {assignment.id: assignment for assignment in crew_assignments}
        for assignment_id, conflict_ids in detect_overlaps(crew_assignments).items():
            base = assignment_by_id[assignment_id]
            for conflict_id in conflict_ids:
                # Each unordered pair is reported once
                if assignment_id > conflict_id:
                    continue
                conflict = assignment_by_id[conflict_id]
                job_a = idx.job_by_id.get(base.job_id)
                job_b = idx.job_by_id.get(conflict.job_id)
                overlap = overlap_minutes(base, conflict)
                pair_key = ":".join(sorted((assignment_id, conflict_id)))
                title_a = job_a.title if job_a else "Assignment"
                title_b = job_b.title if job_b else "another job"

                signals.append(build_signal_candidate(SignalDraft(
                    id=f"schedule_conflict:crew:{crew_id}:{pair_key}",
                    severity=SignalSeverity.warning,
                    entity_type=SignalEntityType.crew,
                    entity_id=crew_id,
                    headline=f"Schedule conflict for {crew.name}",
                    reason=f"{title_a} overlaps {title_b} by {overlap} minutes ({day}).",
                    evidence={
                        "day": day,
                        "overlapMinutes": overlap,
                        "assignments": [
                            _assignment_evidence(base, job_a),
                            _assignment_evidence(conflict, job_b),
                        ],
                    },
                    recommended_actions=[
                        "Reschedule one of the overlapping jobs.",
                        "Split the crew or adjust travel buffers.",
                    ],
                    deep_links=idx.crew_links(crew, job_a or job_b),
                    created_at=max(base.scheduled_start, conflict.scheduled_start),
                )))
    return signals


RULES: Tuple[Callable[[SnapshotIndex], List[SignalCandidate]], ...] = (
    scheduled_unassigned_signals,
    crew_swap_signals,
    late_risk_signals,
    no_progress_signals,
    time_risk_signals,
    no_materials_signals,
    margin_risk_signals,
    completed_unpaid_signals,
    idle_crew_nearby_signals,
    idle_too_long_signals,
    en_route_delay_signals,
    stale_location_signals,
    schedule_conflict_signals,
)


def sort_signals(signals: List[SignalCandidate]) -> List[SignalCandidate]:
    """Severity descending, then most recently detected first; ties keep input order."""
    return sorted(
        signals,
        key=lambda signal: (SEVERITY_WEIGHT[signal.severity], signal.created_at),
        reverse=True,
    )


def build_operations_signals(data: SignalEngineInput) -> List[SignalCandidate]:
    """
    Evaluate every rule against one snapshot.

    Args:
        data: Snapshot, lookups and thresholds as of data.now

    Returns:
        Signals sorted by severity then created_at, both descending
    """
    idx = SnapshotIndex(data)
    signals: List[SignalCandidate] = []
    for rule in RULES:
        signals.extend(rule(idx))
    return sort_signals(signals)
