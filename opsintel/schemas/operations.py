from datetime import date, datetime
from typing import List, Optional, Dict, Any
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..services.schedule_time import assignment_to_date_range, ensure_utc


# Enums
class SignalSeverity(str, Enum):
    info = "info"
    warning = "warning"
    critical = "critical"


SEVERITY_WEIGHT = {
    SignalSeverity.critical: 3,
    SignalSeverity.warning: 2,
    SignalSeverity.info: 1,
}


class SignalEntityType(str, Enum):
    job = "job"
    crew = "crew"


class SignalType(str, Enum):
    job = "job"
    crew = "crew"
    system = "system"


class JobStatus(str, Enum):
    unassigned = "unassigned"
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"


class ProgressStatus(str, Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    half_complete = "half_complete"
    completed = "completed"


class ScheduleState(str, Enum):
    scheduled_assigned = "scheduled_assigned"
    scheduled_unassigned = "scheduled_unassigned"


class CrewState(str, Enum):
    idle = "idle"
    en_route = "en_route"
    on_job = "on_job"
    off_shift = "off_shift"


class LocationSource(str, Enum):
    last_job = "last_job"
    gps = "gps"
    manual = "manual"
    none = "none"


class AssignmentStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class ProfitabilityStatus(str, Enum):
    healthy = "healthy"
    warning = "warning"
    critical = "critical"


class HealthStatus(str, Enum):
    healthy = "healthy"
    watch = "watch"
    at_risk = "at_risk"


class CapacityStatus(str, Enum):
    normal = "normal"
    warning = "warning"
    over = "over"


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


def _utc_or_none(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


# Snapshot entities
class JobCrewRef(CamelModel):
    id: str
    name: str


class JobRisk(CamelModel):
    late: bool = False
    blocked: bool = False
    idle_risk: bool = False
    at_risk: bool = False
    reasons: List[str] = Field(default_factory=list)


class OperationsMapJob(CamelModel):
    id: str
    title: str
    status: JobStatus
    progress_status: ProgressStatus = ProgressStatus.not_started
    schedule_state: Optional[ScheduleState] = None
    scheduled_start: Optional[str] = None
    scheduled_end: Optional[str] = None
    address: str = ""
    short_address: str = "No site address"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    crew: List[JobCrewRef] = Field(default_factory=list)
    risk: JobRisk = Field(default_factory=JobRisk)

    @property
    def is_completed(self) -> bool:
        return self.status == JobStatus.completed or self.progress_status == ProgressStatus.completed

    @property
    def is_in_progress(self) -> bool:
        return self.status == JobStatus.in_progress or self.progress_status in (
            ProgressStatus.in_progress,
            ProgressStatus.half_complete,
        )


class CrewLocation(CamelModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None
    source: LocationSource = LocationSource.none
    job_id: Optional[str] = None


class OperationsMapCrew(CamelModel):
    id: str
    name: str
    role: Optional[str] = None
    active: bool = True
    state: CrewState
    idle_minutes: Optional[int] = None
    idle_risk: bool = False
    location: CrewLocation = Field(default_factory=CrewLocation)
    current_job_id: Optional[str] = None
    next_job_id: Optional[str] = None
    next_job_start: Optional[str] = None


class SignalAssignment(CamelModel):
    id: str
    job_id: str
    crew_id: Optional[str] = None
    assignment_date: date = Field(alias="date")
    start_minutes: int
    end_minutes: int
    status: AssignmentStatus = AssignmentStatus.scheduled
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None

    @field_validator("scheduled_start", "scheduled_end", mode="after")
    @classmethod
    def as_utc(cls, v):
        return _utc_or_none(v)

    @model_validator(mode="after")
    def resolve_range(self):
        # Callers may send raw schedule rows; derive absolute times from the offsets
        if self.scheduled_start is None or self.scheduled_end is None:
            start, end = assignment_to_date_range(
                self.assignment_date, self.start_minutes, self.end_minutes
            )
            if self.scheduled_start is None:
                self.scheduled_start = start
            if self.scheduled_end is None:
                self.scheduled_end = end
        return self


class CrewSwapEvent(CamelModel):
    event_id: str
    assignment_id: str
    job_id: str
    previous_crew_id: str
    next_crew_id: str
    changed_at: datetime

    @field_validator("changed_at", mode="after")
    @classmethod
    def as_utc(cls, v):
        return ensure_utc(v)


class ScheduleAuditRow(CamelModel):
    """A schedule audit log entry carrying the assignment before/after an edit."""
    id: str
    entity_id: str
    entity_type: str = "schedule"
    action: str = "ASSIGN"
    created_at: datetime
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None

    @field_validator("created_at", mode="after")
    @classmethod
    def as_utc(cls, v):
        return ensure_utc(v)


class JobFinancialSnapshot(CamelModel):
    profitability_status: ProfitabilityStatus = ProfitabilityStatus.healthy
    target_margin_percent: Optional[float] = None
    estimated_revenue_cents: Optional[float] = None
    estimated_cost_cents: Optional[float] = None


class JobInvoiceSnapshot(CamelModel):
    """
    Latest invoice for a job.

    outstanding_cents defaults to total less paid. is_overdue is left unset
    unless the caller knows better; use overdue_at() to evaluate it.
    """
    invoice_id: str
    status: str
    total_cents: int = 0
    paid_cents: int = 0
    outstanding_cents: Optional[int] = None
    currency: str = "AUD"
    issued_at: Optional[datetime] = None
    due_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    is_overdue: Optional[bool] = None

    @field_validator("issued_at", "due_at", "paid_at", mode="after")
    @classmethod
    def as_utc(cls, v):
        return _utc_or_none(v)

    @model_validator(mode="after")
    def derive_outstanding(self):
        if self.outstanding_cents is None:
            self.outstanding_cents = max(0, self.total_cents - self.paid_cents)
        return self

    def overdue_at(self, now: datetime) -> bool:
        if self.is_overdue is not None:
            return self.is_overdue
        if self.due_at is None or self.outstanding_cents <= 0:
            return False
        if (self.status or "").lower() in ("void", "paid"):
            return False
        return self.due_at < ensure_utc(now)


class OperationsIntelligenceThresholds(CamelModel):
    late_risk_minutes: float
    idle_threshold_minutes: float
    stale_location_minutes: float
    risk_radius_km: float
    no_progress_minutes: float
    no_materials_minutes: float
    en_route_delay_minutes: float
    hours_overage_multiplier: float
    time_risk_critical_multiplier: float
    default_job_duration_minutes: float
    margin_warning_percent: float
    margin_critical_percent: float
    unassigned_warning_days: float
    crew_swap_window_minutes: float


class OperationsSnapshot(CamelModel):
    """Tenant-scoped operational state collected as of one instant."""
    jobs: List[OperationsMapJob] = Field(default_factory=list)
    crews: List[OperationsMapCrew] = Field(default_factory=list)
    assignments: List[SignalAssignment] = Field(default_factory=list)
    crew_swap_events: List[CrewSwapEvent] = Field(default_factory=list)
    last_activity_by_job_id: Dict[str, Optional[datetime]] = Field(default_factory=dict)
    job_updated_at_by_id: Dict[str, Optional[datetime]] = Field(default_factory=dict)
    usage_by_job_id: Dict[str, int] = Field(default_factory=dict)
    last_hours_log_by_job_id: Dict[str, Optional[datetime]] = Field(default_factory=dict)
    last_materials_log_by_job_id: Dict[str, Optional[datetime]] = Field(default_factory=dict)
    hours_by_job_id: Dict[str, int] = Field(default_factory=dict)
    planned_materials_by_job_id: Dict[str, int] = Field(default_factory=dict)
    job_financials_by_id: Dict[str, JobFinancialSnapshot] = Field(default_factory=dict)
    job_invoice_by_id: Dict[str, JobInvoiceSnapshot] = Field(default_factory=dict)

    @field_validator(
        "last_activity_by_job_id",
        "job_updated_at_by_id",
        "last_hours_log_by_job_id",
        "last_materials_log_by_job_id",
        mode="after",
    )
    @classmethod
    def timestamps_as_utc(cls, v):
        return {key: _utc_or_none(value) for key, value in v.items()}


class SignalEngineInput(OperationsSnapshot):
    now: datetime
    thresholds: OperationsIntelligenceThresholds

    @field_validator("now", mode="after")
    @classmethod
    def as_utc(cls, v):
        return ensure_utc(v)


# Engine output
class SignalDeepLink(CamelModel):
    label: str
    href: str
    external: bool = False


class SignalDraft(CamelModel):
    """Rule output before the shared convenience fields are derived."""
    id: str
    severity: SignalSeverity
    entity_type: SignalEntityType
    entity_id: str
    headline: str
    reason: str
    evidence: Dict[str, Any]
    recommended_actions: List[str]
    deep_links: List[SignalDeepLink]
    created_at: datetime
    type: Optional[SignalType] = None
    title: Optional[str] = None
    description: Optional[str] = None
    detected_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


class SignalCandidate(CamelModel):
    id: str
    type: SignalType
    severity: SignalSeverity
    title: str
    description: str
    entity_type: SignalEntityType
    entity_id: str
    detected_at: datetime
    metadata: Dict[str, Any]
    headline: str
    reason: str
    evidence: Dict[str, Any]
    recommended_actions: List[str]
    deep_links: List[SignalDeepLink]
    created_at: datetime


# Payload envelope
class JobHealth(CamelModel):
    job_id: str
    status: HealthStatus
    reasons: List[str] = Field(default_factory=list)


class CrewRiskState(CamelModel):
    crew_id: str
    status: HealthStatus
    reasons: List[str] = Field(default_factory=list)


class OperationsIntelligenceScoreboard(CamelModel):
    at_risk_jobs: int
    idle_crews: int
    open_critical_signals: int
    avg_time_to_ack_minutes: Optional[float] = None


class CrewDayCapacity(CamelModel):
    crew_id: str
    assignment_date: date = Field(alias="date")
    total_minutes: int
    status: CapacityStatus


class OperationsIntelligenceEntities(CamelModel):
    jobs: List[OperationsMapJob] = Field(default_factory=list)
    crews: List[OperationsMapCrew] = Field(default_factory=list)


class OperationsIntelligencePayload(CamelModel):
    org_id: Optional[str] = None
    generated_at: datetime
    evaluated_at: datetime
    signals: List[SignalCandidate]
    job_health: List[JobHealth]
    crew_risks: List[CrewRiskState]
    entities: OperationsIntelligenceEntities
    crew_capacity: List[CrewDayCapacity] = Field(default_factory=list)
    scoreboard: OperationsIntelligenceScoreboard
    thresholds: OperationsIntelligenceThresholds


class IntelligenceRequest(OperationsSnapshot):
    """
    Request body for the operations intelligence endpoints.

    Thresholds may be sent in full; otherwise org_settings overrides are
    resolved on top of the configured defaults.
    """
    org_id: Optional[str] = None
    now: Optional[datetime] = None
    thresholds: Optional[OperationsIntelligenceThresholds] = None
    org_settings: Optional[Dict[str, Any]] = None
    schedule_audit_rows: List[ScheduleAuditRow] = Field(default_factory=list)

    @field_validator("now", mode="after")
    @classmethod
    def as_utc(cls, v):
        return _utc_or_none(v)
