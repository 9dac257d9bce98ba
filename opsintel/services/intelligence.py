"""
Operations intelligence payload.
Wraps the signal engine output with filters, per-entity health, supporting
entities and a scoreboard for the operations dashboard.
"""
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

import structlog
from pydantic import BaseModel, Field

from ..schemas.operations import (
    CrewRiskState,
    HealthStatus,
    JobHealth,
    OperationsIntelligenceEntities,
    OperationsIntelligencePayload,
    OperationsIntelligenceScoreboard,
    OperationsMapCrew,
    OperationsMapJob,
    SignalCandidate,
    SignalEngineInput,
    SignalEntityType,
    SignalSeverity,
)
from .schedule_conflicts import summarize_crew_capacity
from .signal_engine import build_operations_signals

logger = structlog.get_logger(__name__)

JOB_LINK_PREFIX = "/jobs/"
CREW_LINK_PREFIX = "/crews/"


class SignalFilters(BaseModel):
    severity: List[SignalSeverity] = Field(default_factory=list)
    crew_id: Optional[str] = None
    job_id: Optional[str] = None
    time_window_minutes: Optional[float] = None

    @classmethod
    def from_query(
        cls,
        severity: Optional[str] = None,
        crew_id: Optional[str] = None,
        job_id: Optional[str] = None,
        time_window_minutes: Optional[float] = None,
    ) -> "SignalFilters":
        """
        Build filters from raw query values.

        Raises:
            ValueError: severity names a value other than info/warning/critical
        """
        return cls(
            severity=parse_severity_list(severity),
            crew_id=(crew_id or "").strip() or None,
            job_id=(job_id or "").strip() or None,
            time_window_minutes=time_window_minutes,
        )


def parse_severity_list(raw: Optional[str]) -> List[SignalSeverity]:
    if not raw:
        return []
    values = [value.strip() for value in raw.split(",") if value.strip()]
    invalid = [value for value in values if value not in SignalSeverity.__members__]
    if invalid:
        raise ValueError(f"Unknown severity: {', '.join(invalid)}")
    return [SignalSeverity(value) for value in values]


def filter_signals(
    signals: Iterable[SignalCandidate],
    filters: SignalFilters,
    now: datetime,
) -> List[SignalCandidate]:
    """Apply dashboard filters; order is preserved."""
    cutoff = None
    if filters.time_window_minutes and filters.time_window_minutes > 0:
        cutoff = now - timedelta(minutes=filters.time_window_minutes)

    filtered = []
    for signal in signals:
        if filters.severity and signal.severity not in filters.severity:
            continue
        if filters.crew_id and not (
            signal.entity_type == SignalEntityType.crew and signal.entity_id == filters.crew_id
        ):
            continue
        if filters.job_id and not (
            signal.entity_type == SignalEntityType.job and signal.entity_id == filters.job_id
        ):
            continue
        if cutoff is not None and signal.created_at < cutoff:
            continue
        filtered.append(signal)
    return filtered


def _health_by_entity(
    signals: Iterable[SignalCandidate],
    entity_type: SignalEntityType,
) -> Dict[str, Dict]:
    health: Dict[str, Dict] = {}
    for signal in signals:
        if signal.entity_type != entity_type:
            continue
        entry = health.setdefault(
            signal.entity_id,
            {"critical": False, "warning": False, "reasons": []},
        )
        if signal.severity == SignalSeverity.critical:
            entry["critical"] = True
        elif signal.severity == SignalSeverity.warning:
            entry["warning"] = True
        if signal.headline not in entry["reasons"]:
            entry["reasons"].append(signal.headline)
    return health


def summarize_entity_health(
    signals: Iterable[SignalCandidate],
    entity_ids: Iterable[str],
    entity_type: SignalEntityType,
) -> List[Dict]:
    """
    Roll signals up to one status per entity.

    at_risk if any critical signal, watch if any warning, else healthy.
    Reasons are the distinct headlines in signal order.
    """
    health = _health_by_entity(signals, entity_type)
    summaries = []
    for entity_id in entity_ids:
        entry = health.get(entity_id)
        if entry is None:
            status = HealthStatus.healthy
        elif entry["critical"]:
            status = HealthStatus.at_risk
        elif entry["warning"]:
            status = HealthStatus.watch
        else:
            status = HealthStatus.healthy
        summaries.append({
            "entity_id": entity_id,
            "status": status,
            "reasons": list(entry["reasons"]) if entry else [],
        })
    return summaries


def _id_from_href(href: str, prefix: str) -> Optional[str]:
    if not href.startswith(prefix):
        return None
    entity_id = href[len(prefix):].split("/")[0]
    return entity_id or None


def supporting_entities(
    signals: Iterable[SignalCandidate],
    jobs: List[OperationsMapJob],
    crews: List[OperationsMapCrew],
) -> OperationsIntelligenceEntities:
    """Jobs and crews a signal is about or links to."""
    job_ids: Set[str] = set()
    crew_ids: Set[str] = set()
    for signal in signals:
        if signal.entity_type == SignalEntityType.job:
            job_ids.add(signal.entity_id)
        elif signal.entity_type == SignalEntityType.crew:
            crew_ids.add(signal.entity_id)
        for link in signal.deep_links:
            job_id = _id_from_href(link.href, JOB_LINK_PREFIX)
            if job_id:
                job_ids.add(job_id)
            crew_id = _id_from_href(link.href, CREW_LINK_PREFIX)
            if crew_id:
                crew_ids.add(crew_id)

    return OperationsIntelligenceEntities(
        jobs=[job for job in jobs if job.id in job_ids],
        crews=[crew for crew in crews if crew.id in crew_ids],
    )


def build_scoreboard(
    jobs: List[OperationsMapJob],
    crews: List[OperationsMapCrew],
    signals: List[SignalCandidate],
    idle_threshold_minutes: float,
) -> OperationsIntelligenceScoreboard:
    return OperationsIntelligenceScoreboard(
        at_risk_jobs=sum(1 for job in jobs if job.risk.at_risk),
        idle_crews=sum(
            1 for crew in crews
            if crew.idle_minutes is not None and crew.idle_minutes >= idle_threshold_minutes
        ),
        open_critical_signals=sum(1 for s in signals if s.severity == SignalSeverity.critical),
        # Acknowledgements are not tracked here
        avg_time_to_ack_minutes=None,
    )


def build_intelligence_payload(
    snapshot: SignalEngineInput,
    filters: Optional[SignalFilters] = None,
    org_id: Optional[str] = None,
) -> OperationsIntelligencePayload:
    """
    Evaluate the snapshot and assemble the dashboard payload.

    Health, crew risk, crew capacity and the scoreboard ignore the filters;
    the returned signal list and supporting entities honour them.
    """
    filters = filters or SignalFilters()
    signals = build_operations_signals(snapshot)
    filtered = filter_signals(signals, filters, snapshot.now)

    job_health = [
        JobHealth(job_id=entry["entity_id"], status=entry["status"], reasons=entry["reasons"])
        for entry in summarize_entity_health(
            signals, [job.id for job in snapshot.jobs], SignalEntityType.job
        )
    ]
    crew_risks = [
        CrewRiskState(crew_id=entry["entity_id"], status=entry["status"], reasons=entry["reasons"])
        for entry in summarize_entity_health(
            signals, [crew.id for crew in snapshot.crews], SignalEntityType.crew
        )
    ]

    counts = Counter(signal.severity.value for signal in signals)
    logger.info(
        "operations_signals_built",
        org_id=org_id,
        total=len(signals),
        returned=len(filtered),
        critical=counts.get("critical", 0),
        warning=counts.get("warning", 0),
        info=counts.get("info", 0),
    )

    return OperationsIntelligencePayload(
        org_id=org_id,
        generated_at=snapshot.now,
        evaluated_at=snapshot.now,
        signals=filtered,
        job_health=job_health,
        crew_risks=crew_risks,
        entities=supporting_entities(filtered, snapshot.jobs, snapshot.crews),
        crew_capacity=summarize_crew_capacity(snapshot.assignments),
        scoreboard=build_scoreboard(
            snapshot.jobs, snapshot.crews, signals, snapshot.thresholds.idle_threshold_minutes
        ),
        thresholds=snapshot.thresholds,
    )
