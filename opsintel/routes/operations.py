"""
Operations intelligence API routes.
Evaluates a posted snapshot and returns ranked signals.
"""
from datetime import datetime, timedelta
from typing import List, Optional

import pytz
import structlog
from fastapi import APIRouter, HTTPException, Query

from ..schemas.operations import (
    IntelligenceRequest,
    OperationsIntelligencePayload,
    OperationsIntelligenceThresholds,
    OperationsSnapshot,
    SignalCandidate,
    SignalEngineInput,
)
from ..services.crew_swaps import crew_swaps_from_audit_rows
from ..services.intelligence import SignalFilters, build_intelligence_payload
from ..services.signal_engine import build_operations_signals
from ..services.thresholds import resolve_thresholds

router = APIRouter(prefix="/operations", tags=["operations"])
logger = structlog.get_logger(__name__)


def build_engine_input(payload: IntelligenceRequest) -> SignalEngineInput:
    """
    Turn a request body into engine input.
    Fills now, resolves thresholds and merges swaps derived from audit rows.
    """
    now = payload.now or datetime.now(pytz.UTC)
    thresholds = payload.thresholds or resolve_thresholds(payload.org_settings)

    swaps = list(payload.crew_swap_events)
    if payload.schedule_audit_rows:
        since = now - timedelta(minutes=thresholds.crew_swap_window_minutes)
        known = {swap.event_id for swap in swaps}
        for swap in crew_swaps_from_audit_rows(payload.schedule_audit_rows, since=since):
            if swap.event_id not in known:
                swaps.append(swap)

    snapshot = {name: getattr(payload, name) for name in OperationsSnapshot.model_fields}
    snapshot["crew_swap_events"] = swaps
    return SignalEngineInput(now=now, thresholds=thresholds, **snapshot)


@router.post("/intelligence", response_model=OperationsIntelligencePayload)
def get_operations_intelligence(
    payload: IntelligenceRequest,
    severity: Optional[str] = Query(None),
    crew_id: Optional[str] = Query(None, alias="crewId"),
    job_id: Optional[str] = Query(None, alias="jobId"),
    time_window_minutes: Optional[float] = Query(None, alias="timeWindowMinutes"),
):
    """
    Signals, job health, crew risk and scoreboard for one snapshot.
    Query filters narrow the signal list only.
    """
    try:
        filters = SignalFilters.from_query(severity, crew_id, job_id, time_window_minutes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        return build_intelligence_payload(build_engine_input(payload), filters, payload.org_id)
    except Exception as e:
        logger.error("operations_intelligence_failed", org_id=payload.org_id, error=str(e))
        raise


@router.post("/signals", response_model=List[SignalCandidate])
def list_operations_signals(payload: IntelligenceRequest):
    """Raw engine output, sorted by severity then detection time."""
    try:
        return build_operations_signals(build_engine_input(payload))
    except Exception as e:
        logger.error("operations_intelligence_failed", org_id=payload.org_id, error=str(e))
        raise


@router.get("/thresholds", response_model=OperationsIntelligenceThresholds)
def get_default_thresholds():
    return resolve_thresholds()
