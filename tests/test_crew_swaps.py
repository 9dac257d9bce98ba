"""
Tests for crew swap extraction from schedule audit rows.
"""
from datetime import timedelta

from opsintel.schemas.operations import ScheduleAuditRow
from opsintel.services.crew_swaps import crew_swaps_from_audit_rows
from tests.fixtures.snapshots import NOW


def audit_row(row_id="log-1", before=None, after=None, **overrides):
    fields = dict(
        id=row_id,
        entity_id="job-1",
        created_at=NOW,
        before={"id": "a-1", "crewId": "crew-1", "jobId": "job-1"} if before is None else before,
        after={"id": "a-1", "crewId": "crew-2", "jobId": "job-1"} if after is None else after,
    )
    fields.update(overrides)
    return ScheduleAuditRow(**fields)


class TestCrewSwapsFromAuditRows:
    def test_crew_change_is_a_swap(self):
        events = crew_swaps_from_audit_rows([audit_row()])
        assert len(events) == 1
        event = events[0]
        assert event.event_id == "log-1"
        assert event.assignment_id == "a-1"
        assert event.job_id == "job-1"
        assert event.previous_crew_id == "crew-1"
        assert event.next_crew_id == "crew-2"
        assert event.changed_at == NOW

    def test_same_crew_is_not_a_swap(self):
        row = audit_row(after={"id": "a-1", "crewId": "crew-1"})
        assert crew_swaps_from_audit_rows([row]) == []

    def test_missing_crew_is_not_a_swap(self):
        row = audit_row(before={"id": "a-1", "crewId": None})
        assert crew_swaps_from_audit_rows([row]) == []

    def test_snake_case_snapshots(self):
        row = audit_row(
            before={"id": "a-1", "crew_id": "crew-1"},
            after={"id": "a-1", "crew_id": "crew-3", "job_id": "job-9"},
        )
        event = crew_swaps_from_audit_rows([row])[0]
        assert event.next_crew_id == "crew-3"
        assert event.job_id == "job-9"

    def test_job_id_falls_back_to_entity(self):
        row = audit_row(
            before={"id": "a-1", "crewId": "crew-1"},
            after={"id": "a-1", "crewId": "crew-2"},
            entity_id="job-7",
        )
        assert crew_swaps_from_audit_rows([row])[0].job_id == "job-7"

    def test_assignment_id_from_before(self):
        row = audit_row(
            before={"id": "a-5", "crewId": "crew-1"},
            after={"crewId": "crew-2"},
        )
        assert crew_swaps_from_audit_rows([row])[0].assignment_id == "a-5"

    def test_other_actions_ignored(self):
        rows = [audit_row(action="UPDATE"), audit_row("log-2", entity_type="job")]
        assert crew_swaps_from_audit_rows(rows) == []

    def test_since_filters_old_rows(self):
        rows = [
            audit_row("old", created_at=NOW - timedelta(days=3)),
            audit_row("new", created_at=NOW - timedelta(hours=1)),
        ]
        events = crew_swaps_from_audit_rows(rows, since=NOW - timedelta(days=1))
        assert [event.event_id for event in events] == ["new"]
