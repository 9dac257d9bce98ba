"""
Tests for logging setup and the service context processor.
"""
from opsintel.config import settings
from opsintel.logging import add_service_context


class TestServiceContext:
    def test_adds_service_and_environment(self):
        event = add_service_context(None, "info", {"event": "operations_signals_built"})
        assert event == {
            "event": "operations_signals_built",
            "service": settings.app_name,
            "environment": settings.environment,
        }

    def test_keeps_explicit_values(self):
        event = add_service_context(None, "info", {"event": "x", "environment": "test"})
        assert event["environment"] == "test"

