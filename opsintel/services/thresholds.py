"""
Threshold resolution.
Per-organization overrides win over environment/default settings.
"""
import math
from typing import Any, Dict, Optional

from pydantic.alias_generators import to_camel

from ..config import Settings, settings as default_settings
from ..schemas.operations import OperationsIntelligenceThresholds

# Org settings keys that differ from the threshold name
ORG_SETTING_KEYS = {
    "en_route_delay_minutes": ("defaultTravelBufferMinutes", "default_travel_buffer_minutes"),
}


def parse_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _org_value(org_settings: Dict[str, Any], name: str) -> Optional[float]:
    camel = to_camel(name)
    keys = (name, camel) + ORG_SETTING_KEYS.get(name, ())
    for key in keys:
        parsed = parse_number(org_settings.get(key))
        if parsed is not None and parsed >= 0:
            return parsed
    return None


def _settings_value(settings: Settings, name: str) -> float:
    # Negative configured values fall back to the shipped default
    parsed = parse_number(getattr(settings, name))
    if parsed is None or parsed < 0:
        return Settings.model_fields[name].default
    return parsed


def resolve_thresholds(
    org_settings: Optional[Dict[str, Any]] = None,
    settings: Optional[Settings] = None,
) -> OperationsIntelligenceThresholds:
    """
    Resolve every threshold: a non-negative org override, else the configured value.
    """
    settings = settings or default_settings
    org_settings = org_settings or {}
    values = {}
    for name in OperationsIntelligenceThresholds.model_fields:
        override = _org_value(org_settings, name)
        values[name] = override if override is not None else _settings_value(settings, name)
    return OperationsIntelligenceThresholds(**values)
