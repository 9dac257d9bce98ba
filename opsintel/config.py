from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    # Core
    environment: str = Field(default="dev")
    app_name: str = Field(default="Operations Intelligence API")
    tz_default: str = Field(default="Australia/Sydney", alias="TZ_DEFAULT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Rate limit
    rate_limit: str = Field(default="100/minute")

    # Maps deep links
    maps_search_base_url: str = Field(
        default="https://www.google.com/maps/search/",
        alias="MAPS_SEARCH_BASE_URL",
    )
    maps_directions_base_url: str = Field(
        default="https://www.google.com/maps/dir/",
        alias="MAPS_DIRECTIONS_BASE_URL",
    )

    # Schedule: assignment minute offsets count from the workday start (06:00)
    workday_start_minutes: int = Field(default=6 * 60, alias="WORKDAY_START_MINUTES")

    # Signal thresholds (org settings may override these per request)
    late_risk_minutes: float = Field(default=60, alias="LATE_RISK_MINUTES")
    idle_threshold_minutes: float = Field(default=90, alias="IDLE_THRESHOLD_MINUTES")
    stale_location_minutes: float = Field(default=30, alias="STALE_LOCATION_MINUTES")
    risk_radius_km: float = Field(default=5, alias="RISK_RADIUS_KM")
    no_progress_minutes: float = Field(default=60, alias="NO_PROGRESS_MINUTES")
    no_materials_minutes: float = Field(default=60, alias="NO_MATERIALS_MINUTES")
    en_route_delay_minutes: float = Field(default=30, alias="EN_ROUTE_DELAY_MINUTES")
    hours_overage_multiplier: float = Field(default=1.2, alias="HOURS_OVERAGE_MULTIPLIER")
    time_risk_critical_multiplier: float = Field(default=1.5, alias="TIME_RISK_CRITICAL_MULTIPLIER")
    default_job_duration_minutes: float = Field(default=120, alias="DEFAULT_JOB_DURATION_MINUTES")
    margin_warning_percent: float = Field(default=30, alias="MARGIN_WARNING_PERCENT")
    margin_critical_percent: float = Field(default=20, alias="MARGIN_CRITICAL_PERCENT")
    unassigned_warning_days: float = Field(default=3, alias="UNASSIGNED_WARNING_DAYS")
    crew_swap_window_minutes: float = Field(default=24 * 60, alias="CREW_SWAP_WINDOW_MINUTES")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True


settings = Settings()
