# routeplanner/config/settings.py
from datetime import date
from functools import lru_cache
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application Settings
    APP_NAME: str = "Sales Route Planner"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Spreadsheet-backed API
    BACKEND_API_URL: str = "http://localhost:3000"
    BACKEND_TIMEOUT_SECONDS: float = 15.0

    # Local route session store
    DATABASE_URL: str = "sqlite:///./route_sessions.db"

    # Business calendar
    BUSINESS_TIMEZONE: str = "America/Mazatlan"
    PERIOD_ANCHOR_DATE: date = date(2024, 10, 5)
    FIRST_PERIOD_NUMBER: int = 11
    WEEKS_PER_PERIOD: int = 4

    # Route Settings
    DEPOT_LATITUDE: float = 24.74403
    DEPOT_LONGITUDE: float = -107.3749752
    DUAL_CADENCE_CLIENT_TYPE: str = "CLEY"
    DEFAULT_ROUTE_START_TIME: str = "08:00"
    OBSERVATIONS_MAX_LENGTH: int = 500

    # Route cost defaults, overridable from the remote configuration sheet
    DISTANCE_PER_VISIT_KM: float = 2.5
    FUEL_COST_PER_KM: float = 1.2
    AVG_VISIT_MINUTES: int = 15
    MAX_CLIENTS_PER_DAY: int = 20

    # Vendor email -> label used in performance records
    VENDOR_LABELS: Dict[str, str] = {}

    # CORS Settings
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/routeplanner.log"
    LOG_JSON: bool = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Environment-specific settings
class DevelopmentSettings(Settings):
    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"


class ProductionSettings(Settings):
    DEBUG: bool = False
    LOG_LEVEL: str = "WARNING"
    LOG_JSON: bool = True


class TestingSettings(Settings):
    DATABASE_URL: str = "sqlite:///./test_route_sessions.db"
    BACKEND_API_URL: str = "http://backend.test"
    LOG_FILE: str = "logs/test.log"


def get_settings_by_env(env: str = "development") -> Settings:
    if env == "development":
        return DevelopmentSettings()
    elif env == "production":
        return ProductionSettings()
    elif env == "testing":
        return TestingSettings()
    else:
        return Settings()
