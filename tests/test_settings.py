import logging

from routeplanner.config.logging import build_logging_config, log_backend_call, setup_logging
from routeplanner.config.settings import (
    DevelopmentSettings,
    ProductionSettings,
    Settings,
    TestingSettings,
    get_settings_by_env,
)


def test_settings_by_env():
    assert isinstance(get_settings_by_env("development"), DevelopmentSettings)
    assert isinstance(get_settings_by_env("production"), ProductionSettings)
    assert isinstance(get_settings_by_env("testing"), TestingSettings)
    assert type(get_settings_by_env("staging")) is Settings


def test_business_defaults():
    settings = Settings()
    assert settings.BUSINESS_TIMEZONE == "America/Mazatlan"
    assert (settings.DEPOT_LATITUDE, settings.DEPOT_LONGITUDE) == (24.74403, -107.3749752)
    assert settings.DUAL_CADENCE_CLIENT_TYPE == "CLEY"
    assert settings.FIRST_PERIOD_NUMBER == 11


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("DEPOT_LATITUDE", "25.1")
    monkeypatch.setenv("VENDOR_LABELS", '{"ana@example.com": "Ana Ruiz"}')
    settings = Settings()
    assert settings.DEPOT_LATITUDE == 25.1
    assert settings.VENDOR_LABELS == {"ana@example.com": "Ana Ruiz"}


def test_production_logs_json_to_file():
    config = build_logging_config(ProductionSettings())
    assert config["handlers"]["file"]["formatter"] == "json"
    assert config["handlers"]["console"]["formatter"] == "standard"


def test_setup_logging_writes_backend_calls_to_file(tmp_path):
    log_file = tmp_path / "logs" / "routeplanner.log"
    setup_logging(TestingSettings(LOG_FILE=str(log_file)))

    log_backend_call("fetch_clientes", "ana@example.com", 0.25, ok=False)
    for handler in logging.getLogger("routeplanner.backend").handlers:
        handler.flush()

    assert "fetch_clientes for ana@example.com failed" in log_file.read_text()
