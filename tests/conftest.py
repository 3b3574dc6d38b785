import pytest

from routeplanner.config.settings import TestingSettings
from routeplanner.core.database import create_db_engine, create_session_factory, init_db
from routeplanner.services.day_route_service import DayRoutePlanner
from routeplanner.utils.date_utils import BusinessCalendar

from fakes import VENDOR, FakeRouteApi


@pytest.fixture
def settings(tmp_path):
    return TestingSettings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'route_sessions.db'}",
        LOG_FILE=str(tmp_path / "logs" / "test.log"),
        VENDOR_LABELS={VENDOR: "Ana Ruiz"},
    )


@pytest.fixture
def session_factory(settings):
    engine = create_db_engine(settings.DATABASE_URL)
    init_db(bind=engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def calendar():
    return BusinessCalendar()


@pytest.fixture
def fake_api():
    return FakeRouteApi()


@pytest.fixture
def planner(fake_api, calendar, session_factory, settings):
    return DayRoutePlanner(VENDOR, fake_api, calendar, session_factory, settings)
