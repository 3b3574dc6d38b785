# routeplanner/core/database.py
"""
Database configuration and session management for the local route-session store
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
import logging

from routeplanner.config.settings import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# Create base class for models
Base = declarative_base()


def create_db_engine(database_url: str, echo: bool = False):
    """Build an engine; SQLite connections are shared with the threadpool"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Create database engine
engine = create_db_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Create session factory
SessionLocal = create_session_factory(engine)


def init_db(bind=None):
    """Create the route-session tables if they do not exist"""
    # Import models so they register with the metadata
    from routeplanner.models import route_session  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Route session tables ready")
