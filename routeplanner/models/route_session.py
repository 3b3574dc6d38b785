"""
Locally persisted route session, one row per vendor and business date.
"""
from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from routeplanner.core.database import Base


class RouteSessionRecord(Base):
    __tablename__ = "route_sessions"
    __table_args__ = (
        UniqueConstraint("vendor", "business_date", name="uq_route_session_vendor_date"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    vendor = Column(String(255), nullable=False, index=True)
    business_date = Column(Date, nullable=False)
    selected_day = Column(String(20), nullable=False)

    # "HH:MM" in the business timezone
    start_time = Column(String(5), nullable=True)
    finished = Column(Boolean, default=False, nullable=False)
    finished_at = Column(String(5), nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }

    def __repr__(self):
        return f"<RouteSessionRecord(vendor={self.vendor}, date={self.business_date}, finished={self.finished})>"
