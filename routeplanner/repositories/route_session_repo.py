from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from routeplanner.models.route_session import RouteSessionRecord
from .base import CRUDBase


class RouteSessionRepository(CRUDBase[RouteSessionRecord]):
    def __init__(self):
        super().__init__(RouteSessionRecord)

    def get_for_day(self, db: Session, vendor: str, business_date: date) -> Optional[RouteSessionRecord]:
        """Session record for a vendor on a business date"""
        return self.get_by_fields(db, vendor=vendor, business_date=business_date)

    def save(self, db: Session, vendor: str, business_date: date, values: Dict[str, Any]) -> RouteSessionRecord:
        """Insert or update the record keyed by vendor and business date"""
        existing = self.get_for_day(db, vendor, business_date)
        if existing is not None:
            return self.update(db, db_obj=existing, obj_in=values)
        return self.create(db, obj_in={"vendor": vendor, "business_date": business_date, **values})

    def delete_for_day(self, db: Session, vendor: str, business_date: date) -> bool:
        existing = self.get_for_day(db, vendor, business_date)
        if existing is None:
            return False
        self.remove(db, db_obj=existing)
        return True


route_session_repository = RouteSessionRepository()
