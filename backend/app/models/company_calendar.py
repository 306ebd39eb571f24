"""
Company calendar - per-date overrides of the default working week
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, Numeric, Date, Time, UniqueConstraint

from app.db.base import Base


class CompanyCalendar(Base):
    """
    One row per overridden date.

    day_type: working, holiday, maintenance, shutdown
    A row always wins over the weekday set in CompanySettings.
    """
    __tablename__ = "company_calendars"
    __table_args__ = (
        UniqueConstraint("company_id", "calendar_date", name="uq_company_calendar_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    calendar_date = Column(Date, nullable=False, index=True)
    day_type = Column(String(20), default='working', nullable=False)
    name = Column(String(100), nullable=True)  # "Christmas", "Annual shutdown"

    # Shift definition (working_hours wins when set)
    working_hours = Column(Numeric(5, 2), nullable=True)
    shift_start = Column(Time, nullable=True)
    shift_end = Column(Time, nullable=True)
    break_hours = Column(Numeric(5, 2), default=0)

    @property
    def is_working_day(self) -> bool:
        return self.day_type == "working"

    @property
    def effective_working_hours(self) -> Optional[float]:
        """Explicit hours, else shift length minus breaks, else None (company default applies)"""
        if self.working_hours is not None:
            return float(self.working_hours)
        if self.shift_start and self.shift_end:
            start = datetime.combine(self.calendar_date, self.shift_start)
            end = datetime.combine(self.calendar_date, self.shift_end)
            minutes = abs((end - start).total_seconds()) / 60
            break_minutes = float(self.break_hours or 0) * 60
            return max(0.0, (minutes - break_minutes) / 60)
        return None

    def __repr__(self):
        return f"<CompanyCalendar {self.calendar_date} {self.day_type}>"
