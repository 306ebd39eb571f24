"""
Working Calendar

Answers "is this a working day" and "how many hours" for a company:
1. A CompanyCalendar row for the exact date wins (holiday, shutdown, extra shift)
2. Otherwise the company's working weekdays (CompanySettings.mrp_working_days)
3. Otherwise the MRP_WORKING_DAYS default (Mon-Fri)

Lookups are memoised per instance; build one calendar per run.
"""
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.settings import get_settings
from app.logging_config import get_logger
from app.models import CompanyCalendar, CompanySettings

logger = get_logger(__name__)

# Upper bound on consecutive non-working days before we give up
MAX_NON_WORKING_STREAK = 366


class WorkingCalendar:
    def __init__(self, db: Session, company_id: int):
        self.db = db
        self.company_id = company_id
        self._overrides: Dict[date, Optional[CompanyCalendar]] = {}
        self._company_settings_loaded = False
        self._working_days: Optional[List[int]] = None
        self._default_hours: Optional[float] = None

    # ========================================================================
    # Lookups
    # ========================================================================

    def get_override(self, day: date) -> Optional[CompanyCalendar]:
        if day not in self._overrides:
            self._overrides[day] = self.db.query(CompanyCalendar).filter(
                CompanyCalendar.company_id == self.company_id,
                CompanyCalendar.calendar_date == day,
            ).first()
        return self._overrides[day]

    @property
    def working_days(self) -> List[int]:
        self._load_company_settings()
        return self._working_days

    @property
    def default_working_hours(self) -> float:
        self._load_company_settings()
        return self._default_hours

    def is_working_day(self, day: date) -> bool:
        override = self.get_override(day)
        if override is not None:
            return override.is_working_day
        return day.weekday() in self.working_days

    def get_working_hours(self, day: date) -> float:
        override = self.get_override(day)
        if override is not None:
            hours = override.effective_working_hours
            if hours is not None:
                return hours
        return self.default_working_hours

    # ========================================================================
    # Date arithmetic
    # ========================================================================

    def next_working_day(self, day: date) -> date:
        """The given day if it is a working day, else the first working day after it."""
        current = day
        for _ in range(MAX_NON_WORKING_STREAK):
            if self.is_working_day(current):
                return current
            current += timedelta(days=1)
        logger.warning(
            f"No working day found within {MAX_NON_WORKING_STREAK} days of {day}",
            extra={"company_id": self.company_id, "date": day.isoformat()}
        )
        return day

    def subtract_working_days(self, day: date, working_days: int) -> date:
        """
        Step backwards from day until working_days working days have been counted.

        The start day itself is not counted, so 5 working days back from a
        Friday is the previous Friday.
        """
        if not working_days or working_days <= 0:
            return day

        current = day
        remaining = working_days
        streak = 0
        while remaining > 0:
            current -= timedelta(days=1)
            if self.is_working_day(current):
                remaining -= 1
                streak = 0
            else:
                streak += 1
                if streak >= MAX_NON_WORKING_STREAK:
                    logger.warning(
                        f"No working days found before {current}; falling back to calendar days",
                        extra={"company_id": self.company_id, "date": day.isoformat()}
                    )
                    return day - timedelta(days=working_days)
        return current

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def _load_company_settings(self) -> None:
        if self._company_settings_loaded:
            return
        settings = get_settings()
        row = self.db.query(CompanySettings).filter(
            CompanySettings.company_id == self.company_id
        ).first()

        working_days = row.mrp_working_days if row is not None else None
        if isinstance(working_days, list) and working_days:
            self._working_days = [int(d) for d in working_days]
        else:
            self._working_days = list(settings.MRP_WORKING_DAYS)

        if row is not None and row.mrp_default_working_hours is not None:
            self._default_hours = float(row.mrp_default_working_hours)
        else:
            self._default_hours = float(settings.MRP_DEFAULT_WORKING_HOURS)

        self._company_settings_loaded = True
