"""
Company Settings Model

Stores per-company settings that affect planning:
- Company name and code
- Working week used by the MRP calendar when no calendar override exists
- Default shift length
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, JSON, func

from app.db.base import Base


class CompanySettings(Base):
    """
    Company-wide settings (one row per company)
    """
    __tablename__ = "company_settings"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, unique=True, index=True)

    # Company Info
    company_name = Column(String(255), nullable=True)

    # MRP Calendar
    # Python weekday numbers (Monday=0 ... Sunday=6); NULL falls back to MRP_WORKING_DAYS
    mrp_working_days = Column(JSON, nullable=True)
    mrp_default_working_hours = Column(Numeric(5, 2), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=False), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=False), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<CompanySettings(company_id={self.company_id}, company_name={self.company_name})>"
