"""
Work Order models

Lifecycle: draft -> released -> in_progress -> completed (also cancelled)

Released and in-progress work orders are both a scheduled receipt of the
product they build and a dependent demand on their materials.
"""
from sqlalchemy import Column, Integer, String, DateTime, Date, Text, Numeric, ForeignKey, func
from sqlalchemy.orm import relationship

from app.db.base import Base


class WorkOrder(Base):
    """Manufacturing order for a make item"""
    __tablename__ = "work_orders"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    order_number = Column(String(50), nullable=False, index=True)  # WO-2025-0001

    # References
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)
    bom_id = Column(Integer, ForeignKey('boms.id'), nullable=True)
    warehouse_id = Column(Integer, ForeignKey('warehouses.id'), nullable=True, index=True)

    # Quantities
    quantity_ordered = Column(Numeric(18, 4), nullable=False)
    quantity_completed = Column(Numeric(18, 4), default=0, nullable=False)
    quantity_scrapped = Column(Numeric(18, 4), default=0, nullable=False)

    status = Column(String(30), default='draft', nullable=False, index=True)
    priority = Column(String(20), default='normal', nullable=False)

    # Scheduling
    planned_start_date = Column(Date, nullable=True)
    planned_end_date = Column(Date, nullable=True)

    notes = Column(Text, nullable=True)

    # Audit
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    # Relationships
    product = relationship("Product")
    bom = relationship("BOM")
    warehouse = relationship("Warehouse")
    materials = relationship("WorkOrderMaterial", back_populates="work_order", cascade="all, delete-orphan")

    @property
    def quantity_remaining(self):
        return (self.quantity_ordered or 0) - (self.quantity_completed or 0) - (self.quantity_scrapped or 0)

    def __repr__(self):
        return f"<WorkOrder {self.order_number} ({self.status})>"


class WorkOrderMaterial(Base):
    """Material reserved for / consumed by a work order"""
    __tablename__ = "work_order_materials"

    id = Column(Integer, primary_key=True, index=True)
    work_order_id = Column(Integer, ForeignKey('work_orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)

    quantity_required = Column(Numeric(18, 4), nullable=False)
    quantity_issued = Column(Numeric(18, 4), default=0, nullable=False)

    # Relationships
    work_order = relationship("WorkOrder", back_populates="materials")
    product = relationship("Product")

    def __repr__(self):
        return f"<WorkOrderMaterial wo={self.work_order_id} product={self.product_id}>"
