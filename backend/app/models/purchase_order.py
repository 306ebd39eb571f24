"""
Purchase Order models

Open PO lines are scheduled receipts for MRP; approved buy recommendations
create new draft purchase orders.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Numeric, ForeignKey, Date, func
from sqlalchemy.orm import relationship

from app.db.base import Base


class PurchaseOrder(Base):
    """Purchase Order header model"""
    __tablename__ = "purchase_orders"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)

    # PO Number - auto-generated (PO-2025-0001)
    order_number = Column(String(50), nullable=False, index=True)

    # Supplier is optional on MRP-generated drafts
    supplier_id = Column(Integer, ForeignKey('suppliers.id'), nullable=True)
    warehouse_id = Column(Integer, ForeignKey('warehouses.id'), nullable=True, index=True)

    # Status workflow: draft -> pending_approval -> approved -> sent -> partially_received
    #                  -> received -> closed (also cancelled)
    status = Column(String(50), default="draft", nullable=False, index=True)

    # Dates
    order_date = Column(Date, nullable=True)
    expected_delivery_date = Column(Date, nullable=True)

    # Financials
    subtotal = Column(Numeric(18, 4), default=0, nullable=False)
    total_amount = Column(Numeric(18, 4), default=0, nullable=False)

    notes = Column(Text, nullable=True)

    # Audit
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    # Relationships
    supplier = relationship("Supplier")
    warehouse = relationship("Warehouse")
    items = relationship("PurchaseOrderItem", back_populates="purchase_order", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<PurchaseOrder {self.order_number} ({self.status})>"


class PurchaseOrderItem(Base):
    """Purchase Order line item"""
    __tablename__ = "purchase_order_items"

    id = Column(Integer, primary_key=True, index=True)
    purchase_order_id = Column(Integer, ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)

    line_number = Column(Integer, default=1, nullable=False)
    quantity_ordered = Column(Numeric(18, 4), nullable=False)
    quantity_received = Column(Numeric(18, 4), default=0, nullable=False)
    unit_price = Column(Numeric(18, 4), default=0, nullable=False)
    line_total = Column(Numeric(18, 4), default=0, nullable=False)

    notes = Column(Text, nullable=True)

    # Relationships
    purchase_order = relationship("PurchaseOrder", back_populates="items")
    product = relationship("Product")

    @property
    def quantity_open(self):
        return (self.quantity_ordered or 0) - (self.quantity_received or 0)

    def __repr__(self):
        return f"<PurchaseOrderItem po={self.purchase_order_id} product={self.product_id}>"
