"""
Sales Order Model

Independent demand source for MRP. Only the fields planning reads are modelled.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Date, ForeignKey, func
from sqlalchemy.orm import relationship

from app.db.base import Base


class SalesOrder(Base):
    """Customer order header"""
    __tablename__ = "sales_orders"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    order_number = Column(String(50), nullable=False, index=True)  # SO-2025-001

    # Status workflow: draft -> pending_approval -> approved -> confirmed -> processing
    #                  -> partially_shipped -> shipped -> delivered (also cancelled)
    status = Column(String(30), default="draft", nullable=False, index=True)

    order_date = Column(Date, nullable=False)
    requested_delivery_date = Column(Date, nullable=True)  # Wins over order_date for planning

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    items = relationship("SalesOrderItem", back_populates="sales_order", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<SalesOrder {self.order_number} ({self.status})>"


class SalesOrderItem(Base):
    """Sales order line"""
    __tablename__ = "sales_order_items"

    id = Column(Integer, primary_key=True, index=True)
    sales_order_id = Column(Integer, ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    quantity_ordered = Column(Numeric(18, 4), nullable=False)
    quantity_shipped = Column(Numeric(18, 4), default=0, nullable=False)
    unit_price = Column(Numeric(18, 4), nullable=True)

    sales_order = relationship("SalesOrder", back_populates="items")
    product = relationship("Product")

    def __repr__(self):
        return f"<SalesOrderItem order={self.sales_order_id} product={self.product_id}>"
