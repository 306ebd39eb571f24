"""
Inventory models - warehouses and per-warehouse stock levels
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Boolean, func
from sqlalchemy.orm import relationship

from app.db.base import Base


class Warehouse(Base):
    """Stock-holding location"""
    __tablename__ = "warehouses"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    code = Column(String(50), nullable=False)
    name = Column(String(100), nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    stock_levels = relationship("Stock", back_populates="warehouse")

    def __repr__(self):
        return f"<Warehouse {self.code}: {self.name}>"


class Stock(Base):
    """
    Stock level for one product in one warehouse.

    Only rows with quality_status 'available' count toward MRP on-hand.
    """
    __tablename__ = "stocks"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)

    # References
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)
    warehouse_id = Column(Integer, ForeignKey('warehouses.id'), nullable=False, index=True)

    # Quantities (available may go negative after over-issue)
    quantity_on_hand = Column(Numeric(18, 4), default=0, nullable=False)
    quantity_reserved = Column(Numeric(18, 4), default=0, nullable=False)
    quantity_available = Column(Numeric(18, 4), default=0, nullable=False)

    # available, on_hold, quarantine, rejected
    quality_status = Column(String(20), default='available', nullable=False)

    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    product = relationship("Product", back_populates="stock_levels")
    warehouse = relationship("Warehouse", back_populates="stock_levels")

    def __repr__(self):
        return f"<Stock product={self.product_id} warehouse={self.warehouse_id}: {self.quantity_available}>"
