"""
Product model - item master for everything MRP plans (finished goods, sub-assemblies, raw materials)
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Text, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship

from app.db.base import Base


class Product(Base):
    """
    Tenant-scoped item.

    MRP planning attributes:
    - low_level_code: deepest BOM level the item appears at (0 = top level)
    - make_or_buy: 'make' items get work order suggestions, 'buy' items purchase order suggestions
    - safety_stock / lead_time_days / minimum_order_qty / order_multiple / maximum_stock
    """
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("company_id", "sku", name="uq_products_company_sku"),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    sku = Column(String(50), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    unit = Column(String(20), default='EA')
    category_id = Column(Integer, nullable=True, index=True)

    # MRP classification
    make_or_buy = Column(String(10), default='buy', nullable=False)  # 'make' | 'buy'
    low_level_code = Column(Integer, default=0, nullable=False, index=True)

    # Planning policy
    safety_stock = Column(Numeric(18, 4), default=0)  # Buffer kept above zero
    lead_time_days = Column(Integer, default=0)  # Working days to build or receive
    minimum_order_qty = Column(Numeric(18, 4), nullable=True)
    order_multiple = Column(Numeric(18, 4), nullable=True)  # Lot size rounding
    maximum_stock = Column(Numeric(18, 4), nullable=True)  # Optional cap on suggested quantity

    # Costing (fallback price for MRP purchase orders)
    cost_price = Column(Numeric(18, 4), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    # Metadata
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    boms = relationship("BOM", back_populates="product", foreign_keys="BOM.product_id")
    stock_levels = relationship("Stock", back_populates="product")

    @property
    def is_make(self) -> bool:
        return self.make_or_buy == "make"

    def __repr__(self):
        return f"<Product {self.sku}: {self.name}>"
