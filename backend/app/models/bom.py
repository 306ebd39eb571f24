"""
Bill of Materials models
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Text, ForeignKey, func
from sqlalchemy.orm import relationship

from app.db.base import Base


class BOM(Base):
    """
    Bill of Materials header.

    Only BOMs with status 'active' take part in MRP. The default BOM
    (is_default + active) is the one exploded for dependent demand and
    used when a work order is created from a recommendation.
    """
    __tablename__ = "boms"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)

    bom_number = Column(String(50), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    version = Column(String(20), default='1')

    # Status workflow: draft -> active -> obsolete
    status = Column(String(20), default='draft', nullable=False, index=True)
    is_default = Column(Boolean, default=False, nullable=False)

    # Batch size produced by one run of this BOM
    quantity = Column(Numeric(18, 4), default=1, nullable=False)
    unit = Column(String(20), default='EA')

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    product = relationship("Product", back_populates="boms", foreign_keys=[product_id])
    items = relationship(
        "BOMItem",
        back_populates="bom",
        cascade="all, delete-orphan",
        order_by="BOMItem.line_number",
        foreign_keys="BOMItem.bom_id",
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self):
        return f"<BOM {self.bom_number} ({self.status})>"


class BOMItem(Base):
    """Single component line on a BOM"""
    __tablename__ = "bom_items"

    id = Column(Integer, primary_key=True, index=True)
    bom_id = Column(Integer, ForeignKey('boms.id', ondelete='CASCADE'), nullable=False, index=True)
    component_id = Column(Integer, ForeignKey('products.id'), nullable=False, index=True)

    line_number = Column(Integer, default=1, nullable=False)
    quantity = Column(Numeric(18, 4), nullable=False)  # Per BOM batch
    unit = Column(String(20), default='EA')
    scrap_percentage = Column(Numeric(5, 2), default=0)  # 5 = 5% extra

    is_optional = Column(Boolean, default=False, nullable=False)
    is_phantom = Column(Boolean, default=False, nullable=False)  # Explode through, never stocked

    notes = Column(Text, nullable=True)

    # Relationships
    bom = relationship("BOM", back_populates="items", foreign_keys=[bom_id])
    component = relationship("Product", foreign_keys=[component_id])

    def __repr__(self):
        return f"<BOMItem bom={self.bom_id} component={self.component_id} qty={self.quantity}>"
