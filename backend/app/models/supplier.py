"""
Supplier models - who can supply a product and at what price
"""
from sqlalchemy import Column, Integer, String, Numeric, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from app.db.base import Base


class Supplier(Base):
    """Vendor of purchased items"""
    __tablename__ = "suppliers"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    code = Column(String(50), nullable=False)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    products = relationship("SupplierProduct", back_populates="supplier")

    def __repr__(self):
        return f"<Supplier {self.code}: {self.name}>"


class SupplierProduct(Base):
    """Supplier-specific price and lead time for a product"""
    __tablename__ = "supplier_products"

    id = Column(Integer, primary_key=True, index=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)

    unit_price = Column(Numeric(18, 4), nullable=True)
    lead_time_days = Column(Integer, nullable=True)
    is_preferred = Column(Boolean, default=False, nullable=False)

    supplier = relationship("Supplier", back_populates="products")
    product = relationship("Product")

    def __repr__(self):
        return f"<SupplierProduct supplier={self.supplier_id} product={self.product_id}>"
